#!/usr/bin/env python3
"""
Train a digit classifier on an MNIST archive in NPZ format.

The archive must hold the arrays ``train_images``, ``train_labels``,
``test_images`` and ``test_labels`` (images flattened to 784 values in
[0, 1]). Hyperparameters come from the DIGITNET_* environment variables.

Usage:
    python scripts/train_npz.py [path/to/mnist.npz]

The script will:
1. Load the arrays from the archive (default: data/mnist.npz)
2. Train a 784-hidden-10 network with per-sample gradient descent
3. Report the accuracy on the test split
"""

import os
import sys
from typing import Tuple

import numpy as np

from digitnet.config import load_settings, configure_logging
from digitnet.network import NeuralNetwork

REQUIRED_KEYS = ('train_images', 'train_labels', 'test_images', 'test_labels')


def load_npz(filepath: str) -> Tuple[np.ndarray, ...]:
    """
    Load the train and test splits from an NPZ archive.

    Parameters:
    -----------
    filepath : str
        Path to the .npz file

    Returns:
    --------
    tuple
        (train_images, train_labels, test_images, test_labels)
    """
    print(f"📂 Loading MNIST data from: {filepath}")

    with np.load(filepath) as data:
        missing = [key for key in REQUIRED_KEYS if key not in data]
        if missing:
            raise KeyError(f"Archive is missing arrays: {', '.join(missing)}")
        arrays = tuple(data[key] for key in REQUIRED_KEYS)

    train_images, train_labels, test_images, test_labels = arrays
    print(f"✅ Loaded successfully:")
    print(f"   - Training: {len(train_images)} images")
    print(f"   - Test: {len(test_images)} images")

    return (
        train_images.astype(np.float32),
        train_labels.astype(np.int64),
        test_images.astype(np.float32),
        test_labels.astype(np.int64)
    )


def main():
    """Main training function."""
    print("=" * 60)
    print("Digit Recognition Trainer")
    print("=" * 60)

    settings = load_settings()
    configure_logging(settings)

    script_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(script_dir)
    if len(sys.argv) > 1:
        npz_path = sys.argv[1]
    else:
        npz_path = os.path.join(project_root, 'data', 'mnist.npz')

    if not os.path.exists(npz_path):
        print(f"❌ Error: Archive not found: {npz_path}")
        sys.exit(1)

    try:
        train_images, train_labels, test_images, test_labels = load_npz(npz_path)

        net = NeuralNetwork(
            train_images.shape[1],
            settings.hidden_size,
            int(train_labels.max()) + 1,
            rng=settings.seed
        )
        print(f"\n🧠 Training network {net.sizes} for {settings.epochs} "
              f"epoch(s) at learning rate {settings.learning_rate}")

        history = net.train(
            train_images,
            train_labels,
            settings.epochs,
            settings.learning_rate
        )

        accuracy = net.test(test_images, test_labels)

        print("\n" + "=" * 60)
        print("✅ TRAINING COMPLETE!")
        print("=" * 60)
        if history:
            print(f"   - Final epoch loss: {history[-1]:.4f}")
        print(f"   - Test accuracy: {accuracy:.2%}")

    except Exception as e:
        print(f"\n❌ Error during training: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
