"""
network.py
~~~~~~~~~~

A two-layer feedforward neural network trained by backpropagation and
per-example stochastic gradient descent.

The network maps an input vector through one ReLU hidden layer to a
softmax output layer and is trained against a cross-entropy loss. Every
sample triggers its own parameter update (online learning); samples are
visited in the order given, without shuffling, so training is fully
deterministic once the initial weights are fixed.

Typical use::

    >>> net = NeuralNetwork(784, 30, 10, rng=42)
    >>> history = net.train(train_images, train_labels, epochs=5,
    ...                     learning_rate=0.01)
    >>> net.test(test_images, test_labels)
    0.93...
"""

import math
import time
import logging
import warnings
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union
)

import numpy as np

from digitnet import linalg
from digitnet.activations import (
    relu,
    relu_derivative,
    softmax,
    one_hot,
    cross_entropy
)
from digitnet.errors import (
    ConstructionError,
    ShapeMismatchError,
    NumericDegeneracyWarning
)

# Configure module logger
logger = logging.getLogger(__name__)

# Initial weights are drawn from uniform [-INIT_RANGE, INIT_RANGE)
INIT_RANGE = 0.1

RandomSource = Union[None, int, np.random.Generator]
Dataset = Tuple[Any, Sequence[int]]


class Activations(NamedTuple):
    """Intermediate values of one forward pass."""
    z1: np.ndarray
    a1: np.ndarray
    z2: np.ndarray
    a2: np.ndarray


class Gradients(NamedTuple):
    """Loss gradients for one sample, plus the sample loss itself."""
    dw1: np.ndarray
    db1: np.ndarray
    dw2: np.ndarray
    db2: np.ndarray
    dz2: np.ndarray
    loss: float


@dataclass
class EarlyStopping:
    """
    Opt-in stopping rule for ``NeuralNetwork.train``.

    Training stops once the epoch loss has not improved on the best loss
    seen so far by more than ``min_delta`` for ``patience`` consecutive
    epochs. Non-finite losses never count as an improvement.
    """
    patience: int = 3
    min_delta: float = 0.0
    best_loss: float = field(default=math.inf, init=False)
    stale_epochs: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.patience, int) or self.patience < 1:
            raise ValueError(
                f"patience must be a positive integer, got {self.patience}"
            )
        if self.min_delta < 0:
            raise ValueError(
                f"min_delta must be non-negative, got {self.min_delta}"
            )

    def reset(self) -> None:
        self.best_loss = math.inf
        self.stale_epochs = 0

    def should_stop(self, loss: float) -> bool:
        """Record an epoch loss and report whether training should stop."""
        if math.isfinite(loss) and loss < self.best_loss - self.min_delta:
            self.best_loss = loss
            self.stale_epochs = 0
        else:
            self.stale_epochs += 1
        return self.stale_epochs >= self.patience


def _check_size(name: str, value: Any) -> int:
    if isinstance(value, (bool, np.bool_)) or \
            not isinstance(value, (int, np.integer)) or value < 1:
        raise ConstructionError(
            f"{name} must be a positive integer, got {value!r}"
        )
    return int(value)


def _make_rng(rng: RandomSource) -> np.random.Generator:
    """Accept a Generator as-is, otherwise seed a new one (None = OS entropy)."""
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


class NeuralNetwork:
    """
    Two-layer network: input -> ReLU hidden layer -> softmax output.

    Parameters are ``w1`` (input_size x hidden_size), ``b1`` (hidden_size),
    ``w2`` (hidden_size x output_size) and ``b2`` (output_size), all
    float32. Their shapes are fixed at construction.

    A network instance is not safe for concurrent use; one caller should
    own it while it trains or predicts.
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        output_size: int,
        rng: RandomSource = None,
        stable_softmax: bool = True
    ):
        """
        Create a network with random weights and zero biases.

        Args:
            input_size: Length of each feature vector
            hidden_size: Number of hidden units
            output_size: Number of classes
            rng: Random source for the weights: a numpy Generator, an int
                seed, or None for a freshly seeded generator
            stable_softmax: Shift scores by their maximum before
                exponentiating (see ``activations.softmax``)

        Raises:
            ConstructionError: If any size is not a positive integer
        """
        self.sizes = (
            _check_size('input_size', input_size),
            _check_size('hidden_size', hidden_size),
            _check_size('output_size', output_size)
        )
        self.stable_softmax = stable_softmax

        generator = _make_rng(rng)
        self.w1 = linalg.uniform(
            generator, -INIT_RANGE, INIT_RANGE, self.sizes[0], self.sizes[1]
        )
        self.b1 = linalg.zeros(self.sizes[1])
        self.w2 = linalg.uniform(
            generator, -INIT_RANGE, INIT_RANGE, self.sizes[1], self.sizes[2]
        )
        self.b2 = linalg.zeros(self.sizes[2])

        logger.debug(f"Initialized network with sizes {self.sizes}")

    def __repr__(self) -> str:
        return f"NeuralNetwork(sizes={self.sizes})"

    @property
    def input_size(self) -> int:
        return self.sizes[0]

    @property
    def hidden_size(self) -> int:
        return self.sizes[1]

    @property
    def output_size(self) -> int:
        return self.sizes[2]

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def set_parameters(self, w1: Any, b1: Any, w2: Any, b2: Any) -> None:
        """
        Replace all parameters at once.

        The network is left unchanged if any array has the wrong shape.

        Raises:
            ShapeMismatchError: If a shape disagrees with ``sizes``
        """
        n_in, n_hidden, n_out = self.sizes
        expected = {
            'w1': (n_in, n_hidden),
            'b1': (n_hidden,),
            'w2': (n_hidden, n_out),
            'b2': (n_out,)
        }
        given = {'w1': w1, 'b1': b1, 'w2': w2, 'b2': b2}

        arrays = {}
        for name, shape in expected.items():
            arr = np.array(given[name], dtype=linalg.DTYPE)
            if arr.shape != shape:
                raise ShapeMismatchError(
                    f"{name} must have shape {shape}, got {arr.shape}"
                )
            arrays[name] = arr

        self.w1 = arrays['w1']
        self.b1 = arrays['b1']
        self.w2 = arrays['w2']
        self.b2 = arrays['b2']

    # ------------------------------------------------------------------
    # Input validation
    # ------------------------------------------------------------------

    def _check_features(self, x: Any, index: Optional[int] = None) -> np.ndarray:
        try:
            vec = linalg.vector(x)
        except (TypeError, ValueError) as e:
            raise ShapeMismatchError(
                f"feature vector is not a 1D numeric array ({e})", index
            ) from None
        if vec.shape[0] != self.input_size:
            raise ShapeMismatchError(
                f"feature vector has length {vec.shape[0]}, "
                f"expected {self.input_size}",
                index
            )
        return vec

    def _check_label(self, label: Any, index: Optional[int] = None) -> int:
        try:
            value = int(label)
        except (TypeError, ValueError, OverflowError):
            raise ShapeMismatchError(
                f"label {label!r} is not an integer", index
            ) from None
        if value != label:
            raise ShapeMismatchError(
                f"label {label!r} is not an integer", index
            )
        if not 0 <= value < self.output_size:
            raise ShapeMismatchError(
                f"label {value} outside [0, {self.output_size})", index
            )
        return value

    @staticmethod
    def _check_dataset(features: Any, labels: Any) -> int:
        """Return the number of samples after checking the two align."""
        n_features, n_labels = len(features), len(labels)
        if n_features != n_labels:
            raise ShapeMismatchError(
                f"{n_features} feature rows but {n_labels} labels"
            )
        return n_features

    # ------------------------------------------------------------------
    # Forward and backward passes
    # ------------------------------------------------------------------

    def _forward(self, x: np.ndarray) -> Activations:
        z1 = linalg.dot(x, self.w1) + self.b1
        a1 = relu(z1)
        z2 = linalg.dot(a1, self.w2) + self.b2
        a2 = softmax(z2, stable=self.stable_softmax)
        return Activations(z1, a1, z2, a2)

    def forward(self, x: Any) -> Activations:
        """
        Run the forward pass for one feature vector.

        Raises:
            ShapeMismatchError: If ``x`` does not have length input_size
        """
        return self._forward(self._check_features(x))

    def feedforward(self, x: Any) -> np.ndarray:
        """Return the output probability vector for ``x``."""
        return self.forward(x).a2

    def _backprop(self, x: np.ndarray, label: int) -> Gradients:
        acts = self._forward(x)
        y_true = one_hot(label, self.output_size)
        loss = cross_entropy(acts.a2, y_true)

        # Softmax followed by cross-entropy differentiates to a2 - y
        dz2 = acts.a2 - y_true
        dw2 = linalg.outer(acts.a1, dz2)
        db2 = dz2

        dz1 = linalg.dot(dz2, linalg.transpose(self.w2)) * \
            relu_derivative(acts.z1)
        dw1 = linalg.outer(x, dz1)
        db1 = dz1

        return Gradients(dw1, db1, dw2, db2, dz2, loss)

    def backprop(self, x: Any, label: Any) -> Gradients:
        """
        Compute the loss gradients for a single sample.

        Parameters are not modified.

        Args:
            x: Feature vector of length input_size
            label: True class index

        Returns:
            Gradients: dw1, db1, dw2, db2, the output error dz2 and the
            cross-entropy loss of the sample
        """
        return self._backprop(
            self._check_features(x), self._check_label(label)
        )

    def _apply_gradients(self, grads: Gradients, learning_rate: float) -> None:
        self.w2 -= learning_rate * grads.dw2
        self.b2 -= learning_rate * grads.db2
        self.w1 -= learning_rate * grads.dw1
        self.b1 -= learning_rate * grads.db1

    # ------------------------------------------------------------------
    # Training and evaluation
    # ------------------------------------------------------------------

    def train(
        self,
        features: Any,
        labels: Any,
        epochs: int,
        learning_rate: float,
        validation: Optional[Dataset] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None,
        early_stopping: Optional[EarlyStopping] = None
    ) -> List[float]:
        """
        Train the network with per-example stochastic gradient descent.

        Each epoch visits the samples in the given order and updates the
        parameters in place right after each one. The average loss of
        every epoch is reported at INFO level through the
        ``digitnet.network`` logger (hidden unless logging is configured,
        e.g. with ``config.configure_logging``) and is also returned in
        the history list.

        Args:
            features: Feature matrix, one row per sample
            labels: Class index for each row of ``features``
            epochs: Number of full passes over the data
            learning_rate: Step size
            validation: Optional (features, labels) scored after each epoch
            callback: Called after each epoch with a progress dict
                (epoch, total_epochs, loss, accuracy, elapsed_time,
                degenerate_samples)
            yield_func: Called after each epoch so other tasks can run
            early_stopping: Optional stopping rule; without one all epochs
                always run

        Returns:
            list: Average loss of each completed epoch

        Raises:
            ValueError: If epochs or learning_rate is invalid, or the
                dataset is empty
            ShapeMismatchError: On the first sample that does not fit the
                network; samples before it have already been trained on
        """
        if isinstance(epochs, bool) or \
                not isinstance(epochs, (int, np.integer)) or epochs < 0:
            raise ValueError(
                f"epochs must be a non-negative integer, got {epochs!r}"
            )
        epochs = int(epochs)
        if isinstance(learning_rate, bool) or \
                not isinstance(learning_rate, (int, float, np.integer, np.floating)) or \
                not math.isfinite(learning_rate) or learning_rate <= 0:
            raise ValueError(
                f"learning_rate must be a positive number, got {learning_rate!r}"
            )

        n = self._check_dataset(features, labels)
        if n == 0:
            raise ValueError("Cannot train on an empty dataset")
        if early_stopping is not None:
            early_stopping.reset()

        history: List[float] = []
        start_time = time.time()

        for epoch in range(1, epochs + 1):
            total_loss = 0.0
            degenerate = 0

            for index in range(n):
                x = self._check_features(features[index], index)
                label = self._check_label(labels[index], index)

                grads = self._backprop(x, label)
                if not math.isfinite(grads.loss):
                    degenerate += 1
                total_loss += grads.loss

                self._apply_gradients(grads, learning_rate)

            avg_loss = total_loss / n
            history.append(avg_loss)

            if degenerate:
                message = (
                    f"Epoch {epoch}: {degenerate} of {n} sample losses were "
                    f"not finite (true-class probability reached zero)"
                )
                logger.warning(message)
                warnings.warn(message, NumericDegeneracyWarning, stacklevel=2)

            accuracy = None
            if validation is not None:
                accuracy = self.test(*validation)
                logger.info(
                    f"Epoch {epoch}: Loss = {avg_loss:.4f}, "
                    f"Accuracy = {accuracy:.2%}"
                )
            else:
                logger.info(f"Epoch {epoch}: Loss = {avg_loss:.4f}")

            if callback is not None:
                callback({
                    'epoch': epoch,
                    'total_epochs': epochs,
                    'loss': avg_loss,
                    'accuracy': accuracy,
                    'elapsed_time': time.time() - start_time,
                    'degenerate_samples': degenerate
                })

            if yield_func is not None:
                yield_func()

            if early_stopping is not None and early_stopping.should_stop(avg_loss):
                logger.info(
                    f"Early stopping after epoch {epoch}: no improvement "
                    f"for {early_stopping.patience} epoch(s)"
                )
                break

        return history

    def predict(self, x: Any) -> int:
        """
        Return the most probable class for ``x``.

        Ties go to the lowest class index.
        """
        return linalg.argmax(self.feedforward(x))

    def test(self, features: Any, labels: Any) -> float:
        """
        Return the fraction of samples classified correctly.

        An empty dataset scores 0.0.
        """
        n = self._check_dataset(features, labels)
        if n == 0:
            return 0.0

        correct = 0
        for index in range(n):
            x = self._check_features(features[index], index)
            label = self._check_label(labels[index], index)
            if linalg.argmax(self._forward(x).a2) == label:
                correct += 1
        return correct / n
