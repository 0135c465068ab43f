"""
digitnet package
~~~~~~~~~~~~~~~~

Two-layer feedforward neural network for digit recognition, trained by
manual backpropagation and per-example stochastic gradient descent.
Contains the dense linear-algebra helpers, activation functions, the
network itself and an optional API server.
"""

from digitnet.errors import (
    ConstructionError,
    ShapeMismatchError,
    NumericDegeneracyWarning
)
from digitnet.network import NeuralNetwork, EarlyStopping

__version__ = "1.0.0"

__all__ = [
    'NeuralNetwork',
    'EarlyStopping',
    'ConstructionError',
    'ShapeMismatchError',
    'NumericDegeneracyWarning',
]
