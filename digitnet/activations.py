"""
activations.py
~~~~~~~~~~~~~~

Activation functions and the cross-entropy loss.
"""

import numpy as np

from digitnet import linalg


def relu(v: np.ndarray) -> np.ndarray:
    """Rectified linear unit, max(v, 0) elementwise."""
    return linalg.apply(v, lambda x: np.maximum(x, 0.0))


def relu_derivative(v: np.ndarray) -> np.ndarray:
    """1 where v > 0, else 0 (the subgradient at 0 is taken as 0)."""
    return linalg.apply(v, lambda x: np.where(x > 0.0, 1.0, 0.0))


def softmax(v: np.ndarray, stable: bool = True) -> np.ndarray:
    """
    Normalised exponential of a score vector.

    Args:
        v: Raw scores
        stable: Subtract max(v) before exponentiating. The shift does not
            change the result but keeps exp() from overflowing on large
            scores. With ``stable=False`` the scores are exponentiated as
            given, which yields NaN once exp() overflows.

    Returns:
        Probability vector of the same length as ``v``
    """
    if stable:
        v = v - np.max(v)
    with np.errstate(over='ignore', invalid='ignore'):
        exps = linalg.apply(v, np.exp)
        return exps / np.sum(exps)


def one_hot(label: int, size: int) -> np.ndarray:
    y = linalg.zeros(size)
    y[label] = 1.0
    return y


def cross_entropy(probabilities: np.ndarray, y_true: np.ndarray) -> float:
    """
    Cross-entropy loss -sum(y_true * ln(probabilities)).

    The probabilities are not clamped. A true-class probability of exactly
    zero gives ``inf`` (and NaN probabilities give NaN); callers are
    expected to check the result with ``math.isfinite``.
    """
    # Only the true-class term is non-zero; skipping the rest also avoids
    # 0 * ln(0) = NaN on classes whose probability underflowed.
    mask = y_true != 0
    with np.errstate(divide='ignore', invalid='ignore'):
        return float(-np.sum(y_true[mask] * np.log(probabilities[mask])))
