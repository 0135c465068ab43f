"""
linalg.py
~~~~~~~~~

Minimal dense linear algebra used by the network.

Every array is a float32 NumPy array. Only the handful of operations the
forward and backward passes need are exposed here, so the math in
``network.py`` reads the same as the equations it implements.
"""

from typing import Callable, Sequence, Union

import numpy as np

DTYPE = np.float32

ArrayLike = Union[np.ndarray, Sequence[float], Sequence[Sequence[float]]]


def vector(values: ArrayLike) -> np.ndarray:
    """
    Convert values to a 1D float32 array.

    Raises:
        ValueError: If the values do not form a 1D array
    """
    arr = np.asarray(values, dtype=DTYPE)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1D vector, got shape {arr.shape}")
    return arr


def matrix(values: ArrayLike) -> np.ndarray:
    """
    Convert values to a 2D float32 array.

    Raises:
        ValueError: If the values do not form a 2D array
    """
    arr = np.asarray(values, dtype=DTYPE)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2D matrix, got shape {arr.shape}")
    return arr


def zeros(*shape: int) -> np.ndarray:
    return np.zeros(shape, dtype=DTYPE)


def uniform(rng: np.random.Generator, low: float, high: float,
            *shape: int) -> np.ndarray:
    """Draw a float32 array i.i.d. from uniform [low, high)."""
    return rng.uniform(low, high, size=shape).astype(DTYPE)


def dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Vector-matrix (or matrix-matrix) product."""
    return np.dot(a, b)


def outer(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Outer product: result[i, j] = a[i] * b[j]."""
    return np.outer(a, b)


def transpose(m: np.ndarray) -> np.ndarray:
    return m.T


def apply(v: np.ndarray, fn: Callable[[np.ndarray], np.ndarray]) -> np.ndarray:
    """
    Apply an elementwise function and keep the float32 dtype.

    ``fn`` receives the whole array and must be vectorised
    (e.g. ``np.exp`` or a ``np.where`` expression).
    """
    return np.asarray(fn(v), dtype=DTYPE)


def argmax(v: np.ndarray) -> int:
    """Index of the maximum entry; ties resolve to the first index."""
    return int(np.argmax(v))
