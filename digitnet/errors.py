"""
errors.py
~~~~~~~~~

Exceptions and warnings raised by the network.
"""

from typing import Optional


class ConstructionError(ValueError):
    """Raised when a network is built with invalid layer sizes."""


class ShapeMismatchError(ValueError):
    """
    Raised when an input does not fit the network's dimensions.

    Covers feature vectors of the wrong length, labels outside
    ``[0, output_size)``, feature/label counts that disagree and parameter
    arrays of the wrong shape.

    Attributes:
        index: Position of the offending sample, or None when the problem
            is not tied to a single sample
    """

    def __init__(self, message: str, index: Optional[int] = None):
        if index is not None:
            message = f"sample {index}: {message}"
        super().__init__(message)
        self.index = index


class NumericDegeneracyWarning(RuntimeWarning):
    """Emitted when an epoch produced a NaN or infinite sample loss."""
