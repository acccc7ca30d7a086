# singe/singe_errors.py
from __future__ import annotations


class SingeError(Exception):
    """Base class for every error raised by the Singe engine."""
    pass


class InvalidShape(SingeError, ValueError):
    """
    Raised when a shape or an operator configuration can never be valid:
      - empty shape, zero or negative dimensions
      - kernel / pool window that does not fit the padded input
      - stride < 1, pool padding >= pool size, outputs < 1
    """
    pass


class OutOfBounds(SingeError, IndexError):
    """Raised when an index or a slice range falls outside a Tensor's extent."""
    pass


class EmptyTensor(SingeError, ValueError):
    """Raised when a reduction is asked of a zero-element Tensor."""
    pass


class ShapeMismatch(SingeError, ValueError):
    """
    Raised when an operator or a binding receives a Tensor whose shape
    is incompatible with its configuration.
    """
    pass


class ElemKindMismatch(SingeError, TypeError):
    """Raised when a Tensor's element kind is not the one requested."""
    pass
