"""Exceptions raised by the coordinate-ascent update passes."""


class VarBVSError(ValueError):
    """Base class for invalid inputs to an update pass."""


class InvalidParameter(VarBVSError):
    """Residual variance or prior variance is not a finite positive number."""


class DimensionMismatch(VarBVSError):
    """A vector or matrix has a length inconsistent with (n, p)."""


class IndexOutOfRange(VarBVSError, IndexError):
    """An entry of the update order lies outside [0, p)."""
