"""
Exceptions raised by shapenn.

Both are ValueErrors: they signal a bad configuration or a bad buffer,
detected before any forward or backward computation takes place.
"""


class ShapeError(ValueError):
    """A layer, tensor or network was declared with incompatible shapes."""


class SerializationError(ValueError):
    """Persisted parameters do not match the shape they are loaded into."""
