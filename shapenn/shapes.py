"""
Tensor Shapes
=============

Every tensor flowing through a network has a declared shape. Shapes are small
immutable value objects carrying validated integer dimensions:

- D1(length): a vector
- D2(rows, cols): a single-channel image (matrix)
- D3(rows, cols, channels): a multi-channel image
- D4(rows, cols, channels, batch): a batch of multi-channel images

Storage is always a flat contiguous NumPy buffer in channels-first, row-major
order, so the array shape of a D3 tensor is (channels, rows, cols). A D2
tensor and a D3 tensor with one channel share the exact same buffer layout,
which is what lets layers move between them with a no-copy reshape.
"""

import numpy as np

from .errors import ShapeError


def check_dim(name, value):
    """Validate a positive integer dimension and return it as an int."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ShapeError(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise ShapeError(f"{name} must be positive, got {value}")
    return int(value)


def output_extent(input_extent, kernel_extent, stride):
    """
    Number of kernel placements along one axis.

    The relation out = (in - kernel) / stride + 1 must hold exactly: a kernel
    that does not tile the input (leaving a ragged edge) is rejected rather
    than silently truncated.

    Args:
        input_extent: Size of the input along the axis
        kernel_extent: Size of the kernel along the axis
        stride: Step between kernel placements

    Returns:
        The output extent

    Raises:
        ShapeError: If the arguments do not fit together exactly
    """
    input_extent = check_dim('input extent', input_extent)
    kernel_extent = check_dim('kernel extent', kernel_extent)
    stride = check_dim('stride', stride)

    if kernel_extent > input_extent:
        raise ShapeError(
            f"kernel extent {kernel_extent} is larger than input extent {input_extent}")

    span = input_extent - kernel_extent
    if span % stride != 0:
        raise ShapeError(
            f"kernel extent {kernel_extent} with stride {stride} does not "
            f"evenly cover input extent {input_extent}")

    return span // stride + 1


class Shape:
    """Base class for tensor shapes."""

    rank = 0

    def __init__(self, *dims):
        self._dims = dims

    @property
    def dims(self):
        """NumPy array shape of a tensor with this shape."""
        raise NotImplementedError

    @property
    def size(self):
        return int(np.prod(self.dims))

    def zeros(self):
        """An all-zero tensor of this shape."""
        return np.zeros(self.dims, dtype=np.float64)

    def check(self, x):
        """Raise ShapeError unless the array x has this shape."""
        shape = np.shape(x)
        if shape != self.dims:
            raise ShapeError(f"expected a tensor of shape {self!r} {self.dims}, got {shape}")

    def __eq__(self, other):
        if not isinstance(other, Shape):
            return NotImplemented
        return self.rank == other.rank and self._dims == other._dims

    def __hash__(self):
        return hash((self.rank, self._dims))

    def __repr__(self):
        args = ', '.join(str(d) for d in self._dims)
        return f"{type(self).__name__}({args})"


class D1(Shape):
    """A vector of `length` elements."""

    rank = 1

    def __init__(self, length):
        self.length = check_dim('length', length)
        super().__init__(self.length)

    @property
    def dims(self):
        return (self.length,)


class D2(Shape):
    """A single-channel image with `rows` x `cols` elements."""

    rank = 2
    channels = 1

    def __init__(self, rows, cols):
        self.rows = check_dim('rows', rows)
        self.cols = check_dim('cols', cols)
        super().__init__(self.rows, self.cols)

    @property
    def dims(self):
        return (self.rows, self.cols)


class D3(Shape):
    """An image with `rows` x `cols` pixels and `channels` channels."""

    rank = 3

    def __init__(self, rows, cols, channels):
        self.rows = check_dim('rows', rows)
        self.cols = check_dim('cols', cols)
        self.channels = check_dim('channels', channels)
        super().__init__(self.rows, self.cols, self.channels)

    @property
    def dims(self):
        return (self.channels, self.rows, self.cols)


class D4(Shape):
    """A batch of `batch` images, each `rows` x `cols` x `channels`."""

    rank = 4

    def __init__(self, rows, cols, channels, batch):
        self.rows = check_dim('rows', rows)
        self.cols = check_dim('cols', cols)
        self.channels = check_dim('channels', channels)
        self.batch = check_dim('batch', batch)
        super().__init__(self.rows, self.cols, self.channels, self.batch)

    @property
    def dims(self):
        return (self.batch, self.channels, self.rows, self.cols)


def is_image(shape):
    """True for the shapes spatial layers accept (D2 and D3)."""
    return isinstance(shape, (D2, D3))
