"""
im2col / col2im
===============

The im2col trick turns a convolution into a single matrix multiplication:
every receptive field of the image is unrolled into one row of a patch matrix,
so multiplying by a (patch_size, filters) kernel matrix computes every filter
at every position at once.

col2im is the adjoint. It scatters each row of a patch matrix back into its
receptive field, summing wherever receptive fields overlap. That summation is
exactly what the gradient with respect to the input needs.

Layout conventions (shared by every layer in the library):
- Images are (channels, rows, cols); a (rows, cols) array is one channel.
- Output positions are enumerated row-major: row index outer, column inner.
- Within a patch row the receptive field is flattened channel first, then
  kernel row, then kernel column.
"""

import numpy as np

from .errors import ShapeError
from .shapes import output_extent


def im2col(kernel_rows, kernel_cols, stride_rows, stride_cols, image):
    """
    Unroll the receptive fields of an image into the rows of a matrix.

    Uses numpy stride tricks to view every patch without copying, then copies
    the view once into a fresh contiguous matrix.

    Args:
        kernel_rows, kernel_cols: Receptive field size
        stride_rows, stride_cols: Step between receptive fields
        image: Array of shape (channels, rows, cols) or (rows, cols)

    Returns:
        Matrix of shape (out_rows * out_cols, channels * kernel_rows * kernel_cols)

    Raises:
        ShapeError: If the kernel and stride do not tile the image exactly
    """
    image = np.asarray(image, dtype=np.float64)
    if image.ndim == 2:
        image = image[np.newaxis, :, :]
    if image.ndim != 3:
        raise ShapeError(f"im2col expects a 2D or 3D image, got shape {image.shape}")

    channels, rows, cols = image.shape
    out_rows = output_extent(rows, kernel_rows, stride_rows)
    out_cols = output_extent(cols, kernel_cols, stride_cols)

    shape = (out_rows, out_cols, channels, kernel_rows, kernel_cols)
    strides = (
        image.strides[1] * stride_rows,  # output row (strided)
        image.strides[2] * stride_cols,  # output column (strided)
        image.strides[0],                # channel
        image.strides[1],                # kernel row
        image.strides[2],                # kernel column
    )
    patches = np.lib.stride_tricks.as_strided(image, shape=shape, strides=strides,
                                              writeable=False)

    columns = np.empty((out_rows * out_cols, channels * kernel_rows * kernel_cols),
                       dtype=np.float64)
    columns.reshape(shape)[...] = patches
    return columns


def col2im(kernel_rows, kernel_cols, stride_rows, stride_cols, rows, cols, columns):
    """
    Scatter the rows of a patch matrix back into an image.

    Overlapping receptive fields accumulate. With a 1x1 kernel and stride 1
    this is a pure layout change from (rows * cols, channels) to
    (channels, rows, cols).

    Args:
        kernel_rows, kernel_cols: Receptive field size
        stride_rows, stride_cols: Step between receptive fields
        rows, cols: Size of the image to rebuild
        columns: Matrix of shape (out_rows * out_cols, channels * kernel_rows * kernel_cols)

    Returns:
        Image of shape (channels, rows, cols)

    Raises:
        ShapeError: If the matrix does not match the kernel, stride and image size
    """
    columns = np.asarray(columns, dtype=np.float64)
    out_rows = output_extent(rows, kernel_rows, stride_rows)
    out_cols = output_extent(cols, kernel_cols, stride_cols)

    patch_size = kernel_rows * kernel_cols
    if (columns.ndim != 2 or columns.shape[0] != out_rows * out_cols
            or columns.shape[1] == 0 or columns.shape[1] % patch_size != 0):
        raise ShapeError(
            f"col2im expects a ({out_rows * out_cols}, channels * {patch_size}) matrix, "
            f"got shape {columns.shape}")

    channels = columns.shape[1] // patch_size
    patches = columns.reshape(out_rows, out_cols, channels, kernel_rows, kernel_cols)

    image = np.zeros((channels, rows, cols), dtype=np.float64)

    # One kernel offset at a time: within an offset every target pixel is
    # distinct, so the slice-add is safe. Overlaps only occur across offsets.
    row_span = stride_rows * (out_rows - 1) + 1
    col_span = stride_cols * (out_cols - 1) + 1
    for kr in range(kernel_rows):
        for kc in range(kernel_cols):
            image[:, kr:kr + row_span:stride_rows, kc:kc + col_span:stride_cols] += \
                patches[:, :, :, kr, kc].transpose(2, 0, 1)

    return image
