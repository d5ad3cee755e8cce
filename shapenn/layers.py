"""
Network Layers
==============

The building blocks of a shapenn network, implemented with NumPy only.

Layers implemented:
- Convolution: 2D convolution through im2col, trained with momentum SGD
- FullyConnected: Dense vector-to-vector layer
- Pooling: Max pooling for spatial downsampling
- Pad / Crop: Zero padding and its inverse
- Reshape: Change the declared shape, keep the buffer
- Activation: Element-wise non-linearities and softmax

Layers are immutable. Each one implements:
- forward(x) -> (tape, output): the tape holds whatever backward needs
- backward(tape, grad_output) -> (gradient, grad_input)
- update(learning, gradient) -> a new layer with updated parameters
- check_shapes(input_shape, output_shape): raise ShapeError if illegal

Parameterless layers return None as their gradient and themselves from update.
Outputs are produced in the layer's natural channels-first layout; the network
views them through the declared shapes.
"""

import numpy as np

from .activations import get_activation
from .errors import ShapeError, SerializationError
from .im2col import im2col, col2im
from .optimizers import descend_with
from .shapes import D1, check_dim, is_image, output_extent
from .utils import render_ascii


def _as_image(x):
    """View a (rows, cols) array as a one-channel (1, rows, cols) image."""
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 2:
        return x[np.newaxis, :, :]
    return x


def _check_margin(name, value):
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ShapeError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ShapeError(f"{name} must be non-negative, got {value}")
    return int(value)


def _check_same_image_kind(layer, input_shape, output_shape):
    if not (is_image(input_shape) and type(input_shape) is type(output_shape)):
        raise ShapeError(
            f"{layer!r} maps D2 -> D2 or D3 -> D3, got {input_shape!r} -> {output_shape!r}")
    if input_shape.channels != output_shape.channels:
        raise ShapeError(
            f"{layer!r} keeps the channel count, got {input_shape!r} -> {output_shape!r}")


def _parameter(name, value, shape):
    value = np.array(value, dtype=np.float64, order='C')
    if value.shape != shape:
        raise ShapeError(f"{name} must have shape {shape}, got {value.shape}")
    return value


def _init_scale(weight_init, fan_in):
    if weight_init == 'he':
        return np.sqrt(2.0 / fan_in)
    if weight_init == 'xavier':
        return np.sqrt(1.0 / fan_in)
    raise ValueError(f"Unknown weight_init '{weight_init}'. Available: he, xavier")


class Layer:
    """Base class for all layers."""

    def forward(self, x):
        """Forward pass. Returns (tape, output)."""
        raise NotImplementedError

    def backward(self, tape, grad_output):
        """Backward pass. Returns (gradient, grad_input)."""
        raise NotImplementedError

    def update(self, learning, gradient):
        """Apply a gradient. Layers without parameters return themselves."""
        return self

    def check_shapes(self, input_shape, output_shape):
        """Raise ShapeError unless input_shape -> output_shape is legal."""
        raise NotImplementedError

    @property
    def num_params(self):
        return sum(record.size for record in self.records())

    def records(self):
        """Flat parameter records in persistence order."""
        return []

    def record_sizes(self):
        return [record.size for record in self.records()]

    def from_records(self, records):
        """A copy of this layer holding the given records, momentum reset."""
        return self

    def scale(self, factor):
        """A copy with every parameter multiplied by factor; momentum is kept."""
        return self

    def average(self, other):
        """A copy holding the mean of this layer's and other's parameters and momenta."""
        self._check_same(other)
        return self

    def _check_same(self, other):
        if type(other) is not type(self) or repr(other) != repr(self):
            raise ShapeError(f"cannot combine {self!r} with {other!r}")

    def __call__(self, x):
        return self.forward(x)[1]


# ============================================================================
# Convolution
# ============================================================================

class ConvolutionGradient:
    """Weight gradient of a Convolution layer, same shape as its kernel matrix."""

    def __init__(self, weights):
        self.weights = weights

    def __repr__(self):
        return f"ConvolutionGradient(shape={self.weights.shape})"


class Convolution(Layer):
    """
    2D Convolutional Layer.

    Performs spatial convolution with no padding. The kernel is stored as a
    single matrix with one column per filter, so the whole forward pass is
    one matrix product against the im2col patch matrix.

    Args:
        channels: Number of input channels
        filters: Number of output channels (number of filters)
        kernel_rows, kernel_cols: Kernel size
        stride_rows, stride_cols: Stride of convolution (default: 1)
        weights: Kernel matrix, shape (kernel_rows * kernel_cols * channels, filters).
            Randomly initialised when omitted.
        momentum: Momentum matrix of the same shape (default: zeros)
        weight_init: 'he' or 'xavier' (default: 'he')

    Input shape: D3(rows, cols, channels), or D2(rows, cols) when channels == 1
    Output shape: D3(out_rows, out_cols, filters), or D2 when filters == 1

    Where:
        out_rows = (rows - kernel_rows) / stride_rows + 1
        out_cols = (cols - kernel_cols) / stride_cols + 1
    and both divisions must be exact.

    The backward pass computes:
    1. dL/dW = patches.T @ dY (for the weight update)
    2. dL/dX = col2im(dY @ W.T) (to pass to the previous layer)
    """

    def __init__(self, channels, filters, kernel_rows, kernel_cols,
                 stride_rows=1, stride_cols=1, weights=None, momentum=None,
                 weight_init='he'):
        self.channels = check_dim('channels', channels)
        self.filters = check_dim('filters', filters)
        self.kernel_rows = check_dim('kernel rows', kernel_rows)
        self.kernel_cols = check_dim('kernel cols', kernel_cols)
        self.stride_rows = check_dim('stride rows', stride_rows)
        self.stride_cols = check_dim('stride cols', stride_cols)

        fan_in = self.kernel_rows * self.kernel_cols * self.channels
        shape = (fan_in, self.filters)

        if weights is None:
            weights = np.random.randn(*shape) * _init_scale(weight_init, fan_in)
        self.weights = _parameter('weights', weights, shape)

        if momentum is None:
            momentum = np.zeros(shape)
        self.momentum = _parameter('momentum', momentum, shape)

    def _configuration(self):
        return (self.channels, self.filters, self.kernel_rows, self.kernel_cols,
                self.stride_rows, self.stride_cols)

    def check_shapes(self, input_shape, output_shape):
        if not is_image(input_shape) or input_shape.channels != self.channels:
            raise ShapeError(
                f"{self!r} expects D3(rows, cols, {self.channels}) input"
                f"{' or D2(rows, cols)' if self.channels == 1 else ''}, got {input_shape!r}")
        if not is_image(output_shape) or output_shape.channels != self.filters:
            raise ShapeError(
                f"{self!r} produces D3(rows, cols, {self.filters}) output"
                f"{' or D2(rows, cols)' if self.filters == 1 else ''}, got {output_shape!r}")

        out_rows = output_extent(input_shape.rows, self.kernel_rows, self.stride_rows)
        out_cols = output_extent(input_shape.cols, self.kernel_cols, self.stride_cols)
        if (out_rows, out_cols) != (output_shape.rows, output_shape.cols):
            raise ShapeError(
                f"{self!r} maps {input_shape.rows}x{input_shape.cols} to "
                f"{out_rows}x{out_cols}, but the output is declared as {output_shape!r}")

    def forward(self, x):
        """
        Forward pass: one matrix product over the unrolled patches.

        Args:
            x: Input, shape (channels, rows, cols) or (rows, cols)

        Returns:
            (tape, output) with output of shape (filters, out_rows, out_cols)
        """
        image = _as_image(x)
        _, rows, cols = image.shape
        out_rows = output_extent(rows, self.kernel_rows, self.stride_rows)
        out_cols = output_extent(cols, self.kernel_cols, self.stride_cols)

        patches = im2col(self.kernel_rows, self.kernel_cols,
                         self.stride_rows, self.stride_cols, image)
        output = col2im(1, 1, 1, 1, out_rows, out_cols, patches @ self.weights)

        return image, output

    def backward(self, tape, grad_output):
        """
        Backward pass.

        The patch matrix is recomputed from the tape rather than stored.
        """
        image = tape
        _, rows, cols = image.shape
        out_rows = output_extent(rows, self.kernel_rows, self.stride_rows)
        out_cols = output_extent(cols, self.kernel_cols, self.stride_cols)

        patches = im2col(self.kernel_rows, self.kernel_cols,
                         self.stride_rows, self.stride_cols, image)

        # (out_rows * out_cols, filters)
        flat = im2col(1, 1, 1, 1,
                      np.reshape(grad_output, (self.filters, out_rows, out_cols)))

        weight_gradient = patches.T @ flat
        grad_input = col2im(self.kernel_rows, self.kernel_cols,
                            self.stride_rows, self.stride_cols,
                            rows, cols, flat @ self.weights.T)

        return ConvolutionGradient(weight_gradient), grad_input

    def update(self, learning, gradient):
        weights, momentum = descend_with(learning, self.weights, gradient.weights,
                                         self.momentum)
        return Convolution(*self._configuration(), weights=weights, momentum=momentum)

    def scale(self, factor):
        return Convolution(*self._configuration(), weights=factor * self.weights,
                           momentum=self.momentum)

    def average(self, other):
        self._check_same(other)
        return Convolution(*self._configuration(),
                           weights=0.5 * (self.weights + other.weights),
                           momentum=0.5 * (self.momentum + other.momentum))

    def to_list(self):
        """The kernel matrix as a flat list of floats, column-major."""
        return self.weights.ravel(order='F').tolist()

    @classmethod
    def from_list(cls, values, channels, filters, kernel_rows, kernel_cols,
                  stride_rows=1, stride_cols=1):
        """
        Rebuild a layer from the output of to_list. Momentum starts at zero.

        Raises:
            SerializationError: If the number of values does not fit the kernel
        """
        values = np.asarray(values, dtype=np.float64).ravel()
        expected = kernel_rows * kernel_cols * channels * filters
        if values.size != expected:
            raise SerializationError(
                f"Convolution kernel needs {expected} values, got {values.size}")
        weights = values.reshape((kernel_rows * kernel_cols * channels, filters), order='F')
        return cls(channels, filters, kernel_rows, kernel_cols, stride_rows, stride_cols,
                   weights=weights)

    def records(self):
        return [self.weights.ravel(order='F')]

    def from_records(self, records):
        (values,) = records
        return Convolution.from_list(values, *self._configuration())

    def render_kernels(self):
        """
        ASCII picture of the kernel, one block per filter side by side.

        Within a block the channels are stacked vertically.
        """
        blocks = []
        for f in range(self.filters):
            kernel = self.weights[:, f].reshape(
                self.channels * self.kernel_rows, self.kernel_cols)
            blocks.append(render_ascii(kernel))
        return '\n'.join('   |   '.join(lines) for lines in zip(*blocks))

    def __repr__(self):
        return (f"Convolution({self.channels}, {self.filters}, "
                f"kernel=({self.kernel_rows}, {self.kernel_cols}), "
                f"stride=({self.stride_rows}, {self.stride_cols}))")


# ============================================================================
# Fully connected
# ============================================================================

class FullyConnectedGradient:
    """Weight and bias gradients of a FullyConnected layer."""

    def __init__(self, weights, bias):
        self.weights = weights
        self.bias = bias

    def __repr__(self):
        return f"FullyConnectedGradient(shape={self.weights.shape})"


class FullyConnected(Layer):
    """
    Fully Connected Layer.

    Each output is connected to every input.

    Args:
        inputs: Number of input features
        outputs: Number of output features
        weights: Weight matrix, shape (inputs, outputs); random when omitted
        bias: Bias vector, shape (outputs,); zeros when omitted
        weight_momentum, bias_momentum: Momenta (default: zeros)
        weight_init: 'he' or 'xavier'

    Forward: output = input @ W + b
    """

    def __init__(self, inputs, outputs, weights=None, bias=None,
                 weight_momentum=None, bias_momentum=None, weight_init='he'):
        self.inputs = check_dim('inputs', inputs)
        self.outputs = check_dim('outputs', outputs)

        if weights is None:
            scale = _init_scale(weight_init, self.inputs)
            weights = np.random.randn(self.inputs, self.outputs) * scale
        if bias is None:
            bias = np.zeros(self.outputs)

        self.weights = _parameter('weights', weights, (self.inputs, self.outputs))
        self.bias = _parameter('bias', bias, (self.outputs,))

        if weight_momentum is None:
            weight_momentum = np.zeros((self.inputs, self.outputs))
        if bias_momentum is None:
            bias_momentum = np.zeros(self.outputs)
        self.weight_momentum = _parameter('weight momentum', weight_momentum,
                                          (self.inputs, self.outputs))
        self.bias_momentum = _parameter('bias momentum', bias_momentum, (self.outputs,))

    def check_shapes(self, input_shape, output_shape):
        if input_shape != D1(self.inputs) or output_shape != D1(self.outputs):
            raise ShapeError(
                f"{self!r} maps D1({self.inputs}) -> D1({self.outputs}), "
                f"got {input_shape!r} -> {output_shape!r}")

    def forward(self, x):
        """Forward pass: y = x @ W + b"""
        x = np.asarray(x, dtype=np.float64)
        return x, x @ self.weights + self.bias

    def backward(self, tape, grad_output):
        """
        Backward pass.

        dL/dW = outer(x, grad_output)
        dL/db = grad_output
        dL/dx = W @ grad_output
        """
        grad_output = np.asarray(grad_output, dtype=np.float64)
        gradient = FullyConnectedGradient(np.outer(tape, grad_output), grad_output.copy())
        return gradient, self.weights @ grad_output

    def update(self, learning, gradient):
        weights, weight_momentum = descend_with(learning, self.weights, gradient.weights,
                                                self.weight_momentum)
        bias, bias_momentum = descend_with(learning, self.bias, gradient.bias,
                                           self.bias_momentum)
        return FullyConnected(self.inputs, self.outputs, weights=weights, bias=bias,
                              weight_momentum=weight_momentum, bias_momentum=bias_momentum)

    def scale(self, factor):
        return FullyConnected(self.inputs, self.outputs,
                              weights=factor * self.weights, bias=factor * self.bias,
                              weight_momentum=self.weight_momentum,
                              bias_momentum=self.bias_momentum)

    def average(self, other):
        self._check_same(other)
        return FullyConnected(
            self.inputs, self.outputs,
            weights=0.5 * (self.weights + other.weights),
            bias=0.5 * (self.bias + other.bias),
            weight_momentum=0.5 * (self.weight_momentum + other.weight_momentum),
            bias_momentum=0.5 * (self.bias_momentum + other.bias_momentum))

    def records(self):
        return [self.bias, self.weights.ravel(order='F')]

    def from_records(self, records):
        bias, weights = records
        return FullyConnected(
            self.inputs, self.outputs,
            weights=np.reshape(weights, (self.inputs, self.outputs), order='F'),
            bias=bias)

    def __repr__(self):
        return f"FullyConnected({self.inputs}, {self.outputs})"


# ============================================================================
# Parameterless layers
# ============================================================================

class Pooling(Layer):
    """
    Max Pooling Layer.

    Downsamples by taking the maximum value in each window. Windows must tile
    the input exactly, the same way convolution kernels do.

    Args:
        kernel_rows, kernel_cols: Size of the pooling window
        stride_rows, stride_cols: Step between windows

    Backprop: Gradient flows only to the max element in each window, summed
    where overlapping windows share a maximum.
    """

    def __init__(self, kernel_rows, kernel_cols, stride_rows, stride_cols):
        self.kernel_rows = check_dim('kernel rows', kernel_rows)
        self.kernel_cols = check_dim('kernel cols', kernel_cols)
        self.stride_rows = check_dim('stride rows', stride_rows)
        self.stride_cols = check_dim('stride cols', stride_cols)

    def check_shapes(self, input_shape, output_shape):
        _check_same_image_kind(self, input_shape, output_shape)
        out_rows = output_extent(input_shape.rows, self.kernel_rows, self.stride_rows)
        out_cols = output_extent(input_shape.cols, self.kernel_cols, self.stride_cols)
        if (out_rows, out_cols) != (output_shape.rows, output_shape.cols):
            raise ShapeError(
                f"{self!r} maps {input_shape.rows}x{input_shape.cols} to "
                f"{out_rows}x{out_cols}, but the output is declared as {output_shape!r}")

    def _windows(self, image):
        """All pooling windows, shape (channels, out_rows, out_cols, kh * kw)."""
        channels, rows, cols = image.shape
        kh, kw = self.kernel_rows, self.kernel_cols
        out_rows = output_extent(rows, kh, self.stride_rows)
        out_cols = output_extent(cols, kw, self.stride_cols)

        shape = (channels, out_rows, out_cols, kh, kw)
        strides = (
            image.strides[0],                     # channel
            image.strides[1] * self.stride_rows,  # output row (strided)
            image.strides[2] * self.stride_cols,  # output column (strided)
            image.strides[1],                     # window row
            image.strides[2],                     # window column
        )
        windows = np.lib.stride_tricks.as_strided(image, shape=shape, strides=strides,
                                                  writeable=False)
        return windows.reshape(channels, out_rows, out_cols, -1)

    def forward(self, x):
        image = np.ascontiguousarray(_as_image(x))
        return image, np.max(self._windows(image), axis=-1)

    def backward(self, tape, grad_output):
        image = tape
        windows = self._windows(image)
        channels, out_rows, out_cols, _ = windows.shape
        max_indices = np.argmax(windows, axis=-1)

        # Absolute positions of every window maximum
        abs_rows = (np.arange(out_rows).reshape(1, out_rows, 1) * self.stride_rows
                    + max_indices // self.kernel_cols)
        abs_cols = (np.arange(out_cols).reshape(1, 1, out_cols) * self.stride_cols
                    + max_indices % self.kernel_cols)
        c_idx = np.broadcast_to(np.arange(channels).reshape(channels, 1, 1),
                                max_indices.shape)

        grad_input = np.zeros(image.shape)
        np.add.at(grad_input, (c_idx, abs_rows, abs_cols),
                  np.reshape(grad_output, max_indices.shape))
        return None, grad_input

    def __repr__(self):
        return (f"Pooling(kernel=({self.kernel_rows}, {self.kernel_cols}), "
                f"stride=({self.stride_rows}, {self.stride_cols}))")


class Pad(Layer):
    """
    Zero padding around the edges of an image.

    Args:
        left, top, right, bottom: Number of zero columns / rows to add

    out.rows = in.rows + top + bottom
    out.cols = in.cols + left + right
    """

    def __init__(self, left, top, right, bottom):
        self.left = _check_margin('left', left)
        self.top = _check_margin('top', top)
        self.right = _check_margin('right', right)
        self.bottom = _check_margin('bottom', bottom)

    def check_shapes(self, input_shape, output_shape):
        _check_same_image_kind(self, input_shape, output_shape)
        if (output_shape.rows != input_shape.rows + self.top + self.bottom
                or output_shape.cols != input_shape.cols + self.left + self.right):
            raise ShapeError(
                f"{self!r} cannot map {input_shape!r} to {output_shape!r}")

    def forward(self, x):
        image = _as_image(x)
        padded = np.pad(image, ((0, 0), (self.top, self.bottom), (self.left, self.right)),
                        mode='constant')
        return image.shape, padded

    def backward(self, tape, grad_output):
        channels, rows, cols = tape
        dy = np.reshape(grad_output, (channels, rows + self.top + self.bottom,
                                      cols + self.left + self.right))
        return None, dy[:, self.top:self.top + rows, self.left:self.left + cols]

    def __repr__(self):
        return f"Pad({self.left}, {self.top}, {self.right}, {self.bottom})"


class Crop(Layer):
    """
    Remove rows and columns from the edges of an image; the inverse of Pad.

    Args:
        left, top, right, bottom: Number of columns / rows to remove

    out.rows = in.rows - top - bottom
    out.cols = in.cols - left - right
    """

    def __init__(self, left, top, right, bottom):
        self.left = _check_margin('left', left)
        self.top = _check_margin('top', top)
        self.right = _check_margin('right', right)
        self.bottom = _check_margin('bottom', bottom)

    def check_shapes(self, input_shape, output_shape):
        _check_same_image_kind(self, input_shape, output_shape)
        if (input_shape.rows != output_shape.rows + self.top + self.bottom
                or input_shape.cols != output_shape.cols + self.left + self.right):
            raise ShapeError(
                f"{self!r} cannot map {input_shape!r} to {output_shape!r}")

    def forward(self, x):
        image = _as_image(x)
        _, rows, cols = image.shape
        cropped = image[:, self.top:rows - self.bottom, self.left:cols - self.right]
        return image.shape, np.ascontiguousarray(cropped)

    def backward(self, tape, grad_output):
        channels, rows, cols = tape
        dy = np.reshape(grad_output, (channels, rows - self.top - self.bottom,
                                      cols - self.left - self.right))
        padded = np.pad(dy, ((0, 0), (self.top, self.bottom), (self.left, self.right)),
                        mode='constant')
        return None, padded

    def __repr__(self):
        return f"Crop({self.left}, {self.top}, {self.right}, {self.bottom})"


class Reshape(Layer):
    """
    Reinterpret a tensor under another shape of the same size.

    Used to connect convolutional layers to fully connected ones. The buffer
    is never reordered.
    """

    def check_shapes(self, input_shape, output_shape):
        if input_shape.size != output_shape.size:
            raise ShapeError(
                f"Reshape needs equal sizes, got {input_shape!r} ({input_shape.size}) -> "
                f"{output_shape!r} ({output_shape.size})")

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        return x.shape, x.reshape(-1)

    def backward(self, tape, grad_output):
        return None, np.reshape(grad_output, tape)

    def __repr__(self):
        return "Reshape()"


class Activation(Layer):
    """
    Activation layer wrapper.

    Wraps activation functions as layers for use in a network. Softmax only
    accepts vectors.
    """

    def __init__(self, activation='relu'):
        self.activation = get_activation(activation)
        if activation is None:
            self.activation_name = 'linear'
        elif isinstance(activation, str):
            self.activation_name = activation
        else:
            self.activation_name = type(activation).__name__.lower()

    def check_shapes(self, input_shape, output_shape):
        if input_shape != output_shape:
            raise ShapeError(
                f"{self!r} keeps its shape, got {input_shape!r} -> {output_shape!r}")
        if self.activation_name.lower() == 'softmax' and not isinstance(input_shape, D1):
            raise ShapeError(f"softmax is only defined on D1, got {input_shape!r}")

    def forward(self, x):
        """Apply activation function."""
        x = np.asarray(x, dtype=np.float64)
        return x, self.activation.forward(x)

    def backward(self, tape, grad_output):
        """Chain rule through the activation at the recorded input."""
        return None, self.activation.backward(tape, grad_output)

    def __repr__(self):
        return f"Activation({self.activation_name})"
