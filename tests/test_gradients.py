"""
Gradient Checking Tests
=======================

Verify analytical gradients match numerical approximations.
This is THE most important test for ensuring backpropagation is correct.

Method: Centered finite differences
    f'(x) ≈ (f(x + ε) - f(x - ε)) / (2ε)

We compare:
    - Analytical gradient: computed by backward()
    - Numerical gradient: finite difference approximation

The last group runs the same comparison end to end on a thousand randomly
generated networks, perturbing a single input element and reading a single
output element.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from shapenn.layers import (Convolution, FullyConnected, Pooling, Pad, Crop,
                            Reshape, Activation)
from shapenn.losses import get_loss
from shapenn.network import Network
from shapenn.shapes import D1, D2, D3


def numerical_gradient(f, x, epsilon=1e-5):
    """
    Compute numerical gradient using centered finite differences.

    Args:
        f: Function that takes x and returns scalar loss
        x: Point at which to compute gradient
        epsilon: Small perturbation

    Returns:
        Numerical gradient, same shape as x
    """
    grad = np.zeros_like(x)

    it = np.nditer(x, flags=['multi_index'])
    while not it.finished:
        idx = it.multi_index

        # f(x + epsilon)
        x[idx] += epsilon
        loss_plus = f(x)

        # f(x - epsilon)
        x[idx] -= 2 * epsilon
        loss_minus = f(x)

        # Restore
        x[idx] += epsilon

        # Centered difference
        grad[idx] = (loss_plus - loss_minus) / (2 * epsilon)

        it.iternext()

    return grad


def relative_error(analytical, numerical):
    """
    Compute relative error between analytical and numerical gradients.

    Returns:
        Maximum relative error across all elements
    """
    diff = np.abs(analytical - numerical)
    denom = np.maximum(np.abs(analytical) + np.abs(numerical), 1e-8)
    return np.max(diff / denom)


def check_input_gradient(layer, x):
    """Relative error of dL/dx for L = sum(layer(x) * grad_output)."""
    tape, output = layer.forward(x)
    grad_output = np.random.randn(*output.shape)
    _, analytical_dx = layer.backward(tape, grad_output)

    def loss_fn(x_in):
        _, out = layer.forward(x_in)
        return np.sum(out * grad_output)

    numerical_dx = numerical_gradient(loss_fn, x.copy())
    return relative_error(np.reshape(analytical_dx, x.shape), numerical_dx)


class TestConvolutionGradients:
    """Gradient tests for Convolution."""

    def test_weight_gradients(self):
        """Test gradients w.r.t. weights."""
        np.random.seed(42)

        conv = Convolution(2, 4, 3, 3)
        x = np.random.randn(2, 7, 7)

        tape, output = conv.forward(x)
        grad_output = np.random.randn(*output.shape)
        gradient, _ = conv.backward(tape, grad_output)

        def loss_fn(W):
            out = Convolution(2, 4, 3, 3, weights=W).forward(x)[1]
            return np.sum(out * grad_output)

        numerical_dW = numerical_gradient(loss_fn, conv.weights.copy())

        error = relative_error(gradient.weights, numerical_dW)
        assert error < 1e-4, f"Weight gradient error too large: {error}"

    def test_input_gradients(self):
        """Test gradients w.r.t. input."""
        np.random.seed(42)

        conv = Convolution(2, 3, 3, 3)
        error = check_input_gradient(conv, np.random.randn(2, 6, 6))
        assert error < 1e-4, f"Input gradient error too large: {error}"

    def test_strided_input_gradients(self):
        """Test gradients w.r.t. input with unequal strides and kernel sides."""
        np.random.seed(42)

        conv = Convolution(3, 2, 3, 2, 2, 3)
        error = check_input_gradient(conv, np.random.randn(3, 7, 8))
        assert error < 1e-4, f"Input gradient error too large: {error}"


class TestFullyConnectedGradients:
    """Gradient tests for FullyConnected layer."""

    def test_weight_and_bias_gradients(self):
        np.random.seed(42)

        fc = FullyConnected(6, 4, bias=np.random.randn(4))
        x = np.random.randn(6)

        tape, output = fc.forward(x)
        grad_output = np.random.randn(*output.shape)
        gradient, _ = fc.backward(tape, grad_output)

        def weight_loss(W):
            return np.sum(FullyConnected(6, 4, weights=W, bias=fc.bias)(x) * grad_output)

        def bias_loss(b):
            return np.sum(FullyConnected(6, 4, weights=fc.weights, bias=b)(x) * grad_output)

        error = relative_error(gradient.weights, numerical_gradient(weight_loss, fc.weights.copy()))
        assert error < 1e-5, f"Weight gradient error too large: {error}"

        error = relative_error(gradient.bias, numerical_gradient(bias_loss, fc.bias.copy()))
        assert error < 1e-5, f"Bias gradient error too large: {error}"

    def test_input_gradients(self):
        np.random.seed(42)

        error = check_input_gradient(FullyConnected(5, 3), np.random.randn(5))
        assert error < 1e-5, f"Input gradient error too large: {error}"


class TestSpatialGradients:
    """Gradient tests for the parameterless spatial layers."""

    def test_pooling(self):
        np.random.seed(42)

        error = check_input_gradient(Pooling(2, 2, 2, 2), np.random.randn(2, 6, 6))
        assert error < 1e-5, f"Pooling gradient error too large: {error}"

    def test_overlapping_pooling(self):
        np.random.seed(42)

        error = check_input_gradient(Pooling(3, 3, 1, 1), np.random.randn(1, 5, 5))
        assert error < 1e-5, f"Pooling gradient error too large: {error}"

    def test_pad(self):
        np.random.seed(42)

        error = check_input_gradient(Pad(1, 2, 0, 1), np.random.randn(2, 3, 4))
        assert error < 1e-5

    def test_crop(self):
        np.random.seed(42)

        error = check_input_gradient(Crop(1, 0, 1, 2), np.random.randn(2, 5, 4))
        assert error < 1e-5

    def test_reshape(self):
        np.random.seed(42)

        error = check_input_gradient(Reshape(), np.random.randn(2, 3, 3))
        assert error < 1e-5


class TestActivationGradients:
    """Gradient tests for activation layers."""

    @pytest.mark.parametrize('name', ['relu', 'elu', 'logit', 'tanh', 'softmax', 'linear'])
    def test_activation(self, name):
        np.random.seed(42)

        x = np.random.randn(8)
        # Keep ReLU and ELU away from their kink
        x[np.abs(x) < 1e-3] = 0.5

        error = check_input_gradient(Activation(name), x)
        assert error < 1e-4, f"{name} gradient error too large: {error}"


class TestEndToEnd:
    """Full network gradient checks."""

    def test_network_input_gradient(self):
        np.random.seed(42)

        net = Network(
            [Convolution(1, 3, 3, 3), Activation('tanh'), Pooling(2, 2, 2, 2),
             Reshape(), FullyConnected(12, 4), Activation('softmax')],
            [D2(6, 6), D3(4, 4, 3), D3(4, 4, 3), D3(2, 2, 3),
             D1(12), D1(4), D1(4)])
        loss_fn = get_loss('categorical_cross_entropy')
        x = np.random.randn(6, 6)
        target = np.array([0.0, 0.0, 1.0, 0.0])

        tapes, output = net.run_forward(x)
        _, analytical_dx = net.run_backward(tapes, loss_fn.backward(output, target))

        def compute_loss(x_in):
            return loss_fn.forward(net.run_net(x_in), target)

        numerical_dx = numerical_gradient(compute_loss, x.copy())

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-3, f"End-to-end gradient error: {error}"

    def test_network_weight_gradient(self):
        np.random.seed(42)

        layers = [Convolution(2, 2, 2, 2), Activation('logit'), Reshape(),
                  FullyConnected(18, 3)]
        shapes = [D3(4, 4, 2), D3(3, 3, 2), D3(3, 3, 2), D1(18), D1(3)]
        net = Network(layers, shapes)
        loss_fn = get_loss('quadratic')
        x = np.random.randn(2, 4, 4)
        target = np.random.randn(3)

        tapes, output = net.run_forward(x)
        gradients, _ = net.run_backward(tapes, loss_fn.backward(output, target))

        def compute_loss(W):
            conv = Convolution(2, 2, 2, 2, weights=W)
            return loss_fn.forward(Network([conv] + layers[1:], shapes).run_net(x), target)

        numerical_dW = numerical_gradient(compute_loss, layers[0].weights.copy())

        error = relative_error(gradients[0].weights, numerical_dW)
        assert error < 1e-4, f"End-to-end gradient error: {error}"


# ============================================================================
# Random network generation
# ============================================================================

MAX_EXTENT = 16


def _randint(low, high):
    """Uniform integer in [low, high]."""
    return int(np.random.randint(low, high + 1))


def _random_output_shape():
    kind = _randint(0, 2)
    if kind == 0:
        return D1(_randint(1, 8))
    if kind == 1:
        return D2(_randint(1, 5), _randint(1, 5))
    return D3(_randint(1, 5), _randint(1, 5), _randint(1, 3))


def _same_kind(shape, rows, cols):
    if isinstance(shape, D2):
        return D2(rows, cols)
    return D3(rows, cols, shape.channels)


def _random_activation(shape):
    names = ['tanh', 'logit', 'relu', 'elu', 'linear']
    if isinstance(shape, D1):
        names.append('softmax')
    return Activation(names[_randint(0, len(names) - 1)])


def _random_image_with_size(size):
    """A D2 or D3 shape holding exactly `size` elements."""
    channels = np.random.choice([c for c in range(1, 4) if size % c == 0])
    plane = size // channels
    rows = np.random.choice([r for r in range(1, plane + 1) if plane % r == 0])
    if channels == 1 and _randint(0, 1):
        return D2(int(rows), plane // int(rows))
    return D3(int(rows), plane // int(rows), int(channels))


def _random_layer_into(out):
    """
    Pick a random layer producing `out`.

    Returns:
        (layer, input_shape), or None when the pick would need an input
        larger than MAX_EXTENT along some axis
    """
    if isinstance(out, D1):
        choice = _randint(0, 2)
        if choice == 0:
            return _random_activation(out), out
        if choice == 1:
            inputs = _randint(1, 8)
            return FullyConnected(inputs, out.length), D1(inputs)
        return Reshape(), _random_image_with_size(out.length)

    rows, cols = out.rows, out.cols
    choice = _randint(0, 5)

    if choice == 0:
        return _random_activation(out), out

    if choice == 1:
        return Reshape(), D1(out.size)

    if choice == 2:
        kernel_rows, kernel_cols = _randint(1, 4), _randint(1, 4)
        stride_rows, stride_cols = _randint(1, 3), _randint(1, 3)
        in_rows = (rows - 1) * stride_rows + kernel_rows
        in_cols = (cols - 1) * stride_cols + kernel_cols
        if max(in_rows, in_cols) > MAX_EXTENT:
            return None
        channels = _randint(1, 3)
        if channels == 1 and _randint(0, 1):
            input_shape = D2(in_rows, in_cols)
        else:
            input_shape = D3(in_rows, in_cols, channels)
        layer = Convolution(channels, out.channels, kernel_rows, kernel_cols,
                            stride_rows, stride_cols)
        return layer, input_shape

    if choice == 3:
        kernel_rows, kernel_cols = _randint(1, 3), _randint(1, 3)
        stride_rows, stride_cols = _randint(1, 3), _randint(1, 3)
        in_rows = (rows - 1) * stride_rows + kernel_rows
        in_cols = (cols - 1) * stride_cols + kernel_cols
        if max(in_rows, in_cols) > MAX_EXTENT:
            return None
        layer = Pooling(kernel_rows, kernel_cols, stride_rows, stride_cols)
        return layer, _same_kind(out, in_rows, in_cols)

    if choice == 4:
        top = _randint(0, rows - 1)
        bottom = _randint(0, rows - 1 - top)
        left = _randint(0, cols - 1)
        right = _randint(0, cols - 1 - left)
        layer = Pad(left, top, right, bottom)
        return layer, _same_kind(out, rows - top - bottom, cols - left - right)

    left, top, right, bottom = (_randint(0, 2) for _ in range(4))
    in_rows, in_cols = rows + top + bottom, cols + left + right
    if max(in_rows, in_cols) > MAX_EXTENT:
        return None
    return Crop(left, top, right, bottom), _same_kind(out, in_rows, in_cols)


def is_checkable(network):
    """
    Whether a single-element finite difference check is meaningful.

    The check reduces both sides with max. Over a tensor of several elements
    a negative derivative reduces to 0, but over a single element it stays
    negative, so the input and output must be single-element together or
    not at all.
    """
    return (network.input_shape.size == 1) == (network.output_shape.size == 1)


def random_network(max_layers=5):
    """Generate random networks until one passes is_checkable."""
    while True:
        network = _random_network_candidate(max_layers)
        if is_checkable(network):
            return network


def _random_network_candidate(max_layers):
    """
    Build a random valid network backwards from a random output shape.

    Each step picks a layer that produces the current first shape and
    prepends it together with the input shape it needs.
    """
    shapes = [_random_output_shape()]
    layers = []

    depth = _randint(1, max_layers)
    attempts = 0
    while len(layers) < depth and attempts < 50:
        attempts += 1
        picked = _random_layer_into(shapes[0])
        if picked is None:
            continue
        layer, input_shape = picked
        layers.insert(0, layer)
        shapes.insert(0, input_shape)

    if not layers:
        layers.append(Activation('tanh'))
        shapes.insert(0, shapes[0])

    return Network(layers, shapes)


def one_hot_like(shape):
    """A tensor of `shape` with a single 1 at a random position."""
    tensor = shape.zeros()
    tensor.flat[_randint(0, shape.size - 1)] = 1.0
    return tensor


def compare_single_element(net, epsilon=1e-6):
    """
    Backpropagated and finite-difference derivative of one output element
    with respect to one input element, both reduced with max.

    Returns:
        (expected, result)
    """
    x = np.random.randn(*net.input_shape.dims)
    target = one_hot_like(net.output_shape)
    tested = one_hot_like(net.input_shape)

    tapes, output = net.run_forward(x)
    _, backgrad = net.run_backward(tapes, target)
    expected = np.max(backgrad * tested)

    output_diff = net.run_net(x + epsilon * tested)
    result = np.max(output_diff * target - output * target) / epsilon

    return expected, result


class TestRandomNetworkGradients:
    """Input gradients of random networks against finite differences."""

    EPSILON = 1e-6
    TOLERANCE = 2e-4

    @pytest.mark.parametrize('seed', range(1000))
    def test_input_gradient_matches_finite_difference(self, seed):
        np.random.seed(seed)

        net = random_network()
        expected, result = compare_single_element(net, self.EPSILON)

        assert abs(result - expected) <= self.TOLERANCE * max(1.0, abs(expected)), \
            f"{net!r}: finite difference {result}, backpropagated {expected}"

    def test_single_element_input_with_vector_output_is_not_checkable(self):
        np.random.seed(42)
        net = Network([FullyConnected(1, 3, weights=-np.ones((1, 3)))], [D1(1), D1(3)])

        expected, result = compare_single_element(net, self.EPSILON)

        # The lone input element keeps its negative derivative under max,
        # while the output side reduces to zero
        assert expected == pytest.approx(-1.0)
        assert result == 0.0
        assert not is_checkable(net)

    def test_vector_input_with_single_element_output_is_not_checkable(self):
        net = Network([FullyConnected(3, 1)], [D1(3), D1(1)])
        assert not is_checkable(net)

    def test_single_element_network_is_checkable(self):
        np.random.seed(42)
        net = Network([FullyConnected(1, 1, weights=[[-2.0]]), Activation('tanh')],
                      [D1(1), D1(1), D1(1)])

        expected, result = compare_single_element(net, self.EPSILON)

        assert is_checkable(net)
        assert expected < 0
        assert abs(result - expected) <= self.TOLERANCE * max(1.0, abs(expected))

    def test_generator_rejects_unbalanced_single_elements(self):
        for seed in range(300):
            np.random.seed(seed)
            assert is_checkable(random_network())

    def test_generator_retries_rejected_candidates(self, monkeypatch):
        candidates = iter([
            Network([FullyConnected(1, 3)], [D1(1), D1(3)]),
            Network([FullyConnected(3, 1)], [D1(3), D1(1)]),
            Network([FullyConnected(2, 3)], [D1(2), D1(3)]),
        ])
        monkeypatch.setattr(sys.modules[__name__], '_random_network_candidate',
                            lambda max_layers: next(candidates))

        net = random_network()

        assert net.input_shape == D1(2)
        assert net.output_shape == D1(3)

    def test_generated_networks_are_varied(self):
        np.random.seed(0)

        layer_types = set()
        for _ in range(200):
            layer_types.update(type(layer).__name__ for layer in random_network().layers)

        assert layer_types == {'Convolution', 'FullyConnected', 'Pooling', 'Pad',
                               'Crop', 'Reshape', 'Activation'}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
