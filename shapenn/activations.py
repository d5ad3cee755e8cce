"""
Activation Functions
====================

Element-wise non-linearities (and softmax) used by the Activation layer.

Each activation implements:
- forward(x): apply the function
- backward(x, grad_output): chain rule through the function at x, returning
  the gradient with respect to x

Passing the upstream gradient into backward (rather than returning a bare
derivative) lets softmax apply its full Jacobian without materialising it.
"""

import numpy as np


class Activation:
    """Base class for all activation functions."""

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def backward(self, x, grad_output):
        """Gradient w.r.t. x given the gradient w.r.t. the output."""
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)


class ReLU(Activation):
    """
    Rectified Linear Unit: f(x) = max(0, x)

    Derivative:
        f'(x) = 1 if x > 0 else 0
    """

    def forward(self, x):
        return np.maximum(0, x)

    def backward(self, x, grad_output):
        return grad_output * (x > 0).astype(np.float64)


class Elu(Activation):
    """
    Exponential Linear Unit: f(x) = x if x > 0 else exp(x) - 1

    Derivative:
        f'(x) = 1 if x > 0 else exp(x)
    """

    def forward(self, x):
        return np.where(x > 0, x, np.expm1(np.minimum(x, 0)))

    def backward(self, x, grad_output):
        return grad_output * np.where(x > 0, 1.0, np.exp(np.minimum(x, 0)))


class Logit(Activation):
    """
    Logistic sigmoid: f(x) = 1 / (1 + exp(-x))

    Derivative:
        f'(x) = f(x) * (1 - f(x))
    """

    def forward(self, x):
        # Clip for numerical stability
        x_clipped = np.clip(x, -500, 500)
        return 1.0 / (1.0 + np.exp(-x_clipped))

    def backward(self, x, grad_output):
        s = self.forward(x)
        return grad_output * s * (1 - s)


class Tanh(Activation):
    """
    Hyperbolic Tangent: f(x) = tanh(x)

    Derivative:
        f'(x) = 1 - tanh(x)^2
    """

    def forward(self, x):
        return np.tanh(x)

    def backward(self, x, grad_output):
        t = np.tanh(x)
        return grad_output * (1 - t ** 2)


class Softmax(Activation):
    """
    Softmax: f(x_i) = exp(x_i) / sum(exp(x_j)), over the last axis.

    Numerical Stability:
        We subtract max(x) before exp to prevent overflow.

    The Jacobian J[i,j] = s[i] * (delta[i,j] - s[j]) is applied implicitly:
        J^T g = s * (g - sum(g * s))
    """

    def forward(self, x):
        x_shifted = x - np.max(x, axis=-1, keepdims=True)
        exp_x = np.exp(x_shifted)
        return exp_x / np.sum(exp_x, axis=-1, keepdims=True)

    def backward(self, x, grad_output):
        s = self.forward(x)
        return s * (grad_output - np.sum(grad_output * s, axis=-1, keepdims=True))


class Linear(Activation):
    """Identity: f(x) = x"""

    def forward(self, x):
        return x

    def backward(self, x, grad_output):
        return grad_output


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'relu': ReLU,
    'elu': Elu,
    'logit': Logit,
    'sigmoid': Logit,
    'tanh': Tanh,
    'softmax': Softmax,
    'linear': Linear,
    'none': Linear,
}


def get_activation(name):
    """
    Get activation function by name.

    Args:
        name: String name ('relu', 'tanh', etc.) or Activation instance

    Returns:
        Activation instance
    """
    if isinstance(name, Activation):
        return name

    if name is None:
        return Linear()

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]()
