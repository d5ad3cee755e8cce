"""
Loss Functions
==============

Loss functions measure how far a network's output is from its target.

Each loss implements:
- forward(predictions, targets): the scalar loss, summed over every element
- backward(predictions, targets): dLoss/dpredictions, same shape as predictions

Only backward is needed to train; forward is there to measure progress.
The derivatives are the closed forms of the sums, with no batch averaging:
a network processes one example per pass.
"""

import numpy as np


class Loss:
    """Base class for loss functions."""

    def forward(self, predictions, targets):
        """Compute loss value."""
        raise NotImplementedError

    def backward(self, predictions, targets):
        """Compute gradient of loss w.r.t. predictions."""
        raise NotImplementedError

    def __call__(self, predictions, targets):
        return self.forward(predictions, targets)


class QuadraticLoss(Loss):
    """
    Quadratic (half squared error) loss.

    Formula: L = 0.5 * sum((x - y)^2)

    Gradient: dL/dx = x - y
    """

    def forward(self, predictions, targets):
        return 0.5 * np.sum((predictions - targets) ** 2)

    def backward(self, predictions, targets):
        return predictions - targets


class CrossEntropyLoss(Loss):
    """
    Binary cross-entropy over independent outputs in (0, 1).

    Formula: L = -sum(y * log(x) + (1 - y) * log(1 - x))

    Gradient: dL/dx = (x - y) / ((1 - x) * x)
    """

    def forward(self, predictions, targets):
        return -np.sum(targets * np.log(predictions)
                       + (1 - targets) * np.log(1 - predictions))

    def backward(self, predictions, targets):
        return (predictions - targets) / ((1 - predictions) * predictions)


class ExponentialLoss(Loss):
    """
    Exponential loss with temperature t.

    Formula: L = t * exp(sum((x - y)^2) / t)

    Gradient: dL/dx = (2 / t) * (x - y) * L

    Args:
        temperature: The t parameter (default: 1.0)
    """

    def __init__(self, temperature=1.0):
        self.temperature = temperature

    def forward(self, predictions, targets):
        t = self.temperature
        return t * np.exp(np.sum((predictions - targets) ** 2) / t)

    def backward(self, predictions, targets):
        t = self.temperature
        return (2.0 / t) * (predictions - targets) * self.forward(predictions, targets)


class HellingerLoss(Loss):
    """
    Hellinger distance between non-negative outputs and targets.

    Formula: L = 1/sqrt(2) * sum((sqrt(x) - sqrt(y))^2)
    """

    def forward(self, predictions, targets):
        return np.sum((np.sqrt(predictions) - np.sqrt(targets)) ** 2) / np.sqrt(2)

    def backward(self, predictions, targets):
        root = np.sqrt(predictions)
        return (root - np.sqrt(targets)) / (np.sqrt(2) * root)


class KullbackLeiblerLoss(Loss):
    """
    Kullback-Leibler divergence of the targets from the predictions.

    Formula: L = sum(y * log(y / x))
    """

    def forward(self, predictions, targets):
        return np.sum(targets * np.log(targets / predictions))

    def backward(self, predictions, targets):
        return -(targets / predictions)


class GenKullbackLeiblerLoss(Loss):
    """
    Generalised Kullback-Leibler divergence for unnormalised outputs.

    Formula: L = KL(x, y) - sum(y) + sum(x)
    """

    def forward(self, predictions, targets):
        kl = np.sum(targets * np.log(targets / predictions))
        return kl - np.sum(targets) + np.sum(predictions)

    def backward(self, predictions, targets):
        return (predictions - targets) / predictions


class ItakuraSaitoLoss(Loss):
    """
    Itakura-Saito divergence.

    Formula: L = sum(y/x - log(y/x) - 1)
    """

    def forward(self, predictions, targets):
        ratio = targets / predictions
        return np.sum(ratio - np.log(ratio) - 1)

    def backward(self, predictions, targets):
        return (predictions - targets) / (predictions * predictions)


class CategoricalCrossEntropyLoss(Loss):
    """
    Cross-entropy against a categorical (one-hot or soft) target.

    Formula: L = -sum(y * log(x))

    Gradient: dL/dx = -y / x
    """

    def forward(self, predictions, targets):
        return -np.sum(targets * np.log(predictions))

    def backward(self, predictions, targets):
        return -targets / predictions


# ============================================================================
# Loss Registry
# ============================================================================

LOSSES = {
    'quadratic': QuadraticLoss,
    'mse': QuadraticLoss,
    'cross_entropy': CrossEntropyLoss,
    'crossentropy': CrossEntropyLoss,
    'bce': CrossEntropyLoss,
    'exponential': ExponentialLoss,
    'hellinger': HellingerLoss,
    'kullback_leibler': KullbackLeiblerLoss,
    'kl': KullbackLeiblerLoss,
    'gen_kullback_leibler': GenKullbackLeiblerLoss,
    'itakura_saito': ItakuraSaitoLoss,
    'categorical_cross_entropy': CategoricalCrossEntropyLoss,
    'categorical_crossentropy': CategoricalCrossEntropyLoss,
}


def get_loss(name, **kwargs):
    """
    Get loss function by name.

    Args:
        name: String name or Loss instance
        **kwargs: Arguments for the loss constructor (e.g. temperature)

    Returns:
        Loss instance
    """
    if isinstance(name, Loss):
        return name

    name_lower = name.lower().replace('-', '_').replace(' ', '_')
    if name_lower not in LOSSES:
        available = ', '.join(sorted(set(LOSSES.keys())))
        raise ValueError(f"Unknown loss '{name}'. Available: {available}")

    return LOSSES[name_lower](**kwargs)
