"""
Gradient Descent
================

Every parameterised layer is trained with the same rule: stochastic gradient
descent with momentum and L2 weight decay.

    new_momentum = momentum * last_update - learning_rate * gradient
    new_weights  = weights * (1 - learning_rate * regulariser) + new_momentum

Weight decay shrinks the current weights multiplicatively before the momentum
step is added. The rule is element-wise, so it applies unchanged to kernel
matrices, fully connected weights and bias vectors alike.
"""

import numpy as np


class LearningParameters:
    """
    Scalar configuration for one parameter update.

    Passed to each update call; networks never store it.

    Args:
        learning_rate: Step size (default: 0.01)
        momentum: Momentum coefficient (default: 0.9)
        regulariser: L2 regularisation coefficient (default: 0.0005)
    """

    def __init__(self, learning_rate=0.01, momentum=0.9, regulariser=0.0005):
        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)
        self.regulariser = float(regulariser)

    def __eq__(self, other):
        if not isinstance(other, LearningParameters):
            return NotImplemented
        return ((self.learning_rate, self.momentum, self.regulariser) ==
                (other.learning_rate, other.momentum, other.regulariser))

    def __repr__(self):
        return (f"LearningParameters(learning_rate={self.learning_rate}, "
                f"momentum={self.momentum}, regulariser={self.regulariser})")


def descend(learning_rate, momentum, regulariser, weights, gradient, last_update):
    """
    Apply one momentum step with weight decay.

    Args:
        learning_rate: Step size
        momentum: Momentum coefficient
        regulariser: L2 regularisation coefficient
        weights: Current parameter array
        gradient: dLoss/dweights, same shape as weights
        last_update: Previous momentum, same shape as weights

    Returns:
        Tuple (new_weights, new_momentum); the inputs are not modified
    """
    new_momentum = momentum * last_update - learning_rate * gradient
    regularised = weights * (1.0 - learning_rate * regulariser)
    return regularised + new_momentum, new_momentum


def descend_with(learning, weights, gradient, last_update):
    """`descend` driven by a LearningParameters instance."""
    return descend(learning.learning_rate, learning.momentum, learning.regulariser,
                   np.asarray(weights), np.asarray(gradient), np.asarray(last_update))
