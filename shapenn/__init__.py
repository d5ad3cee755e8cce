"""
shapenn
=======

Shape-checked neural networks using only NumPy.
Every tensor between two layers has a declared shape, validated once when the
network is built. The library covers:
- 2D Convolution through im2col / col2im
- Max pooling, padding, cropping and reshaping
- Fully connected layers and activations
- Forward and backward propagation with explicit tapes
- Momentum SGD with L2 weight decay
- Binary persistence of parameters
"""

from .errors import ShapeError, SerializationError
from .shapes import D1, D2, D3, D4, output_extent
from .im2col import im2col, col2im
from .activations import ReLU, Elu, Logit, Tanh, Softmax, Linear, get_activation
from .layers import Convolution, ConvolutionGradient, FullyConnected, FullyConnectedGradient
from .layers import Pooling, Pad, Crop, Reshape, Activation
from .losses import QuadraticLoss, CrossEntropyLoss, CategoricalCrossEntropyLoss, get_loss
from .optimizers import LearningParameters, descend
from .network import Network
from .utils import one_hot_encode, render_ascii, set_random_seed

__version__ = "1.0.0"
__all__ = [
    # Errors
    'ShapeError', 'SerializationError',
    # Shapes
    'D1', 'D2', 'D3', 'D4', 'output_extent',
    # im2col
    'im2col', 'col2im',
    # Activations
    'ReLU', 'Elu', 'Logit', 'Tanh', 'Softmax', 'Linear', 'get_activation',
    # Layers
    'Convolution', 'ConvolutionGradient', 'FullyConnected', 'FullyConnectedGradient',
    'Pooling', 'Pad', 'Crop', 'Reshape', 'Activation',
    # Losses
    'QuadraticLoss', 'CrossEntropyLoss', 'CategoricalCrossEntropyLoss', 'get_loss',
    # Optimizers
    'LearningParameters', 'descend',
    # Main class
    'Network',
    # Utilities
    'one_hot_encode', 'render_ascii', 'set_random_seed',
]
