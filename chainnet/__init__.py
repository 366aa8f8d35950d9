"""
chainnet
========

Neural network layers and back-propagation written with NumPy only.
Layers are chained over shared flat buffers and cover:
- Dense, convolution, max pooling, dropout and activation layers
- Weight sharing between layers (siamese) and independent copies (clone)
- Gradient descent with momentum
- Sequential pipelines, side-by-side compounds and autoencoders
- A batched training loop
"""

from .activations import ActivationFunction, Gaussian, LeakyReLU, Linear, ReLU, Sigmoid, Softmax, Tanh, get_activation
from .buffers import BufferSlice, allocate
from .composite import Autoencoder, Compound, convolutional, deconvolutional, feed_forward
from .config import TrainingConfig
from .exceptions import (
    CallOrderError, ChainNetError, HyperparameterError, NotConnectedError, ShapeMismatchError,
)
from .layers import (
    Activation, Convolution, Dense, Dropout, ElementwiseWeights, Layer, MaxPooling, RandomConvolution,
)
from .losses import CrossEntropyError, EuclideanError, get_error_function
from .parameters import ParameterStore
from .random_generator import RandomGenerator
from .sequential import Sequential
from .siamese import SiameseRegistry
from .trainer import ForwardLearner

__version__ = "1.0.0"
__all__ = [
    # Activations
    'ActivationFunction', 'Sigmoid', 'Tanh', 'ReLU', 'LeakyReLU', 'Gaussian', 'Linear', 'Softmax', 'get_activation',
    # Layers
    'Layer', 'Dense', 'Activation', 'Dropout', 'Convolution', 'MaxPooling',
    'ElementwiseWeights', 'RandomConvolution',
    # Compositions
    'Sequential', 'Compound', 'Autoencoder', 'feed_forward', 'convolutional', 'deconvolutional',
    # Error functions
    'EuclideanError', 'CrossEntropyError', 'get_error_function',
    # Training
    'ForwardLearner', 'TrainingConfig',
    # Infrastructure
    'BufferSlice', 'allocate', 'ParameterStore', 'RandomGenerator', 'SiameseRegistry',
    # Errors
    'ChainNetError', 'ShapeMismatchError', 'NotConnectedError', 'CallOrderError', 'HyperparameterError',
]
