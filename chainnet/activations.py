"""
Activation Functions
====================

Elementwise non-linearities used by activation layers and by convolution
(which fuses its activation into the same layer).

Each activation implements:
- forward(x): f(x)
- derivative(x, y): f'(x), evaluated from the cached input x AND the cached
  output y = f(x), so the backward pass never recomputes f.

Softmax is not elementwise: its backward pass needs the full Jacobian and is
handled by the softmax kernels. It is still registered here so layers can
be configured with ``activation='softmax'``.
"""

import numpy as np

from .exceptions import HyperparameterError


class ActivationFunction:
    """Base class for all activation functions."""

    name = None
    elementwise = True

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def derivative(self, x, y):
        """Derivative w.r.t. the input, from the cached input and output."""
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)

    def __repr__(self):
        return f"{type(self).__name__}()"


class Sigmoid(ActivationFunction):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Derivative:
        f'(x) = y * (1 - y)
    """

    name = 'sigmoid'

    def forward(self, x):
        return 1.0 / (1.0 + np.exp(-x))

    def derivative(self, x, y):
        return y * (1.0 - y)


class Tanh(ActivationFunction):
    """
    Hyperbolic Tangent: f(x) = tanh(x)

    Derivative:
        f'(x) = 1 - y^2
    """

    name = 'tanh'

    def forward(self, x):
        return np.tanh(x)

    def derivative(self, x, y):
        return 1.0 - y * y


class ReLU(ActivationFunction):
    """
    Rectified Linear Unit: f(x) = max(0, x)

    Derivative:
        f'(x) = 1 if y > 0 else 0
    """

    name = 'relu'

    def forward(self, x):
        return np.maximum(x, 0.0)

    def derivative(self, x, y):
        return (y > 0).astype(y.dtype)


class LeakyReLU(ReLU):
    """
    Leaky ReLU: f(x) = x if x > 0 else alpha * x

    Args:
        alpha: Slope for non-positive inputs (default: 0.01)

    Derivative:
        f'(x) = 1 if x > 0 else alpha
    """

    name = 'leaky_relu'

    def __init__(self, alpha=0.01):
        self.alpha = alpha

    def forward(self, x):
        return np.where(x > 0, x, self.alpha * x)

    def derivative(self, x, y):
        return np.where(x > 0, 1.0, self.alpha).astype(y.dtype)

    def __repr__(self):
        return f"LeakyReLU(alpha={self.alpha})"


class Gaussian(ActivationFunction):
    """
    Gaussian: f(x) = exp(-x^2)

    Derivative:
        f'(x) = -2 * x * y
    """

    name = 'gaussian'

    def forward(self, x):
        return np.exp(-x * x)

    def derivative(self, x, y):
        return -2.0 * x * y


class Linear(ActivationFunction):
    """Identity: f(x) = x, f'(x) = 1."""

    name = 'linear'

    def forward(self, x):
        return x.copy()

    def derivative(self, x, y):
        return np.ones_like(y)


class Softmax(ActivationFunction):
    """
    Softmax: f(x_i) = exp(x_i - max(x)) / sum_j exp(x_j - max(x))

    Subtracting max(x) keeps exp from overflowing without changing the
    result.

    The backward pass uses the Jacobian J[i, j] = y_i * (delta_ij - y_j), see
    ``kernels.backpropagate_softmax``.
    """

    name = 'softmax'
    elementwise = False

    def forward(self, x):
        shifted = np.exp(x - np.max(x))
        return shifted / np.sum(shifted)


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'sigmoid': Sigmoid,
    'logistic': Sigmoid,
    'tanh': Tanh,
    'relu': ReLU,
    'leaky_relu': LeakyReLU,
    'leakyrelu': LeakyReLU,
    'gaussian': Gaussian,
    'linear': Linear,
    'none': Linear,
    'softmax': Softmax,
}


def get_activation(name, **kwargs):
    """
    Get activation function by name.

    Args:
        name: String name ('relu', 'sigmoid', etc.), ActivationFunction instance or None
        **kwargs: Passed to the activation constructor (e.g. ``alpha``); not
            allowed together with an instance

    Returns:
        ActivationFunction instance

    Example:
        >>> act = get_activation('leaky_relu', alpha=0.1)
        >>> act(np.array([-1.0, 2.0]))
        array([-0.1,  2. ])
    """
    if isinstance(name, ActivationFunction):
        if kwargs:
            raise HyperparameterError(
                f"Options {sorted(kwargs)} cannot be applied to the activation instance {name!r}")
        return name

    if name is None:
        name = 'linear'

    if not isinstance(name, str):
        raise HyperparameterError(f"Activation must be a name or ActivationFunction instance, got {name!r}")

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise HyperparameterError(f"Unknown activation '{name}'. Available: {available}")

    try:
        return ACTIVATIONS[name_lower](**kwargs)
    except TypeError as error:
        raise HyperparameterError(f"Invalid options for activation '{name}': {error}") from error
