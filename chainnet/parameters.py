"""
Parameter Store
===============

Every weight-bearing layer keeps its trainable tensors in a ParameterStore:
three dicts keyed by parameter name ('weight', 'bias').

- params: the values
- grads: gradient accumulators, same shapes, zero after construction and
  after every update
- momentums: the previous update of each tensor, decayed by the momentum
  coefficient on the next update

Updates always happen in place. A siamese store holds the very same arrays,
so mutating one is visible through the other.
"""

import numpy as np

from .kernels import apply_momentum_update


def init_weights(rng, shape, fan_in, fan_out, dtype=np.float64):
    """
    Draw zero-mean normal weights with variance 2 / (fan_in + fan_out).

    Args:
        rng: RandomGenerator to draw from
        shape: Shape of the tensor
        fan_in: Number of inputs feeding each output
        fan_out: Number of outputs fed by each input
        dtype: Element type of the result
    """
    variance = 2.0 / (fan_in + fan_out)
    return np.asarray(rng.normal(variance, shape), dtype=dtype)


class ParameterStore:
    """Weights, gradient accumulators and momentum buffers of one layer."""

    def __init__(self):
        self.params = {}
        self.grads = {}
        self.momentums = {}

    def add(self, name, value):
        """Register a tensor with zeroed gradient and momentum buffers."""
        value = np.asarray(value)
        self.params[name] = value
        self.grads[name] = np.zeros_like(value)
        self.momentums[name] = np.zeros_like(value)
        return value

    def update(self, rate, momentum=0.0):
        """
        Apply ``update = grad * rate + momentum * previous`` to every tensor.

        Weights and biases are treated identically. Gradients are zero
        afterwards.
        """
        for name, value in self.params.items():
            apply_momentum_update(value, self.grads[name], self.momentums[name], rate, momentum)

    def siamese(self):
        """A store sharing every array with this one."""
        twin = ParameterStore()
        twin.params = dict(self.params)
        twin.grads = dict(self.grads)
        twin.momentums = dict(self.momentums)
        return twin

    def clone(self):
        """A store with copied values and fresh zeroed gradient/momentum buffers."""
        twin = ParameterStore()
        for name, value in self.params.items():
            twin.add(name, value.copy())
        return twin

    @property
    def size(self):
        """Total number of trainable scalars."""
        return sum(value.size for value in self.params.values())

    def __len__(self):
        return len(self.params)

    def __iter__(self):
        return iter(self.params)

    def __repr__(self):
        shapes = ', '.join(f"{name}={value.shape}" for name, value in self.params.items())
        return f"ParameterStore({shapes})"
