"""
Error Functions
===============

Error functions measure how wrong the model's output is and produce the
per-element error signal that back-propagation starts from.

Each error function implements:
- get_error(output, output_offset, expected, expected_offset, error,
  error_offset, length): write the per-element error into ``error`` and
  return a scalar telling how large it is

The error signal points from the output towards the expected output (the
negative gradient of the loss), so training ADDS the accumulated updates
to the weights.
"""

import numpy as np

from .buffers import BufferSlice, allocate
from .exceptions import HyperparameterError, ShapeMismatchError
from .kernels import euclidean_error


class ErrorFunction:
    """Base class for error functions."""

    name = None

    def get_error(self, output, output_offset, expected, expected_offset, error, error_offset, length):
        """Write the error signal and return its magnitude."""
        raise NotImplementedError

    def __call__(self, output, expected, error=None):
        """
        Whole-array form.

        Args:
            output: Output vector
            expected: Expected output, same length
            error: Array receiving the error signal (allocated if None)

        Returns:
            Scalar error
        """
        output = np.asarray(output)
        expected = np.asarray(expected, dtype=output.dtype)
        if output.shape != expected.shape:
            raise ShapeMismatchError(f"Output has shape {output.shape} but expected output has {expected.shape}")
        if error is None:
            error = allocate(output.shape[0], output.dtype)
        return self.get_error(output, 0, expected, 0, error, 0, output.shape[0])

    def __repr__(self):
        return f"{type(self).__name__}()"


class EuclideanError(ErrorFunction):
    """
    Euclidean distance.

    error = expected - output
    value = ||expected - output||
    """

    name = 'euclidean'

    def get_error(self, output, output_offset, expected, expected_offset, error, error_offset, length):
        return euclidean_error(output, output_offset, expected, expected_offset, error, error_offset, length)


class CrossEntropyError(ErrorFunction):
    """
    Cross-entropy for probability outputs (e.g. after softmax).

    value = -sum(expected * log(output))
    error = expected / output

    Outputs of zero give IEEE infinities; nothing is clamped.
    """

    name = 'cross_entropy'

    def get_error(self, output, output_offset, expected, expected_offset, error, error_offset, length):
        y = BufferSlice(output, output_offset, length, name='output').view
        target = BufferSlice(expected, expected_offset, length, name='expected output').view
        e = BufferSlice(error, error_offset, length, name='error').view

        e[...] = target / y
        return float(-np.sum(target * np.log(y)))


# ====================================
# Error Function Registry
# ====================================

ERROR_FUNCTIONS = {
    'euclidean': EuclideanError,
    'euclidean_error': EuclideanError,
    'cross_entropy': CrossEntropyError,
    'crossentropy': CrossEntropyError,
    'cross_entropy_error': CrossEntropyError,
}


def get_error_function(name):
    """
    Get error function by name.

    Args:
        name: 'euclidean' or 'cross_entropy', or an ErrorFunction instance

    Returns:
        ErrorFunction instance
    """
    if isinstance(name, ErrorFunction):
        return name

    if not isinstance(name, str):
        raise HyperparameterError(f"Error function must be a name or ErrorFunction instance, got {name!r}")

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ERROR_FUNCTIONS:
        available = ', '.join(sorted(set(ERROR_FUNCTIONS.keys())))
        raise HyperparameterError(f"Unknown error function '{name}'. Available: {available}")

    return ERROR_FUNCTIONS[name_lower]()
