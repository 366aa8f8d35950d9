"""
Gradient Checking Tests
=======================

Verify analytical gradients match numerical approximations.

Method: Centered finite differences
    f'(x) ≈ (f(x + ε) - f(x - ε)) / (2ε)

The scalar checked is L = sum(output * g) for a fixed random g. Feeding g
as the output error must then give:
    - input error = dL/dinput
    - accumulated gradients = dL/dparameters

If they match (relative error < 1e-4), backprop is correct.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from chainnet.layers import Activation, Convolution, Dense, ElementwiseWeights, MaxPooling
from chainnet.sequential import Sequential
from chainnet.random_generator import RandomGenerator


def numerical_gradient(f, x, epsilon=1e-5):
    """
    Compute numerical gradient using centered finite differences.

    Args:
        f: Function returning the scalar loss; it reads x, which is
            perturbed in place
        x: Array to differentiate against (a parameter or an input view)
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
        loss_plus = f()

        # f(x - epsilon)
        x[idx] -= 2 * epsilon
        loss_minus = f()

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


def prepare(layer, seed=42):
    """Wire the layer, fill a random input and draw a random output error."""
    rng = np.random.default_rng(seed)
    layer.set_input_get_output(rng.normal(size=layer.input_size))
    grad_output = rng.normal(size=layer.output_size)

    def loss_fn():
        layer.feed(learning=False)
        return np.sum(layer.output_view * grad_output)

    return grad_output, loss_fn


def analytical_pass(layer, grad_output):
    layer.feed(learning=True)
    return layer.back_propagate(grad_output, learning=True)


class TestDenseGradients:
    """Gradient tests for the Dense layer."""

    def test_weight_gradients(self):
        dense = Dense(6, 4, rng=RandomGenerator(42))
        grad_output, loss_fn = prepare(dense)

        analytical_pass(dense, grad_output)
        analytical_dW = dense.grads['weight'].copy()

        numerical_dW = numerical_gradient(loss_fn, dense.params['weight'])

        error = relative_error(analytical_dW, numerical_dW)
        assert error < 1e-4, f"Weight gradient error too large: {error}"

    def test_bias_gradients(self):
        dense = Dense(6, 4, rng=RandomGenerator(42))
        grad_output, loss_fn = prepare(dense)

        analytical_pass(dense, grad_output)
        analytical_db = dense.grads['bias'].copy()

        numerical_db = numerical_gradient(loss_fn, dense.params['bias'])

        error = relative_error(analytical_db, numerical_db)
        assert error < 1e-4, f"Bias gradient error too large: {error}"

    def test_input_gradients(self):
        dense = Dense(6, 4, rng=RandomGenerator(42))
        grad_output, loss_fn = prepare(dense)

        analytical_dx = analytical_pass(dense, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, dense.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"Input gradient error too large: {error}"


class TestConvolutionGradients:
    """Gradient tests for the Convolution layer (tanh keeps the check smooth)."""

    CASES = [
        dict(input_depth=2, input_width=5, input_height=5, depth=3, kernel_side=3, padding='same'),
        dict(input_depth=1, input_width=6, input_height=5, depth=2, kernel_side=3, stride=2),
        dict(input_depth=2, input_width=4, input_height=4, depth=2, kernel_side=2, padding=1),
    ]

    @pytest.mark.parametrize('kwargs', CASES)
    def test_weight_gradients(self, kwargs):
        conv = Convolution(activation='tanh', rng=RandomGenerator(42), **kwargs)
        grad_output, loss_fn = prepare(conv)

        analytical_pass(conv, grad_output)
        analytical_dW = conv.grads['weight'].copy()

        numerical_dW = numerical_gradient(loss_fn, conv.params['weight'])

        error = relative_error(analytical_dW, numerical_dW)
        assert error < 1e-4, f"Weight gradient error too large: {error}"

    @pytest.mark.parametrize('kwargs', CASES)
    def test_bias_gradients(self, kwargs):
        conv = Convolution(activation='tanh', rng=RandomGenerator(42), **kwargs)
        grad_output, loss_fn = prepare(conv)

        analytical_pass(conv, grad_output)
        analytical_db = conv.grads['bias'].copy()

        numerical_db = numerical_gradient(loss_fn, conv.params['bias'])

        error = relative_error(analytical_db, numerical_db)
        assert error < 1e-4, f"Bias gradient error too large: {error}"

    @pytest.mark.parametrize('kwargs', CASES)
    def test_input_gradients(self, kwargs):
        conv = Convolution(activation='tanh', rng=RandomGenerator(42), **kwargs)
        grad_output, loss_fn = prepare(conv)

        analytical_dx = analytical_pass(conv, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, conv.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"Input gradient error too large: {error}"


class TestActivationGradients:
    """Gradient tests for activation layers."""

    @pytest.mark.parametrize('name', ['sigmoid', 'tanh', 'gaussian', 'linear', 'softmax'])
    def test_input_gradients(self, name):
        layer = Activation(5, name)
        grad_output, loss_fn = prepare(layer)

        analytical_dx = analytical_pass(layer, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, layer.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"{name} gradient error too large: {error}"

    @pytest.mark.parametrize('name', ['relu', 'leaky_relu'])
    def test_piecewise_input_gradients(self, name):
        """Inputs are kept away from the kink at zero."""
        layer = Activation(4, name)
        layer.set_input_get_output(np.array([-1.5, -0.3, 0.4, 2.0]))
        grad_output = np.array([0.5, -1.0, 2.0, 1.0])

        def loss_fn():
            layer.feed(learning=False)
            return np.sum(layer.output_view * grad_output)

        analytical_dx = analytical_pass(layer, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, layer.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"{name} gradient error too large: {error}"


class TestElementwiseWeightsGradients:
    """Gradient tests for the ElementwiseWeights layer."""

    def test_weight_gradients(self):
        layer = ElementwiseWeights(5, rng=RandomGenerator(42))
        grad_output, loss_fn = prepare(layer)

        analytical_pass(layer, grad_output)
        analytical_dW = layer.grads['weight'].copy()

        numerical_dW = numerical_gradient(loss_fn, layer.params['weight'])

        error = relative_error(analytical_dW, numerical_dW)
        assert error < 1e-4, f"Weight gradient error too large: {error}"

    def test_input_gradients(self):
        layer = ElementwiseWeights(5, rng=RandomGenerator(42))
        grad_output, loss_fn = prepare(layer)

        analytical_dx = analytical_pass(layer, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, layer.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"Input gradient error too large: {error}"


class TestMaxPoolingGradients:
    """Gradient test for MaxPooling (random inputs have no ties)."""

    def test_input_gradients(self):
        pool = MaxPooling(2, 4, 6, 2, 3)
        grad_output, loss_fn = prepare(pool)

        analytical_dx = analytical_pass(pool, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, pool.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"Input gradient error too large: {error}"


class TestSequentialGradients:
    """End-to-end gradient check through a small pipeline."""

    def make_model(self):
        rng = RandomGenerator(42)
        return Sequential([
            Convolution(1, 4, 4, 2, 3, padding='same', activation='tanh', rng=rng),
            MaxPooling(2, 4, 4, 2),
            Dense(8, 5, rng=rng),
            Activation(5, 'tanh'),
            Dense(5, 3, rng=rng),
            Activation(3, 'sigmoid'),
        ])

    def test_input_gradients(self):
        model = self.make_model()
        grad_output, loss_fn = prepare(model)

        analytical_dx = analytical_pass(model, grad_output).copy()
        numerical_dx = numerical_gradient(loss_fn, model.input_view)

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"Input gradient error too large: {error}"

    def test_first_layer_weight_gradients(self):
        model = self.make_model()
        grad_output, loss_fn = prepare(model)
        conv = model.first_layer

        analytical_pass(model, grad_output)
        analytical_dW = conv.grads['weight'].copy()

        numerical_dW = numerical_gradient(loss_fn, conv.params['weight'])

        error = relative_error(analytical_dW, numerical_dW)
        assert error < 1e-4, f"Weight gradient error too large: {error}"
