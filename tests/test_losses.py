"""
Tests for Error Functions
=========================
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from chainnet.exceptions import HyperparameterError, ShapeMismatchError
from chainnet.losses import CrossEntropyError, EuclideanError, get_error_function


class TestEuclideanError:
    """Tests for the Euclidean error function."""

    def test_whole_arrays(self):
        error = np.zeros(2)
        value = EuclideanError()(np.array([1.0, 1.0]), np.array([4.0, 5.0]), error)

        assert np.isclose(value, 5.0)
        np.testing.assert_allclose(error, [3.0, 4.0])

    def test_allocates_error_when_missing(self):
        assert np.isclose(EuclideanError()(np.zeros(3), np.ones(3)), np.sqrt(3.0))

    def test_offsets(self):
        output = np.array([0.0, 0.0, 1.0, 1.0])
        expected = np.array([2.0, 1.0, 1.0])
        error = np.zeros(5)

        value = EuclideanError().get_error(output, 2, expected, 1, error, 3, 2)

        np.testing.assert_allclose(error, [0.0, 0.0, 0.0, 0.0, 0.0])
        assert value == 0.0

    def test_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            EuclideanError()(np.zeros(2), np.zeros(3))


class TestCrossEntropyError:
    """Tests for the cross-entropy error function."""

    def test_values(self):
        output = np.array([0.25, 0.75])
        expected = np.array([0.0, 1.0])
        error = np.zeros(2)

        value = CrossEntropyError()(output, expected, error)

        assert np.isclose(value, -np.log(0.75))
        np.testing.assert_allclose(error, [0.0, 1.0 / 0.75])

    def test_offsets(self):
        output = np.array([9.0, 0.5, 0.5])
        expected = np.array([1.0, 0.0])
        error = np.full(3, -1.0)

        value = CrossEntropyError().get_error(output, 1, expected, 0, error, 1, 2)

        assert np.isclose(value, np.log(2.0))
        np.testing.assert_allclose(error, [-1.0, 2.0, 0.0])

    def test_error_is_negative_gradient(self):
        output = np.array([0.2, 0.3, 0.5])
        expected = np.array([0.1, 0.6, 0.3])
        error = np.zeros(3)
        function = CrossEntropyError()
        function(output, expected, error)

        epsilon = 1e-6
        for i in range(3):
            plus, minus = output.copy(), output.copy()
            plus[i] += epsilon
            minus[i] -= epsilon
            derivative = (function(plus, expected) - function(minus, expected)) / (2 * epsilon)
            assert np.isclose(error[i], -derivative, rtol=1e-5)


class TestRegistry:
    """Tests for get_error_function."""

    def test_names(self):
        assert isinstance(get_error_function('euclidean'), EuclideanError)
        assert isinstance(get_error_function('cross-entropy'), CrossEntropyError)
        assert isinstance(get_error_function('CrossEntropy'), CrossEntropyError)

    def test_instance_passes_through(self):
        function = EuclideanError()
        assert get_error_function(function) is function

    def test_unknown_raises(self):
        with pytest.raises(HyperparameterError, match="Available"):
            get_error_function('hinge')

    def test_non_string_raises(self):
        with pytest.raises(HyperparameterError):
            get_error_function(42)
