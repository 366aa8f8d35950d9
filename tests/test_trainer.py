"""
Tests for the Training Loop
===========================

ForwardLearner: batching, stopping, convenience methods and logging.
"""

import logging

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from chainnet.config import TrainingConfig
from chainnet.exceptions import HyperparameterError, ShapeMismatchError
from chainnet.layers import Activation, Dense
from chainnet.losses import CrossEntropyError
from chainnet.random_generator import RandomGenerator
from chainnet.sequential import Sequential
from chainnet.trainer import ForwardLearner


X_LINEAR = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
Y_LINEAR = (2 * X_LINEAR[:, 0] - X_LINEAR[:, 1] + 0.5).reshape(-1, 1)


def make_network(seed=0):
    rng = RandomGenerator(seed)
    return Sequential([
        Dense(2, 4, rng=rng),
        Activation(4, 'tanh'),
        Dense(4, 1, rng=rng),
        Activation(1, 'sigmoid'),
    ])


def record_updates(model):
    """Wrap update_weights, recording rates and checking gradients are cleared."""
    calls = []
    original = model.update_weights

    def update_weights(rate, momentum=0.0):
        original(rate, momentum)
        for layer in model.layers:
            for grad in layer.grads.values():
                assert not grad.any()
        calls.append((rate, momentum))

    model.update_weights = update_weights
    return calls


class TestLearning:
    """Training runs."""

    def test_linear_regression_reaches_target(self):
        model = Sequential([Dense(2, 1, rng=0)])
        learner = ForwardLearner(model, learning_rate=0.1, max_epochs=5000, rng=RandomGenerator(0))

        reached = learner.learn(X_LINEAR, Y_LINEAR)

        assert reached
        assert learner.history['error'][-1] <= 0.01
        np.testing.assert_allclose(model.layers[0].params['weight'].ravel(), [2.0, -1.0], atol=0.05)

    def test_error_decreases(self):
        X = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
        Y = np.array([[0.0], [1.0], [1.0], [0.0]])
        learner = ForwardLearner(make_network(), learning_rate=0.5, momentum=0.5,
                                 max_error=0.0, max_epochs=300, rng=RandomGenerator(1))

        reached = learner.learn(X, Y)

        assert not reached
        assert len(learner.history['error']) == 300
        assert learner.history['error'][-1] < learner.history['error'][0]

    def test_returns_false_when_target_missed(self, caplog):
        learner = ForwardLearner(make_network(), max_error=0.0, max_epochs=2)
        with caplog.at_level(logging.INFO, logger='chainnet.trainer'):
            reached = learner.learn(X_LINEAR, np.full((4, 1), 0.5))

        assert not reached
        assert "Training on 4 examples" in caplog.text
        assert "not reached" in caplog.text

    def test_cross_entropy_learning(self):
        model = Sequential([Dense(2, 2, rng=0), Activation(2, 'softmax')])
        X = np.array([[1.0, 0.0], [0.0, 1.0]])
        Y = np.array([[1.0, 0.0], [0.0, 1.0]])
        learner = ForwardLearner(model, error_function=CrossEntropyError(), learning_rate=0.1,
                                 max_error=0.0, max_epochs=200)

        before = learner.evaluate(X, Y)
        learner.learn(X, Y)

        assert learner.evaluate(X, Y) < before
        np.testing.assert_array_equal(learner.predict(X).argmax(axis=1), [0, 1])


class TestBatching:
    """Batch amortization of the learning rate."""

    def test_update_once_per_batch_with_scaled_rate(self):
        model = make_network()
        calls = record_updates(model)
        learner = ForwardLearner(model, learning_rate=0.1, momentum=0.9, batch_size=3,
                                 max_error=0.0, max_epochs=2)
        X = np.vstack([X_LINEAR, X_LINEAR[:2]])
        Y = np.vstack([Y_LINEAR, Y_LINEAR[:2]]) / 4

        learner.learn(X, Y)

        assert len(calls) == 4
        for rate, momentum in calls:
            assert np.isclose(rate, 0.3)
            assert momentum == 0.9

    def test_trailing_partial_batch_flushed(self):
        model = make_network()
        calls = record_updates(model)
        learner = ForwardLearner(model, learning_rate=0.1, batch_size=2, max_error=0.0, max_epochs=1)
        X = np.vstack([X_LINEAR, X_LINEAR[:1]])
        Y = np.full((5, 1), 0.5)

        learner.learn(X, Y)

        assert len(calls) == 3
        assert all(np.isclose(rate, 0.2) for rate, _ in calls)

    def test_batch_clamped_to_dataset(self, caplog):
        model = make_network()
        calls = record_updates(model)
        learner = ForwardLearner(model, learning_rate=0.1, batch_size=10, max_error=0.0, max_epochs=1)

        with caplog.at_level(logging.WARNING, logger='chainnet.trainer'):
            learner.learn(X_LINEAR, np.full((4, 1), 0.5))

        assert "larger than the 4 examples" in caplog.text
        assert calls == [(pytest.approx(0.4), 0.0)]

    def test_no_weight_change_within_batch(self):
        """Back-propagation alone never touches the weights."""
        model = make_network()
        learner = ForwardLearner(model)
        weights = model.layers[0].params['weight'].copy()

        learner.feed_and_get_error(X_LINEAR[1], [0.3], learning=True)
        model.back_propagate(learner.error, 0, learner.input_error, 0, learning=True)

        np.testing.assert_array_equal(model.layers[0].params['weight'], weights)
        assert model.layers[0].grads['weight'].any()


class TestStopping:
    """Cooperative stop at epoch boundaries."""

    def test_should_stop_before_first_epoch(self):
        learner = ForwardLearner(make_network(), should_stop=lambda: True, max_epochs=10)

        reached = learner.learn(X_LINEAR, np.full((4, 1), 0.5))

        assert not reached
        assert learner.history['error'] == []

    def test_stop_after_epochs(self):
        learner = ForwardLearner(make_network(), max_error=0.0, max_epochs=100)
        learner.should_stop = lambda: len(learner.history['error']) >= 3

        learner.learn(X_LINEAR, np.full((4, 1), 0.5))

        assert len(learner.history['error']) == 3

    def test_stop_method(self):
        learner = ForwardLearner(make_network(), max_error=0.0, max_epochs=100)

        def stop_after_two():
            if len(learner.history['error']) == 2:
                learner.stop()
            return False

        learner.should_stop = stop_after_two
        learner.learn(X_LINEAR, np.full((4, 1), 0.5))

        assert len(learner.history['error']) == 2


class TestConveniences:
    """Single-example helpers."""

    def test_feed_and_get_error(self):
        model = Sequential([Dense(2, 1, rng=0)])
        learner = ForwardLearner(model)
        dense = model.layers[0]
        x = np.array([1.0, 2.0])
        output = x @ dense.params['weight'] + dense.params['bias']

        value = learner.feed_and_get_error(x, [3.0])

        assert np.isclose(value, abs(3.0 - output[0]))
        np.testing.assert_allclose(learner.error, 3.0 - output)

    def test_predict_returns_copy(self):
        learner = ForwardLearner(make_network())
        first = learner.predict([1.0, 0.0])
        learner.predict([0.0, 1.0])
        assert first is not learner.output
        assert first.shape == (1,)

    def test_predict_batch(self):
        learner = ForwardLearner(make_network())
        outputs = learner.predict(X_LINEAR)
        assert outputs.shape == (4, 1)
        np.testing.assert_allclose(outputs[2], learner.predict(X_LINEAR[2]))

    def test_evaluate_is_mean_error(self):
        learner = ForwardLearner(make_network())
        Y = np.full((4, 1), 0.5)
        expected = np.mean([abs(0.5 - learner.predict(x)[0]) for x in X_LINEAR])
        assert np.isclose(learner.evaluate(X_LINEAR, Y), expected)

    def test_verbose_progress_bar(self):
        learner = ForwardLearner(make_network(), verbose=True, max_error=0.0, max_epochs=3)
        learner.learn(X_LINEAR, np.full((4, 1), 0.5))
        assert len(learner.history['error']) == 3


class TestValidation:
    """Learner argument checks."""

    def test_config_overrides(self):
        learner = ForwardLearner(make_network(), config=TrainingConfig(momentum=0.5), learning_rate=0.2)
        assert learner.config.learning_rate == 0.2
        assert learner.config.momentum == 0.5

    def test_unknown_override_raises(self):
        with pytest.raises(HyperparameterError):
            ForwardLearner(make_network(), epochs=3)

    def test_mismatched_counts_raise(self):
        learner = ForwardLearner(make_network())
        with pytest.raises(ShapeMismatchError):
            learner.learn(X_LINEAR, np.zeros((3, 1)))

    def test_wrong_input_size_raises(self):
        learner = ForwardLearner(make_network())
        with pytest.raises(ShapeMismatchError):
            learner.learn(np.zeros((4, 3)), np.zeros((4, 1)))

    def test_empty_dataset_raises(self):
        learner = ForwardLearner(make_network())
        with pytest.raises(ShapeMismatchError):
            learner.learn(np.zeros((0, 2)), np.zeros((0, 1)))

    def test_wrong_predict_size_raises(self):
        learner = ForwardLearner(make_network())
        with pytest.raises(ShapeMismatchError):
            learner.predict([1.0, 2.0, 3.0])
