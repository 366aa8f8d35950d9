"""
Forward Learner
===============

Batched gradient descent over a layer (usually a Sequential).

For every example: copy the input into the model's input buffer, feed with
learning on, compute the error signal, back-propagate (which only
accumulates gradients). After every ``batch_size`` examples the weights are
updated once with rate ``learning_rate * batch_size``.

Training stops when the mean error of an epoch is at or below
``max_error`` or after ``max_epochs`` epochs. A stop can also be requested
cooperatively; it is honoured at the next epoch boundary.
"""

import logging

import numpy as np
from tqdm import tqdm

from .buffers import allocate
from .config import TrainingConfig
from .exceptions import ShapeMismatchError
from .losses import get_error_function
from .random_generator import ensure_generator

logger = logging.getLogger(__name__)


class ForwardLearner:
    """
    Trains a model on input/expected-output pairs.

    Args:
        model: Any layer; its input and output are wired to buffers the
            learner owns
        error_function: Error function name or instance (default: 'euclidean')
        config: TrainingConfig (default: TrainingConfig())
        rng: RandomGenerator (or seed) used to shuffle examples
        should_stop: Optional callable returning True to stop at the next
            epoch boundary
        **overrides: TrainingConfig fields overriding ``config``

    Example:
        >>> learner = ForwardLearner(model, learning_rate=0.1, max_epochs=2000)
        >>> reached = learner.learn(X, Y)
        >>> learner.predict(X[0])
    """

    def __init__(self, model, error_function='euclidean', config=None, rng=None,
                 should_stop=None, **overrides):
        self.model = model
        self.error_function = get_error_function(error_function)
        config = config if config is not None else TrainingConfig()
        self.config = config.replace(**overrides) if overrides else config
        self.rng = ensure_generator(rng)
        self.should_stop = should_stop
        self._stop_requested = False

        self.input = allocate(model.input_size, model.dtype)
        self.output = allocate(model.output_size, model.dtype)
        self.error = allocate(model.output_size, model.dtype)
        self.input_error = allocate(model.input_size, model.dtype)
        self.model.set_input_and_output(self.input, 0, self.output, 0)

        self.history = {'error': []}

    @property
    def outputs(self):
        return self.model.output_size

    def stop(self):
        """Ask a running ``learn`` to stop at the next epoch boundary."""
        self._stop_requested = True

    def _stop_pending(self):
        if self._stop_requested:
            return True
        return self.should_stop is not None and bool(self.should_stop())

    # ------------------------------------------------------------------
    # Single examples
    # ------------------------------------------------------------------

    def _load(self, input):
        input = np.asarray(input, dtype=self.input.dtype).ravel()
        if input.shape[0] != self.model.input_size:
            raise ShapeMismatchError(f"Input has {input.shape[0]} entries, model expects {self.model.input_size}")
        self.input[...] = input

    def get_error(self, expected):
        """Error of the current output against ``expected``; the signal lands in ``self.error``."""
        expected = np.asarray(expected, dtype=self.output.dtype).ravel()
        if expected.shape[0] != self.outputs:
            raise ShapeMismatchError(f"Expected output has {expected.shape[0]} entries, model produces {self.outputs}")
        return self.error_function.get_error(self.output, 0, expected, 0, self.error, 0, self.outputs)

    def feed_and_get_error(self, input, expected, learning=False):
        """Feed one example and return its scalar error."""
        self._load(input)
        self.model.feed(learning)
        return self.get_error(expected)

    def predict(self, inputs):
        """
        Run the model without learning.

        Args:
            inputs: One input vector, or a 2-D array with one example per row

        Returns:
            A copy of the output (one row per example for 2-D inputs)
        """
        inputs = np.asarray(inputs, dtype=self.input.dtype)
        if inputs.ndim == 2:
            return np.stack([self.predict(row) for row in inputs])
        self._load(inputs)
        self.model.feed(False)
        return self.output.copy()

    def evaluate(self, inputs, outputs):
        """Mean scalar error over a dataset, without learning."""
        inputs, outputs = self._examples(inputs, outputs)
        total = sum(self.feed_and_get_error(x, y) for x, y in zip(inputs, outputs))
        return total / len(inputs)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _examples(self, inputs, outputs):
        inputs = np.asarray(inputs, dtype=self.input.dtype)
        outputs = np.asarray(outputs, dtype=self.output.dtype)
        if len(inputs) != len(outputs):
            raise ShapeMismatchError(f"Got {len(inputs)} inputs but {len(outputs)} expected outputs")
        if len(inputs) == 0:
            raise ShapeMismatchError("No examples given")
        inputs = inputs.reshape(len(inputs), -1)
        outputs = outputs.reshape(len(outputs), -1)
        if inputs.shape[1] != self.model.input_size:
            raise ShapeMismatchError(f"Inputs have {inputs.shape[1]} entries, model expects {self.model.input_size}")
        if outputs.shape[1] != self.outputs:
            raise ShapeMismatchError(f"Expected outputs have {outputs.shape[1]} entries, model produces {self.outputs}")
        return inputs, outputs

    def learn(self, inputs, outputs, **overrides):
        """
        Train on the given pairs.

        Args:
            inputs: Inputs, one example per row
            outputs: Expected outputs, one example per row
            **overrides: TrainingConfig fields for this run only

        Returns:
            True if the mean error of the last epoch is at or below
            ``max_error``, False otherwise
        """
        config = self.config.replace(**overrides) if overrides else self.config
        inputs, outputs = self._examples(inputs, outputs)
        n_examples = len(inputs)

        batch_size = config.batch_size
        if batch_size > n_examples:
            logger.warning("Batch size %d is larger than the %d examples; using %d",
                           batch_size, n_examples, n_examples)
            batch_size = n_examples
        rate = config.learning_rate * batch_size

        logger.info("Training on %d examples (batch size %d, learning rate %g, momentum %g, max %d epochs)",
                    n_examples, batch_size, config.learning_rate, config.momentum, config.max_epochs)

        self._stop_requested = False
        self.history = {'error': []}
        indices = np.arange(n_examples)
        mean_error = float('inf')
        reached = False
        epochs_run = 0

        epochs = range(config.max_epochs)
        if config.verbose:
            pbar = tqdm(epochs, desc="Training", unit="epoch")
        else:
            pbar = epochs

        try:
            for epoch in pbar:
                if self._stop_pending():
                    logger.debug("Stop requested; leaving before epoch %d", epoch + 1)
                    break

                if config.shuffle:
                    self.rng.shuffle(indices)

                total_error = 0.0
                pending = 0
                for index in indices:
                    total_error += self.feed_and_get_error(inputs[index], outputs[index], learning=True)
                    self.model.back_propagate(self.error, 0, self.input_error, 0, learning=True)
                    pending += 1
                    if pending == batch_size:
                        self.model.update_weights(rate, config.momentum)
                        pending = 0

                # Trailing partial batch
                if pending:
                    self.model.update_weights(rate, config.momentum)

                mean_error = total_error / n_examples
                epochs_run = epoch + 1
                self.history['error'].append(mean_error)
                logger.debug("Epoch %d: mean error %.6f", epochs_run, mean_error)

                if config.verbose:
                    pbar.set_postfix({'error': f'{mean_error:.4f}'})

                if mean_error <= config.max_error:
                    reached = True
                    break
        finally:
            if config.verbose:
                pbar.close()

        logger.info("Training finished after %d epochs, mean error %.6f", epochs_run, mean_error)
        if not reached:
            logger.warning("Target error %g not reached (last mean error %.6f)", config.max_error, mean_error)

        return reached
