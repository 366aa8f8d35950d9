"""
Random Generator
================

The only source of randomness in chainnet. Weight initialization and
dropout masks draw from an explicit RandomGenerator instance passed to the
layer, so a seeded generator makes a whole model reproducible and two
models never share hidden random state.
"""

import numpy as np


class RandomGenerator:
    """
    Thin wrapper over ``numpy.random.Generator``.

    Args:
        seed: Seed for reproducible sequences (None for OS entropy)
    """

    def __init__(self, seed=None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self, size=None):
        """Uniform doubles in [0, 1)."""
        return self._rng.random(size)

    def normal(self, variance, size=None):
        """Zero-mean normal samples with the given variance."""
        return self._rng.normal(0.0, np.sqrt(variance), size)

    def shuffle(self, array):
        """Shuffle an array in place."""
        self._rng.shuffle(array)

    def spawn(self):
        """Derive an independent generator, for giving each layer its own stream."""
        return RandomGenerator(int(self._rng.integers(0, 2 ** 63 - 1)))

    def __repr__(self):
        return f"RandomGenerator(seed={self.seed})"


def ensure_generator(rng):
    """Return ``rng`` if given, an int-seeded generator for ints, else a fresh one."""
    if rng is None:
        return RandomGenerator()
    if isinstance(rng, RandomGenerator):
        return rng
    if isinstance(rng, (int, np.integer)):
        return RandomGenerator(int(rng))
    raise TypeError(f"rng must be a RandomGenerator, an int seed or None, got {type(rng).__name__}")
