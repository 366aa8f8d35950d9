"""
Training Configuration
======================

The knobs of the batched gradient descent loop, validated once.
"""

import math
import numbers
from dataclasses import asdict, dataclass, fields, replace

from .exceptions import HyperparameterError


@dataclass(frozen=True)
class TrainingConfig:
    """
    Args:
        learning_rate: Step size per example (default: 0.01)
        momentum: Momentum coefficient (default: 0.0)
        batch_size: Examples per weight update (default: 1)
        max_epochs: Epoch limit (default: 50000)
        max_error: Stop once the mean epoch error is at or below this (default: 0.01)
        shuffle: Visit examples in a new random order every epoch (default: True)
        verbose: Show a progress bar (default: False)
    """

    learning_rate: float = 0.01
    momentum: float = 0.0
    batch_size: int = 1
    max_epochs: int = 50000
    max_error: float = 0.01
    shuffle: bool = True
    verbose: bool = False

    def __post_init__(self):
        for name in ('learning_rate', 'momentum', 'max_error'):
            value = getattr(self, name)
            if (isinstance(value, bool) or not isinstance(value, numbers.Real)
                    or not math.isfinite(value) or value < 0):
                raise HyperparameterError(f"{name} must be a finite non-negative number, got {value!r}")
        for name in ('batch_size', 'max_epochs'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise HyperparameterError(f"{name} must be a positive integer, got {value!r}")

    @classmethod
    def from_dict(cls, values):
        """Build a config from a mapping; unknown keys are rejected."""
        known = {field.name for field in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise HyperparameterError(
                f"Unknown training options: {', '.join(sorted(unknown))}. Available: {', '.join(sorted(known))}")
        return cls(**values)

    def to_dict(self):
        return asdict(self)

    def replace(self, **overrides):
        """A copy with some options changed."""
        unknown = set(overrides) - {field.name for field in fields(self)}
        if unknown:
            raise HyperparameterError(f"Unknown training options: {', '.join(sorted(unknown))}")
        return replace(self, **overrides)
