"""
Exceptions
==========

Every error raised by chainnet derives from ChainNetError. Each subclass
also derives from the closest builtin, so ``except ValueError`` keeps
working for callers that do not know about this library.
"""


class ChainNetError(Exception):
    """Base class for all chainnet errors."""


class ShapeMismatchError(ChainNetError, ValueError):
    """A buffer disagrees with the size, dtype or layout a layer declared."""


class NotConnectedError(ChainNetError, RuntimeError):
    """A layer or pipeline was used before its buffers were wired."""


class CallOrderError(ChainNetError, RuntimeError):
    """Forward/backward calls happened in an order that would read stale buffers."""


class HyperparameterError(ChainNetError, ValueError):
    """A size, rate, probability or name given at construction is invalid."""
