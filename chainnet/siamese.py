"""
Siamese Identity
================

Every physical layer carries a siamese handle. Layers that share their
parameters (a layer and its siamese copies) carry the same handle, so
parameter counting can skip groups that were already counted.

Handles are small integers allocated from a registry, and "already
counted" checks are plain set lookups.
"""

import itertools
import threading


class SiameseRegistry:
    """
    Arena of siamese handles.

    Each call to ``new_handle`` starts a new logical layer group. The
    registry remembers which kind of layer opened each group, for debugging
    and summaries.
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._kinds = {}
        self._lock = threading.Lock()

    def new_handle(self, kind=None):
        with self._lock:
            handle = next(self._counter)
            self._kinds[handle] = kind
        return handle

    def kind(self, handle):
        return self._kinds.get(handle)

    def __len__(self):
        return len(self._kinds)

    def __contains__(self, handle):
        return handle in self._kinds


_default_registry = SiameseRegistry()


def default_registry():
    """The process-wide registry used when a layer is not given one."""
    return _default_registry


def claim(handle, exclude):
    """
    Mark ``handle`` as counted.

    Returns:
        False if the handle was already in ``exclude`` (the caller should
        count nothing), True if it was added now.
    """
    if handle in exclude:
        return False
    exclude.add(handle)
    return True
