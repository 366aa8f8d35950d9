"""
Buffers
=======

Layers never own private copies of their inputs: a layer's input is a
window into some other array (usually the previous layer's output), and
several logical vectors may live inside one physical array. A window is
described by an (array, offset, length) triple.

BufferSlice wraps that triple, validates it once, and hands out numpy views
so kernels read and write the shared memory directly.
"""

import numpy as np

from .exceptions import ShapeMismatchError


DEFAULT_DTYPE = np.float64


def allocate(length, dtype=DEFAULT_DTYPE):
    """Create a zero-filled buffer of the given length."""
    return np.zeros(int(length), dtype=dtype)


def check_buffer(array, offset, length, dtype=None, name='buffer'):
    """
    Validate that ``array[offset:offset + length]`` is a usable window.

    Args:
        array: Candidate buffer
        offset: Index of the first used entry
        length: Number of entries the caller will read or write
        dtype: Required dtype, or None to accept any floating dtype
        name: Label used in error messages

    Raises:
        ShapeMismatchError: If the array is not a 1-D float ndarray, has the
            wrong dtype, or is too short for the window.
    """
    if not isinstance(array, np.ndarray):
        raise ShapeMismatchError(f"{name} must be a numpy array, got {type(array).__name__}")
    if array.ndim != 1:
        raise ShapeMismatchError(f"{name} must be 1-D, got shape {array.shape}")
    if not np.issubdtype(array.dtype, np.floating):
        raise ShapeMismatchError(f"{name} must hold floats, got dtype {array.dtype}")
    if dtype is not None and array.dtype != np.dtype(dtype):
        raise ShapeMismatchError(f"{name} has dtype {array.dtype}, expected {np.dtype(dtype)}")
    if offset < 0:
        raise ShapeMismatchError(f"{name} offset must be non-negative, got {offset}")
    if offset + length > array.shape[0]:
        raise ShapeMismatchError(
            f"{name} of length {array.shape[0]} cannot hold {length} entries at offset {offset}")


class BufferSlice:
    """
    A validated window ``array[offset:offset + length]``.

    The view is a numpy view, not a copy: writing through it writes the
    underlying array, which is how adjacent layers share one buffer.

    Args:
        array: The physical 1-D array
        offset: Index of the first used entry (the "skip")
        length: Number of entries in the window
        dtype: Required dtype (None accepts any float dtype)
        name: Label for error messages
    """

    __slots__ = ('array', 'offset', 'length')

    def __init__(self, array, offset, length, dtype=None, name='buffer'):
        check_buffer(array, offset, length, dtype=dtype, name=name)
        self.array = array
        self.offset = int(offset)
        self.length = int(length)

    @property
    def view(self):
        return self.array[self.offset:self.offset + self.length]

    @property
    def dtype(self):
        return self.array.dtype

    def aliases(self, other):
        """True if both slices describe exactly the same window of the same array."""
        return (self.array is other.array and self.offset == other.offset
                and self.length == other.length)

    def __len__(self):
        return self.length

    def __repr__(self):
        return f"BufferSlice(len={self.array.shape[0]}, offset={self.offset}, length={self.length})"

