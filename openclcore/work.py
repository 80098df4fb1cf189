# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from ctypes import c_size_t
from numbers import Integral
from openclcore.errors import InvalidWorkError


def to_dims(val, what):
    if isinstance(val, Integral) and not isinstance(val, bool):
        val = (val,)
    if not isinstance(val, (tuple, list)):
        raise TypeError(f"{what} must be an int or a sequence of ints")
    for v in val:
        if not isinstance(v, Integral) or isinstance(v, bool):
            raise TypeError(f"{what} must be an int or a sequence of ints")
        if v < 0:
            raise InvalidWorkError(f"{what} values can't be negative")
    if not 1 <= len(val) <= 3:
        raise InvalidWorkError("Work dimensions must be 1, 2, or 3.")
    return tuple(int(v) for v in val)


def pad3(dims, fill):
    return (c_size_t * 3)(*(dims + (fill,) * (3 - len(dims))))


class Work:
    """The geometry of a kernel launch: a global size of one to three
    non-zero extents, an optional global offset and an optional local
    size.
    """
    def __init__(self, global_size, global_offset=None, local_size=None):
        global_size = to_dims(global_size, "Global size")
        if 0 in global_size:
            raise InvalidWorkError(
                "Work size dimensions cannot have any zero values"
            )
        n_dims = len(global_size)
        if global_offset is not None:
            global_offset = to_dims(global_offset, "Global offset")
            if len(global_offset) != n_dims:
                raise InvalidWorkError(
                    "Global offset must have as many dimensions as global size"
                )
        if local_size is not None:
            local_size = to_dims(local_size, "Local size")
            if 0 in local_size:
                raise InvalidWorkError(
                    "Local work size dimensions cannot have any zero values"
                )
            if len(local_size) != n_dims:
                raise InvalidWorkError(
                    "Local size must have as many dimensions as global size"
                )
        self.global_size = global_size
        self.global_offset = global_offset
        self.local_size = local_size

    @classmethod
    def of(cls, work):
        if isinstance(work, Work):
            return work
        return cls(work)

    @property
    def dims(self):
        return len(self.global_size)

    def n_items(self):
        n = 1
        for v in self.global_size:
            n *= v
        return n

    # Encodings for clEnqueueNDRangeKernel
    def global_work_size(self):
        return pad3(self.global_size, 1)

    def global_work_offset(self):
        return pad3(self.global_offset or (), 0)

    def local_work_size(self):
        if self.local_size is None:
            return None
        return pad3(self.local_size, 1)

    def __eq__(self, other):
        if not isinstance(other, Work):
            return NotImplemented
        return (
            self.global_size == other.global_size
            and self.global_offset == other.global_offset
            and self.local_size == other.local_size
        )

    def __hash__(self):
        return hash((self.global_size, self.global_offset, self.local_size))

    def __repr__(self):
        return (
            f"Work(global_size={self.global_size}, "
            f"global_offset={self.global_offset}, "
            f"local_size={self.local_size})"
        )
