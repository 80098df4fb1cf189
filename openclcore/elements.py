# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# Element types of buffers and kernel arguments. Each ElementType
# pairs a ctypes storage type with a numpy dtype so that host arrays
# can be checked against the buffers they are transferred to.
from ctypes import (
    Array,
    alignment,
    c_double,
    c_float,
    c_int8,
    c_int16,
    c_int32,
    c_int64,
    c_size_t,
    c_uint8,
    c_uint16,
    c_uint32,
    c_uint64,
    sizeof
)
from enum import Enum
from openclcore import cl_bool
from openclcore.errors import TypeMismatchError

import numpy as np


class Scalar(Enum):
    def __new__(cls, name, ctype, np_type):
        obj = object.__new__(cls)
        obj._value_ = name
        obj.ctype = ctype
        obj.np_type = np_type
        return obj

    CHAR = "char", c_int8, np.int8
    UCHAR = "uchar", c_uint8, np.uint8
    SHORT = "short", c_int16, np.int16
    USHORT = "ushort", c_uint16, np.uint16
    INT = "int", c_int32, np.int32
    UINT = "uint", c_uint32, np.uint32
    LONG = "long", c_int64, np.int64
    ULONG = "ulong", c_uint64, np.uint64
    FLOAT = "float", c_float, np.float32
    DOUBLE = "double", c_double, np.float64
    # Half floats are stored as their bit pattern
    HALF = "half", c_uint16, np.float16
    BOOL = "bool", cl_bool, np.uint32
    SIZE_T = "size_t", c_size_t, np.uintp


VECTOR_WIDTHS = (2, 3, 4, 8, 16)
VECTOR_SCALARS = tuple(s for s in Scalar if s not in (Scalar.BOOL, Scalar.SIZE_T))


class ElementType:
    _interned = {}

    def __new__(cls, scalar, width=1):
        key = (scalar, width)
        obj = cls._interned.get(key)
        if obj is None:
            raise ValueError(f"No element type {scalar.value}{width}")
        return obj

    @classmethod
    def _intern(cls, scalar, width):
        obj = object.__new__(cls)
        obj.scalar = scalar
        obj.width = width
        # Three component vectors are laid out like four component
        # ones.
        obj.storage_width = 4 if width == 3 else width
        if width == 1:
            obj.name = scalar.value
            obj.ctype = scalar.ctype
            obj.alignment = alignment(scalar.ctype)
            dtype = np.dtype(scalar.np_type)
        else:
            obj.name = f"{scalar.value}{width}"
            obj.ctype = scalar.ctype * obj.storage_width
            obj.alignment = sizeof(obj.ctype)
            dtype = {
                "names": ["s"],
                "formats": [(scalar.np_type, (width,))],
                "itemsize": sizeof(obj.ctype)
            }
        obj.size = sizeof(obj.ctype)
        obj.dtype = np.dtype(dtype, metadata={"cl_type": obj.name})
        cls._interned[(scalar, width)] = obj
        return obj

    @classmethod
    def from_name(cls, name):
        try:
            return _BY_NAME[name]
        except KeyError:
            raise ValueError(f"Unknown element type {name!r}") from None

    @classmethod
    def of(cls, value):
        """Returns the element type of a numpy array, dtype or scalar,
        or of a ctypes type or instance."""
        if isinstance(value, ElementType):
            return value
        if isinstance(value, np.ndarray):
            return _from_dtype(value.dtype)
        if isinstance(value, np.dtype):
            return _from_dtype(value)
        if isinstance(value, np.generic):
            return _from_dtype(value.dtype)
        if isinstance(value, type):
            return _from_ctype(value)
        if hasattr(value, "_type_") or isinstance(value, Array):
            return _from_ctype(type(value))
        raise TypeError(f"Can't derive an element type from {value!r}")

    def is_compatible(self, other):
        return self is other

    def visit(self, fn, *args):
        return fn(self.ctype, *args)

    def empty(self, n):
        return np.zeros(n, dtype=self.dtype)

    def array(self, values):
        """Creates a host array of this element type."""
        if self.width > 1:
            values = [(tuple(v),) for v in values]
        return np.array(values, dtype=self.dtype)

    def to_ctype(self, value):
        """Converts a Python or numpy value to a ctypes instance."""
        if isinstance(value, self.ctype):
            return value
        if self.width > 1 and not isinstance(value, np.void):
            value = (tuple(value),)
        data = np.array(value, dtype=self.dtype).tobytes()
        return self.ctype.from_buffer_copy(data)

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (ElementType.from_name, (self.name,))

    def __repr__(self):
        return f"ElementType({self.name})"

    def __str__(self):
        return self.name


for scalar in Scalar:
    ElementType._intern(scalar, 1)
for scalar in VECTOR_SCALARS:
    for width in VECTOR_WIDTHS:
        ElementType._intern(scalar, width)

ALL_TYPES = tuple(ElementType._interned.values())
_BY_NAME = {et.name: et for et in ALL_TYPES}

# Module level constants CHAR, ..., SIZE_T, CHAR2, ..., HALF16
globals().update({et.name.upper(): et for et in ALL_TYPES})

# Plain numpy dtypes map to their natural element types. bool and
# size_t are only reachable through the cl_type tag.
_NATURAL = {np.dtype(s.np_type).str: ElementType(s) for s in VECTOR_SCALARS}

# ctypes types are shared, e.g. ushort and half are both c_uint16 and
# size_t is c_uint64 on most platforms. The first declared wins and
# three component vectors are never inferred from their storage.
_BY_CTYPE = {}
for et in ALL_TYPES:
    if et.width != 3:
        _BY_CTYPE.setdefault(et.ctype, et)


def _from_dtype(dt):
    md = dt.metadata
    if md and "cl_type" in md:
        return ElementType.from_name(md["cl_type"])
    if dt.names == ("s",):
        sub = dt.fields["s"][0]
        et = _NATURAL.get(sub.base.str)
        if et and len(sub.shape) == 1:
            try:
                vec = ElementType(et.scalar, sub.shape[0])
            except ValueError:
                vec = None
            if vec and vec.dtype.itemsize == dt.itemsize:
                return vec
    et = _NATURAL.get(dt.str)
    if et is None:
        raise TypeError(f"No OpenCL element type for dtype {dt}")
    return et


def _from_ctype(tp):
    et = _BY_CTYPE.get(tp)
    if et is None:
        raise TypeError(f"No OpenCL element type for {tp.__name__}")
    return et


def type_check(expected, found):
    if not expected.is_compatible(found):
        raise TypeMismatchError(expected, found)
