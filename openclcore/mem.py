# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from ctypes import c_void_p
from enum import Enum
from numbers import Integral
from openclcore import MemFlags
from openclcore.elements import ElementType, type_check
from openclcore.errors import DecodeError, ValidationError
from openclcore.handle import MEM, Handle, Resource, define_info_methods
from openclcore.objs import Context
from openclcore.sync import RWLock

import logging
import numpy as np
import openclcore as cl

logger = logging.getLogger(__name__)


class HostAccess(Enum):
    READ_WRITE = MemFlags(0)
    WRITE_ONLY = MemFlags.CL_MEM_HOST_WRITE_ONLY
    READ_ONLY = MemFlags.CL_MEM_HOST_READ_ONLY
    NO_ACCESS = MemFlags.CL_MEM_HOST_NO_ACCESS


class KernelAccess(Enum):
    READ_WRITE = MemFlags.CL_MEM_READ_WRITE
    WRITE_ONLY = MemFlags.CL_MEM_WRITE_ONLY
    READ_ONLY = MemFlags.CL_MEM_READ_ONLY


class MemLocation(Enum):
    KEEP_IN_PLACE = MemFlags.CL_MEM_USE_HOST_PTR
    ALLOC_ON_DEVICE = MemFlags.CL_MEM_ALLOC_HOST_PTR
    COPY_TO_DEVICE = MemFlags.CL_MEM_COPY_HOST_PTR
    FORCE_COPY_TO_DEVICE = (
        MemFlags.CL_MEM_ALLOC_HOST_PTR | MemFlags.CL_MEM_COPY_HOST_PTR
    )

    @property
    def uses_host_ptr(self):
        host_flags = MemFlags.CL_MEM_USE_HOST_PTR | MemFlags.CL_MEM_COPY_HOST_PTR
        return bool(self.value & host_flags)


class MemConfig:
    def __init__(
        self,
        host_access=HostAccess.READ_WRITE,
        kernel_access=KernelAccess.READ_WRITE,
        location=MemLocation.ALLOC_ON_DEVICE
    ):
        self.host_access = host_access
        self.kernel_access = kernel_access
        self.location = location

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def for_data(cls):
        return cls(location=MemLocation.COPY_TO_DEVICE)

    @property
    def flags(self):
        return (
            self.host_access.value
            | self.kernel_access.value
            | self.location.value
        )

    def __eq__(self, other):
        if not isinstance(other, MemConfig):
            return NotImplemented
        return self.flags == other.flags

    def __hash__(self):
        return hash(self.flags)

    def __repr__(self):
        return (
            f"MemConfig({self.host_access.name}, "
            f"{self.kernel_access.name}, {self.location.name})"
        )


def host_array(arr, writable=False):
    if not isinstance(arr, np.ndarray):
        raise TypeError(f"Expected a numpy array, got {type(arr).__name__}")
    if not arr.flags.c_contiguous:
        raise TypeError("Host array must be C-contiguous")
    if writable and not arr.flags.writeable:
        raise TypeError("Host array must be writeable")
    return arr


class Buffer(Resource):
    """A typed device memory object. The element type is fixed at
    creation and checked against every host array and kernel argument
    the buffer meets."""
    KIND = MEM
    OWNED = ("_context",)

    def __init__(self, handle, element_type, context=None, host=None):
        super().__init__(handle)
        self.element_type = element_type
        self._context = context
        # Host memory backing KEEP_IN_PLACE buffers
        self._host = host
        self.lock = RWLock()

    @classmethod
    def create(cls, context, element_type, length, config=None):
        config = config or MemConfig.default()
        if not isinstance(length, Integral) or length < 0:
            raise TypeError("Buffer length must be a non-negative int")
        if config.location.uses_host_ptr:
            raise ValidationError(
                f"{config.location.name} requires host data"
            )
        n_bytes = length * element_type.size
        raw = cl.create_buffer(context.raw, config.flags, n_bytes, None)
        buf = cls(Handle(MEM, raw), element_type, context.clone())
        logger.debug("Created %s buffer %#x of length %d",
                     element_type, buf.address, length)
        return buf

    @classmethod
    def from_array(cls, context, arr, config=None, element_type=None):
        config = config or MemConfig.for_data()
        arr = host_array(arr)
        found = ElementType.of(arr)
        if element_type is not None:
            type_check(element_type, found)
        if not config.location.uses_host_ptr:
            raise ValidationError(
                f"{config.location.name} can't be initialized from host data"
            )
        ptr = arr.ctypes.data_as(c_void_p)
        raw = cl.create_buffer(context.raw, config.flags, arr.nbytes, ptr)
        keep = None
        if config.location is MemLocation.KEEP_IN_PLACE:
            keep = arr
        buf = cls(Handle(MEM, raw), found, context.clone(), keep)
        logger.debug("Created %s buffer %#x from %d elements",
                     found, buf.address, arr.size)
        return buf

    @classmethod
    def wrap(cls, raw, element_type, retain=True):
        """Wraps an existing memory object. Without retain the buffer
        takes over the caller's reference."""
        if retain:
            handle = Handle.retained(MEM, raw)
        else:
            handle = Handle(MEM, raw)
        return cls(handle, element_type)

    def context(self):
        if self._context is None:
            self._context = Context.from_raw(
                self.info(cl.MemInfo.CL_MEM_CONTEXT)
            )
        return self._context

    def length(self):
        size = self.size()
        el_size = self.element_type.size
        if size % el_size:
            raise DecodeError(
                f"Buffer size {size} is not a multiple of "
                f"{self.element_type} ({el_size} bytes)"
            )
        return size // el_size

    def __len__(self):
        return self.length()

    def __repr__(self):
        return f"<Buffer {self.element_type} {self.address:#x}>"


define_info_methods(Buffer, {
    "size": cl.MemInfo.CL_MEM_SIZE,
    "reference_count": cl.MemInfo.CL_MEM_REFERENCE_COUNT,
    "flags": cl.MemInfo.CL_MEM_FLAGS,
    "offset": cl.MemInfo.CL_MEM_OFFSET,
    "mem_type": cl.MemInfo.CL_MEM_TYPE,
    "map_count": cl.MemInfo.CL_MEM_MAP_COUNT,
    "host_ptr": cl.MemInfo.CL_MEM_HOST_PTR,
})
