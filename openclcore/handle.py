# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# Names:
#   * raw - ctypes opaque pointer returned by OpenCL
#   * kind - HandleKind describing how to retain/release raw
from openclcore import (
    address_of,
    cl_command_queue,
    cl_context,
    cl_device_id,
    cl_event,
    cl_kernel,
    cl_mem,
    cl_platform_id,
    cl_program,
    get_info,
    so
)
from openclcore.errors import (
    ClError,
    HandleClosedError,
    NullHandleError,
    check
)
from threading import Lock

import logging

logger = logging.getLogger(__name__)


class HandleKind:
    def __init__(self, name, ctype, retain_fn=None, release_fn=None):
        self.name = name
        self.ctype = ctype
        self.retain_fn = retain_fn
        self.release_fn = release_fn

    def retain(self, raw):
        if self.retain_fn:
            check(getattr(so, self.retain_fn)(raw))

    def release(self, raw):
        if self.release_fn:
            check(getattr(so, self.release_fn)(raw))

    def __repr__(self):
        return f"HandleKind({self.name})"


# Platforms are static data and not reference counted.
PLATFORM = HandleKind("platform", cl_platform_id)
DEVICE = HandleKind(
    "device", cl_device_id, "clRetainDevice", "clReleaseDevice"
)
CONTEXT = HandleKind(
    "context", cl_context, "clRetainContext", "clReleaseContext"
)
COMMAND_QUEUE = HandleKind(
    "command queue",
    cl_command_queue,
    "clRetainCommandQueue",
    "clReleaseCommandQueue"
)
PROGRAM = HandleKind(
    "program", cl_program, "clRetainProgram", "clReleaseProgram"
)
KERNEL = HandleKind(
    "kernel", cl_kernel, "clRetainKernel", "clReleaseKernel"
)
MEM = HandleKind(
    "mem", cl_mem, "clRetainMemObject", "clReleaseMemObject"
)
EVENT = HandleKind(
    "event", cl_event, "clRetainEvent", "clReleaseEvent"
)


class Handle:
    """Owns exactly one reference to an OpenCL object. The reference
    is released by close(), or when the handle is garbage collected.
    """
    def __init__(self, kind, raw):
        if not raw:
            raise NullHandleError(kind.name)
        self.kind = kind
        self._raw = raw
        self._address = address_of(raw)
        self._lock = Lock()
        logger.debug("Wrapped %s %#x", kind.name, self._address)

    @classmethod
    def retained(cls, kind, raw):
        if not raw:
            raise NullHandleError(kind.name)
        kind.retain(raw)
        logger.debug("Retained %s %#x", kind.name, address_of(raw))
        return cls(kind, raw)

    @property
    def raw(self):
        raw = self._raw
        if raw is None:
            raise HandleClosedError(self.kind.name)
        return raw

    @property
    def address(self):
        return self._address

    @property
    def closed(self):
        return self._raw is None

    def clone(self):
        return Handle.retained(self.kind, self.raw)

    def close(self):
        with self._lock:
            raw, self._raw = self._raw, None
        if raw is None:
            return
        try:
            self.kind.release(raw)
            logger.debug("Released %s %#x", self.kind.name, self._address)
        except ClError as e:
            logger.warning(
                "Failed to release %s %#x: %s",
                self.kind.name, self._address, e
            )

    def __del__(self):
        if getattr(self, "_lock", None) is not None:
            self.close()

    def __copy__(self):
        return self.clone()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __eq__(self, other):
        if not isinstance(other, Handle):
            return NotImplemented
        return self.kind is other.kind and self._address == other._address

    def __hash__(self):
        return hash((self.kind.name, self._address))

    def __lt__(self, other):
        return self._address < other._address

    def __repr__(self):
        state = " closed" if self.closed else ""
        return f"<Handle {self.kind.name} {self._address:#x}{state}>"


def clone_owned(value):
    if isinstance(value, list):
        return [v.clone() for v in value]
    return value.clone() if value is not None else None


def close_owned(value):
    for res in value if isinstance(value, list) else [value]:
        if res is not None:
            res.close()


class Resource:
    """Base of the wrappers around an OpenCL object. A resource holds
    one Handle and may be closed explicitly or used as a context
    manager. The attributes named in OWNED hold retained parents (a
    resource or a list of them) which are cloned and closed together
    with it. Clones share everything else.
    """
    KIND = None
    OWNED = ()

    def __init__(self, handle):
        self.handle = handle

    @property
    def raw(self):
        return self.handle.raw

    @property
    def address(self):
        return self.handle.address

    def info(self, attr, *args):
        return get_info(attr, self.raw, *args)

    def clone(self):
        obj = object.__new__(type(self))
        obj.__dict__.update(self.__dict__)
        obj.handle = self.handle.clone()
        for name in self.OWNED:
            setattr(obj, name, clone_owned(getattr(self, name)))
        return obj

    def close(self):
        self.handle.close()
        for name in self.OWNED:
            close_owned(getattr(self, name, None))

    def __copy__(self):
        return self.clone()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __eq__(self, other):
        if not isinstance(other, Resource):
            return NotImplemented
        return self.handle == other.handle

    def __hash__(self):
        return hash(self.handle)

    def __repr__(self):
        return f"<{type(self).__name__} {self.address:#x}>"


def define_info_methods(cls, info_methods):
    """Generates one method per entry in info_methods, which maps
    method names to info enum members."""
    for name, attr in info_methods.items():
        def getter(self, attr=attr):
            return self.info(attr)
        getter.__name__ = name
        getter.__doc__ = f"Queries {attr.name}."
        setattr(cls, name, getter)
