# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# An in-process stand-in for libOpenCL. It implements the subset of
# the C API openclcore calls, with reference counts, info queries,
# host memory backed buffers and kernels executed synchronously by
# Python callables. Install it with so.use(FakeOpenCL()).
#
# Kernel callables are invoked once per work item as fn(gid, *args)
# where gid is the global id tuple, buffer arguments are FakeMem
# objects and scalar arguments are bytes.
from ctypes import (
    addressof,
    c_char,
    c_char_p,
    c_size_t,
    c_void_p,
    cast,
    create_string_buffer,
    memmove,
    sizeof,
    string_at
)
from functools import wraps
from itertools import product
from openclcore import (
    CommandQueueInfo,
    ContextInfo,
    DeviceInfo,
    EventInfo,
    KernelArgInfo,
    KernelInfo,
    MemInfo,
    Opaque,
    PlatformInfo,
    ProfilingInfo,
    ProgramBuildInfo,
    ProgramInfo,
    CL_PROGRAM_BINARIES,
    cl_command_queue,
    cl_context,
    cl_device_id,
    cl_event,
    cl_kernel,
    cl_mem,
    cl_platform_id,
    cl_program
)

import numpy as np
import re

# Status codes
SUCCESS = 0
DEVICE_NOT_FOUND = -1
PROFILING_INFO_NOT_AVAILABLE = -7
BUILD_PROGRAM_FAILURE = -11
EXEC_STATUS_ERROR_FOR_EVENTS_IN_WAIT_LIST = -14
KERNEL_ARG_INFO_NOT_AVAILABLE = -19
INVALID_VALUE = -30
INVALID_PLATFORM = -32
INVALID_DEVICE = -33
INVALID_CONTEXT = -34
INVALID_COMMAND_QUEUE = -36
INVALID_HOST_PTR = -37
INVALID_MEM_OBJECT = -38
INVALID_BINARY = -42
INVALID_PROGRAM = -44
INVALID_PROGRAM_EXECUTABLE = -45
INVALID_KERNEL_NAME = -46
INVALID_KERNEL = -48
INVALID_ARG_INDEX = -49
INVALID_ARG_VALUE = -50
INVALID_ARG_SIZE = -51
INVALID_KERNEL_ARGS = -52
INVALID_WORK_DIMENSION = -53
INVALID_GLOBAL_WORK_SIZE = -63
INVALID_EVENT_WAIT_LIST = -57
INVALID_EVENT = -58
INVALID_BUFFER_SIZE = -61
OUT_OF_RESOURCES = -5
PLATFORM_NOT_FOUND_KHR = -1001

# Constants
DEVICE_TYPE_DEFAULT = 1 << 0
DEVICE_TYPE_GPU = 1 << 2
QUEUE_PROFILING_ENABLE = 1 << 1
MEM_USE_HOST_PTR = 1 << 3
MEM_COPY_HOST_PTR = 1 << 5
COMMAND_NDRANGE_KERNEL = 0x11F0
COMMAND_READ_BUFFER = 0x11F3
COMMAND_WRITE_BUFFER = 0x11F4
COMMAND_FILL_BUFFER = 0x1207
MEM_OBJECT_BUFFER = 0x10F0
BUILD_SUCCESS = 0
BUILD_NONE = -1
BUILD_ERROR = -2
ARG_ADDRESS_GLOBAL = 0x119B
ARG_ADDRESS_PRIVATE = 0x119E
ARG_ACCESS_NONE = 0x11A3
ARG_TYPE_CONST = 1 << 0

BINARY_MAGIC = b"FAKECL:"

# Sizes of OpenCL C scalar types, for argument size checks.
TYPE_SIZES = {
    "char": 1, "uchar": 1, "short": 2, "ushort": 2, "int": 4,
    "uint": 4, "long": 8, "ulong": 8, "float": 4, "double": 8,
    "half": 2, "size_t": 8, "bool": 4,
}

KERNEL_RE = re.compile(r"(?:__)?kernel\s+void\s+(\w+)\s*\(([^)]*)\)")
TYPE_RE = re.compile(r"^([a-z_]+?)(2|3|4|8|16)?$")


########################################################################
# ctypes argument helpers
########################################################################
def _int(x):
    return x if isinstance(x, int) else x.value


def _addr(x):
    if x is None:
        return 0
    if isinstance(x, int):
        return x
    if isinstance(x, c_void_p):
        return x.value or 0
    return cast(x, c_void_p).value or 0


def _obj(x):
    return getattr(x, "_obj", x)


def _set_out(x, val):
    if x is not None:
        _obj(x).value = val


def _set_handle_out(x, addr):
    c_void_p.from_address(addressof(_obj(x))).value = addr


def _encode(tp, val):
    if tp is c_char_p:
        return val.encode("utf-8") + b"\0"
    if hasattr(tp, "contents"):
        el = tp._type_
        if issubclass(el, Opaque):
            return bytes(c_void_p(val))
        if hasattr(el, "contents"):
            return b"".join(bytes(c_void_p(a)) for a in val)
        return bytes((el * len(val))(*val))
    return bytes(tp(val))


def _default(tp):
    if tp is c_char_p:
        return ""
    if hasattr(tp, "contents") and not issubclass(tp._type_, Opaque):
        return []
    return 0


def api(fn):
    @wraps(fn)
    def wrapper(self, *args):
        self.calls.append(fn.__name__)
        return fn(self, *args)
    return wrapper


class Failure:
    """Returned by info tables for parameters that fail."""
    def __init__(self, code):
        self.code = code


########################################################################
# Objects
########################################################################
class FakeObject:
    INVALID = INVALID_VALUE
    HANDLE_TYPE = None
    INFO = None

    def __init__(self, fake):
        self.fake = fake
        self.refcount = 1
        self.address = fake.allocate(self)

    @property
    def handle(self):
        return cast(c_void_p(self.address), self.HANDLE_TYPE)

    def retain(self):
        self.refcount += 1

    def release(self):
        self.refcount -= 1
        if self.refcount == 0:
            del self.fake.objects[self.address]

    def info(self):
        return {}


class FakePlatform(FakeObject):
    INVALID = INVALID_PLATFORM
    HANDLE_TYPE = cl_platform_id

    def __init__(self, fake, index):
        super().__init__(fake)
        self.index = index
        self.devices = []

    def retain(self):
        pass

    def release(self):
        pass

    def info(self):
        return {
            PlatformInfo.CL_PLATFORM_PROFILE: "FULL_PROFILE",
            PlatformInfo.CL_PLATFORM_VERSION: "OpenCL 3.0 Fake",
            PlatformInfo.CL_PLATFORM_NAME: f"Fake Platform {self.index}",
            PlatformInfo.CL_PLATFORM_VENDOR: "openclcore",
            PlatformInfo.CL_PLATFORM_EXTENSIONS:
                "cl_khr_fp64 cl_khr_icd",
        }


DEVICE_DEFAULTS = {
    "CL_DEVICE_TYPE": DEVICE_TYPE_GPU,
    "CL_DEVICE_VENDOR_ID": 0xFA4E,
    "CL_DEVICE_MAX_COMPUTE_UNITS": 4,
    "CL_DEVICE_MAX_WORK_ITEM_DIMENSIONS": 3,
    "CL_DEVICE_MAX_WORK_GROUP_SIZE": 256,
    "CL_DEVICE_MAX_WORK_ITEM_SIZES": [256, 256, 64],
    "CL_DEVICE_MAX_CLOCK_FREQUENCY": 1000,
    "CL_DEVICE_ADDRESS_BITS": 64,
    "CL_DEVICE_MAX_MEM_ALLOC_SIZE": 1 << 28,
    "CL_DEVICE_GLOBAL_MEM_SIZE": 1 << 30,
    "CL_DEVICE_LOCAL_MEM_SIZE": 1 << 16,
    "CL_DEVICE_LOCAL_MEM_TYPE": 1,
    "CL_DEVICE_MAX_PARAMETER_SIZE": 1024,
    "CL_DEVICE_SINGLE_FP_CONFIG": 0b111110,
    "CL_DEVICE_DOUBLE_FP_CONFIG": 0b111111,
    "CL_DEVICE_EXECUTION_CAPABILITIES": 1,
    "CL_DEVICE_ENDIAN_LITTLE": 1,
    "CL_DEVICE_AVAILABLE": 1,
    "CL_DEVICE_COMPILER_AVAILABLE": 1,
    "CL_DEVICE_LINKER_AVAILABLE": 1,
    "CL_DEVICE_PROFILING_TIMER_RESOLUTION": 1,
    "CL_DEVICE_VENDOR": "openclcore",
    "CL_DRIVER_VERSION": "1.0",
    "CL_DEVICE_PROFILE": "FULL_PROFILE",
    "CL_DEVICE_VERSION": "OpenCL 3.0 Fake",
    "CL_DEVICE_OPENCL_C_VERSION": "OpenCL C 3.0",
    "CL_DEVICE_EXTENSIONS": "cl_khr_fp64 cl_khr_int64_base_atomics",
    "CL_DEVICE_REFERENCE_COUNT": 1,
}


class FakeDevice(FakeObject):
    INVALID = INVALID_DEVICE
    HANDLE_TYPE = cl_device_id

    # Root devices are not reference counted.
    def retain(self):
        pass

    def release(self):
        pass

    def __init__(self, fake, platform, index, opts):
        super().__init__(fake)
        self.platform = platform
        self.values = dict(DEVICE_DEFAULTS)
        self.values["CL_DEVICE_NAME"] = f"Fake Device {index}"
        self.values.update(opts)

    @property
    def device_type(self):
        return self.values["CL_DEVICE_TYPE"]

    @property
    def available(self):
        return bool(self.values["CL_DEVICE_AVAILABLE"])

    def info(self):
        d = {}
        for attr in DeviceInfo:
            d[attr] = self.values.get(attr.name, _default(attr.type))
        d[DeviceInfo.CL_DEVICE_PLATFORM] = self.platform.address
        return d


class FakeContext(FakeObject):
    INVALID = INVALID_CONTEXT
    HANDLE_TYPE = cl_context

    def __init__(self, fake, devices):
        super().__init__(fake)
        self.devices = devices

    def info(self):
        return {
            ContextInfo.CL_CONTEXT_REFERENCE_COUNT: self.refcount,
            ContextInfo.CL_CONTEXT_DEVICES: [d.address for d in self.devices],
            ContextInfo.CL_CONTEXT_PROPERTIES: [],
            ContextInfo.CL_CONTEXT_NUM_DEVICES: len(self.devices),
        }


class FakeQueue(FakeObject):
    INVALID = INVALID_COMMAND_QUEUE
    HANDLE_TYPE = cl_command_queue

    def __init__(self, fake, context, device, properties):
        super().__init__(fake)
        self.context = context
        self.device = device
        self.properties = properties
        self.n_flushes = 0
        self.n_finishes = 0

    @property
    def profiling(self):
        return bool(self.properties & QUEUE_PROFILING_ENABLE)

    def info(self):
        return {
            CommandQueueInfo.CL_QUEUE_CONTEXT: self.context.address,
            CommandQueueInfo.CL_QUEUE_DEVICE: self.device.address,
            CommandQueueInfo.CL_QUEUE_REFERENCE_COUNT: self.refcount,
            CommandQueueInfo.CL_QUEUE_PROPERTIES: self.properties,
            # Only device queues have a size
            CommandQueueInfo.CL_QUEUE_SIZE: Failure(INVALID_COMMAND_QUEUE),
        }


class FakeMem(FakeObject):
    INVALID = INVALID_MEM_OBJECT
    HANDLE_TYPE = cl_mem

    def __init__(self, fake, context, flags, size, host_ptr):
        super().__init__(fake)
        self.context = context
        self.flags = flags
        self.size = size
        self.host_ptr = 0
        if flags & MEM_USE_HOST_PTR:
            self.host_ptr = host_ptr
            self.storage = (c_char * size).from_address(host_ptr)
        else:
            self.storage = create_string_buffer(size)
            if flags & MEM_COPY_HOST_PTR:
                memmove(self.storage, host_ptr, size)
        self.n_reads = 0
        self.n_writes = 0

    def view(self, dtype):
        return np.frombuffer(self.storage, dtype=dtype)

    def info(self):
        return {
            MemInfo.CL_MEM_TYPE: MEM_OBJECT_BUFFER,
            MemInfo.CL_MEM_FLAGS: self.flags,
            MemInfo.CL_MEM_SIZE: self.size,
            MemInfo.CL_MEM_HOST_PTR: self.host_ptr,
            MemInfo.CL_MEM_MAP_COUNT: 0,
            MemInfo.CL_MEM_REFERENCE_COUNT: self.refcount,
            MemInfo.CL_MEM_CONTEXT: self.context.address,
            MemInfo.CL_MEM_OFFSET: 0,
        }


class FakeParam:
    def __init__(self, decl):
        tokens = decl.replace("*", " * ").split()
        self.name = tokens[-1]
        self.is_buffer = "*" in tokens
        self.is_const = "const" in tokens
        quals = {"global", "__global", "const", "__const", "*",
                 "restrict", "constant", "__constant", "local", "__local"}
        type_toks = [t for t in tokens[:-1] if t not in quals]
        self.type_name = type_toks[0] if type_toks else ""
        if self.is_buffer:
            self.type_name += "*"

    @property
    def size(self):
        if self.is_buffer:
            return sizeof(c_void_p)
        m = TYPE_RE.match(self.type_name)
        if not m or m.group(1) not in TYPE_SIZES:
            return None
        width = int(m.group(2) or 1)
        return TYPE_SIZES[m.group(1)] * (4 if width == 3 else width)


class FakeProgram(FakeObject):
    INVALID = INVALID_PROGRAM
    HANDLE_TYPE = cl_program

    def __init__(self, fake, context, source, devices, binary=False):
        super().__init__(fake)
        self.context = context
        self.source = source
        self.from_binary = binary
        self.devices = devices
        self.built = False
        self.build_status = BUILD_NONE
        self.options = ""
        self.log = ""
        self.kernels = {
            m.group(1): [
                FakeParam(p) for p in m.group(2).split(",") if p.strip()
            ]
            for m in KERNEL_RE.finditer(source)
        }

    @property
    def binary(self):
        return BINARY_MAGIC + self.source.encode("utf-8")

    def build(self, devices, options):
        self.devices = devices
        self.options = options
        errors = re.findall(r"#error\s+(.*)", self.source)
        if errors:
            self.build_status = BUILD_ERROR
            self.log = "\n".join(f"error: {e}" for e in errors)
            return BUILD_PROGRAM_FAILURE
        self.built = True
        self.build_status = BUILD_SUCCESS
        self.log = ""
        return SUCCESS

    def info(self):
        if self.built:
            num_kernels = len(self.kernels)
            names = ";".join(self.kernels)
            sizes = [len(self.binary)] * len(self.devices)
        else:
            num_kernels = Failure(INVALID_PROGRAM_EXECUTABLE)
            names = Failure(INVALID_PROGRAM_EXECUTABLE)
            sizes = [0] * len(self.devices)
        return {
            ProgramInfo.CL_PROGRAM_REFERENCE_COUNT: self.refcount,
            ProgramInfo.CL_PROGRAM_CONTEXT: self.context.address,
            ProgramInfo.CL_PROGRAM_NUM_DEVICES: len(self.devices),
            ProgramInfo.CL_PROGRAM_DEVICES: [d.address for d in self.devices],
            ProgramInfo.CL_PROGRAM_SOURCE:
                "" if self.from_binary else self.source,
            ProgramInfo.CL_PROGRAM_BINARY_SIZES: sizes,
            ProgramInfo.CL_PROGRAM_NUM_KERNELS: num_kernels,
            ProgramInfo.CL_PROGRAM_KERNEL_NAMES: names,
        }

    def build_info(self):
        return {
            ProgramBuildInfo.CL_PROGRAM_BUILD_STATUS: self.build_status,
            ProgramBuildInfo.CL_PROGRAM_BUILD_OPTIONS: self.options,
            ProgramBuildInfo.CL_PROGRAM_BUILD_LOG: self.log,
        }


class FakeKernel(FakeObject):
    INVALID = INVALID_KERNEL
    HANDLE_TYPE = cl_kernel

    def __init__(self, fake, program, name):
        super().__init__(fake)
        self.program = program
        self.name = name
        self.params = program.kernels[name]
        self.args = [None] * len(self.params)

    def info(self):
        return {
            KernelInfo.CL_KERNEL_FUNCTION_NAME: self.name,
            KernelInfo.CL_KERNEL_NUM_ARGS: len(self.params),
            KernelInfo.CL_KERNEL_REFERENCE_COUNT: self.refcount,
            KernelInfo.CL_KERNEL_CONTEXT: self.program.context.address,
            KernelInfo.CL_KERNEL_PROGRAM: self.program.address,
            KernelInfo.CL_KERNEL_ATTRIBUTES: "",
        }

    def arg_info(self, index):
        if "-cl-kernel-arg-info" not in self.program.options:
            fail = Failure(KERNEL_ARG_INFO_NOT_AVAILABLE)
            return {attr: fail for attr in KernelArgInfo}
        p = self.params[index]
        addr = ARG_ADDRESS_GLOBAL if p.is_buffer else ARG_ADDRESS_PRIVATE
        return {
            KernelArgInfo.CL_KERNEL_ARG_ADDRESS_QUALIFIER: addr,
            KernelArgInfo.CL_KERNEL_ARG_ACCESS_QUALIFIER: ARG_ACCESS_NONE,
            KernelArgInfo.CL_KERNEL_ARG_TYPE_NAME: p.type_name,
            KernelArgInfo.CL_KERNEL_ARG_TYPE_QUALIFIER:
                ARG_TYPE_CONST if p.is_const else 0,
            KernelArgInfo.CL_KERNEL_ARG_NAME: p.name,
        }


class FakeEvent(FakeObject):
    INVALID = INVALID_EVENT
    HANDLE_TYPE = cl_event

    def __init__(self, fake, queue, command_type, status=0):
        super().__init__(fake)
        self.queue = queue
        self.command_type = command_type
        self.status = status
        self.times = [fake.tick() for _ in range(4)]
        self.n_waits = 0

    def info(self):
        return {
            EventInfo.CL_EVENT_COMMAND_QUEUE: self.queue.address,
            EventInfo.CL_EVENT_COMMAND_TYPE: self.command_type,
            EventInfo.CL_EVENT_REFERENCE_COUNT: self.refcount,
            EventInfo.CL_EVENT_COMMAND_EXECUTION_STATUS: self.status,
            EventInfo.CL_EVENT_CONTEXT: self.queue.context.address,
        }

    def profiling_info(self):
        if not self.queue.profiling:
            fail = Failure(PROFILING_INFO_NOT_AVAILABLE)
            return {attr: fail for attr in ProfilingInfo}
        return dict(zip(ProfilingInfo, self.times))


########################################################################
# The library
########################################################################
class FakeOpenCL:
    def __init__(self, platforms=None, kernels=None, failing_kernels=()):
        """platforms is a list of platforms, each a list of device
        option dicts overriding DEVICE_DEFAULTS."""
        if platforms is None:
            platforms = [[{}]]
        self.objects = {}
        self.next_address = 0x1000
        self.clock = 1000
        self.calls = []
        self.kernels = dict(kernels or {})
        self.failing_kernels = set(failing_kernels)
        self.platforms = []
        n_devs = 0
        for i, dev_opts in enumerate(platforms):
            plat = FakePlatform(self, i)
            for opts in dev_opts:
                plat.devices.append(FakeDevice(self, plat, n_devs, opts))
                n_devs += 1
            self.platforms.append(plat)

    def allocate(self, obj):
        addr = self.next_address
        self.next_address += 0x10
        self.objects[addr] = obj
        return addr

    def tick(self):
        self.clock += 10
        return self.clock

    def register_kernel(self, name, fn):
        self.kernels[name] = fn

    def lookup(self, h, cls):
        obj = self.objects.get(_addr(h))
        return obj if isinstance(obj, cls) else None

    def refcount(self, res):
        return self.objects[res.address].refcount

    def write_info(self, table, attr, size, buf, size_ret):
        if attr not in table:
            return INVALID_VALUE
        val = table[attr]
        if isinstance(val, Failure):
            return val.code
        data = _encode(attr.type, val)
        _set_out(size_ret, len(data))
        if buf is not None:
            if _int(size) < len(data):
                return INVALID_VALUE
            memmove(buf, data, len(data))
        return SUCCESS

    def query(self, h, cls, enum, table_fn, param, size, buf, size_ret):
        obj = self.lookup(h, cls)
        if obj is None:
            return cls.INVALID
        try:
            attr = enum(_int(param))
        except ValueError:
            return INVALID_VALUE
        return self.write_info(table_fn(obj), attr, size, buf, size_ret)

    def wait_list_status(self, queue, n, evs):
        n = _int(n)
        if (n == 0) != (evs is None):
            return INVALID_EVENT_WAIT_LIST
        for i in range(n):
            ev = self.lookup(evs[i], FakeEvent)
            if ev is None:
                return INVALID_EVENT_WAIT_LIST
            if queue is not None and ev.queue.context is not queue.context:
                return INVALID_CONTEXT
        return SUCCESS

    def new_event(self, queue, command_type, out, status=0):
        ev = FakeEvent(self, queue, command_type, status)
        if out is not None:
            _set_handle_out(out, ev.address)
        else:
            ev.release()
        return ev

    # Platforms and devices
    @api
    def clGetPlatformIDs(self, n, platforms, n_ret):
        if not self.platforms:
            return PLATFORM_NOT_FOUND_KHR
        _set_out(n_ret, len(self.platforms))
        if platforms is not None:
            for i in range(min(_int(n), len(self.platforms))):
                platforms[i] = self.platforms[i].handle
        return SUCCESS

    @api
    def clGetPlatformInfo(self, plat, param, size, buf, size_ret):
        return self.query(
            plat, FakePlatform, PlatformInfo, FakePlatform.info,
            param, size, buf, size_ret
        )

    @api
    def clGetDeviceIDs(self, plat, dev_type, n, devices, n_ret):
        plat = self.lookup(plat, FakePlatform)
        if plat is None:
            return INVALID_PLATFORM
        dev_type = _int(dev_type)
        if dev_type == DEVICE_TYPE_DEFAULT:
            devs = plat.devices[:1]
        else:
            devs = [d for d in plat.devices if d.device_type & dev_type]
        if not devs:
            return DEVICE_NOT_FOUND
        if devices is not None and _int(n) == 0:
            return INVALID_VALUE
        _set_out(n_ret, len(devs))
        if devices is not None:
            for i in range(min(_int(n), len(devs))):
                devices[i] = devs[i].handle
        return SUCCESS

    @api
    def clGetDeviceInfo(self, dev, param, size, buf, size_ret):
        return self.query(
            dev, FakeDevice, DeviceInfo, FakeDevice.info,
            param, size, buf, size_ret
        )

    # Reference counting
    def _retain(self, h, cls):
        obj = self.lookup(h, cls)
        if obj is None:
            return cls.INVALID
        obj.retain()
        return SUCCESS

    def _release(self, h, cls):
        obj = self.lookup(h, cls)
        if obj is None:
            return cls.INVALID
        obj.release()
        return SUCCESS

    @api
    def clRetainDevice(self, h):
        return self._retain(h, FakeDevice)

    @api
    def clReleaseDevice(self, h):
        return self._release(h, FakeDevice)

    @api
    def clRetainContext(self, h):
        return self._retain(h, FakeContext)

    @api
    def clReleaseContext(self, h):
        return self._release(h, FakeContext)

    @api
    def clRetainCommandQueue(self, h):
        return self._retain(h, FakeQueue)

    @api
    def clReleaseCommandQueue(self, h):
        return self._release(h, FakeQueue)

    @api
    def clRetainMemObject(self, h):
        return self._retain(h, FakeMem)

    @api
    def clReleaseMemObject(self, h):
        return self._release(h, FakeMem)

    @api
    def clRetainProgram(self, h):
        return self._retain(h, FakeProgram)

    @api
    def clReleaseProgram(self, h):
        return self._release(h, FakeProgram)

    @api
    def clRetainKernel(self, h):
        return self._retain(h, FakeKernel)

    @api
    def clReleaseKernel(self, h):
        return self._release(h, FakeKernel)

    @api
    def clRetainEvent(self, h):
        return self._retain(h, FakeEvent)

    @api
    def clReleaseEvent(self, h):
        return self._release(h, FakeEvent)

    # Contexts
    @api
    def clCreateContext(self, props, n, devices, notify, user_data, err):
        n = _int(n)
        if n == 0 or devices is None:
            _set_out(err, INVALID_VALUE)
            return None
        devs = [self.lookup(devices[i], FakeDevice) for i in range(n)]
        if None in devs:
            _set_out(err, INVALID_DEVICE)
            return None
        _set_out(err, SUCCESS)
        return FakeContext(self, devs).handle

    @api
    def clGetContextInfo(self, ctx, param, size, buf, size_ret):
        return self.query(
            ctx, FakeContext, ContextInfo, FakeContext.info,
            param, size, buf, size_ret
        )

    # Command queues
    @api
    def clCreateCommandQueueWithProperties(self, ctx, dev, props, err):
        ctx = self.lookup(ctx, FakeContext)
        if ctx is None:
            _set_out(err, INVALID_CONTEXT)
            return None
        dev = self.lookup(dev, FakeDevice)
        if dev is None or dev not in ctx.devices:
            _set_out(err, INVALID_DEVICE)
            return None
        properties = 0
        i = 0
        while props is not None and props[i] != 0:
            if props[i] == CommandQueueInfo.CL_QUEUE_PROPERTIES.value:
                properties = props[i + 1]
            i += 2
        _set_out(err, SUCCESS)
        return FakeQueue(self, ctx, dev, properties).handle

    @api
    def clGetCommandQueueInfo(self, q, param, size, buf, size_ret):
        return self.query(
            q, FakeQueue, CommandQueueInfo, FakeQueue.info,
            param, size, buf, size_ret
        )

    @api
    def clFlush(self, q):
        q = self.lookup(q, FakeQueue)
        if q is None:
            return INVALID_COMMAND_QUEUE
        q.n_flushes += 1
        return SUCCESS

    @api
    def clFinish(self, q):
        q = self.lookup(q, FakeQueue)
        if q is None:
            return INVALID_COMMAND_QUEUE
        q.n_finishes += 1
        return SUCCESS

    # Memory
    @api
    def clCreateBuffer(self, ctx, flags, size, host_ptr, err):
        ctx = self.lookup(ctx, FakeContext)
        if ctx is None:
            _set_out(err, INVALID_CONTEXT)
            return None
        flags, size, host_ptr = _int(flags), _int(size), _addr(host_ptr)
        if size == 0:
            _set_out(err, INVALID_BUFFER_SIZE)
            return None
        needs_ptr = bool(flags & (MEM_USE_HOST_PTR | MEM_COPY_HOST_PTR))
        if needs_ptr != bool(host_ptr):
            _set_out(err, INVALID_HOST_PTR)
            return None
        _set_out(err, SUCCESS)
        return FakeMem(self, ctx, flags, size, host_ptr).handle

    @api
    def clGetMemObjectInfo(self, mem, param, size, buf, size_ret):
        return self.query(
            mem, FakeMem, MemInfo, FakeMem.info,
            param, size, buf, size_ret
        )

    def _transfer_args(self, q, mem, offset, size):
        q = self.lookup(q, FakeQueue)
        if q is None:
            return INVALID_COMMAND_QUEUE, None, None
        mem = self.lookup(mem, FakeMem)
        if mem is None:
            return INVALID_MEM_OBJECT, None, None
        if mem.context is not q.context:
            return INVALID_CONTEXT, None, None
        if _int(offset) + _int(size) > mem.size:
            return INVALID_VALUE, None, None
        return SUCCESS, q, mem

    @api
    def clEnqueueWriteBuffer(
        self, q, mem, blocking, offset, size, ptr, n_wait, wait, ev
    ):
        err, q, mem = self._transfer_args(q, mem, offset, size)
        if err:
            return err
        err = self.wait_list_status(q, n_wait, wait)
        if err:
            return err
        dst = addressof(mem.storage) + _int(offset)
        memmove(dst, _addr(ptr), _int(size))
        mem.n_writes += 1
        self.new_event(q, COMMAND_WRITE_BUFFER, ev)
        return SUCCESS

    @api
    def clEnqueueReadBuffer(
        self, q, mem, blocking, offset, size, ptr, n_wait, wait, ev
    ):
        err, q, mem = self._transfer_args(q, mem, offset, size)
        if err:
            return err
        err = self.wait_list_status(q, n_wait, wait)
        if err:
            return err
        src = addressof(mem.storage) + _int(offset)
        memmove(_addr(ptr), src, _int(size))
        mem.n_reads += 1
        self.new_event(q, COMMAND_READ_BUFFER, ev)
        return SUCCESS

    @api
    def clEnqueueFillBuffer(
        self, q, mem, pattern, psize, offset, size, n_wait, wait, ev
    ):
        err, q, mem = self._transfer_args(q, mem, offset, size)
        if err:
            return err
        psize, offset, size = _int(psize), _int(offset), _int(size)
        if offset % psize or size % psize:
            return INVALID_VALUE
        err = self.wait_list_status(q, n_wait, wait)
        if err:
            return err
        data = string_at(addressof(_obj(pattern)), psize)
        for i in range(offset, offset + size, psize):
            memmove(addressof(mem.storage) + i, data, psize)
        self.new_event(q, COMMAND_FILL_BUFFER, ev)
        return SUCCESS

    # Programs
    @api
    def clCreateProgramWithSource(self, ctx, n, strings, lengths, err):
        ctx = self.lookup(ctx, FakeContext)
        if ctx is None:
            _set_out(err, INVALID_CONTEXT)
            return None
        n = _int(n)
        parts = []
        for i in range(n):
            s = strings[i]
            if lengths is not None and lengths[i]:
                s = s[:lengths[i]]
            parts.append(s.decode("utf-8"))
        _set_out(err, SUCCESS)
        return FakeProgram(self, ctx, "".join(parts), list(ctx.devices)).handle

    @api
    def clCreateProgramWithBinary(
        self, ctx, n, devices, lengths, binaries, status, err
    ):
        ctx = self.lookup(ctx, FakeContext)
        if ctx is None:
            _set_out(err, INVALID_CONTEXT)
            return None
        n = _int(n)
        devs = [self.lookup(devices[i], FakeDevice) for i in range(n)]
        if None in devs or any(d not in ctx.devices for d in devs):
            _set_out(err, INVALID_DEVICE)
            return None
        data = string_at(binaries[0], lengths[0])
        if not data.startswith(BINARY_MAGIC):
            if status is not None:
                status[0] = INVALID_BINARY
            _set_out(err, INVALID_BINARY)
            return None
        if status is not None:
            status[0] = SUCCESS
        src = data[len(BINARY_MAGIC):].decode("utf-8")
        _set_out(err, SUCCESS)
        return FakeProgram(self, ctx, src, devs, binary=True).handle

    @api
    def clBuildProgram(self, prog, n, devices, options, notify, user_data):
        prog = self.lookup(prog, FakeProgram)
        if prog is None:
            return INVALID_PROGRAM
        n = _int(n)
        if (n == 0) != (devices is None):
            return INVALID_VALUE
        devs = [self.lookup(devices[i], FakeDevice) for i in range(n)]
        if None in devs or any(d not in prog.context.devices for d in devs):
            return INVALID_DEVICE
        opts = ""
        if options is not None:
            opts = _obj(options).value.decode("utf-8")
        return prog.build(devs or list(prog.context.devices), opts)

    @api
    def clGetProgramInfo(self, prog, param, size, buf, size_ret):
        if _int(param) == CL_PROGRAM_BINARIES:
            return self._program_binaries(prog, size, buf, size_ret)
        return self.query(
            prog, FakeProgram, ProgramInfo, FakeProgram.info,
            param, size, buf, size_ret
        )

    def _program_binaries(self, prog, size, buf, size_ret):
        prog = self.lookup(prog, FakeProgram)
        if prog is None:
            return INVALID_PROGRAM
        n = len(prog.devices)
        _set_out(size_ret, n * sizeof(c_void_p))
        if buf is not None:
            if _int(size) < n * sizeof(c_void_p):
                return INVALID_VALUE
            ptrs = (c_void_p * n).from_address(_addr(buf))
            if prog.built:
                for p in ptrs:
                    memmove(p, prog.binary, len(prog.binary))
        return SUCCESS

    @api
    def clGetProgramBuildInfo(self, prog, dev, param, size, buf, size_ret):
        prog = self.lookup(prog, FakeProgram)
        if prog is None:
            return INVALID_PROGRAM
        if self.lookup(dev, FakeDevice) is None:
            return INVALID_DEVICE
        try:
            attr = ProgramBuildInfo(_int(param))
        except ValueError:
            return INVALID_VALUE
        return self.write_info(prog.build_info(), attr, size, buf, size_ret)

    # Kernels
    @api
    def clCreateKernel(self, prog, name, err):
        prog = self.lookup(prog, FakeProgram)
        if prog is None:
            _set_out(err, INVALID_PROGRAM)
            return None
        if not prog.built:
            _set_out(err, INVALID_PROGRAM_EXECUTABLE)
            return None
        name = _obj(name).value.decode("utf-8")
        if name not in prog.kernels:
            _set_out(err, INVALID_KERNEL_NAME)
            return None
        _set_out(err, SUCCESS)
        return FakeKernel(self, prog, name).handle

    @api
    def clCreateKernelsInProgram(self, prog, n, kernels, n_ret):
        prog = self.lookup(prog, FakeProgram)
        if prog is None:
            return INVALID_PROGRAM
        if not prog.built:
            return INVALID_PROGRAM_EXECUTABLE
        names = list(prog.kernels)
        _set_out(n_ret, len(names))
        if kernels is not None:
            if _int(n) < len(names):
                return INVALID_VALUE
            for i, name in enumerate(names):
                kernels[i] = FakeKernel(self, prog, name).handle
        return SUCCESS

    @api
    def clSetKernelArg(self, kern, index, size, value):
        kern = self.lookup(kern, FakeKernel)
        if kern is None:
            return INVALID_KERNEL
        index, size = _int(index), _int(size)
        if index >= len(kern.params):
            return INVALID_ARG_INDEX
        param = kern.params[index]
        if param.size is not None and size != param.size:
            return INVALID_ARG_SIZE
        addr = addressof(_obj(value))
        if param.is_buffer:
            mem = self.lookup(c_void_p.from_address(addr).value, FakeMem)
            if mem is None:
                return INVALID_MEM_OBJECT
            kern.args[index] = mem
        else:
            kern.args[index] = string_at(addr, size)
        return SUCCESS

    @api
    def clGetKernelInfo(self, kern, param, size, buf, size_ret):
        return self.query(
            kern, FakeKernel, KernelInfo, FakeKernel.info,
            param, size, buf, size_ret
        )

    @api
    def clGetKernelArgInfo(self, kern, index, param, size, buf, size_ret):
        kern = self.lookup(kern, FakeKernel)
        if kern is None:
            return INVALID_KERNEL
        index = _int(index)
        if index >= len(kern.params):
            return INVALID_ARG_INDEX
        try:
            attr = KernelArgInfo(_int(param))
        except ValueError:
            return INVALID_VALUE
        table = kern.arg_info(index)
        return self.write_info(table, attr, size, buf, size_ret)

    @api
    def clEnqueueNDRangeKernel(
        self, q, kern, work_dim, offset, gsize, lsize, n_wait, wait, ev
    ):
        q = self.lookup(q, FakeQueue)
        if q is None:
            return INVALID_COMMAND_QUEUE
        kern = self.lookup(kern, FakeKernel)
        if kern is None:
            return INVALID_KERNEL
        if kern.program.context is not q.context:
            return INVALID_CONTEXT
        work_dim = _int(work_dim)
        if not 1 <= work_dim <= 3:
            return INVALID_WORK_DIMENSION
        if None in kern.args:
            return INVALID_KERNEL_ARGS
        dims = [gsize[i] for i in range(work_dim)]
        if 0 in dims:
            return INVALID_GLOBAL_WORK_SIZE
        offs = [0] * work_dim
        if offset is not None:
            offs = [offset[i] for i in range(work_dim)]
        err = self.wait_list_status(q, n_wait, wait)
        if err:
            return err
        status = 0
        if kern.name in self.failing_kernels:
            status = OUT_OF_RESOURCES
        else:
            fn = self.kernels.get(kern.name)
            if fn is not None:
                ranges = [range(o, o + d) for o, d in zip(offs, dims)]
                for gid in product(*ranges):
                    fn(gid, *kern.args)
        self.new_event(q, COMMAND_NDRANGE_KERNEL, ev, status)
        return SUCCESS

    # Events
    @api
    def clWaitForEvents(self, n, evs):
        n = _int(n)
        if n == 0 or evs is None:
            return INVALID_VALUE
        err = SUCCESS
        for i in range(n):
            ev = self.lookup(evs[i], FakeEvent)
            if ev is None:
                return INVALID_EVENT
            ev.n_waits += 1
            if ev.status < 0:
                err = EXEC_STATUS_ERROR_FOR_EVENTS_IN_WAIT_LIST
        return err

    @api
    def clGetEventInfo(self, ev, param, size, buf, size_ret):
        return self.query(
            ev, FakeEvent, EventInfo, FakeEvent.info,
            param, size, buf, size_ret
        )

    @api
    def clGetEventProfilingInfo(self, ev, param, size, buf, size_ret):
        return self.query(
            ev, FakeEvent, ProfilingInfo, FakeEvent.profiling_info,
            param, size, buf, size_ret
        )
