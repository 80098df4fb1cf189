# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from ctypes import *
from ctypes.util import find_library
from enum import KEEP, Enum, Flag
from openclcore.errors import (
    DecodeError,
    ErrorCode,
    LibraryNotFoundError,
    OpenCLError,
    check
)

import logging

logger = logging.getLogger(__name__)


########################################################################
# Level -1: ctypes utilities
########################################################################
class Opaque(Structure):
    pass


def OPAQUE_POINTER(name="opaque"):
    class Cls(Opaque):
        pass

    Cls.__name__ = name
    ptr = POINTER(Cls)
    return ptr


def address_of(handle):
    if handle is None:
        return 0
    return cast(handle, c_void_p).value or 0


########################################################################
# Level 0: Typedefs and function definitions
########################################################################

# Opaque pointers
cl_context = OPAQUE_POINTER("cl_context")
cl_platform_id = OPAQUE_POINTER("cl_platform_id")
cl_device_id = OPAQUE_POINTER("cl_device_id")
cl_command_queue = OPAQUE_POINTER("cl_command_queue")
cl_mem = OPAQUE_POINTER("cl_mem")
cl_program = OPAQUE_POINTER("cl_program")
cl_kernel = OPAQUE_POINTER("cl_kernel")
cl_event = OPAQUE_POINTER("cl_event")
cl_sampler = c_void_p

# Basic types
cl_int = c_int32
cl_uint = c_uint32
cl_ulong = c_uint64
cl_bitfield = cl_ulong


class cl_bool(cl_uint):
    pass


# Build
class cl_build_status(cl_int):
    pass


# Command queue
cl_command_queue_info = cl_uint


class cl_command_queue_properties(cl_bitfield):
    pass


class cl_command_type(cl_uint):
    pass


class cl_command_execution_status(cl_int):
    pass


# Context
cl_context_properties = c_int64
cl_context_info = cl_uint

# Device
cl_device_info = cl_uint


class cl_device_local_mem_type(cl_uint):
    pass


class cl_device_fp_config(cl_bitfield):
    pass


class cl_device_type(cl_bitfield):
    pass


class cl_device_mem_cache_type(cl_uint):
    pass


class cl_device_exec_capabilities(cl_bitfield):
    pass


class cl_device_affinity_domain(cl_bitfield):
    pass


# Event
cl_event_info = cl_uint
cl_profiling_info = cl_uint

# Kernel
cl_kernel_info = cl_uint
cl_kernel_arg_info = cl_uint


class cl_kernel_arg_address_qualifier(cl_uint):
    pass


class cl_kernel_arg_access_qualifier(cl_uint):
    pass


class cl_kernel_arg_type_qualifier(cl_bitfield):
    pass


# Memory
class cl_mem_flags(cl_bitfield):
    pass


class cl_mem_object_type(cl_uint):
    pass


cl_mem_info = cl_uint


# Platform
cl_platform_info = cl_uint

# Program
cl_program_info = cl_uint
cl_program_build_info = cl_uint

# Properties
cl_properties = cl_ulong
cl_queue_properties = cl_properties

# Shared tails of the argument lists
INFO_TAIL = [c_size_t, c_void_p, POINTER(c_size_t)]
WAIT_TAIL = [cl_uint, POINTER(cl_event), POINTER(cl_event)]

# name -> (restype, argtypes)
API_PROTOTYPES = {
    # Platform
    "clGetPlatformIDs": (
        cl_int, [cl_uint, POINTER(cl_platform_id), POINTER(cl_uint)]
    ),
    "clGetPlatformInfo": (
        cl_int, [cl_platform_id, cl_platform_info] + INFO_TAIL
    ),

    # Device
    "clGetDeviceIDs": (
        cl_int, [
            cl_platform_id,
            cl_device_type,
            cl_uint,
            POINTER(cl_device_id),
            POINTER(cl_uint),
        ]
    ),
    "clGetDeviceInfo": (cl_int, [cl_device_id, cl_device_info] + INFO_TAIL),

    # Context
    "clCreateContext": (
        cl_context, [
            POINTER(cl_context_properties),
            cl_uint,
            POINTER(cl_device_id),
            c_void_p,
            c_void_p,
            POINTER(cl_int),
        ]
    ),
    "clGetContextInfo": (cl_int, [cl_context, cl_context_info] + INFO_TAIL),

    # Command queue
    "clCreateCommandQueueWithProperties": (
        cl_command_queue, [
            cl_context,
            cl_device_id,
            POINTER(cl_queue_properties),
            POINTER(cl_int),
        ]
    ),
    "clGetCommandQueueInfo": (
        cl_int, [cl_command_queue, cl_command_queue_info] + INFO_TAIL
    ),
    "clFlush": (cl_int, [cl_command_queue]),
    "clFinish": (cl_int, [cl_command_queue]),
    "clEnqueueNDRangeKernel": (
        cl_int, [
            cl_command_queue,
            cl_kernel,
            cl_uint,
            POINTER(c_size_t),
            POINTER(c_size_t),
            POINTER(c_size_t),
        ] + WAIT_TAIL
    ),
    "clEnqueueFillBuffer": (
        cl_int, [
            cl_command_queue,
            cl_mem,
            c_void_p,
            c_size_t,
            c_size_t,
            c_size_t,
        ] + WAIT_TAIL
    ),
    "clEnqueueWriteBuffer": (
        cl_int, [
            cl_command_queue,
            cl_mem,
            cl_bool,
            c_size_t,
            c_size_t,
            c_void_p,
        ] + WAIT_TAIL
    ),
    "clEnqueueReadBuffer": (
        cl_int, [
            cl_command_queue,
            cl_mem,
            cl_bool,
            c_size_t,
            c_size_t,
            c_void_p,
        ] + WAIT_TAIL
    ),

    # Mem
    "clCreateBuffer": (
        cl_mem, [
            cl_context,
            cl_mem_flags,
            c_size_t,
            c_void_p,
            POINTER(cl_int),
        ]
    ),
    "clGetMemObjectInfo": (cl_int, [cl_mem, cl_mem_info] + INFO_TAIL),

    # Program
    "clCreateProgramWithSource": (
        cl_program, [
            cl_context,
            cl_uint,
            POINTER(c_char_p),
            POINTER(c_size_t),
            POINTER(cl_int),
        ]
    ),
    "clCreateProgramWithBinary": (
        cl_program, [
            cl_context,
            cl_uint,
            POINTER(cl_device_id),
            POINTER(c_size_t),
            POINTER(POINTER(c_ubyte)),
            POINTER(cl_int),
            POINTER(cl_int),
        ]
    ),
    "clBuildProgram": (
        cl_int, [
            cl_program,
            cl_uint,
            POINTER(cl_device_id),
            c_char_p,
            c_void_p,
            c_void_p,
        ]
    ),
    "clGetProgramInfo": (cl_int, [cl_program, cl_program_info] + INFO_TAIL),
    "clGetProgramBuildInfo": (
        cl_int, [cl_program, cl_device_id, cl_program_build_info] + INFO_TAIL
    ),

    # Kernel
    "clCreateKernel": (cl_kernel, [cl_program, c_char_p, POINTER(cl_int)]),
    "clCreateKernelsInProgram": (
        cl_int, [cl_program, cl_uint, POINTER(cl_kernel), POINTER(cl_uint)]
    ),
    "clSetKernelArg": (cl_int, [cl_kernel, cl_uint, c_size_t, c_void_p]),
    "clGetKernelInfo": (cl_int, [cl_kernel, cl_kernel_info] + INFO_TAIL),
    "clGetKernelArgInfo": (
        cl_int, [cl_kernel, cl_uint, cl_kernel_arg_info] + INFO_TAIL
    ),

    # Event
    "clWaitForEvents": (cl_int, [cl_uint, POINTER(cl_event)]),
    "clGetEventInfo": (cl_int, [cl_event, cl_event_info] + INFO_TAIL),
    "clGetEventProfilingInfo": (
        cl_int, [cl_event, cl_profiling_info] + INFO_TAIL
    ),
}

# Level 0 bindings for retain and release functions since they all
# work the same.
TYPE_REFCOUNTERS = {
    cl_command_queue: ("clRetainCommandQueue", "clReleaseCommandQueue"),
    cl_context: ("clRetainContext", "clReleaseContext"),
    cl_event: ("clRetainEvent", "clReleaseEvent"),
    cl_device_id: ("clRetainDevice", "clReleaseDevice"),
    cl_kernel: ("clRetainKernel", "clReleaseKernel"),
    cl_mem: ("clRetainMemObject", "clReleaseMemObject"),
    cl_program: ("clRetainProgram", "clReleaseProgram"),
}
for ocl_type, names in TYPE_REFCOUNTERS.items():
    for name in names:
        API_PROTOTYPES[name] = (cl_int, [ocl_type])


class Driver:
    """
    Gateway to the OpenCL library. API functions are lazily bound from
    API_PROTOTYPES the first time they are requested. Any object
    exposing the cl* functions can be installed with use().
    """
    def __init__(self):
        self._lib = None
        self._fns = {}

    @property
    def lib(self):
        if self._lib is None:
            self.load()
        return self._lib

    def load(self, path=None):
        path = path or find_library("OpenCL")
        if path is None:
            raise LibraryNotFoundError("Can't find the OpenCL library")
        try:
            lib = CDLL(path)
        except OSError as e:
            raise LibraryNotFoundError(str(e)) from e
        logger.debug("Loaded OpenCL library %s", path)
        self.use(lib)

    def use(self, lib):
        prev = self._lib
        self._lib = lib
        self._fns = {}
        return prev

    @property
    def is_available(self):
        try:
            return self.lib is not None
        except LibraryNotFoundError:
            return False

    def __getattr__(self, fname):
        if fname.startswith("_"):
            raise AttributeError(fname)
        fn = self._fns.get(fname)
        if fn is not None:
            return fn
        try:
            restype, argtypes = API_PROTOTYPES[fname]
        except KeyError:
            raise AttributeError(fname) from None
        lib = self.lib
        try:
            fn = getattr(lib, fname)
        except AttributeError:
            def fn(*args):
                raise LibraryNotFoundError(f"Function '{fname}' not found")
        else:
            if isinstance(lib, CDLL):
                fn.restype = restype
                fn.argtypes = argtypes
        self._fns[fname] = fn
        return fn


so = Driver()


########################################################################
# Level 1: Pythonic enumerations and bitfieds
########################################################################
class InfoEnum(Enum):
    def __new__(cls, val, tp):
        obj = object.__new__(cls)
        obj._value_ = val
        obj.type = tp
        return obj


class BuildStatus(Enum):
    CL_BUILD_SUCCESS = 0
    CL_BUILD_NONE = -1
    CL_BUILD_ERROR = -2
    CL_BUILD_IN_PROGRESS = -3


class CommandExecutionStatus(Enum):
    CL_COMPLETE = 0x0
    CL_RUNNING = 0x1
    CL_SUBMITTED = 0x2
    CL_QUEUED = 0x3


class CommandQueueInfo(InfoEnum):
    CL_QUEUE_CONTEXT = 0x1090, cl_context
    CL_QUEUE_DEVICE = 0x1091, cl_device_id
    CL_QUEUE_REFERENCE_COUNT = 0x1092, cl_uint
    CL_QUEUE_PROPERTIES = 0x1093, cl_command_queue_properties
    CL_QUEUE_SIZE = 0x1094, cl_uint


class CommandQueueProperties(Flag, boundary=KEEP):
    CL_QUEUE_OUT_OF_ORDER_EXEC_MODE_ENABLE = 1 << 0
    CL_QUEUE_PROFILING_ENABLE = 1 << 1
    CL_QUEUE_ON_DEVICE = 1 << 2
    CL_QUEUE_ON_DEVICE_DEFAULT = 1 << 3


class CommandType(Enum):
    CL_COMMAND_NDRANGE_KERNEL = 0x11F0
    CL_COMMAND_TASK = 0x11F1
    CL_COMMAND_NATIVE_KERNEL = 0x11F2
    CL_COMMAND_READ_BUFFER = 0x11F3
    CL_COMMAND_WRITE_BUFFER = 0x11F4
    CL_COMMAND_COPY_BUFFER = 0x11F5
    CL_COMMAND_READ_IMAGE = 0x11F6
    CL_COMMAND_WRITE_IMAGE = 0x11F7
    CL_COMMAND_COPY_IMAGE = 0x11F8
    CL_COMMAND_COPY_IMAGE_TO_BUFFER = 0x11F9
    CL_COMMAND_COPY_BUFFER_TO_IMAGE = 0x11FA
    CL_COMMAND_MAP_BUFFER = 0x11FB
    CL_COMMAND_MAP_IMAGE = 0x11FC
    CL_COMMAND_UNMAP_MEM_OBJECT = 0x11FD
    CL_COMMAND_MARKER = 0x11FE
    CL_COMMAND_ACQUIRE_GL_OBJECTS = 0x11FF
    CL_COMMAND_RELEASE_GL_OBJECTS = 0x1200
    CL_COMMAND_READ_BUFFER_RECT = 0x1201
    CL_COMMAND_WRITE_BUFFER_RECT = 0x1202
    CL_COMMAND_COPY_BUFFER_RECT = 0x1203
    CL_COMMAND_USER = 0x1204
    CL_COMMAND_BARRIER = 0x1205
    CL_COMMAND_MIGRATE_MEM_OBJECTS = 0x1206
    CL_COMMAND_FILL_BUFFER = 0x1207
    CL_COMMAND_FILL_IMAGE = 0x1208
    CL_COMMAND_SVM_FREE = 0x1209
    CL_COMMAND_SVM_MEMCPY = 0x120A
    CL_COMMAND_SVM_MEMFILL = 0x120B
    CL_COMMAND_SVM_MAP = 0x120C
    CL_COMMAND_SVM_UNMAP = 0x120D
    CL_COMMAND_SVM_MIGRATE_MEM = 0x120E


class ContextInfo(InfoEnum):
    CL_CONTEXT_REFERENCE_COUNT = 0x1080, cl_uint
    CL_CONTEXT_DEVICES = 0x1081, POINTER(cl_device_id)
    CL_CONTEXT_PROPERTIES = 0x1082, POINTER(cl_context_properties)
    CL_CONTEXT_NUM_DEVICES = 0x1083, cl_uint


class DeviceAffinityDomain(Flag, boundary=KEEP):
    CL_DEVICE_AFFINITY_DOMAIN_NUMA = 1 << 0
    CL_DEVICE_AFFINITY_DOMAIN_L4_CACHE = 1 << 1
    CL_DEVICE_AFFINITY_DOMAIN_L3_CACHE = 1 << 2
    CL_DEVICE_AFFINITY_DOMAIN_L2_CACHE = 1 << 3
    CL_DEVICE_AFFINITY_DOMAIN_L1_CACHE = 1 << 4
    CL_DEVICE_AFFINITY_DOMAIN_NEXT_PARTITIONABLE = 1 << 5


class DeviceExecCapabilities(Flag, boundary=KEEP):
    CL_EXEC_KERNEL = 1 << 0
    CL_EXEC_NATIVE_KERNEL = 1 << 1


class DeviceFpConfig(Flag, boundary=KEEP):
    CL_FP_DENORM = 1 << 0
    CL_FP_INF_NAN = 1 << 1
    CL_FP_ROUND_TO_NEAREST = 1 << 2
    CL_FP_ROUND_TO_ZERO = 1 << 3
    CL_FP_ROUND_TO_INF = 1 << 4
    CL_FP_FMA = 1 << 5
    CL_FP_SOFT_FLOAT = 1 << 6
    CL_FP_CORRECTLY_ROUNDED_DIVIDE_SQRT = 1 << 7


class DeviceInfo(InfoEnum):
    CL_DEVICE_TYPE = 0x1000, cl_device_type
    CL_DEVICE_VENDOR_ID = 0x1001, cl_uint
    CL_DEVICE_MAX_COMPUTE_UNITS = 0x1002, cl_uint
    CL_DEVICE_MAX_WORK_ITEM_DIMENSIONS = 0x1003, cl_uint
    CL_DEVICE_MAX_WORK_GROUP_SIZE = 0x1004, c_size_t
    CL_DEVICE_MAX_WORK_ITEM_SIZES = 0x1005, POINTER(c_size_t)
    CL_DEVICE_PREFERRED_VECTOR_WIDTH_CHAR = 0x1006, cl_uint
    CL_DEVICE_PREFERRED_VECTOR_WIDTH_SHORT = 0x1007, cl_uint
    CL_DEVICE_PREFERRED_VECTOR_WIDTH_INT = 0x1008, cl_uint
    CL_DEVICE_PREFERRED_VECTOR_WIDTH_LONG = 0x1009, cl_uint
    CL_DEVICE_PREFERRED_VECTOR_WIDTH_FLOAT = 0x100A, cl_uint
    CL_DEVICE_PREFERRED_VECTOR_WIDTH_DOUBLE = 0x100B, cl_uint
    CL_DEVICE_MAX_CLOCK_FREQUENCY = 0x100C, cl_uint
    CL_DEVICE_ADDRESS_BITS = 0x100D, cl_uint
    CL_DEVICE_MAX_READ_IMAGE_ARGS = 0x100E, cl_uint
    CL_DEVICE_MAX_WRITE_IMAGE_ARGS = 0x100F, cl_uint
    CL_DEVICE_MAX_MEM_ALLOC_SIZE = 0x1010, cl_ulong
    CL_DEVICE_IMAGE2D_MAX_WIDTH = 0x1011, c_size_t
    CL_DEVICE_IMAGE2D_MAX_HEIGHT = 0x1012, c_size_t
    CL_DEVICE_IMAGE_SUPPORT = 0x1016, cl_bool
    CL_DEVICE_MAX_PARAMETER_SIZE = 0x1017, c_size_t
    CL_DEVICE_MAX_SAMPLERS = 0x1018, cl_uint
    CL_DEVICE_MEM_BASE_ADDR_ALIGN = 0x1019, cl_uint
    CL_DEVICE_MIN_DATA_TYPE_ALIGN_SIZE = 0x101A, cl_uint
    CL_DEVICE_SINGLE_FP_CONFIG = 0x101B, cl_device_fp_config
    CL_DEVICE_GLOBAL_MEM_CACHE_TYPE = 0x101C, cl_device_mem_cache_type
    CL_DEVICE_GLOBAL_MEM_CACHELINE_SIZE = 0x101D, cl_uint
    CL_DEVICE_GLOBAL_MEM_CACHE_SIZE = 0x101E, cl_ulong
    CL_DEVICE_GLOBAL_MEM_SIZE = 0x101F, cl_ulong
    CL_DEVICE_MAX_CONSTANT_BUFFER_SIZE = 0x1020, cl_ulong
    CL_DEVICE_MAX_CONSTANT_ARGS = 0x1021, cl_uint
    CL_DEVICE_LOCAL_MEM_TYPE = 0x1022, cl_device_local_mem_type
    CL_DEVICE_LOCAL_MEM_SIZE = 0x1023, cl_ulong
    CL_DEVICE_ERROR_CORRECTION_SUPPORT = 0x1024, cl_bool
    CL_DEVICE_PROFILING_TIMER_RESOLUTION = 0x1025, c_size_t
    CL_DEVICE_ENDIAN_LITTLE = 0x1026, cl_bool
    CL_DEVICE_AVAILABLE = 0x1027, cl_bool
    CL_DEVICE_COMPILER_AVAILABLE = 0x1028, cl_bool
    CL_DEVICE_EXECUTION_CAPABILITIES = 0x1029, cl_device_exec_capabilities
    CL_DEVICE_NAME = 0x102B, c_char_p
    CL_DEVICE_VENDOR = 0x102C, c_char_p
    CL_DRIVER_VERSION = 0x102D, c_char_p
    CL_DEVICE_PROFILE = 0x102E, c_char_p
    CL_DEVICE_VERSION = 0x102F, c_char_p
    CL_DEVICE_EXTENSIONS = 0x1030, c_char_p
    CL_DEVICE_PLATFORM = 0x1031, cl_platform_id
    CL_DEVICE_DOUBLE_FP_CONFIG = 0x1032, cl_device_fp_config
    CL_DEVICE_HOST_UNIFIED_MEMORY = 0x1035, cl_bool
    CL_DEVICE_OPENCL_C_VERSION = 0x103D, c_char_p
    CL_DEVICE_LINKER_AVAILABLE = 0x103E, cl_bool
    CL_DEVICE_BUILT_IN_KERNELS = 0x103F, c_char_p
    CL_DEVICE_PARTITION_MAX_SUB_DEVICES = 0x1043, cl_uint
    CL_DEVICE_PARTITION_AFFINITY_DOMAIN = 0x1045, cl_device_affinity_domain
    CL_DEVICE_REFERENCE_COUNT = 0x1047, cl_uint
    CL_DEVICE_PREFERRED_INTEROP_USER_SYNC = 0x1048, cl_bool
    CL_DEVICE_PRINTF_BUFFER_SIZE = 0x1049, c_size_t


class DeviceLocalMemType(Enum):
    CL_NONE = 0
    CL_LOCAL = 1
    CL_GLOBAL = 2


class DeviceMemCacheType(Enum):
    CL_NONE = 0x0
    CL_READ_ONLY_CACHE = 0x1
    CL_READ_WRITE_CACHE = 0x2


class DeviceType(Flag, boundary=KEEP):
    CL_DEVICE_TYPE_DEFAULT = 1 << 0
    CL_DEVICE_TYPE_CPU = 1 << 1
    CL_DEVICE_TYPE_GPU = 1 << 2
    CL_DEVICE_TYPE_ACCELERATOR = 1 << 3
    CL_DEVICE_TYPE_CUSTOM = 1 << 4
    CL_DEVICE_TYPE_ALL = 0xFFFFFFFF


class EventInfo(InfoEnum):
    CL_EVENT_COMMAND_QUEUE = 0x11D0, cl_command_queue
    CL_EVENT_COMMAND_TYPE = 0x11D1, cl_command_type
    CL_EVENT_REFERENCE_COUNT = 0x11D2, cl_uint
    CL_EVENT_COMMAND_EXECUTION_STATUS = 0x11D3, cl_command_execution_status
    CL_EVENT_CONTEXT = 0x11D4, cl_context


class MemFlags(Flag, boundary=KEEP):
    CL_MEM_READ_WRITE = 1 << 0
    CL_MEM_WRITE_ONLY = 1 << 1
    CL_MEM_READ_ONLY = 1 << 2
    CL_MEM_USE_HOST_PTR = 1 << 3
    CL_MEM_ALLOC_HOST_PTR = 1 << 4
    CL_MEM_COPY_HOST_PTR = 1 << 5
    CL_MEM_HOST_WRITE_ONLY = 1 << 7
    CL_MEM_HOST_READ_ONLY = 1 << 8
    CL_MEM_HOST_NO_ACCESS = 1 << 9


class MemInfo(InfoEnum):
    CL_MEM_TYPE = 0x1100, cl_mem_object_type
    CL_MEM_FLAGS = 0x1101, cl_mem_flags
    CL_MEM_SIZE = 0x1102, c_size_t
    CL_MEM_HOST_PTR = 0x1103, c_void_p
    CL_MEM_MAP_COUNT = 0x1104, cl_uint
    CL_MEM_REFERENCE_COUNT = 0x1105, cl_uint
    CL_MEM_CONTEXT = 0x1106, cl_context
    CL_MEM_OFFSET = 0x1108, c_size_t


class MemObjectType(Enum):
    CL_MEM_OBJECT_BUFFER = 0x10F0
    CL_MEM_OBJECT_IMAGE2D = 0x10F1
    CL_MEM_OBJECT_IMAGE3D = 0x10F2
    CL_MEM_OBJECT_IMAGE2D_ARRAY = 0x10F3
    CL_MEM_OBJECT_IMAGE1D = 0x10F4
    CL_MEM_OBJECT_IMAGE1D_ARRAY = 0x10F5
    CL_MEM_OBJECT_IMAGE1D_BUFFER = 0x10F6
    CL_MEM_OBJECT_PIPE = 0x10F7


class PlatformInfo(InfoEnum):
    CL_PLATFORM_PROFILE = 0x0900, c_char_p
    CL_PLATFORM_VERSION = 0x0901, c_char_p
    CL_PLATFORM_NAME = 0x0902, c_char_p
    CL_PLATFORM_VENDOR = 0x0903, c_char_p
    CL_PLATFORM_EXTENSIONS = 0x0904, c_char_p


class ProfilingInfo(InfoEnum):
    CL_PROFILING_COMMAND_QUEUED = 0x1280, cl_ulong
    CL_PROFILING_COMMAND_SUBMIT = 0x1281, cl_ulong
    CL_PROFILING_COMMAND_START = 0x1282, cl_ulong
    CL_PROFILING_COMMAND_END = 0x1283, cl_ulong


class ProgramInfo(InfoEnum):
    CL_PROGRAM_REFERENCE_COUNT = 0x1160, cl_uint
    CL_PROGRAM_CONTEXT = 0x1161, cl_context
    CL_PROGRAM_NUM_DEVICES = 0x1162, cl_uint
    CL_PROGRAM_DEVICES = 0x1163, POINTER(cl_device_id)
    CL_PROGRAM_SOURCE = 0x1164, c_char_p
    CL_PROGRAM_BINARY_SIZES = 0x1165, POINTER(c_size_t)
    CL_PROGRAM_NUM_KERNELS = 0x1167, c_size_t
    CL_PROGRAM_KERNEL_NAMES = 0x1168, c_char_p


# Not an InfoEnum member because it can't be read with the generic
# two-step protocol.
CL_PROGRAM_BINARIES = 0x1166


class KernelInfo(InfoEnum):
    CL_KERNEL_FUNCTION_NAME = 0x1190, c_char_p
    CL_KERNEL_NUM_ARGS = 0x1191, cl_uint
    CL_KERNEL_REFERENCE_COUNT = 0x1192, cl_uint
    CL_KERNEL_CONTEXT = 0x1193, cl_context
    CL_KERNEL_PROGRAM = 0x1194, cl_program
    CL_KERNEL_ATTRIBUTES = 0x1195, c_char_p


class KernelArgInfo(InfoEnum):
    CL_KERNEL_ARG_ADDRESS_QUALIFIER = 0x1196, cl_kernel_arg_address_qualifier
    CL_KERNEL_ARG_ACCESS_QUALIFIER = 0x1197, cl_kernel_arg_access_qualifier
    CL_KERNEL_ARG_TYPE_NAME = 0x1198, c_char_p
    CL_KERNEL_ARG_TYPE_QUALIFIER = 0x1199, cl_kernel_arg_type_qualifier
    CL_KERNEL_ARG_NAME = 0x119A, c_char_p


class KernelArgAccessQualifier(Enum):
    CL_KERNEL_ARG_ACCESS_READ_ONLY = 0x11A0
    CL_KERNEL_ARG_ACCESS_WRITE_ONLY = 0x11A1
    CL_KERNEL_ARG_ACCESS_READ_WRITE = 0x11A2
    CL_KERNEL_ARG_ACCESS_NONE = 0x11A3


class KernelArgAddressQualifier(Enum):
    CL_KERNEL_ARG_ADDRESS_GLOBAL = 0x119B
    CL_KERNEL_ARG_ADDRESS_LOCAL = 0x119C
    CL_KERNEL_ARG_ADDRESS_CONSTANT = 0x119D
    CL_KERNEL_ARG_ADDRESS_PRIVATE = 0x119E


class KernelArgTypeQualifier(Flag, boundary=KEEP):
    CL_KERNEL_ARG_TYPE_NONE = 0
    CL_KERNEL_ARG_TYPE_CONST = 1 << 0
    CL_KERNEL_ARG_TYPE_RESTRICT = 1 << 1
    CL_KERNEL_ARG_TYPE_VOLATILE = 1 << 2
    CL_KERNEL_ARG_TYPE_PIPE = 1 << 3


class ProgramBuildInfo(InfoEnum):
    CL_PROGRAM_BUILD_STATUS = 0x1181, cl_build_status
    CL_PROGRAM_BUILD_OPTIONS = 0x1182, c_char_p
    CL_PROGRAM_BUILD_LOG = 0x1183, c_char_p


def execution_status(val):
    # Negative values are the error code the command failed with.
    if val < 0:
        try:
            return ErrorCode(val)
        except ValueError:
            return val
    return CommandExecutionStatus(val)


def command_type(val):
    # Extensions define their own command types.
    try:
        return CommandType(val)
    except ValueError:
        return val


cl_type_to_python_type = {
    cl_bool: bool,
    cl_build_status: BuildStatus,
    cl_command_execution_status: execution_status,
    cl_command_queue_properties: CommandQueueProperties,
    cl_command_type: command_type,
    cl_device_affinity_domain: DeviceAffinityDomain,
    cl_device_exec_capabilities: DeviceExecCapabilities,
    cl_device_mem_cache_type: DeviceMemCacheType,
    cl_device_fp_config: DeviceFpConfig,
    cl_device_local_mem_type: DeviceLocalMemType,
    cl_device_type: DeviceType,
    cl_kernel_arg_access_qualifier: KernelArgAccessQualifier,
    cl_kernel_arg_address_qualifier: KernelArgAddressQualifier,
    cl_kernel_arg_type_qualifier: KernelArgTypeQualifier,
    cl_mem_flags: MemFlags,
    cl_mem_object_type: MemObjectType,
}

INFO_FUNCTIONS = {
    CommandQueueInfo: "clGetCommandQueueInfo",
    ContextInfo: "clGetContextInfo",
    DeviceInfo: "clGetDeviceInfo",
    EventInfo: "clGetEventInfo",
    KernelInfo: "clGetKernelInfo",
    KernelArgInfo: "clGetKernelArgInfo",
    MemInfo: "clGetMemObjectInfo",
    PlatformInfo: "clGetPlatformInfo",
    ProfilingInfo: "clGetEventProfilingInfo",
    ProgramInfo: "clGetProgramInfo",
    ProgramBuildInfo: "clGetProgramBuildInfo",
}

TYPE_INFO_ENUMS = {
    (cl_command_queue,): [CommandQueueInfo],
    (cl_context,): [ContextInfo],
    (cl_device_id,): [DeviceInfo],
    (cl_event,): [EventInfo],
    (cl_kernel,): [KernelInfo],
    (cl_kernel, int): [KernelArgInfo],
    (cl_mem,): [MemInfo],
    (cl_platform_id,): [PlatformInfo],
    (cl_program,): [ProgramInfo],
    (cl_program, cl_device_id): [ProgramBuildInfo],
}

OPTIONAL_INFO = {
    ErrorCode.CL_INVALID_VALUE: {
        CommandQueueInfo.CL_QUEUE_SIZE: -1,
        MemInfo.CL_MEM_OFFSET: 0,
    },
    ErrorCode.CL_INVALID_COMMAND_QUEUE: {
        CommandQueueInfo.CL_QUEUE_SIZE: -1
    },
    ErrorCode.CL_INVALID_PROGRAM_EXECUTABLE: {
        ProgramInfo.CL_PROGRAM_NUM_KERNELS: 0,
        ProgramInfo.CL_PROGRAM_KERNEL_NAMES: ""
    },
    ErrorCode.CL_KERNEL_ARG_INFO_NOT_AVAILABLE: {
        KernelArgInfo.CL_KERNEL_ARG_NAME: "",
        KernelArgInfo.CL_KERNEL_ARG_TYPE_NAME: ""
    }
}


########################################################################
# Level 2: Functional API
########################################################################
def check_last(fun, *args):
    err = cl_int()
    ret = fun(*args, err)
    check(err.value)
    return ret


# Avoids repeating some tedious code
def size_and_fill(cl_fun, cl_size_tp, cl_el_tp, *args):
    n = cl_size_tp()
    check(cl_fun(*args, 0, None, byref(n)))
    buf = (cl_el_tp * n.value)()
    if n.value:
        check(cl_fun(*args, n, buf, None))
    return buf


# The info accessor. One entry point per result shape.
def get_info_bytes(fname, *args):
    return size_and_fill(getattr(so, fname), c_size_t, c_byte, *args)


def get_info_scalar(fname, tp, *args):
    buf = get_info_bytes(fname, *args)
    if sizeof(buf) != sizeof(tp):
        raise DecodeError(
            f"{fname} returned {sizeof(buf)} bytes for a {tp.__name__}"
        )
    return tp.from_buffer(buf).value


def get_info_vector(fname, tp, *args):
    buf = get_info_bytes(fname, *args)
    n_bytes = sizeof(buf)
    if n_bytes % sizeof(tp):
        raise DecodeError(
            f"{fname} returned {n_bytes} bytes, "
            f"not a multiple of {tp.__name__}"
        )
    if not n_bytes:
        return []
    n_el = n_bytes // sizeof(tp)
    return list((tp * n_el).from_buffer(buf))


def get_info_string(fname, *args):
    buf = get_info_bytes(fname, *args)
    return string_at(buf, sizeof(buf)).split(b"\0", 1)[0].decode("utf-8")


def get_info_handles(fname, tp, *args):
    # The caller retains each handle before wrapping it.
    addrs = get_info_vector(fname, c_void_p, *args)
    return [cast(c_void_p(a), tp) for a in addrs if a]


def cl_info_to_py(tp, fname, *args):
    if tp == c_char_p:
        return get_info_string(fname, *args)
    elif hasattr(tp, "contents"):
        to_type = tp._type_
        # A single handle
        if issubclass(to_type, Opaque):
            addr = get_info_scalar(fname, c_void_p, *args)
            return cast(c_void_p(addr), tp) if addr else None
        # A list of handles
        if hasattr(to_type, "contents"):
            return get_info_handles(fname, to_type, *args)
        return get_info_vector(fname, to_type, *args)
    val = get_info_scalar(fname, tp, *args)
    py_tp = cl_type_to_python_type.get(tp)
    return py_tp(val) if py_tp else val


def get_info(attr, *args):
    fname = INFO_FUNCTIONS[type(attr)]
    try:
        return cl_info_to_py(attr.type, fname, *(args + (attr.value,)))
    except OpenCLError as e:
        for ec, opt_attrs in OPTIONAL_INFO.items():
            if e.code == ec and attr in opt_attrs:
                return opt_attrs[attr]
        raise e


# Command queue

# This function is bonkers
def create_command_queue_with_properties(ctx, dev, lst):
    n_props = len(lst) + 1
    props = (cl_queue_properties * n_props)()
    for i, val in enumerate(lst):
        if isinstance(val, Enum):
            val = val.value
        props[i] = val
    props[-1] = 0
    return check_last(so.clCreateCommandQueueWithProperties, ctx, dev, props)


def enqueue_nd_range_kernel(
    queue, kern, work_dim, offset, gl_work, lo_work, n_wait, wait
):
    ev = cl_event()
    check(
        so.clEnqueueNDRangeKernel(
            queue, kern, work_dim, offset, gl_work, lo_work,
            n_wait, wait, byref(ev)
        )
    )
    return ev


def enqueue_fill_buffer(queue, mem, pattern, offset, size, n_wait, wait):
    ev = cl_event()
    check(
        so.clEnqueueFillBuffer(
            queue,
            mem,
            byref(pattern),
            sizeof(pattern),
            offset,
            size,
            n_wait,
            wait,
            byref(ev),
        )
    )
    return ev


def enqueue_write_buffer(
    queue, mem, blocking_write, offset, size, ptr, n_wait, wait
):
    ev = cl_event()
    check(
        so.clEnqueueWriteBuffer(
            queue, mem, blocking_write, offset, size, ptr,
            n_wait, wait, byref(ev)
        )
    )
    return ev


def enqueue_read_buffer(
    queue, mem, blocking_read, offset, size, ptr, n_wait, wait
):
    ev = cl_event()
    check(
        so.clEnqueueReadBuffer(
            queue, mem, blocking_read, offset, size, ptr,
            n_wait, wait, byref(ev)
        )
    )
    return ev


def flush(queue):
    check(so.clFlush(queue))


def finish(queue):
    check(so.clFinish(queue))


# Context
def create_context(dev_ids):
    n = len(dev_ids)
    devs = (cl_device_id * n)(*dev_ids)
    return check_last(so.clCreateContext, None, n, devs, None, None)


# Device
def get_device_ids(plat_id, dev_type=DeviceType.CL_DEVICE_TYPE_ALL):
    try:
        buf = size_and_fill(
            so.clGetDeviceIDs, cl_uint, cl_device_id, plat_id, dev_type.value
        )
    except OpenCLError as e:
        if e.code == ErrorCode.CL_DEVICE_NOT_FOUND:
            return []
        raise
    return list(buf)


# Event
def wait_for_events(evs):
    n = len(evs)
    evs = (cl_event * n)(*evs)
    check(so.clWaitForEvents(n, evs))


# Kernel
def create_kernel(prog, name):
    name = create_string_buffer(name.encode("utf-8"))
    return check_last(so.clCreateKernel, prog, name)


def create_kernels_in_program(prog):
    return list(size_and_fill(
        so.clCreateKernelsInProgram, cl_uint, cl_kernel, prog
    ))


def set_kernel_arg(kern, i, arg):
    check(so.clSetKernelArg(kern, i, sizeof(arg), byref(arg)))


# Mem
def create_buffer(ctx, flags, n_bytes, host_ptr):
    return check_last(
        so.clCreateBuffer, ctx, flags.value, n_bytes, host_ptr
    )


# Platform
def get_platform_ids():
    return list(size_and_fill(so.clGetPlatformIDs, cl_uint, cl_platform_id))


# Program
def create_program_with_source(ctx, src):
    if isinstance(src, str):
        src = [src]
    src = [s.encode("utf-8") for s in src]
    n = len(src)
    strings = (c_char_p * n)(*src)
    lengths = (c_size_t * n)(*[len(s) for s in src])
    return check_last(so.clCreateProgramWithSource, ctx, n, strings, lengths)


def create_program_with_binary(ctx, dev, data):
    data_buf = create_string_buffer(data, len(data))
    binaries = (POINTER(c_ubyte) * 1)(cast(data_buf, POINTER(c_ubyte)))
    lengths = (c_size_t * 1)(len(data))
    devs = (cl_device_id * 1)(dev)
    status = (cl_int * 1)()
    prog = check_last(
        so.clCreateProgramWithBinary, ctx, 1, devs, lengths, binaries, status
    )
    check(status[0])
    return prog


def build_program(prog, devs, opts):
    """Returns the raw status so the caller can collect build logs
    before raising."""
    n = len(devs)
    devs = (cl_device_id * n)(*devs)
    opts = create_string_buffer(opts.encode("utf-8"))
    return so.clBuildProgram(prog, n, devs, opts, None, None)


def get_program_binaries(prog):
    sizes = get_info(ProgramInfo.CL_PROGRAM_BINARY_SIZES, prog)
    bufs = [create_string_buffer(n) for n in sizes]
    ptrs = (c_void_p * len(bufs))(*[addressof(b) for b in bufs])
    check(so.clGetProgramInfo(
        prog, CL_PROGRAM_BINARIES, sizeof(ptrs), ptrs, None
    ))
    return [b.raw[:n] for b, n in zip(bufs, sizes)]


def retain(obj):
    fname = TYPE_REFCOUNTERS[type(obj)][0]
    check(getattr(so, fname)(obj))


def release(obj):
    fname = TYPE_REFCOUNTERS[type(obj)][1]
    check(getattr(so, fname)(obj))


########################################################################
# Level 3: Holistic functions that calls more than one OpenCL function
# or calls the same OpenCL function in a loop
########################################################################
def get_details(*args):
    tps = tuple(type(a) for a in args)
    info_enums = TYPE_INFO_ENUMS[tps]
    return {k: get_info(k, *args) for e in info_enums for k in e}


def get_kernel_names(prog):
    names = get_info(
        ProgramInfo.CL_PROGRAM_KERNEL_NAMES,
        prog
    )
    return [n for n in names.split(";") if n]


def get_kernel_args_details(kern):
    n_args = get_info(KernelInfo.CL_KERNEL_NUM_ARGS, kern)
    return [get_details(kern, i) for i in range(n_args)]
