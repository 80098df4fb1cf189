# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# Every status code returned by the OpenCL library passes through
# check() which is the only place integers become exceptions.
from enum import Enum


class ErrorCode(Enum):
    CL_SUCCESS = 0
    CL_DEVICE_NOT_FOUND = -1
    CL_DEVICE_NOT_AVAILABLE = -2
    CL_COMPILER_NOT_AVAILABLE = -3
    CL_MEM_OBJECT_ALLOCATION_FAILURE = -4
    CL_OUT_OF_RESOURCES = -5
    CL_OUT_OF_HOST_MEMORY = -6
    CL_PROFILING_INFO_NOT_AVAILABLE = -7
    CL_MEM_COPY_OVERLAP = -8
    CL_IMAGE_FORMAT_MISMATCH = -9
    CL_IMAGE_FORMAT_NOT_SUPPORTED = -10
    CL_BUILD_PROGRAM_FAILURE = -11
    CL_MAP_FAILURE = -12
    CL_MISALIGNED_SUB_BUFFER_OFFSET = -13
    CL_EXEC_STATUS_ERROR_FOR_EVENTS_IN_WAIT_LIST = -14
    CL_COMPILE_PROGRAM_FAILURE = -15
    CL_LINKER_NOT_AVAILABLE = -16
    CL_LINK_PROGRAM_FAILURE = -17
    CL_DEVICE_PARTITION_FAILED = -18
    CL_KERNEL_ARG_INFO_NOT_AVAILABLE = -19
    CL_INVALID_VALUE = -30
    CL_INVALID_DEVICE_TYPE = -31
    CL_INVALID_PLATFORM = -32
    CL_INVALID_DEVICE = -33
    CL_INVALID_CONTEXT = -34
    CL_INVALID_QUEUE_PROPERTIES = -35
    CL_INVALID_COMMAND_QUEUE = -36
    CL_INVALID_HOST_PTR = -37
    CL_INVALID_MEM_OBJECT = -38
    CL_INVALID_IMAGE_FORMAT_DESCRIPTOR = -39
    CL_INVALID_IMAGE_SIZE = -40
    CL_INVALID_SAMPLER = -41
    CL_INVALID_BINARY = -42
    CL_INVALID_BUILD_OPTIONS = -43
    CL_INVALID_PROGRAM = -44
    CL_INVALID_PROGRAM_EXECUTABLE = -45
    CL_INVALID_KERNEL_NAME = -46
    CL_INVALID_KERNEL_DEFINITION = -47
    CL_INVALID_KERNEL = -48
    CL_INVALID_ARG_INDEX = -49
    CL_INVALID_ARG_VALUE = -50
    CL_INVALID_ARG_SIZE = -51
    CL_INVALID_KERNEL_ARGS = -52
    CL_INVALID_WORK_DIMENSION = -53
    CL_INVALID_WORK_GROUP_SIZE = -54
    CL_INVALID_WORK_ITEM_SIZE = -55
    CL_INVALID_GLOBAL_OFFSET = -56
    CL_INVALID_EVENT_WAIT_LIST = -57
    CL_INVALID_EVENT = -58
    CL_INVALID_OPERATION = -59
    CL_INVALID_GL_OBJECT = -60
    CL_INVALID_BUFFER_SIZE = -61
    CL_INVALID_MIP_LEVEL = -62
    CL_INVALID_GLOBAL_WORK_SIZE = -63
    CL_INVALID_PROPERTY = -64
    CL_INVALID_IMAGE_DESCRIPTOR = -65
    CL_INVALID_COMPILER_OPTIONS = -66
    CL_INVALID_LINKER_OPTIONS = -67
    CL_INVALID_DEVICE_PARTITION_COUNT = -68
    CL_INVALID_PIPE_SIZE = -69
    CL_INVALID_DEVICE_QUEUE = -70
    CL_INVALID_SPEC_ID = -71
    CL_MAX_SIZE_RESTRICTION_EXCEEDED = -72
    CL_PLATFORM_NOT_FOUND_KHR = -1001


########################################################################
# Taxonomy
########################################################################
class ClError(Exception):
    """Base class of every error raised by openclcore. Two errors are
    equal if they are of the same class and carry the same details.
    """
    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return self.args == other.args and vars(self) == vars(other)

    def __hash__(self):
        return hash((type(self), self.args))


class LibraryNotFoundError(ClError):
    pass


# External
class OpenCLError(ClError):
    def __init__(self, code):
        if isinstance(code, ErrorCode):
            status, name = code.value, code.name
        else:
            status, name = code, f"UNKNOWN_ERROR_CODE_{code}"
        super().__init__(f"{name} {status}")
        self.code = code
        self.status = status
        self.name = name


class UnknownStatusError(OpenCLError):
    pass


class BuildProgramError(OpenCLError):
    def __init__(self, code, logs):
        super().__init__(code)
        self.logs = logs

    def __str__(self):
        lines = [super().__str__()]
        for dev, log in self.logs.items():
            lines.append(f"== {dev} ==")
            lines.append(log.strip())
        return "\n".join(lines)


class NullHandleError(ClError):
    def __init__(self, kind):
        super().__init__(f"OpenCL returned a null {kind} handle")
        self.kind = kind


class TypeMismatchError(ClError):
    def __init__(self, expected, found):
        super().__init__(f"Expected element type {expected}, found {found}")
        self.expected = expected
        self.found = found


class DecodeError(ClError):
    pass


# Validation
class ValidationError(ClError):
    pass


class InvalidWorkError(ValidationError):
    pass


class EmptyDeviceListError(ValidationError):
    def __init__(self):
        super().__init__("Device list must not be empty")


class InvalidKernelNameError(ValidationError):
    def __init__(self, name):
        super().__init__(f"Kernel name {name!r} contains a null byte")
        self.kernel_name = name


class WorkRequiredError(ValidationError):
    def __init__(self, name):
        super().__init__(f"Kernel operation {name!r} requires work")
        self.kernel_name = name


class SessionBuilderError(ValidationError):
    pass


class QueueIndexOutOfRangeError(ValidationError):
    def __init__(self, index, n_queues):
        super().__init__(
            f"Queue index {index} out of range, session has {n_queues}"
        )
        self.index = index
        self.n_queues = n_queues


# State
class StateError(ClError):
    pass


class HandleClosedError(StateError):
    def __init__(self, kind):
        super().__init__(f"{kind} handle is closed")
        self.kind = kind


class EventAlreadyConsumedError(StateError):
    def __init__(self):
        super().__init__("Event was already waited on and consumed")


class ProgramAlreadyBuiltError(StateError):
    def __init__(self):
        super().__init__("Program has already been built")


class ForeignEventError(StateError):
    def __init__(self):
        super().__init__("Event belongs to a different context than the queue")


# Platform/Device
class PlatformError(ClError):
    pass


class NoPlatformsError(PlatformError):
    def __init__(self):
        super().__init__("No OpenCL platforms found")


class NoUsableDevicesError(PlatformError):
    def __init__(self):
        super().__init__("No usable OpenCL devices found")


class NoDefaultDeviceError(PlatformError):
    def __init__(self):
        super().__init__("Platform has no default device")


def check(err):
    if err == 0:
        return
    try:
        code = ErrorCode(err)
    except ValueError:
        raise UnknownStatusError(err) from None
    raise OpenCLError(code)
