# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# Names:
#   * plat - Platform
#   * dev - Device
#   * ctx - Context
#   * prog - Program or UnbuiltProgram
#   * kern - Kernel
from ctypes import Array, _SimpleCData
from openclcore.elements import ElementType, type_check
from openclcore.errors import (
    BuildProgramError,
    EmptyDeviceListError,
    ErrorCode,
    InvalidKernelNameError,
    NoDefaultDeviceError,
    NoPlatformsError,
    NoUsableDevicesError,
    OpenCLError,
    ProgramAlreadyBuiltError
)
from openclcore.handle import (
    CONTEXT,
    DEVICE,
    KERNEL,
    MEM,
    PLATFORM,
    PROGRAM,
    Handle,
    Resource,
    define_info_methods
)
from openclcore.sync import (
    BUFFER_RANK,
    KERNEL_RANK,
    WRITE,
    RWLock,
    acquire_ordered
)
from threading import Lock

import logging
import numpy as np
import openclcore as cl

logger = logging.getLogger(__name__)

# Some ICD loaders are not reentrant when enumerating platforms.
PLATFORM_LOCK = Lock()


########################################################################
# Platforms and devices
########################################################################
class Platform(Resource):
    KIND = PLATFORM

    @classmethod
    def list_all(cls):
        with PLATFORM_LOCK:
            try:
                raws = cl.get_platform_ids()
            except OpenCLError as e:
                if e.code == ErrorCode.CL_PLATFORM_NOT_FOUND_KHR:
                    raise NoPlatformsError() from e
                raise
        if not raws:
            raise NoPlatformsError()
        return [cls(Handle(PLATFORM, raw)) for raw in raws]

    @classmethod
    def default(cls):
        return cls.list_all()[0]

    @staticmethod
    def list_all_devices(device_type=cl.DeviceType.CL_DEVICE_TYPE_ALL):
        devs = [
            dev
            for plat in Platform.list_all()
            for dev in plat.list_devices(device_type)
        ]
        if not devs:
            raise NoUsableDevicesError()
        return devs

    def extensions(self):
        return self.info(cl.PlatformInfo.CL_PLATFORM_EXTENSIONS).split()

    def list_devices(self, device_type=cl.DeviceType.CL_DEVICE_TYPE_ALL):
        """Returns the usable devices of the given type."""
        devs = [
            Device(Handle.retained(DEVICE, raw))
            for raw in cl.get_device_ids(self.raw, device_type)
        ]
        usable = []
        for dev in devs:
            if dev.is_usable():
                usable.append(dev)
            else:
                logger.debug("Skipping unavailable device %r", dev)
                dev.close()
        return usable

    def default_device(self):
        devs = self.list_devices(cl.DeviceType.CL_DEVICE_TYPE_DEFAULT)
        if not devs:
            raise NoDefaultDeviceError()
        return devs[0]


define_info_methods(Platform, {
    "name": cl.PlatformInfo.CL_PLATFORM_NAME,
    "version": cl.PlatformInfo.CL_PLATFORM_VERSION,
    "profile": cl.PlatformInfo.CL_PLATFORM_PROFILE,
    "vendor": cl.PlatformInfo.CL_PLATFORM_VENDOR,
})


class Device(Resource):
    KIND = DEVICE

    def is_usable(self):
        return self.available()

    def extensions(self):
        return self.info(cl.DeviceInfo.CL_DEVICE_EXTENSIONS).split()

    def platform(self):
        raw = self.info(cl.DeviceInfo.CL_DEVICE_PLATFORM)
        return Platform(Handle(PLATFORM, raw))


_DI = cl.DeviceInfo
define_info_methods(Device, {
    # Strings
    "name": _DI.CL_DEVICE_NAME,
    "vendor": _DI.CL_DEVICE_VENDOR,
    "version": _DI.CL_DEVICE_VERSION,
    "profile": _DI.CL_DEVICE_PROFILE,
    "driver_version": _DI.CL_DRIVER_VERSION,
    "opencl_c_version": _DI.CL_DEVICE_OPENCL_C_VERSION,
    "built_in_kernels": _DI.CL_DEVICE_BUILT_IN_KERNELS,

    # u32
    "vendor_id": _DI.CL_DEVICE_VENDOR_ID,
    "max_compute_units": _DI.CL_DEVICE_MAX_COMPUTE_UNITS,
    "max_work_item_dimensions": _DI.CL_DEVICE_MAX_WORK_ITEM_DIMENSIONS,
    "max_clock_frequency": _DI.CL_DEVICE_MAX_CLOCK_FREQUENCY,
    "address_bits": _DI.CL_DEVICE_ADDRESS_BITS,
    "max_read_image_args": _DI.CL_DEVICE_MAX_READ_IMAGE_ARGS,
    "max_write_image_args": _DI.CL_DEVICE_MAX_WRITE_IMAGE_ARGS,
    "max_samplers": _DI.CL_DEVICE_MAX_SAMPLERS,
    "mem_base_addr_align": _DI.CL_DEVICE_MEM_BASE_ADDR_ALIGN,
    "min_data_type_align_size": _DI.CL_DEVICE_MIN_DATA_TYPE_ALIGN_SIZE,
    "global_mem_cacheline_size": _DI.CL_DEVICE_GLOBAL_MEM_CACHELINE_SIZE,
    "max_constant_args": _DI.CL_DEVICE_MAX_CONSTANT_ARGS,
    "partition_max_sub_devices": _DI.CL_DEVICE_PARTITION_MAX_SUB_DEVICES,
    "reference_count": _DI.CL_DEVICE_REFERENCE_COUNT,
    "preferred_vector_width_char":
        _DI.CL_DEVICE_PREFERRED_VECTOR_WIDTH_CHAR,
    "preferred_vector_width_short":
        _DI.CL_DEVICE_PREFERRED_VECTOR_WIDTH_SHORT,
    "preferred_vector_width_int": _DI.CL_DEVICE_PREFERRED_VECTOR_WIDTH_INT,
    "preferred_vector_width_long":
        _DI.CL_DEVICE_PREFERRED_VECTOR_WIDTH_LONG,
    "preferred_vector_width_float":
        _DI.CL_DEVICE_PREFERRED_VECTOR_WIDTH_FLOAT,
    "preferred_vector_width_double":
        _DI.CL_DEVICE_PREFERRED_VECTOR_WIDTH_DOUBLE,

    # u64
    "max_mem_alloc_size": _DI.CL_DEVICE_MAX_MEM_ALLOC_SIZE,
    "global_mem_cache_size": _DI.CL_DEVICE_GLOBAL_MEM_CACHE_SIZE,
    "global_mem_size": _DI.CL_DEVICE_GLOBAL_MEM_SIZE,
    "max_constant_buffer_size": _DI.CL_DEVICE_MAX_CONSTANT_BUFFER_SIZE,
    "local_mem_size": _DI.CL_DEVICE_LOCAL_MEM_SIZE,

    # usize
    "max_work_group_size": _DI.CL_DEVICE_MAX_WORK_GROUP_SIZE,
    "image2d_max_width": _DI.CL_DEVICE_IMAGE2D_MAX_WIDTH,
    "image2d_max_height": _DI.CL_DEVICE_IMAGE2D_MAX_HEIGHT,
    "max_parameter_size": _DI.CL_DEVICE_MAX_PARAMETER_SIZE,
    "profiling_timer_resolution": _DI.CL_DEVICE_PROFILING_TIMER_RESOLUTION,
    "printf_buffer_size": _DI.CL_DEVICE_PRINTF_BUFFER_SIZE,

    # vec<usize>
    "max_work_item_sizes": _DI.CL_DEVICE_MAX_WORK_ITEM_SIZES,

    # bool
    "available": _DI.CL_DEVICE_AVAILABLE,
    "compiler_available": _DI.CL_DEVICE_COMPILER_AVAILABLE,
    "linker_available": _DI.CL_DEVICE_LINKER_AVAILABLE,
    "image_support": _DI.CL_DEVICE_IMAGE_SUPPORT,
    "error_correction_support": _DI.CL_DEVICE_ERROR_CORRECTION_SUPPORT,
    "endian_little": _DI.CL_DEVICE_ENDIAN_LITTLE,
    "host_unified_memory": _DI.CL_DEVICE_HOST_UNIFIED_MEMORY,
    "preferred_interop_user_sync": _DI.CL_DEVICE_PREFERRED_INTEROP_USER_SYNC,

    # Enums and flags
    "device_type": _DI.CL_DEVICE_TYPE,
    "execution_capabilities": _DI.CL_DEVICE_EXECUTION_CAPABILITIES,
    "single_fp_config": _DI.CL_DEVICE_SINGLE_FP_CONFIG,
    "double_fp_config": _DI.CL_DEVICE_DOUBLE_FP_CONFIG,
    "partition_affinity_domain": _DI.CL_DEVICE_PARTITION_AFFINITY_DOMAIN,
    "global_mem_cache_type": _DI.CL_DEVICE_GLOBAL_MEM_CACHE_TYPE,
    "local_mem_type": _DI.CL_DEVICE_LOCAL_MEM_TYPE,
})


########################################################################
# Contexts
########################################################################
class Context(Resource):
    KIND = CONTEXT
    OWNED = ("_devices",)

    def __init__(self, handle, devices=None):
        super().__init__(handle)
        self._devices = devices

    @classmethod
    def create(cls, devices):
        if not devices:
            raise EmptyDeviceListError()
        raw = cl.create_context([d.raw for d in devices])
        ctx = cls(Handle(CONTEXT, raw), [d.clone() for d in devices])
        logger.debug("Created context %#x over %d devices",
                     ctx.address, len(devices))
        return ctx

    @classmethod
    def from_raw(cls, raw):
        return cls(Handle.retained(CONTEXT, raw))

    def devices(self):
        """Freshly retained wrappers of the context's devices."""
        raws = self.info(cl.ContextInfo.CL_CONTEXT_DEVICES)
        return [Device(Handle.retained(DEVICE, raw)) for raw in raws]


define_info_methods(Context, {
    "reference_count": cl.ContextInfo.CL_CONTEXT_REFERENCE_COUNT,
    "num_devices": cl.ContextInfo.CL_CONTEXT_NUM_DEVICES,
    "properties": cl.ContextInfo.CL_CONTEXT_PROPERTIES,
})


########################################################################
# Programs
########################################################################
def program_build_info(raw, dev, attr):
    return cl.get_info(attr, raw, dev.raw)


class BuildState:
    """Shared by an unbuilt program and its clones, since they all
    refer to the same cl_program."""
    def __init__(self):
        self.built = False
        self.lock = Lock()


class UnbuiltProgram(Resource):
    """A program with source or binary that has not been built. It is
    consumed by a successful build(), and so are its clones."""
    KIND = PROGRAM
    OWNED = ("_context",)

    def __init__(self, handle, context):
        super().__init__(handle)
        self._context = context
        self._state = BuildState()

    @classmethod
    def create_with_source(cls, context, src):
        raw = cl.create_program_with_source(context.raw, src)
        logger.debug("Created program from source")
        return cls(Handle(PROGRAM, raw), context.clone())

    @classmethod
    def create_with_binary(cls, context, device, binary):
        raw = cl.create_program_with_binary(context.raw, device.raw, binary)
        logger.debug("Created program from %d byte binary", len(binary))
        return cls(Handle(PROGRAM, raw), context.clone())

    @property
    def raw(self):
        if self._state.built:
            raise ProgramAlreadyBuiltError()
        return self.handle.raw

    def context(self):
        return self._context

    def source(self):
        return self.info(cl.ProgramInfo.CL_PROGRAM_SOURCE)

    def build(self, devices, options=""):
        if not devices:
            raise EmptyDeviceListError()
        with self._state.lock:
            raw = self.raw
            err = cl.build_program(raw, [d.raw for d in devices], options)
            if err:
                attr = cl.ProgramBuildInfo.CL_PROGRAM_BUILD_LOG
                logs = {d: program_build_info(raw, d, attr) for d in devices}
                try:
                    code = ErrorCode(err)
                except ValueError:
                    code = err
                logger.debug("Build failed with %s", code)
                raise BuildProgramError(code, logs)
            self._state.built = True
            handle, self.handle = self.handle, None
            context, self._context = self._context, None
        logger.debug("Built program %#x for %d devices",
                     handle.address, len(devices))
        return Program(handle, context, [d.clone() for d in devices])

    def clone(self):
        if self._state.built:
            raise ProgramAlreadyBuiltError()
        return super().clone()

    def close(self):
        if self.handle is not None:
            super().close()

    def __repr__(self):
        state = "built" if self._state.built else f"{self.address:#x}"
        return f"<UnbuiltProgram {state}>"


class Program(Resource):
    KIND = PROGRAM
    OWNED = ("_context", "_devices")

    def __init__(self, handle, context, devices):
        super().__init__(handle)
        self._context = context
        self._devices = devices

    def context(self):
        return self._context

    def devices(self):
        raws = self.info(cl.ProgramInfo.CL_PROGRAM_DEVICES)
        return [Device(Handle.retained(DEVICE, raw)) for raw in raws]

    def binaries(self):
        """All device binaries, concatenated."""
        return b"".join(cl.get_program_binaries(self.raw))

    def kernel_names(self):
        return cl.get_kernel_names(self.raw)

    def build_log(self, device):
        attr = cl.ProgramBuildInfo.CL_PROGRAM_BUILD_LOG
        return program_build_info(self.raw, device, attr)

    def build_status(self, device):
        attr = cl.ProgramBuildInfo.CL_PROGRAM_BUILD_STATUS
        return program_build_info(self.raw, device, attr)

    def build_options(self, device):
        attr = cl.ProgramBuildInfo.CL_PROGRAM_BUILD_OPTIONS
        return program_build_info(self.raw, device, attr)

    def create_kernel(self, name):
        return Kernel.create(self, name)

    def create_kernels(self):
        return [
            Kernel(Handle(KERNEL, raw), self.clone())
            for raw in cl.create_kernels_in_program(self.raw)
        ]


define_info_methods(Program, {
    "reference_count": cl.ProgramInfo.CL_PROGRAM_REFERENCE_COUNT,
    "num_devices": cl.ProgramInfo.CL_PROGRAM_NUM_DEVICES,
    "source": cl.ProgramInfo.CL_PROGRAM_SOURCE,
    "binary_sizes": cl.ProgramInfo.CL_PROGRAM_BINARY_SIZES,
    "num_kernels": cl.ProgramInfo.CL_PROGRAM_NUM_KERNELS,
})


########################################################################
# Kernels
########################################################################
def scalar_arg(value, element_type):
    typed = isinstance(value, (np.generic, _SimpleCData, Array))
    if element_type is None:
        if not typed:
            raise TypeError(
                f"Can't infer the element type of {value!r}, "
                "pass element_type"
            )
        element_type = ElementType.of(value)
    elif typed:
        type_check(element_type, ElementType.of(value))
    return element_type.to_ctype(value)


class Kernel(Resource):
    KIND = KERNEL
    OWNED = ("_program",)

    def __init__(self, handle, program):
        super().__init__(handle)
        self._program = program
        self.lock = RWLock()
        # Buffers bound to argument slots, locked when enqueued
        self._args = {}

    @classmethod
    def create(cls, program, name):
        if "\0" in name:
            raise InvalidKernelNameError(name)
        raw = cl.create_kernel(program.raw, name)
        logger.debug("Created kernel %s", name)
        return cls(Handle(KERNEL, raw), program.clone())

    def program(self):
        return self._program

    def context(self):
        return self._program.context()

    def set_arg(self, index, value, element_type=None):
        """Binds a buffer or a scalar to argument slot index. Python
        scalars need an element_type, numpy and ctypes scalars carry
        their own."""
        if isinstance(value, Resource) and value.KIND is MEM:
            if element_type is not None:
                type_check(value.element_type, element_type)
            entries = [
                (BUFFER_RANK, value.address, value.lock, WRITE),
                (KERNEL_RANK, self.address, self.lock, WRITE)
            ]
            with acquire_ordered(entries):
                cl.set_kernel_arg(self.raw, index, value.raw)
                self._args[index] = value
            return
        arg = scalar_arg(value, element_type)
        with self.lock.write():
            cl.set_kernel_arg(self.raw, index, arg)
            self._args.pop(index, None)

    def set_args(self, *args):
        for i, arg in enumerate(args):
            self.set_arg(i, arg)

    def bound_buffers(self):
        return list(self._args.values())

    def arg_details(self, index):
        return cl.get_details(self.raw, index)


define_info_methods(Kernel, {
    "function_name": cl.KernelInfo.CL_KERNEL_FUNCTION_NAME,
    "num_args": cl.KernelInfo.CL_KERNEL_NUM_ARGS,
    "reference_count": cl.KernelInfo.CL_KERNEL_REFERENCE_COUNT,
    "attributes": cl.KernelInfo.CL_KERNEL_ATTRIBUTES,
})
