# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# Names:
#   * qidx - index of a session queue
from contextlib import ExitStack
from openclcore import DeviceType
from openclcore.command_queue import CommandQueue
from openclcore.errors import (
    NoUsableDevicesError,
    QueueIndexOutOfRangeError,
    SessionBuilderError,
    WorkRequiredError
)
from openclcore.mem import Buffer
from openclcore.objs import Context, Platform, UnbuiltProgram
from openclcore.work import Work

import logging

logger = logging.getLogger(__name__)


class SessionBuilder:
    def __init__(self):
        self.platforms = None
        self.devices = None
        self.device_type = None
        self.program_src = None
        self.program_binary = None
        self.queue_properties = None
        self.build_options = ""

    def with_platforms(self, platforms):
        self.platforms = list(platforms)
        return self

    def with_devices(self, devices):
        self.devices = list(devices)
        return self

    def with_device_type(self, device_type):
        self.device_type = device_type
        return self

    def with_program_src(self, src):
        self.program_src = src
        return self

    def with_program_binary(self, binary):
        self.program_binary = binary
        return self

    def with_queue_properties(self, properties):
        self.queue_properties = properties
        return self

    def with_build_options(self, options):
        self.build_options = options
        return self

    def check(self):
        if self.devices is not None and self.device_type is not None:
            raise SessionBuilderError(
                "Cannot specify devices and device type"
            )
        if self.devices is not None and self.platforms is not None:
            raise SessionBuilderError("Cannot specify platforms and devices")
        has_src = self.program_src is not None
        has_bin = self.program_binary is not None
        if has_src and has_bin:
            raise SessionBuilderError(
                "Cannot specify program source and program binary"
            )
        if not has_src and not has_bin:
            raise SessionBuilderError(
                "Must specify program source or program binary"
            )
        if has_bin and self.devices is not None and len(self.devices) != 1:
            raise SessionBuilderError(
                "Binary program requires exactly one device, "
                f"got {len(self.devices)}"
            )

    def resolve_devices(self):
        if self.devices is not None:
            if not self.devices:
                raise NoUsableDevicesError()
            return [d.clone() for d in self.devices]
        device_type = self.device_type or DeviceType.CL_DEVICE_TYPE_ALL
        platforms = self.platforms
        if platforms is None:
            platforms = Platform.list_all()
        devs = [d for p in platforms for d in p.list_devices(device_type)]
        if not devs:
            raise NoUsableDevicesError()
        return devs

    def build(self):
        self.check()
        devices = self.resolve_devices()
        if self.program_binary is not None and len(devices) != 1:
            raise SessionBuilderError(
                "Binary program requires exactly one device, "
                f"got {len(devices)}"
            )
        with ExitStack() as stack:
            ctx = stack.enter_context(Context.create(devices))
            if self.program_src is not None:
                unbuilt = UnbuiltProgram.create_with_source(
                    ctx, self.program_src
                )
            else:
                unbuilt = UnbuiltProgram.create_with_binary(
                    ctx, devices[0], self.program_binary
                )
            stack.enter_context(unbuilt)
            prog = stack.enter_context(
                unbuilt.build(devices, self.build_options)
            )
            queues = [
                stack.enter_context(
                    CommandQueue.create(ctx, dev, self.queue_properties)
                )
                for dev in devices
            ]
            # Everything succeeded so nothing is closed.
            stack.pop_all()
        logger.debug("Built session over %d devices", len(devices))
        return Session(ctx, prog, devices, queues)


class Session:
    """Owns a context, a built program, its devices and one queue per
    device."""
    def __init__(self, context, program, devices, queues):
        self.context = context
        self.program = program
        self.devices = devices
        self.queues = queues

    @classmethod
    def builder(cls):
        return SessionBuilder()

    @classmethod
    def create(cls, src, build_options=""):
        return (
            SessionBuilder()
            .with_program_src(src)
            .with_build_options(build_options)
            .build()
        )

    def create_copy(self):
        """A session sharing context, program and devices with this one
        but with its own queues."""
        return Session(
            self.context.clone(),
            self.program.clone(),
            [d.clone() for d in self.devices],
            [q.create_copy() for q in self.queues]
        )

    def queue(self, qidx=0):
        if not 0 <= qidx < len(self.queues):
            raise QueueIndexOutOfRangeError(qidx, len(self.queues))
        return self.queues[qidx]

    def create_kernel(self, name):
        return self.program.create_kernel(name)

    def create_buffer(self, element_type, length, config=None):
        return Buffer.create(self.context, element_type, length, config)

    def create_buffer_from_array(self, arr, config=None):
        return Buffer.from_array(self.context, arr, config)

    def write_buffer(self, qidx, buf, host, opts=None):
        return self.queue(qidx).write_buffer(buf, host, opts)

    def read_buffer(self, qidx, buf, host, opts=None):
        return self.queue(qidx).read_buffer(buf, host, opts)

    def enqueue_kernel(self, qidx, kern, work, opts=None):
        return self.queue(qidx).enqueue_kernel(kern, work, opts)

    def execute_kernel_operation(self, qidx, op):
        q = self.queue(qidx)
        if op.work is None:
            raise WorkRequiredError(op.name)
        kern = self.create_kernel(op.name)
        try:
            for i, (arg, element_type) in enumerate(op.args):
                kern.set_arg(i, arg, element_type)
            return q.enqueue_kernel(kern, op.work, op.queue_options)
        finally:
            kern.close()

    def finish(self):
        for q in self.queues:
            q.finish()

    def close(self):
        objs = list(reversed(self.queues)) + [self.program, self.context]
        objs += list(reversed(self.devices))
        for obj in objs:
            obj.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class KernelOperation:
    """A named kernel with its arguments and work, executed through
    Session.execute_kernel_operation."""
    def __init__(self, name):
        self.name = name
        self.args = []
        self.work = None
        self.queue_options = None

    def with_work(self, work):
        self.work = Work.of(work)
        return self

    def with_dims(self, *dims):
        self.work = Work(dims)
        return self

    def add_arg(self, arg, element_type=None):
        self.args.append((arg, element_type))
        return self

    def with_queue_options(self, opts):
        self.queue_options = opts
        return self
