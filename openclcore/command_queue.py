# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# Names:
#   * q - CommandQueue
#   * buf - Buffer
#   * kern - Kernel
#   * ev - Event
#   * opts - QueueOptions
from ctypes import c_void_p
from openclcore import CommandQueueInfo, CommandQueueProperties, cl_event
from openclcore.elements import ElementType, type_check
from openclcore.errors import ForeignEventError
from openclcore.events import BufferReadEvent, Event, wait_list
from openclcore.handle import (
    COMMAND_QUEUE,
    EVENT,
    Handle,
    Resource,
    define_info_methods
)
from openclcore.mem import host_array
from openclcore.objs import scalar_arg
from openclcore.sync import (
    BUFFER_RANK,
    KERNEL_RANK,
    QUEUE_RANK,
    READ,
    WRITE,
    RWLock,
    acquire_ordered
)
from openclcore.work import Work

import logging
import openclcore as cl

logger = logging.getLogger(__name__)

DEFAULT_PROPERTIES = CommandQueueProperties.CL_QUEUE_PROFILING_ENABLE


class QueueOptions:
    """Options of one submission. is_blocking makes the call itself
    block, offset is in bytes into the buffer and waitlist holds the
    events the command waits for."""
    def __init__(self, is_blocking=True, offset=0, waitlist=None):
        self.is_blocking = is_blocking
        self.offset = offset
        if isinstance(waitlist, (Event, cl_event)):
            waitlist = [waitlist]
        self.waitlist = list(waitlist) if waitlist is not None else []

    def __repr__(self):
        return (
            f"QueueOptions(is_blocking={self.is_blocking}, "
            f"offset={self.offset}, waitlist={self.waitlist})"
        )


class CommandQueue(Resource):
    KIND = COMMAND_QUEUE
    OWNED = ("_context", "_device")

    def __init__(self, handle, context, device, properties):
        super().__init__(handle)
        self._context = context
        self._device = device
        self._properties = properties
        self.lock = RWLock()

    @classmethod
    def create(cls, context, device, properties=None):
        if properties is None:
            properties = DEFAULT_PROPERTIES
        props = []
        if properties:
            props = [CommandQueueInfo.CL_QUEUE_PROPERTIES, properties]
        raw = cl.create_command_queue_with_properties(
            context.raw, device.raw, props
        )
        q = cls(
            Handle(COMMAND_QUEUE, raw), context.clone(), device.clone(),
            properties
        )
        logger.debug("Created queue %#x with %s", q.address, properties)
        return q

    def create_copy(self):
        """A new queue on the same context and device."""
        return CommandQueue.create(
            self._context, self._device, self._properties
        )

    def context(self):
        return self._context

    def device(self):
        return self._device

    def _wait_list(self, opts):
        for ev in opts.waitlist:
            if (isinstance(ev, Event)
                and ev.context_address() != self._context.address):
                raise ForeignEventError()
        return wait_list(opts.waitlist)

    def _entries(self, *entries):
        return list(entries) + [
            (QUEUE_RANK, self.address, self.lock, WRITE)
        ]

    def write_buffer(self, buf, host, opts=None):
        opts = opts or QueueOptions()
        host = host_array(host)
        type_check(buf.element_type, ElementType.of(host))
        n_wait, wait = self._wait_list(opts)
        entries = self._entries((BUFFER_RANK, buf.address, buf.lock, WRITE))
        with acquire_ordered(entries):
            logger.debug("Writing %d bytes to %r", host.nbytes, buf)
            raw = cl.enqueue_write_buffer(
                self.raw, buf.raw, opts.is_blocking, opts.offset,
                host.nbytes, host.ctypes.data_as(c_void_p), n_wait, wait
            )
        keep = () if opts.is_blocking else (host,)
        return Event(Handle(EVENT, raw), keep)

    def read_buffer(self, buf, host, opts=None):
        opts = opts or QueueOptions()
        host = host_array(host, writable=True)
        type_check(buf.element_type, ElementType.of(host))
        n_wait, wait = self._wait_list(opts)
        entries = self._entries((BUFFER_RANK, buf.address, buf.lock, READ))
        with acquire_ordered(entries):
            logger.debug("Reading %d bytes from %r", host.nbytes, buf)
            raw = cl.enqueue_read_buffer(
                self.raw, buf.raw, opts.is_blocking, opts.offset,
                host.nbytes, host.ctypes.data_as(c_void_p), n_wait, wait
            )
        return BufferReadEvent(Handle(EVENT, raw), host)

    def fill_buffer(self, buf, value, opts=None):
        """Fills the buffer from opts.offset to its end with value."""
        opts = opts or QueueOptions()
        pattern = scalar_arg(value, buf.element_type)
        n_wait, wait = self._wait_list(opts)
        entries = self._entries((BUFFER_RANK, buf.address, buf.lock, WRITE))
        with acquire_ordered(entries):
            size = buf.size() - opts.offset
            logger.debug("Filling %d bytes of %r", size, buf)
            raw = cl.enqueue_fill_buffer(
                self.raw, buf.raw, pattern, opts.offset, size, n_wait, wait
            )
        ev = Event(Handle(EVENT, raw))
        if opts.is_blocking:
            ev.wait()
        return ev

    def enqueue_kernel(self, kern, work, opts=None):
        opts = opts or QueueOptions()
        work = Work.of(work)
        n_wait, wait = self._wait_list(opts)
        offset = None
        if work.global_offset is not None:
            offset = work.global_work_offset()
        while True:
            bound = kern.bound_buffers()
            entries = self._entries(
                *[(BUFFER_RANK, buf.address, buf.lock, WRITE) for buf in bound],
                (KERNEL_RANK, kern.address, kern.lock, WRITE)
            )
            with acquire_ordered(entries):
                # Rebound while we waited for the kernel lock.
                if kern.bound_buffers() != bound:
                    continue
                logger.debug("Enqueueing %r with %r", kern, work)
                raw = cl.enqueue_nd_range_kernel(
                    self.raw, kern.raw, work.dims, offset,
                    work.global_work_size(), work.local_work_size(),
                    n_wait, wait
                )
            break
        ev = Event(Handle(EVENT, raw))
        if opts.is_blocking:
            ev.wait()
        return ev

    def flush(self):
        with self.lock.write():
            cl.flush(self.raw)

    def finish(self):
        with self.lock.write():
            cl.finish(self.raw)


define_info_methods(CommandQueue, {
    "reference_count": CommandQueueInfo.CL_QUEUE_REFERENCE_COUNT,
    "properties": CommandQueueInfo.CL_QUEUE_PROPERTIES,
    "size": CommandQueueInfo.CL_QUEUE_SIZE,
})
