# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from collections import namedtuple
from collections.abc import Iterable
from openclcore import ProfilingInfo, cl_event
from openclcore.errors import ClError, EventAlreadyConsumedError
from openclcore.handle import EVENT, Handle, Resource, define_info_methods
from openclcore.objs import Context
from threading import Lock

import logging
import openclcore as cl

logger = logging.getLogger(__name__)


class Profiling(namedtuple(
    "Profiling", ["queued", "submitted", "started", "ended"]
)):
    """Device timestamps in nanoseconds."""
    @property
    def total_duration(self):
        return self.ended - self.queued

    @property
    def queued_duration(self):
        return self.submitted - self.queued

    @property
    def submit_to_start_duration(self):
        return self.started - self.submitted

    @property
    def execution_duration(self):
        return self.ended - self.started


class Event(Resource):
    KIND = EVENT

    def __init__(self, handle, keep=()):
        super().__init__(handle)
        # Host arrays the command reads or writes
        self._keep = tuple(keep)

    def wait(self):
        cl.wait_for_events([self.raw])
        self._keep = ()

    def status(self):
        return self.info(cl.EventInfo.CL_EVENT_COMMAND_EXECUTION_STATUS)

    def is_complete(self):
        return self.status() == cl.CommandExecutionStatus.CL_COMPLETE

    def context(self):
        return Context.from_raw(self.info(cl.EventInfo.CL_EVENT_CONTEXT))

    def context_address(self):
        return cl.address_of(self.info(cl.EventInfo.CL_EVENT_CONTEXT))

    def profiling(self):
        return Profiling(
            self.queue_time(),
            self.submit_time(),
            self.start_time(),
            self.end_time()
        )

    def close(self):
        # Pending transfers must not outlive their host memory.
        if self._keep and not self.handle.closed:
            try:
                self.wait()
            except ClError as e:
                logger.warning("Waiting on dropped %r failed: %s", self, e)
        super().close()

    def __del__(self):
        if "handle" in self.__dict__:
            self.close()


define_info_methods(Event, {
    "command_type": cl.EventInfo.CL_EVENT_COMMAND_TYPE,
    "reference_count": cl.EventInfo.CL_EVENT_REFERENCE_COUNT,
    "queue_time": ProfilingInfo.CL_PROFILING_COMMAND_QUEUED,
    "submit_time": ProfilingInfo.CL_PROFILING_COMMAND_SUBMIT,
    "start_time": ProfilingInfo.CL_PROFILING_COMMAND_START,
    "end_time": ProfilingInfo.CL_PROFILING_COMMAND_END,
})


class BufferReadEvent(Event):
    """The event of a buffer read. wait() returns the host array the
    data was read into and may only be called once."""
    def __init__(self, handle, host):
        super().__init__(handle, (host,))
        self._host = host
        self._consumed = False
        self._wait_lock = Lock()

    def wait(self):
        with self._wait_lock:
            if self._consumed:
                raise EventAlreadyConsumedError()
            super().wait()
            self._consumed = True
            host, self._host = self._host, None
        return host

    @property
    def consumed(self):
        return self._consumed

    def clone(self):
        return Event(self.handle.clone())


def wait_list(events):
    """Converts None, an event, a raw cl_event or an iterable of those
    into the (count, pointer) pair OpenCL expects."""
    if events is None:
        return 0, None
    if isinstance(events, (Event, cl_event)):
        events = [events]
    elif not isinstance(events, Iterable):
        raise TypeError(f"Not an event or list of events: {events!r}")
    raws = []
    for ev in events:
        if isinstance(ev, Event):
            raws.append(ev.raw)
        elif isinstance(ev, cl_event):
            raws.append(ev)
        else:
            raise TypeError(f"Not an event: {ev!r}")
    if not raws:
        return 0, None
    return len(raws), (cl_event * len(raws))(*raws)


def wait_for(events):
    n, evs = wait_list(events)
    if n:
        cl.check(cl.so.clWaitForEvents(n, evs))
