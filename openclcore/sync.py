# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
#
# OpenCL kernels, queues and memory objects carry state that the
# library does not protect against concurrent mutation. Commands
# touching several of them take their locks in the order buffers,
# kernel, queue and by address within each rank.
from contextlib import contextmanager
from threading import Condition, Lock

READ = "read"
WRITE = "write"

BUFFER_RANK = 0
KERNEL_RANK = 1
QUEUE_RANK = 2


class RWLock:
    """Many readers or one writer. Waiting writers block new readers.
    Not re-entrant."""
    def __init__(self):
        self.lock = Lock()
        self.changed = Condition(self.lock)
        self.n_readers = 0
        self.n_waiting_writers = 0
        self.writing = False

    def acquire_read(self):
        with self.lock:
            while self.writing or self.n_waiting_writers:
                self.changed.wait()
            self.n_readers += 1

    def release_read(self):
        with self.lock:
            assert self.n_readers > 0
            self.n_readers -= 1
            if not self.n_readers:
                self.changed.notify_all()

    def acquire_write(self):
        with self.lock:
            self.n_waiting_writers += 1
            while self.writing or self.n_readers:
                self.changed.wait()
            self.n_waiting_writers -= 1
            self.writing = True

    def release_write(self):
        with self.lock:
            assert self.writing
            self.writing = False
            self.changed.notify_all()

    def acquire(self, mode):
        if mode == WRITE:
            self.acquire_write()
        else:
            self.acquire_read()

    def release(self, mode):
        if mode == WRITE:
            self.release_write()
        else:
            self.release_read()

    @contextmanager
    def read(self):
        self.acquire_read()
        try:
            yield self
        finally:
            self.release_read()

    @contextmanager
    def write(self):
        self.acquire_write()
        try:
            yield self
        finally:
            self.release_write()


@contextmanager
def acquire_ordered(entries):
    """Acquires the locks of (rank, address, lock, mode) entries in
    (rank, address) order. An object listed twice is locked once, for
    writing if any entry asks for it."""
    merged = {}
    for rank, addr, lock, mode in entries:
        key = rank, addr
        prev = merged.get(key)
        if prev is None or mode == WRITE:
            merged[key] = lock, mode
    held = []
    try:
        for key in sorted(merged):
            lock, mode = merged[key]
            lock.acquire(mode)
            held.append((lock, mode))
        yield
    finally:
        for lock, mode in reversed(held):
            lock.release(mode)
