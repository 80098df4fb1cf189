# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from fake_opencl import FakeOpenCL
from openclcore import so

import gc
import numpy as np
import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--platform-index",
        action="store",
        default=0,
        help="Platform index for tests"
    )


@pytest.fixture
def platform_index(request):
    return int(request.config.getoption("--platform-index"))


########################################################################
# Python implementations of the kernels the tests build
########################################################################
def inc(gid, p):
    a = p.view(np.int32)
    a[gid[0]] += 1


def add(gid, a, b, c):
    a, b, c = (m.view(np.int64) for m in (a, b, c))
    c[gid[0]] = a[gid[0]] + b[gid[0]]


def transpose(gid, a, b):
    i, j = gid
    a, b = a.view(np.uint64), b.view(np.uint64)
    b[j * 4 + i] = a[i * 3 + j]


def scale(gid, p, k):
    a = p.view(np.float32)
    a[gid[0]] *= np.frombuffer(k, dtype=np.float32)[0]


KERNELS = {
    "inc": inc,
    "add": add,
    "transpose": transpose,
    "scale": scale,
}

SOURCE = """
kernel void inc(global int* p) {
    p[get_global_id(0)] += 1;
}
kernel void add(global const long* a, global const long* b, global long* c) {
    uint i = get_global_id(0);
    c[i] = a[i] + b[i];
}
kernel void transpose(global const ulong* a, global ulong* b) {
    uint i = get_global_id(0);
    uint j = get_global_id(1);
    b[j * 4 + i] = a[i * 3 + j];
}
kernel void scale(global float* p, float k) {
    p[get_global_id(0)] *= k;
}
"""


# Library to restore once the current test's fixture values are gone.
_PREV_LIB = []


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_protocol(item, nextitem):
    yield
    # pytest drops the fixture values only after teardown, so the
    # previous library is restored here instead of in install_fake.
    if _PREV_LIB:
        # Release leftover handles while the fake is still installed.
        gc.collect()
        so.use(_PREV_LIB.pop())


@pytest.fixture
def install_fake():
    """Returns a function installing a FakeOpenCL library. The
    previous library is restored after the test."""
    def install(*args, **kwargs):
        kwargs.setdefault("kernels", KERNELS)
        fake = FakeOpenCL(*args, **kwargs)
        lib = so.use(fake)
        if not _PREV_LIB:
            _PREV_LIB.append(lib)
        return fake
    yield install


@pytest.fixture
def fake_cl(install_fake):
    return install_fake()


@pytest.fixture
def source():
    return SOURCE
