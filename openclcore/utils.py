# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from ctypes import _Pointer
from enum import Enum
from humanize import naturalsize
from openclcore.errors import ClError
from openclcore.objs import Platform
from os import get_terminal_size
from sys import stdout
from textwrap import TextWrapper

import openclcore as cl

KEY_LEN = 40
INDENT_STR = " " * 4

BYTE_INFOS = {
    cl.DeviceInfo.CL_DEVICE_PRINTF_BUFFER_SIZE,
    cl.DeviceInfo.CL_DEVICE_MAX_MEM_ALLOC_SIZE,
    cl.DeviceInfo.CL_DEVICE_MAX_CONSTANT_BUFFER_SIZE,
    cl.DeviceInfo.CL_DEVICE_LOCAL_MEM_SIZE,
    cl.DeviceInfo.CL_DEVICE_GLOBAL_MEM_SIZE,
    cl.DeviceInfo.CL_DEVICE_GLOBAL_MEM_CACHE_SIZE,
    cl.MemInfo.CL_MEM_SIZE,
}

BYTE_INFO_LISTS = {
    cl.ProgramInfo.CL_PROGRAM_BINARY_SIZES
}


def format_val(val):
    if isinstance(val, _Pointer):
        return f"{cl.address_of(val):#x}"
    if isinstance(val, Enum):
        return val.name or str(val.value)
    return val


def pp_enum_val(wrapper, key, val):
    if key in BYTE_INFOS:
        val = naturalsize(val)
    elif key in BYTE_INFO_LISTS:
        val = ', '.join(naturalsize(v) for v in val)
    elif isinstance(val, list):
        val = ', '.join(str(format_val(v)) for v in val)
    val = format_val(val)
    if isinstance(val, str) and "\n" in val:
        val = val.strip()
        val = val.split("\n")
    else:
        val = [val]

    base_fmt = f"%-{KEY_LEN}s: %s"
    s = base_fmt % (key.name, val[0])
    print(wrapper.fill(s))
    more_pf = " " * (KEY_LEN + 2)
    for line in val[1:]:
        print(f"{more_pf}{line}")


def pp_dict(wrapper, d):
    for key, val in d.items():
        pp_enum_val(wrapper, key, val)
    print()


def terminal_wrapper():
    cols = get_terminal_size()[0] if stdout.isatty() else 72
    return TextWrapper(width=cols - 4, subsequent_indent=INDENT_STR)


def details(res, *args):
    return cl.get_details(res.raw, *args)


def platform_device_pairs():
    """All (platform, device) pairs of the system. Empty if OpenCL is
    missing."""
    if not cl.so.is_available:
        return []
    try:
        return [
            (plat, dev)
            for plat in Platform.list_all()
            for dev in plat.list_devices()
        ]
    except ClError:
        return []


def can_compile(dev):
    return dev.compiler_available() and dev.linker_available()
