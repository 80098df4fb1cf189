# Copyright (C) 2024-2025 Björn A. Lindqvist <bjourne@gmail.com>
from openclcore.elements import UCHAR, ElementType
from openclcore.errors import BuildProgramError, ClError
from openclcore.objs import Context, Platform, UnbuiltProgram
from openclcore.session import SessionBuilder
from openclcore.utils import INDENT_STR, details, pp_dict, terminal_wrapper
from pathlib import Path

import click
import logging
import openclcore as cl


def format_opts(includes, defines):
    includes = [f"-I {ip}" for ip in includes]
    defines = [f"-D {kv}" for kv in defines]
    opts = [
        "-cl-std=CL2.0",
        "-cl-kernel-arg-info"
    ] + includes + defines
    return " ".join(opts)


def first_device(platform_index):
    plat = Platform.list_all()[platform_index]
    devs = plat.list_devices()
    if not devs:
        raise click.ClickException(f"Platform {plat.name()} has no devices")
    return devs[0]


def load_program(ctx, dev, path):
    data = path.read_bytes()
    if path.suffix == ".cl":
        return UnbuiltProgram.create_with_source(ctx, data.decode("utf-8"))
    return UnbuiltProgram.create_with_binary(ctx, dev, data)


@click.group(
    invoke_without_command = True,
    no_args_is_help=True
)
@click.option(
    "--library",
    type = click.Path(exists = True, dir_okay = False),
    help = "Path to the OpenCL library"
)
@click.option(
    "-v", "--verbose", is_flag = True,
    help = "Log OpenCL calls"
)
@click.pass_context
@click.version_option(package_name = "openclcore")
def cli(ctx, library, verbose):
    assert ctx
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level = level)
    if library:
        cl.so.load(library)


@cli.command()
def list_platforms():
    """
    List OpenCL platform details.
    """
    wrapper = terminal_wrapper()
    for plat in Platform.list_all():
        wrapper.initial_indent = ""
        wrapper.subsequent_indent = wrapper.initial_indent + INDENT_STR
        pp_dict(wrapper, details(plat))
        wrapper.initial_indent = INDENT_STR
        wrapper.subsequent_indent = wrapper.initial_indent + INDENT_STR
        for dev in plat.list_devices():
            pp_dict(wrapper, details(dev))
            dev.close()


@cli.command()
@click.argument(
    "filename",
    type = click.Path(exists = True)
)
@click.option(
    "-pi", "--platform-index", default = 0,
    help = "Index of platform to use"
)
@click.option(
    "-I", "includes",
    type = click.Path(exists = True, file_okay = False, dir_okay = True),
    multiple = True,
    help = "Include path",
    default = ()
)
@click.option(
    "-D", "defines",
    multiple = True,
    help = "Definition",
    default = ()
)
def build_program(filename, platform_index, includes, defines):
    """Build an OpenCL program and list its details. If the extension
    of FILENAME Is not .cl it is assumed to be a binary.
    """
    path = Path(filename)
    dev = first_device(platform_index)
    ctx = Context.create([dev])

    print(f"OpenCL program: {path}")
    print(f"Device        : {dev.name()}")
    print(f"Driver        : {dev.driver_version()}")

    unbuilt = load_program(ctx, dev, path)
    try:
        prog = unbuilt.build([dev], format_opts(includes, defines))
    except BuildProgramError as e:
        for log in e.logs.values():
            print(log)
        raise click.ClickException(e.name) from e

    wrap = terminal_wrapper()
    pp_dict(wrap, details(ctx))
    pp_dict(wrap, details(prog, dev.raw))
    pp_dict(wrap, details(prog))

    for kern in prog.create_kernels():
        wrap.initial_indent = INDENT_STR
        pp_dict(wrap, details(kern))

        wrap.initial_indent = 2 * INDENT_STR
        for arg_details in cl.get_kernel_args_details(kern.raw):
            pp_dict(wrap, arg_details)
        kern.close()
    prog.close()
    ctx.close()


def parse_argument(sess, arg):
    """Arguments are buf:<n bytes> or <element type>:<value>."""
    pf, val = arg.split(":")
    if pf == "buf":
        return sess.create_buffer(UCHAR, int(float(val))), None
    try:
        el_tp = ElementType.from_name(pf)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    if el_tp.scalar.np_type().dtype.kind == "f":
        return float(val), el_tp
    return int(float(val)), el_tp


@cli.command(context_settings = dict(show_default = True))
@click.option(
    "-pi", "--platform-index", default = 0,
    help = "Index of platform to use"
)
@click.option(
    "-I", "includes",
    type = click.Path(exists = True, file_okay = False, dir_okay = True),
    multiple = True,
    help = "Include path",
    default = ()
)
@click.option(
    "-D", "defines",
    multiple = True,
    help = "Preprocessor defines",
    default = ()
)
@click.argument(
    "filename",
    type = click.Path(exists = True)
)
@click.argument(
    "kernel"
)
@click.argument(
    "arguments",
    nargs = -1,
    required = 1
)
def benchmark_kernel(platform_index, includes, defines, filename, kernel, arguments):
    """
    Load the OpenCL program in FILENAME and run KERNEL with specified
    ARGUMENTS
    """
    path = Path(filename)
    dev = first_device(platform_index)
    builder = (
        SessionBuilder()
        .with_devices([dev])
        .with_build_options(format_opts(includes, defines))
    )
    if path.suffix == ".cl":
        builder.with_program_src(path.read_text("utf-8"))
    else:
        builder.with_program_binary(path.read_bytes())
    try:
        sess = builder.build()
    except ClError as e:
        raise click.ClickException(str(e)) from e

    with sess:
        kern = sess.create_kernel(kernel)
        for i, arg in enumerate(arguments):
            val, el_tp = parse_argument(sess, arg)
            kern.set_arg(i, val, el_tp)
        ev = sess.enqueue_kernel(0, kern, 1)
        prof = ev.profiling()
        ms = prof.execution_duration * 1.0e-6
        print("%8.2f ms" % ms)
        ev.close()
        kern.close()
        sess.finish()


def main():
    cli(obj={})

if __name__ == "__main__":
    main()
