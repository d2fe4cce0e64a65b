#!/usr/bin/env python3
"""
dbus-dump - Dump the D-Bus tree and introspection data as YAML

Usage:
    dbus-dump [OPTIONS] [service_name] [output_file]

    dbus-dump                                   Dump all services to dbus_dump.yaml
    dbus-dump org.freedesktop.NetworkManager    Dump one service
    dbus-dump -o my_dump.yaml                   Dump all to a custom file
    dbus-dump --session                         Dump the session bus

Options:
    -s, --system          Use the system bus (default)
    -u, --session         Use the session bus
    -o, --output FILE     Output file, "-" for stdout (default: dbus_dump.yaml)
    -t, --timeout SECS    Timeout for each busctl/gdbus/dbus-send call
    -j, --jobs N          Run up to N introspection commands at once
    -v, --verbose         Show debug messages

Diagnostics go to stderr; the YAML document only ever goes to the output.
"""

from __future__ import annotations

import argparse
import shutil
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import anyio

from dbus_dump_backends import (
    DEFAULT_JOBS,
    DEFAULT_TIMEOUT,
    Backend,
    BusType,
    CommandRunner,
    DumpError,
    NoServicesFound,
    build_backends,
    detect,
)
from dbus_dump_discovery import (
    UNIQUE_NAME_PREFIX,
    DumpDocument,
    ServiceDump,
    discover_paths,
    filter_service_names,
    introspect_object,
    list_services,
)
from dbus_dump_log import log_debug, log_error, log_info, log_warn, set_verbose
from dbus_dump_yaml import render_document, write_document

DEFAULT_OUTPUT = "dbus_dump.yaml"


def error(msg: str):
    """Print error and exit."""
    log_error(msg)
    sys.exit(1)


@dataclass
class DumpConfig:
    bus: BusType = BusType.SYSTEM
    service: str | None = None
    output: str = DEFAULT_OUTPUT
    timeout: float = DEFAULT_TIMEOUT
    jobs: int = DEFAULT_JOBS
    verbose: bool = False


# ============================================================================
# Orchestration
# ============================================================================

async def dump_service(service: str, backends: list[Backend]) -> ServiceDump:
    """Discover the paths of one service and introspect each of them."""
    log_info(f"Processing service: {service}")
    discovery = await discover_paths(service, backends)
    dump = ServiceDump(service, discovery.tree, discovery.strategy)

    paths = [p for p in discovery.paths if p.startswith("/")]
    if not paths:
        log_warn(f"No object paths found for {service}")
        return dump

    async def introspect(path: str):
        log_debug(f"Processing path: {path}")
        dump.objects[path] = await introspect_object(service, path, backends)

    async with anyio.create_task_group() as tg:
        for path in paths:
            tg.start_soon(introspect, path)
    return dump


async def resolve_services(config: DumpConfig, backends: list[Backend]) -> list[str]:
    if config.service:
        log_info(f"Processing specific service: {config.service}")
        if config.service.startswith(UNIQUE_NAME_PREFIX):
            log_warn(f"{config.service} is a unique connection name, not a service")
        services = filter_service_names([config.service])
    else:
        log_info(f"Discovering all D-Bus services on {config.bus.value} bus...")
        services = await list_services(backends)
        log_info(f"Found {len(services)} services")

    if not services:
        raise NoServicesFound("No services found to process")
    return services


async def collect(
    config: DumpConfig,
    backends: list[Backend],
    generated_at: str | None = None,
) -> DumpDocument:
    """Build the whole DumpDocument in memory."""
    services = await resolve_services(config, backends)
    document = DumpDocument(
        bus=config.bus.value,
        generated_at=generated_at or datetime.now().astimezone().isoformat(timespec="seconds"),
    )

    async def process(service: str):
        document.add(await dump_service(service, backends))

    async with anyio.create_task_group() as tg:
        for service in services:
            tg.start_soon(process, service)
    return document


async def run_dump(
    config: DumpConfig,
    which: Callable[[str], str | None] | None = None,
    runner: CommandRunner | None = None,
) -> DumpDocument:
    """Resolve backends, collect everything, then write the document once."""
    log_info("D-Bus Tree Dumper starting...")
    log_info(f"Bus type: {config.bus.value}")
    log_info(f"Output file: {config.output}")

    kinds = detect(which or shutil.which)
    log_debug("Backends: " + ", ".join(kind.value for kind in kinds))
    runner = runner or CommandRunner(timeout=config.timeout, jobs=config.jobs)
    backends = build_backends(kinds, runner, config.bus)

    document = await collect(config, backends)

    log_info(f"Creating YAML output in {config.output}")
    write_document(render_document(document), config.output)
    log_info("D-Bus tree dump completed successfully!")
    log_info(f"Output saved to: {config.output}")
    return document


# ============================================================================
# CLI
# ============================================================================

class DumpArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with status 1, like every other fatal condition."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        error(message)


def build_parser() -> argparse.ArgumentParser:
    parser = DumpArgumentParser(
        prog="dbus-dump",
        description="Dump the D-Bus tree structure and introspection data as YAML",
    )
    parser.add_argument("-s", "--system", dest="bus", action="store_const",
                        const=BusType.SYSTEM, default=BusType.SYSTEM,
                        help="Use system bus (default)")
    parser.add_argument("-u", "--session", dest="bus", action="store_const",
                        const=BusType.SESSION, help="Use session bus")
    parser.add_argument("-o", "--output", metavar="FILE",
                        help=f"Output file, - for stdout (default: {DEFAULT_OUTPUT})")
    parser.add_argument("-t", "--timeout", type=float, default=DEFAULT_TIMEOUT,
                        metavar="SECS", help="Timeout for each external command")
    parser.add_argument("-j", "--jobs", type=int, default=DEFAULT_JOBS,
                        metavar="N", help="Max concurrent external commands")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug messages")
    parser.add_argument("service", nargs="?", help="Specific D-Bus service to dump")
    parser.add_argument("output_file", nargs="?", help="Output YAML file name")
    return parser


def parse_config(argv: list[str] | None = None) -> DumpConfig:
    parser = build_parser()
    args = parser.parse_intermixed_args(argv)

    if args.timeout <= 0:
        parser.error("--timeout must be positive")
    if args.jobs < 1:
        parser.error("--jobs must be at least 1")

    if args.output is not None and not args.output:
        parser.error("Option --output requires an argument")

    # -o wins over the second positional no matter where it appears.
    output = args.output or args.output_file or DEFAULT_OUTPUT
    return DumpConfig(
        bus=args.bus,
        service=args.service,
        output=output,
        timeout=args.timeout,
        jobs=args.jobs,
        verbose=args.verbose,
    )


def main(argv: list[str] | None = None) -> int:
    config = parse_config(argv)
    set_verbose(config.verbose)

    try:
        anyio.run(run_dump, config)
    except DumpError as e:
        log_error(str(e))
        return 1
    except OSError as e:
        log_error(f"could not write {config.output}: {e}")
        return 1
    except KeyboardInterrupt:
        log_warn("interrupted, no document written")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
