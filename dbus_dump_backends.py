"""
dbus-dump backends: the command-line oracles that know how to talk to the bus.

Three tools are supported, ranked by how much they can do:

    busctl     TREE_CAPABLE           list names, render the object tree, introspect
    gdbus      INTROSPECT_RECURSIVE   list names, introspect (child nodes are parseable)
    dbus-send  SIMPLE_CALL            raw method calls: ListNames, Introspect

Each backend only builds command lines and parses their text output. Running
the command is the job of CommandRunner, which owns the timeout and the limit
on concurrently spawned processes.
"""

from __future__ import annotations

import re
import shutil
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable

import anyio

from dbus_dump_log import log_debug, log_warn

DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DEFAULT_TIMEOUT = 10.0
DEFAULT_JOBS = 1


class BusType(str, Enum):
    SYSTEM = "system"
    SESSION = "session"


class BackendKind(str, Enum):
    TREE_CAPABLE = "busctl"
    INTROSPECT_RECURSIVE = "gdbus"
    SIMPLE_CALL = "dbus-send"


# Highest-fidelity tool first.
BACKEND_PRIORITY = [
    BackendKind.TREE_CAPABLE,
    BackendKind.INTROSPECT_RECURSIVE,
    BackendKind.SIMPLE_CALL,
]


# ============================================================================
# Errors
# ============================================================================

class DumpError(Exception):
    """Fatal condition that aborts the whole run."""


class NoBackendAvailable(DumpError):
    pass


class BusUnreachable(DumpError):
    pass


class NoServicesFound(DumpError):
    pass


class BackendError(Exception):
    """A single backend invocation failed. Never fatal on its own."""

    def __init__(self, tool: str, reason: str):
        super().__init__(f"{tool}: {reason}")
        self.tool = tool
        self.reason = reason


# ============================================================================
# Command Runner
# ============================================================================

class CommandRunner:
    """Run external commands with a timeout and a cap on concurrent processes."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, jobs: int = DEFAULT_JOBS):
        self.timeout = timeout
        self._limiter = anyio.CapacityLimiter(max(1, jobs))

    async def run(self, command: list[str]) -> str:
        """Run command and return its stdout. Raises BackendError on any failure."""
        tool = command[0]
        async with self._limiter:
            log_debug(" ".join(command))
            try:
                with anyio.fail_after(self.timeout):
                    result = await anyio.run_process(command, check=False)
            except TimeoutError:
                raise BackendError(tool, f"timed out after {self.timeout:g}s")
            except OSError as e:
                raise BackendError(tool, str(e))

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise BackendError(tool, stderr or f"exit status {result.returncode}")
        return result.stdout.decode("utf-8", errors="replace")


# ============================================================================
# Backend - Capability interface
# ============================================================================

class Backend(ABC):
    """One introspection oracle bound to a bus."""

    kind: BackendKind
    supports_tree = False
    supports_walk = False

    def __init__(self, runner: CommandRunner, bus: BusType):
        self.runner = runner
        self.bus = bus

    @property
    def tool(self) -> str:
        return self.kind.value

    @abstractmethod
    def bus_args(self) -> list[str]:
        """Command-line arguments selecting the bus."""
        pass

    @abstractmethod
    def list_names_command(self) -> list[str]:
        pass

    @abstractmethod
    def parse_names(self, output: str) -> list[str]:
        """Extract bus names from list output (unfiltered)."""
        pass

    @abstractmethod
    def introspect_command(self, service: str, path: str) -> list[str]:
        pass

    def parse_introspection(self, output: str) -> str:
        return output

    async def list_names(self) -> list[str]:
        output = await self.runner.run(self.list_names_command())
        return self.parse_names(output)

    async def introspect(self, service: str, path: str) -> str:
        output = await self.runner.run(self.introspect_command(service, path))
        return self.parse_introspection(output)

    async def get_tree(self, service: str) -> str:
        raise BackendError(self.tool, "tree rendering not supported")

    def child_nodes(self, catalog: str) -> list[str]:
        raise BackendError(self.tool, "child node extraction not supported")


class BusctlBackend(Backend):
    kind = BackendKind.TREE_CAPABLE
    supports_tree = True

    def bus_args(self) -> list[str]:
        return ["--user"] if self.bus == BusType.SESSION else ["--system"]

    def _command(self, *args: str) -> list[str]:
        return ["busctl", *self.bus_args(), "--no-pager", *args]

    def list_names_command(self) -> list[str]:
        return self._command("list", "--no-legend")

    def parse_names(self, output: str) -> list[str]:
        names = []
        for line in output.splitlines():
            parts = line.split()
            if parts:
                names.append(parts[0])
        return names

    def introspect_command(self, service: str, path: str) -> list[str]:
        return self._command("introspect", service, path)

    async def get_tree(self, service: str) -> str:
        return await self.runner.run(self._command("tree", service))


class GdbusBackend(Backend):
    kind = BackendKind.INTROSPECT_RECURSIVE
    supports_walk = True

    # "  node Devices {" or "  node Devices {\n  };" one level below the root node
    _CHILD_NODE = re.compile(r"^  node (\S+?)(?:\s*\{.*)?$", re.MULTILINE)
    _QUOTED_NAME = re.compile(r"'([^']*)'")

    def bus_args(self) -> list[str]:
        return ["--session"] if self.bus == BusType.SESSION else ["--system"]

    def list_names_command(self) -> list[str]:
        return [
            "gdbus", "call", *self.bus_args(),
            "--dest", DBUS_SERVICE,
            "--object-path", DBUS_PATH,
            "--method", f"{DBUS_SERVICE}.ListNames",
        ]

    def parse_names(self, output: str) -> list[str]:
        # (['org.freedesktop.DBus', ':1.3', ...],)
        return self._QUOTED_NAME.findall(output)

    def introspect_command(self, service: str, path: str) -> list[str]:
        return [
            "gdbus", "introspect", *self.bus_args(),
            "--dest", service,
            "--object-path", path,
        ]

    def child_nodes(self, catalog: str) -> list[str]:
        children = []
        for name in self._CHILD_NODE.findall(catalog):
            name = name.strip("/")
            if name and name not in children:
                children.append(name)
        return children


class DbusSendBackend(Backend):
    kind = BackendKind.SIMPLE_CALL

    _STRING_LINE = re.compile(r'^\s*string "(.*)"\s*$', re.MULTILINE)

    def bus_args(self) -> list[str]:
        return ["--session"] if self.bus == BusType.SESSION else ["--system"]

    def _call(self, dest: str, path: str, method: str) -> list[str]:
        return [
            "dbus-send", *self.bus_args(),
            f"--dest={dest}",
            "--type=method_call",
            "--print-reply",
            path, method,
        ]

    def list_names_command(self) -> list[str]:
        return self._call(DBUS_SERVICE, DBUS_PATH, f"{DBUS_SERVICE}.ListNames")

    def parse_names(self, output: str) -> list[str]:
        return self._STRING_LINE.findall(output)

    def introspect_command(self, service: str, path: str) -> list[str]:
        return self._call(service, path, "org.freedesktop.DBus.Introspectable.Introspect")

    def parse_introspection(self, output: str) -> str:
        """Unwrap the single string argument of the reply (multi-line XML)."""
        start = output.find('string "')
        if start == -1:
            raise BackendError(self.tool, "reply carries no string argument")
        body = output[start + len('string "'):].rstrip()
        if body.endswith('"'):
            body = body[:-1]
        return body


BACKEND_CLASSES: dict[BackendKind, type[Backend]] = {
    BackendKind.TREE_CAPABLE: BusctlBackend,
    BackendKind.INTROSPECT_RECURSIVE: GdbusBackend,
    BackendKind.SIMPLE_CALL: DbusSendBackend,
}


# ============================================================================
# Capability Resolution
# ============================================================================

def probe_tools(which: Callable[[str], str | None] = shutil.which) -> set[BackendKind]:
    """Find which oracles are installed. Looks at PATH only, never at the bus."""
    return {kind for kind in BackendKind if which(kind.value)}


def select_backends(available: set[BackendKind]) -> list[BackendKind]:
    """Order the available kinds by priority."""
    selected = [kind for kind in BACKEND_PRIORITY if kind in available]
    if not selected:
        names = ", ".join(kind.value for kind in BACKEND_PRIORITY)
        raise NoBackendAvailable(f"no D-Bus introspection tool found (need one of: {names})")
    return selected


def detect(which: Callable[[str], str | None] = shutil.which) -> list[BackendKind]:
    available = probe_tools(which)
    for kind in BACKEND_PRIORITY:
        if kind not in available:
            log_warn(f"{kind.value} not found, falling back to the remaining tools")
    return select_backends(available)


def build_backends(kinds: list[BackendKind], runner: CommandRunner, bus: BusType) -> list[Backend]:
    return [BACKEND_CLASSES[kind](runner, bus) for kind in kinds]
