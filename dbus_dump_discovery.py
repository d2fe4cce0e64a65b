"""
Bus discovery: which services exist, which object paths they export, and
what each path looks like from the inside.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from dbus_dump_backends import Backend, BackendError, BusUnreachable
from dbus_dump_log import log_debug, log_warn

UNIQUE_NAME_PREFIX = ":"

STRATEGY_TREE = "tree"
STRATEGY_INTROSPECT = "introspect"
STRATEGY_HEURISTIC = "heuristic"

_TREE_PATH = re.compile(r"/\S*")


@dataclass
class PathDiscovery:
    """Object paths found for one service, and how they were found."""
    paths: list[str]
    strategy: str
    tree: str | None = None


@dataclass
class IntrospectionResult:
    text: str | None = None
    backend: str | None = None

    @property
    def failed(self) -> bool:
        return self.text is None


@dataclass
class ServiceDump:
    """Everything collected for one service. tree is None when unavailable."""
    name: str
    tree: str | None
    strategy: str
    objects: dict[str, IntrospectionResult] = field(default_factory=dict)


@dataclass
class DumpDocument:
    bus: str
    generated_at: str
    services: dict[str, ServiceDump] = field(default_factory=dict)

    def add(self, service: ServiceDump):
        # Each service is written exactly once.
        if service.name in self.services:
            raise ValueError(f"service already dumped: {service.name}")
        self.services[service.name] = service


# ============================================================================
# Service Enumeration
# ============================================================================

def filter_service_names(names: list[str]) -> list[str]:
    """Drop unique connection names and duplicates, sort the rest."""
    return sorted({n for n in names if n and not n.startswith(UNIQUE_NAME_PREFIX)})


async def list_services(backends: list[Backend]) -> list[str]:
    """List well-known names on the bus using the preferred backend.

    There is no fallback here: if the bus cannot be listed by the best tool
    available, nothing downstream can be trusted either.
    """
    backend = backends[0]
    try:
        names = await backend.list_names()
    except BackendError as e:
        raise BusUnreachable(f"could not list services: {e}") from e
    return filter_service_names(names)


# ============================================================================
# Path Discovery
# ============================================================================

def child_path(parent: str, child: str) -> str:
    if parent == "/":
        return f"/{child}"
    return f"{parent}/{child}"


def heuristic_paths(service: str) -> list[str]:
    """Best guess when nothing could enumerate the tree: root plus /org/example/Foo."""
    guess = "/" + service.replace(".", "/")
    return sorted({"/", guess})


def parse_tree_paths(tree: str) -> list[str]:
    return sorted({p for p in _TREE_PATH.findall(tree)})


async def walk_paths(backend: Backend, service: str) -> list[str] | None:
    """Introspect from / downwards, following declared child nodes.

    Returns None when the root itself cannot be introspected. Nodes below an
    unreachable path are never guessed.
    """
    found: list[str] = []
    seen = {"/"}
    stack = ["/"]
    while stack:
        path = stack.pop()
        try:
            catalog = await backend.introspect(service, path)
        except BackendError as e:
            log_debug(f"walk stopped at {service} {path}: {e}")
            if path == "/":
                return None
            continue

        found.append(path)
        for child in reversed(backend.child_nodes(catalog)):
            next_path = child_path(path, child)
            if next_path not in seen:
                seen.add(next_path)
                stack.append(next_path)
    return sorted(found)


async def discover_paths(service: str, backends: list[Backend]) -> PathDiscovery:
    """Find the object paths of service. Never raises."""
    log_debug(f"Getting object paths for service: {service}")

    for backend in backends:
        if not backend.supports_tree:
            continue
        try:
            tree = await backend.get_tree(service)
        except BackendError as e:
            log_debug(f"tree query failed for {service}: {e}")
            continue
        return PathDiscovery(parse_tree_paths(tree), STRATEGY_TREE, tree)

    for backend in backends:
        if not backend.supports_walk:
            continue
        paths = await walk_paths(backend, service)
        if paths is not None:
            return PathDiscovery(paths, STRATEGY_INTROSPECT)

    log_warn(f"Could not enumerate paths for {service}, guessing common root paths")
    return PathDiscovery(heuristic_paths(service), STRATEGY_HEURISTIC)


# ============================================================================
# Object Introspection
# ============================================================================

async def introspect_object(service: str, path: str, backends: list[Backend]) -> IntrospectionResult:
    """Introspect one path, trying every backend in priority order."""
    log_debug(f"Introspecting {service} at {path}")
    for backend in backends:
        try:
            text = await backend.introspect(service, path)
        except BackendError as e:
            log_debug(f"introspection via {backend.tool} failed: {e}")
            continue
        return IntrospectionResult(text=text, backend=backend.tool)

    log_warn(f"Failed to introspect {service} at {path}")
    return IntrospectionResult()

