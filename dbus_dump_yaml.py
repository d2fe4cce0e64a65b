"""
YAML rendering of a DumpDocument.

Layout:

    # D-Bus Tree Dump
    # Generated on: ...
    # Bus type: system

    dbus_dump:
      "org.example.Service":
        tree: |
          └─/org/example/Service
        discovery: tree
        objects:
          "/org/example/Service":
            introspection: |
              NAME                   TYPE      SIGNATURE RESULT/VALUE FLAGS
              ...

All free-form text (tree renderings, introspection catalogs, markers) goes
through LiteralText so there is exactly one place deciding how bus-provided
text is escaped. PyYAML's scalar analysis keeps the literal block style when it
can and falls back to a double-quoted scalar when it cannot (trailing spaces,
control characters), so the text always reads back unchanged.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml

from dbus_dump_discovery import DumpDocument, IntrospectionResult, ServiceDump

ROOT_KEY = "dbus_dump"

TREE_UNAVAILABLE = "# Tree structure not available"
INTROSPECTION_UNAVAILABLE = "# Introspection data not available"
NO_PATHS_FOUND = "# No accessible object paths found"


class LiteralText(str):
    """Multi-line text rendered as a literal block."""


class QuotedKey(str):
    """Mapping key that is always double-quoted (service names, object paths)."""


class DumpDumper(yaml.SafeDumper):
    def ignore_aliases(self, data):
        return True


def _represent_literal(dumper: yaml.SafeDumper, data: LiteralText):
    # The emitter accepts NEL (U+0085) in a block scalar, but the loader folds
    # it into "\n" there. Only a double-quoted scalar keeps it intact.
    style = '"' if "\x85" in data else "|"
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style=style)


def _represent_quoted(dumper: yaml.SafeDumper, data: QuotedKey):
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style='"')


DumpDumper.add_representer(LiteralText, _represent_literal)
DumpDumper.add_representer(QuotedKey, _represent_quoted)


def _introspection_text(result: IntrospectionResult) -> LiteralText:
    if result.failed:
        return LiteralText(INTROSPECTION_UNAVAILABLE)
    return LiteralText(result.text)


def service_block(service: ServiceDump) -> dict:
    tree = service.tree if service.tree is not None else TREE_UNAVAILABLE
    if service.objects:
        objects = {
            QuotedKey(path): {"introspection": _introspection_text(result)}
            for path, result in sorted(service.objects.items())
        }
    else:
        objects = LiteralText(NO_PATHS_FOUND)
    return {
        "tree": LiteralText(tree),
        "discovery": service.strategy,
        "objects": objects,
    }


def header(document: DumpDocument) -> str:
    return (
        "# D-Bus Tree Dump\n"
        f"# Generated on: {document.generated_at}\n"
        f"# Bus type: {document.bus}\n"
        "# Format: service -> tree + discovery + objects -> introspection\n"
        "\n"
    )


def render_document(document: DumpDocument) -> str:
    services = {
        QuotedKey(name): service_block(document.services[name])
        for name in sorted(document.services)
    }
    body = yaml.dump(
        {ROOT_KEY: services},
        Dumper=DumpDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )
    return header(document) + body


def write_document(text: str, output: str):
    """Write the finished document. "-" means stdout.

    The file appears only once complete: it is written to a hidden sibling and
    renamed into place.
    """
    if output == "-":
        sys.stdout.write(text)
        sys.stdout.flush()
        return

    target = Path(output)
    tmp = target.with_name(f".{target.name}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
