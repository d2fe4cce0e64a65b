"""Diagnostics on stderr, kept apart from the dump document."""

from __future__ import annotations

from rich.console import Console
from rich.text import Text

console = Console(stderr=True, highlight=False)

_verbose = False


def set_verbose(enabled: bool):
    global _verbose
    _verbose = enabled


def _emit(tag: str, style: str, msg: str):
    # Messages carry bus-provided names, so never parse them as markup.
    console.print(Text.assemble((f"[{tag}]", style), " ", msg))


def log_info(msg: str):
    _emit("INFO", "green", msg)


def log_warn(msg: str):
    _emit("WARN", "bold yellow", msg)


def log_error(msg: str):
    _emit("ERROR", "red", msg)


def log_debug(msg: str):
    if _verbose:
        _emit("DEBUG", "blue", msg)
