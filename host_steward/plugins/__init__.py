"""Bundled plugins and the item kinds they provide."""

from __future__ import annotations

from typing import Any, Callable, Dict

from ..item import Item
from .apt import AptPackage, AptPlugin
from .exec import ExecCommand, ExecPlugin
from .file import FileContent, FilePlugin

ItemFactory = Callable[..., Item]

ITEM_KINDS: Dict[str, ItemFactory] = {
    ExecCommand.kind: ExecCommand.from_config,
    FileContent.kind: FileContent.from_config,
    AptPackage.kind: AptPackage.from_config,
}


def register_kind(kind: str, factory: Callable[..., Any]) -> None:
    ITEM_KINDS[kind] = factory


__all__ = [
    "AptPackage",
    "AptPlugin",
    "ExecCommand",
    "ExecPlugin",
    "FileContent",
    "FilePlugin",
    "ITEM_KINDS",
    "register_kind",
]
