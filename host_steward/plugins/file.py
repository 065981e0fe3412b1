from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from ..errors import ConfigError, ItemValidationError
from ..host import expand_home
from ..item import Context, Item, ItemStatus, Plugin, PluginBound
from ..matching import ANY_OS, MatchExpr

logger = logging.getLogger(__name__)

FORMATS = ("raw", "json", "yaml")


class FilePlugin(Plugin):
    def __init__(self) -> None:
        super().__init__("file", ANY_OS)

    def probe(self, ctx: Context) -> ItemStatus:
        return ItemStatus.APPLIED


def _normalize_eol(text: str) -> str:
    return text.replace("\r\n", "\n")


class FileContent(PluginBound, Item):
    """Write text, or data serialized as JSON/YAML, to a file under the host."""

    kind = "file:content"
    plugin_key = "file"

    def __init__(
        self,
        path: str,
        *,
        content: Optional[str] = None,
        data: Any = None,
        fmt: str = "raw",
        mode: Optional[int] = None,
        requires: Iterable[str] = (),
        item_id: Optional[str] = None,
        matches: Optional[MatchExpr] = None,
        plugin: Optional[FilePlugin] = None,
    ) -> None:
        super().__init__(requires=requires, item_id=item_id, matches=matches)
        self.path = path
        self.content = content
        self.data = data
        self.fmt = fmt
        self.mode = mode
        self.plugin = plugin

    def plugin_factory(self) -> FilePlugin:
        return FilePlugin()

    def render(self) -> str:
        if os.path.isabs(self.path) or self.path.startswith("~"):
            return self.path
        return f"~/{self.path}"

    def target(self, ctx: Context) -> Path:
        return expand_home(self.render(), ctx.facts)

    def render_content(self) -> str:
        if self.fmt == "json":
            return json.dumps(self.data, indent=2, sort_keys=True) + "\n"
        if self.fmt == "yaml":
            return yaml.safe_dump(self.data, sort_keys=False)
        return self.content or ""

    def probe(self, ctx: Context) -> ItemStatus:
        try:
            current = self.target(ctx).read_text(encoding="utf-8")
        except FileNotFoundError:
            return ItemStatus.PENDING
        same = _normalize_eol(current) == _normalize_eol(self.render_content())
        return ItemStatus.APPLIED if same else ItemStatus.PENDING

    def validate(self, ctx: Context) -> None:
        if not isinstance(self.path, str) or not self.path:
            raise ItemValidationError("file:content requires a non-empty path")
        if self.fmt not in FORMATS:
            raise ItemValidationError(f"unsupported file format: {self.fmt}")
        if self.fmt == "raw":
            if not isinstance(self.content, str):
                raise ItemValidationError("file:raw requires string content")
        elif not isinstance(self.data, (dict, list)):
            raise ItemValidationError(f"file:{self.fmt} requires a mapping or list as data")

    def describe_change(self, ctx: Context) -> Optional[str]:
        return f"write {self.render()}"

    def apply(self, ctx: Context) -> None:
        target = self.target(ctx)
        if ctx.dry_run:
            logger.info("dry-run: would write %s", target)
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render_content(), encoding="utf-8")
        if self.mode is not None:
            target.chmod(self.mode)
        logger.info("Wrote %s", target)

    def cleanup(self, ctx: Context) -> None:
        target = self.target(ctx)
        if ctx.dry_run or not target.exists():
            return
        target.unlink()
        logger.info("Removed %s", target)

    @classmethod
    def from_config(cls, raw: Dict[str, Any], **common: Any) -> "FileContent":
        path = raw.get("path")
        if not isinstance(path, str):
            raise ConfigError("file:content requires 'path'")
        mode = raw.get("mode")
        if isinstance(mode, str):
            try:
                mode = int(mode, 8)
            except ValueError as e:
                raise ConfigError(f"file:content mode must be octal, got {mode!r}") from e
        return cls(
            path,
            content=raw.get("content"),
            data=raw.get("data"),
            fmt=str(raw.get("format") or "raw"),
            mode=mode,
            **common,
        )
