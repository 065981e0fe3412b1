from __future__ import annotations

import logging
import shlex
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..errors import ConfigError, ItemValidationError
from ..item import Context, Item, ItemStatus, Plugin, PluginBound, UsedPlugin
from ..lib.command import has_executable
from ..lib.pkg import APT_ENV, apt_install_argv, apt_remove_argv, dpkg_is_installed, is_valid_apt_name
from ..matching import MatchExpr, os_is
from .exec import ExecPlugin

logger = logging.getLogger(__name__)


class AptPlugin(Plugin):
    """Debian/Ubuntu package management, executed through the exec plugin."""

    def __init__(self) -> None:
        super().__init__("apt", os_is("linux"))
        self.exec: Optional[ExecPlugin] = None

    def used_plugins(self) -> List[UsedPlugin]:
        return [UsedPlugin(key="exec", factory=ExecPlugin, assign=self._set_exec)]

    def _set_exec(self, plugin: Plugin) -> None:
        if not isinstance(plugin, ExecPlugin):
            raise TypeError(f"apt: expected exec plugin, got {type(plugin).__name__}")
        self.exec = plugin

    def probe(self, ctx: Context) -> ItemStatus:
        if has_executable("apt-get") and has_executable("dpkg-query"):
            return ItemStatus.APPLIED
        return ItemStatus.FAILED

    def is_installed(self, package: str) -> bool:
        return dpkg_is_installed(package)

    def _run(self, argv: Sequence[str], ctx: Context) -> None:
        if self.exec is None:
            raise RuntimeError("apt: exec plugin was not injected")
        self.exec.run(" ".join(shlex.quote(a) for a in argv), ctx, env=APT_ENV, sudo="auto")

    def install(self, packages: Sequence[str], ctx: Context, *, with_recommends: bool = False) -> None:
        if packages:
            self._run(apt_install_argv(packages, with_recommends=with_recommends), ctx)

    def remove(self, packages: Sequence[str], ctx: Context) -> None:
        if packages:
            self._run(apt_remove_argv(packages), ctx)


class AptPackage(PluginBound, Item):
    kind = "apt:package"
    plugin_key = "apt"
    matches = os_is("linux")

    def __init__(
        self,
        name: str,
        *,
        with_recommends: bool = False,
        requires: Iterable[str] = (),
        item_id: Optional[str] = None,
        matches: Optional[MatchExpr] = None,
        plugin: Optional[AptPlugin] = None,
    ) -> None:
        super().__init__(requires=requires, item_id=item_id, matches=matches)
        self.name = name
        self.with_recommends = with_recommends
        self.plugin = plugin

    def plugin_factory(self) -> AptPlugin:
        return AptPlugin()

    def render(self) -> str:
        return f"[apt] {self.name}"

    def _apt(self) -> AptPlugin:
        if not isinstance(self.plugin, AptPlugin):
            raise RuntimeError(f"{self.render()}: apt plugin is not bound")
        return self.plugin

    def probe(self, ctx: Context) -> ItemStatus:
        return ItemStatus.APPLIED if self._apt().is_installed(self.name) else ItemStatus.PENDING

    def validate(self, ctx: Context) -> None:
        if not is_valid_apt_name(self.name):
            raise ItemValidationError(f"apt: invalid package name {self.name!r}")

    def describe_change(self, ctx: Context) -> Optional[str]:
        return f"install {self.name}"

    def apply(self, ctx: Context) -> None:
        self._apt().install([self.name], ctx, with_recommends=self.with_recommends)

    def cleanup(self, ctx: Context) -> None:
        self._apt().remove([self.name], ctx)

    @classmethod
    def from_config(cls, raw: Dict[str, Any], **common: Any) -> "AptPackage":
        name = raw.get("name")
        if not isinstance(name, str):
            raise ConfigError("apt:package requires 'name'")
        return cls(name, with_recommends=bool(raw.get("with_recommends", False)), **common)
