from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from ..errors import ConfigError, ItemValidationError
from ..item import Context, Item, ItemStatus, Plugin, PluginBound
from ..lib.command import SHELLS, CmdResult, has_executable, run_cmd, shell_argv
from ..matching import MatchExpr, os_is

logger = logging.getLogger(__name__)

Sudo = Union[bool, str]


class ExecPlugin(Plugin):
    """Runs shell commands on behalf of other items and plugins."""

    def __init__(self) -> None:
        super().__init__("exec", os_is("linux", "darwin"))

    def probe(self, ctx: Context) -> ItemStatus:
        return ItemStatus.APPLIED if has_executable("sh") else ItemStatus.FAILED

    def run(
        self,
        command: str,
        ctx: Context,
        *,
        shell: str = "sh",
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        sudo: Sudo = False,
        sudo_user: Optional[str] = None,
        check: bool = True,
        read_only: bool = False,
    ) -> CmdResult:
        user = ctx.facts.user
        use_sudo = sudo is True or (sudo == "auto" and not user.is_root and user.can_sudo)
        argv = shell_argv(command, shell=shell, sudo=use_sudo, sudo_user=sudo_user)
        # Read-only commands (probes) still run during a dry run.
        return run_cmd(argv, check=check, env=env, cwd=cwd, dry_run=ctx.dry_run and not read_only)


class ExecCommand(PluginBound, Item):
    """Run a command; `check` decides whether it is already in effect."""

    kind = "exec:cmd"
    plugin_key = "exec"

    def __init__(
        self,
        name: str,
        command: str,
        *,
        check: Optional[str] = None,
        cleanup_command: Optional[str] = None,
        shell: str = "sh",
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        sudo: Sudo = False,
        sudo_user: Optional[str] = None,
        requires: Iterable[str] = (),
        item_id: Optional[str] = None,
        matches: Optional[MatchExpr] = None,
        plugin: Optional[ExecPlugin] = None,
    ) -> None:
        super().__init__(requires=requires, item_id=item_id, matches=matches)
        self.name = name
        self.command = command
        self.check = check
        self.cleanup_command = cleanup_command
        self.shell = shell
        self.cwd = cwd
        self.env = dict(env or {})
        self.sudo = sudo
        self.sudo_user = sudo_user
        self.plugin = plugin

    def plugin_factory(self) -> ExecPlugin:
        return ExecPlugin()

    def render(self) -> str:
        return f"[exec] {self.name}"

    def _run(self, command: str, ctx: Context, *, check: bool, read_only: bool = False) -> CmdResult:
        if not isinstance(self.plugin, ExecPlugin):
            raise RuntimeError(f"{self.render()}: exec plugin is not bound")
        cwd = self.cwd or ctx.facts.user.home
        return self.plugin.run(
            command,
            ctx,
            shell=self.shell,
            cwd=cwd,
            env=self.env,
            sudo=self.sudo,
            sudo_user=self.sudo_user,
            check=check,
            read_only=read_only,
        )

    def probe(self, ctx: Context) -> ItemStatus:
        if not self.check:
            return ItemStatus.PENDING
        r = self._run(self.check, ctx, check=False, read_only=True)
        return ItemStatus.APPLIED if r.ok else ItemStatus.PENDING

    def validate(self, ctx: Context) -> None:
        if not isinstance(self.command, str) or not self.command.strip():
            raise ItemValidationError("exec: command must be a non-empty string")
        if self.shell not in SHELLS:
            raise ItemValidationError(f"exec: unsupported shell {self.shell!r}")
        if self.sudo not in (True, False, "auto"):
            raise ItemValidationError("exec: sudo must be true, false or 'auto'")
        if self.sudo_user is not None and not (isinstance(self.sudo_user, str) and self.sudo_user):
            raise ItemValidationError("exec: sudo_user must be a non-empty string")

    def describe_change(self, ctx: Context) -> Optional[str]:
        return f"{self.render()}: {self.command}"

    def apply(self, ctx: Context) -> None:
        self._run(self.command, ctx, check=True)

    def cleanup(self, ctx: Context) -> None:
        if self.cleanup_command:
            self._run(self.cleanup_command, ctx, check=True)

    @classmethod
    def from_config(cls, raw: Dict[str, Any], **common: Any) -> "ExecCommand":
        command = raw.get("command")
        if not isinstance(command, str):
            raise ConfigError("exec:cmd requires 'command'")
        return cls(
            str(raw.get("name") or command),
            command,
            check=raw.get("check"),
            cleanup_command=raw.get("cleanup"),
            shell=str(raw.get("shell") or "sh"),
            cwd=raw.get("cwd"),
            env={str(k): str(v) for k, v in (raw.get("env") or {}).items()},
            sudo=raw.get("sudo", False),
            sudo_user=raw.get("sudo_user"),
            **common,
        )
