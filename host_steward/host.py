from __future__ import annotations

import getpass
import logging
import os
import platform
import re
import socket
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .lib.command import has_executable, run_cmd

logger = logging.getLogger(__name__)

OS_VALUES = ("linux", "darwin", "win32", "unsupported")
ARCH_VALUES = (
    "x86",
    "x86_64",
    "arm",
    "arm64",
    "riscv64",
    "ppc",
    "ppc64",
    "ppc64le",
    "s390x",
    "mips",
    "unsupported",
)

CI_VARIABLES = (
    "CI",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "BUILDKITE",
    "CIRCLECI",
    "TRAVIS",
    "APPVEYOR",
    "TEAMCITY_VERSION",
    "TF_BUILD",
    "CODEBUILD_BUILD_ID",
    "BITBUCKET_BUILD_NUMBER",
    "JENKINS_URL",
)
DEVCONTAINER_VARIABLES = (
    "DEVCONTAINER",
    "REMOTE_CONTAINERS",
    "VSCODE_REMOTE_CONTAINERS",
    "VSCODE_REMOTE_CONTAINER",
    "CODESPACES",
    "GITPOD_WORKSPACE_ID",
)

_TRUTHY = re.compile(r"^(1|true|yes|y)$", re.IGNORECASE)


@dataclass(frozen=True)
class HostUser:
    name: Optional[str] = None
    uid: Optional[str] = None
    gid: Optional[str] = None
    home: Optional[str] = None
    can_sudo: bool = False
    is_root: bool = False


@dataclass(frozen=True)
class HostEnv:
    variables: Mapping[str, str] = field(default_factory=dict)
    ci: bool = False
    devcontainer: bool = False


@dataclass(frozen=True)
class HostFacts:
    """Snapshot of the machine the process runs on.

    Captured once per run; matching and planning only ever read it.
    """

    os: Optional[str] = "unsupported"
    arch: Optional[str] = "unsupported"
    hostname: Optional[str] = None
    env: HostEnv = field(default_factory=HostEnv)
    user: HostUser = field(default_factory=HostUser)


def normalize_os(system: str) -> str:
    s = system.lower()
    if s.startswith("linux"):
        return "linux"
    if s == "darwin":
        return "darwin"
    if s in {"win32", "windows", "cygwin"}:
        return "win32"
    return "unsupported"


def normalize_arch(machine: str) -> str:
    m = machine.lower()
    return {
        "x86_64": "x86_64",
        "amd64": "x86_64",
        "i386": "x86",
        "i686": "x86",
        "x86": "x86",
        "aarch64": "arm64",
        "arm64": "arm64",
        "armv7l": "arm",
        "armv6l": "arm",
        "arm": "arm",
        "riscv64": "riscv64",
        "ppc": "ppc",
        "ppc64": "ppc64",
        "ppc64le": "ppc64le",
        "s390x": "s390x",
        "mips": "mips",
        "mipsel": "mips",
    }.get(m, "unsupported")


def _truthy(value: Optional[str]) -> bool:
    return value is not None and bool(_TRUTHY.match(value))


def detect_env(environ: Optional[Mapping[str, str]] = None) -> HostEnv:
    variables = dict(os.environ if environ is None else environ)
    return HostEnv(
        variables=variables,
        ci=any(_truthy(variables.get(k)) for k in CI_VARIABLES),
        devcontainer=any(_truthy(variables.get(k)) for k in DEVCONTAINER_VARIABLES),
    )


def _probe_sudo() -> bool:
    if not has_executable("sudo"):
        return False
    r = run_cmd(["sudo", "-n", "true"], check=False, timeout_s=5)
    return r.ok


def detect_user(*, probe_sudo: bool = True) -> HostUser:
    """Collect user identity (best-effort, never raises)."""

    try:
        name: Optional[str] = getpass.getuser() or None
    except Exception:
        name = None

    uid: Optional[str] = None
    gid: Optional[str] = None
    is_root = False
    if hasattr(os, "getuid"):
        uid = str(os.getuid())
        gid = str(os.getgid())
        is_root = os.getuid() == 0

    home = os.path.expanduser("~")
    if not home or home == "~":
        home = None

    can_sudo = is_root
    if not is_root and probe_sudo and sys.platform != "win32":
        try:
            can_sudo = _probe_sudo()
        except Exception:
            logger.debug("sudo probe failed", exc_info=True)
            can_sudo = False

    return HostUser(name=name, uid=uid, gid=gid, home=home, can_sudo=can_sudo, is_root=is_root)


def detect_host_facts(*, probe_sudo: bool = True, environ: Optional[Mapping[str, str]] = None) -> HostFacts:
    facts = HostFacts(
        os=normalize_os(sys.platform),
        arch=normalize_arch(platform.machine()),
        hostname=socket.gethostname() or None,
        env=detect_env(environ),
        user=detect_user(probe_sudo=probe_sudo),
    )
    logger.info(
        "Host: os=%s arch=%s hostname=%s user=%s ci=%s",
        facts.os,
        facts.arch,
        facts.hostname,
        facts.user.name,
        facts.env.ci,
    )
    return facts


def host_key(facts: HostFacts) -> Dict[str, Any]:
    """Identity of a host for comparing snapshots across runs."""
    return {"os": facts.os, "arch": facts.arch, "home": facts.user.home}


def expand_home(path: str, facts: HostFacts) -> Path:
    if path == "~" or path.startswith("~/"):
        home = facts.user.home
        if not home:
            raise ValueError("host home directory is unknown; cannot expand '~'")
        return Path(home) / path[2:]
    return Path(path)
