from __future__ import annotations

import logging
import re
from typing import List, Sequence

from .command import run_cmd

logger = logging.getLogger(__name__)

# Debian policy: lowercase alphanumerics plus "+-.", at least two characters.
_APT_NAME = re.compile(r"^[a-z0-9][a-z0-9+.-]+$")

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def is_valid_apt_name(name: str) -> bool:
    return bool(_APT_NAME.match(name))


def apt_install_argv(packages: Sequence[str], *, with_recommends: bool = False) -> List[str]:
    argv = ["apt-get", "install", "-y"]
    if not with_recommends:
        argv.append("--no-install-recommends")
    return [*argv, *packages]


def apt_remove_argv(packages: Sequence[str]) -> List[str]:
    return ["apt-get", "remove", "-y", *packages]


def dpkg_is_installed(package: str) -> bool:
    """Return True if dpkg reports the package as installed.

    Missing tooling (no dpkg-query) reads as "not installed".
    """
    r = run_cmd(["dpkg-query", "-W", "-f=${Status}", package], check=False)
    return r.ok and "install ok installed" in r.stdout
