from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from .lib.env import Paths

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_CONFIGURED = "_host_steward_log_path"


def _file_handler(log_path: str) -> tuple[logging.Handler, str]:
    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        # Read-only or missing home: keep the run log next to the config.
        fallback = str(Path.cwd() / Path(log_path).name)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: Optional[str] = None,
    level: int = logging.INFO,
    also_console: bool = False,
) -> str:
    """Route every `host_steward.*` logger (events included) to the run log.

    The log lives in the state directory beside `last-plan.json` and
    `last-apply.json` (`--state-dir` / `HOST_STEWARD_HOME`, default
    `~/.host-steward/host-steward.log`). `-v` adds a console handler. Only the
    first call installs handlers; later calls return the path already in use.
    """

    root = logging.getLogger()
    root.setLevel(level)
    active = getattr(root, _CONFIGURED, None)
    if active is not None:
        return active

    handler, chosen_path = _file_handler(log_path or Paths().log_default)
    handlers: List[logging.Handler] = [handler]
    if also_console:
        handlers.append(logging.StreamHandler())

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)
    setattr(root, _CONFIGURED, chosen_path)

    logging.getLogger(__name__).info("Run log at %s (requested %s)", chosen_path, log_path or "default")
    return chosen_path
