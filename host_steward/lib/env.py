from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _state_home() -> str:
    override = os.environ.get("HOST_STEWARD_HOME")
    if override:
        return override
    return str(Path.home() / ".host-steward")


@dataclass(frozen=True)
class Paths:
    state_dir: str = field(default_factory=_state_home)
    config_default: str = "host-steward.yaml"

    @property
    def log_default(self) -> str:
        return str(Path(self.state_dir) / "host-steward.log")

    @property
    def last_plan(self) -> str:
        return str(Path(self.state_dir) / "last-plan.json")

    @property
    def last_apply(self) -> str:
        return str(Path(self.state_dir) / "last-apply.json")
