from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def load_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    text = p.read_text(encoding="utf-8")
    if _detect_format(p) in {"yaml", "yml"}:
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)

    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")

    return data


def save_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) in {"yaml", "yml"}:
        p.write_text(yaml.safe_dump(state, sort_keys=False), encoding="utf-8")
    else:
        p.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S%z")


@dataclass(frozen=True)
class AppliedEntry:
    id: str
    kind: str
    label: str
    profile: Optional[str] = None
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "kind": self.kind, "label": self.label}
        if self.profile is not None:
            out["profile"] = self.profile
        if self.summary is not None:
            out["summary"] = self.summary
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AppliedEntry":
        return cls(
            id=str(raw.get("id") or ""),
            kind=str(raw.get("kind") or "item"),
            label=str(raw.get("label") or ""),
            profile=raw.get("profile"),
            summary=raw.get("summary"),
        )


@dataclass(frozen=True)
class ApplySnapshot:
    """What the last successful apply left on the host, in applied order."""

    config_path: str
    host: Dict[str, Any]
    applied: List[AppliedEntry] = field(default_factory=list)
    at: str = field(default_factory=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configPath": self.config_path,
            "host": dict(self.host),
            "at": self.at,
            "applied": [a.to_dict() for a in self.applied],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ApplySnapshot":
        return cls(
            config_path=str(raw.get("configPath") or ""),
            host=dict(raw.get("host") or {}),
            applied=[AppliedEntry.from_dict(a) for a in raw.get("applied") or []],
            at=str(raw.get("at") or ""),
        )


@dataclass(frozen=True)
class PlanSnapshot:
    config_path: str
    host: Dict[str, Any]
    decisions: List[Dict[str, Any]] = field(default_factory=list)
    at: str = field(default_factory=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configPath": self.config_path,
            "host": dict(self.host),
            "at": self.at,
            "decisions": list(self.decisions),
        }


def load_last_apply(path: str) -> Optional[ApplySnapshot]:
    """Read the last apply snapshot; an unreadable file counts as no snapshot."""

    try:
        raw = load_state(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable apply snapshot %s: %s", path, e)
        return None
    if not raw:
        return None
    return ApplySnapshot.from_dict(raw)


def save_last_apply(path: str, snapshot: ApplySnapshot) -> None:
    save_state(path, snapshot.to_dict())
    logger.info("Saved apply snapshot (%d item(s)) to %s", len(snapshot.applied), path)


def save_last_plan(path: str, snapshot: PlanSnapshot) -> None:
    save_state(path, snapshot.to_dict())
