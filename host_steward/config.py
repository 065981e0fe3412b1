"""YAML profile configuration.

    profiles:
      - name: base
        matches: {os: [linux, darwin]}
        items:
          - kind: file:content
            id: gitconfig
            path: .gitconfig
            content: "..."
          - kind: exec:cmd
            requires: [gitconfig]
            command: git config --global init.defaultBranch main
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError
from .item import Item
from .matching import parse_match
from .profile import Profile

logger = logging.getLogger(__name__)

_COMMON_KEYS = {"kind", "id", "requires", "matches"}


def load_config(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ConfigError("config must be YAML (.yaml/.yml)")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping/object")
    return raw


def _build_item(raw: Any, where: str, kinds: Mapping[str, Callable[..., Item]]) -> Item:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: item must be a mapping")
    kind = raw.get("kind")
    if not isinstance(kind, str) or not kind:
        raise ConfigError(f"{where}: item requires 'kind'")
    factory = kinds.get(kind)
    if factory is None:
        raise ConfigError(f"{where}: unknown item kind '{kind}'")

    requires = raw.get("requires") or []
    if isinstance(requires, str):
        requires = [requires]
    if not isinstance(requires, list) or not all(isinstance(r, str) for r in requires):
        raise ConfigError(f"{where}: 'requires' must be a list of item ids")

    common: Dict[str, Any] = {"requires": requires}
    if raw.get("id") is not None:
        common["item_id"] = str(raw["id"])
    if raw.get("matches") is not None:
        common["matches"] = parse_match(raw["matches"])

    body = {k: v for k, v in raw.items() if k not in _COMMON_KEYS}
    try:
        return factory(body, **common)
    except ConfigError as e:
        raise ConfigError(f"{where}: {e}") from e


def build_profiles(raw: Dict[str, Any], *, kinds: Optional[Mapping[str, Callable[..., Item]]] = None) -> List[Profile]:
    if kinds is None:
        from .plugins import ITEM_KINDS

        kinds = ITEM_KINDS

    entries = raw.get("profiles")
    if not isinstance(entries, list):
        raise ConfigError("config requires a 'profiles' list")

    profiles: List[Profile] = []
    names = set()
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"profiles[{idx}] must be a mapping")
        name = entry.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigError(f"profiles[{idx}] requires 'name'")
        if name in names:
            raise ConfigError(f"Duplicate profile name '{name}'")
        names.add(name)

        matches = parse_match(entry["matches"]) if entry.get("matches") is not None else None
        items_raw = entry.get("items") or []
        if not isinstance(items_raw, list):
            raise ConfigError(f"profile '{name}': 'items' must be a list")
        items = [_build_item(r, f"profile '{name}' item {i}", kinds) for i, r in enumerate(items_raw)]
        if not items:
            logger.warning("Profile '%s' has no items", name)
        profiles.append(Profile(name=name, matches=matches, items=items))
    return profiles


def load_profiles(path: str) -> List[Profile]:
    profiles = build_profiles(load_config(path))
    logger.info("Loaded %d profile(s) from %s", len(profiles), path)
    return profiles
