"""Detect items removed from the configuration since the last apply.

Item ids are not stable across runs, so previous and current items are
joined on their rendered label.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .engine import Manager
from .host import HostFacts, host_key
from .item import ItemStatus, PlanAction, PlanDecision, Plugin
from .state_store import AppliedEntry, ApplySnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemovalCandidate:
    id: str
    kind: str
    label: str
    profile: Optional[str] = None
    summary: Optional[str] = None


def keep_labels(decisions: Sequence[PlanDecision]) -> set[str]:
    return {d.item.render() for d in decisions if d.action in (PlanAction.APPLY, PlanAction.NOOP)}


def same_scope(snapshot: ApplySnapshot, *, config_path: str, facts: HostFacts) -> bool:
    current = host_key(facts)
    return snapshot.config_path == config_path and all(
        snapshot.host.get(k) == current[k] for k in ("os", "arch", "home")
    )


def compute_removals(
    decisions: Sequence[PlanDecision],
    last_apply: Optional[ApplySnapshot],
    *,
    config_path: str,
    facts: HostFacts,
) -> List[RemovalCandidate]:
    """Previously applied items that the current plan no longer keeps.

    Returned in reverse applied order so dependents are removed before what
    they relied on. A snapshot from another config file or host yields nothing.
    """

    if last_apply is None:
        return []
    if not same_scope(last_apply, config_path=config_path, facts=facts):
        logger.info("Last apply snapshot is for another config or host; ignoring it")
        return []

    keep = keep_labels(decisions)
    removed = [
        RemovalCandidate(id=a.id, kind=a.kind, label=a.label, profile=a.profile, summary=a.summary)
        for a in last_apply.applied
        if a.kind != "plugin" and a.label not in keep
    ]
    removed.reverse()
    return removed


def group_by_profile(removed: Sequence[RemovalCandidate]) -> Dict[str, List[RemovalCandidate]]:
    out: Dict[str, List[RemovalCandidate]] = {}
    for r in removed:
        out.setdefault(r.profile or "(previous)", []).append(r)
    return out


def snapshot_from_run(mgr: Manager, decisions: Sequence[PlanDecision], *, config_path: str) -> ApplySnapshot:
    """Snapshot every item left `applied`, in dependency order."""

    summaries = {d.item.id: d.summary for d in decisions}
    applied: List[AppliedEntry] = []
    for item_id in mgr.deps.topo_order():
        item = mgr.deps.nodes[item_id]
        if item.status != ItemStatus.APPLIED:
            continue
        applied.append(
            AppliedEntry(
                id=item.id,
                kind="plugin" if isinstance(item, Plugin) else item.kind,
                label=item.render(),
                profile=item.profile.name if item.profile is not None else None,
                summary=summaries.get(item.id),
            )
        )
    return ApplySnapshot(config_path=config_path, host=host_key(mgr.host), applied=applied)
