"""Caller-level drivers built on top of `Manager`.

The engine itself is fail-fast and never retries; these helpers turn a run
into a result object and re-apply retryable items on request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .engine import Manager
from .errors import ApplyError, StewardError
from .item import PlanAction, PlanDecision

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyStats:
    items: int
    to_apply: int
    skipped: int
    noop: int


@dataclass(frozen=True)
class ApplyFailure:
    item_id: str
    error: str


@dataclass
class ApplyResult:
    decisions: List[PlanDecision]
    stats: ApplyStats
    errors: List[ApplyFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def plan_stats(decisions: List[PlanDecision]) -> ApplyStats:
    counts: Dict[PlanAction, int] = {a: 0 for a in PlanAction}
    for d in decisions:
        counts[d.action] += 1
    return ApplyStats(
        items=len(decisions),
        to_apply=counts[PlanAction.APPLY],
        skipped=counts[PlanAction.SKIP],
        noop=counts[PlanAction.NOOP],
    )


def apply_all(mgr: Manager) -> ApplyResult:
    """Plan, then apply; apply errors are collected instead of raised."""

    decisions = mgr.plan()
    result = ApplyResult(decisions=decisions, stats=plan_stats(decisions))
    try:
        mgr.apply()
    except ApplyError as e:
        logger.error("Apply failed at %s: %s", e.item_id, e.detail)
        result.errors.append(ApplyFailure(item_id=e.item_id, error=e.detail))
    except StewardError as e:
        logger.error("Apply failed: %s", e)
        result.errors.append(ApplyFailure(item_id="", error=str(e)))
    return result


def retry_failed(mgr: Manager) -> List[str]:
    """Re-apply retryable items in dependency order.

    Returns the ids that were applied; raises ApplyError at the first item
    that fails again. Dependents that never ran are left pending; call
    `Manager.apply()` again to continue with them.
    """

    applied: List[str] = []
    for item_id in mgr.deps.topo_order():
        item = mgr.deps.nodes[item_id]
        if not item.can_retry:
            continue
        logger.info("Retrying %s (attempt %d)", item.render(), item.state.attempts + 1)
        if mgr.apply_item(item):
            applied.append(item.id)
    return applied
