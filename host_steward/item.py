"""Configurable units and their lifecycle.

Every unit the engine manages is an `Item`, plugins included. State only
changes through the transition methods below:

    unprobed -> pending | applied | failed      (probe)
    pending | failed -> applied                 (successful apply)
    pending | failed -> failed                  (failed apply)
    any -> give-up                              (incompatible host, retries exhausted)

`applied` and `give-up` are terminal for the run.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set

from .errors import StewardError
from .events import EventSink
from .host import HostFacts
from .matching import MatchExpr, evaluate

if TYPE_CHECKING:
    from .profile import Profile

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class ItemStatus(str, Enum):
    UNPROBED = "unprobed"
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    GIVE_UP = "give-up"


class PlanAction(str, Enum):
    APPLY = "apply"
    SKIP = "skip"
    NOOP = "noop"


_TERMINAL = {ItemStatus.APPLIED, ItemStatus.GIVE_UP}


@dataclass(frozen=True)
class Context:
    """Everything an item operation may read: host facts and the event sink."""

    facts: HostFacts
    events: EventSink = field(default_factory=EventSink)
    dry_run: bool = False


@dataclass
class ItemState:
    status: ItemStatus = ItemStatus.UNPROBED
    waiting_on: Set[str] = field(default_factory=set)
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class PlanDecision:
    item: "Item"
    action: PlanAction
    reason: Optional[str] = None
    summary: Optional[str] = None


class Item:
    kind: str = "item"
    matches: Optional[MatchExpr] = None

    def __init__(
        self,
        *,
        kind: Optional[str] = None,
        requires: Iterable[str] = (),
        item_id: Optional[str] = None,
        matches: Optional[MatchExpr] = None,
    ) -> None:
        self.id = item_id or str(uuid.uuid4())
        if kind:
            self.kind = kind
        if matches is not None:
            self.matches = matches
        self.requires: List[str] = list(dict.fromkeys(requires))
        self.state = ItemState()
        self.profile: Optional["Profile"] = None
        self._events: Optional[EventSink] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.render()} status={self.state.status.value}>"

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def status(self) -> ItemStatus:
        return self.state.status

    def ref(self) -> Dict[str, Any]:
        return {"item_id": self.id, "kind": self.kind, "name": self.render()}

    def attach(self, events: EventSink) -> None:
        self._events = events
        self._emit("item:attached", self.ref())

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self._events is not None:
            self._events.emit(event, payload)

    def depends_on(self, *others: "Item") -> "Item":
        for other in others:
            if other.id not in self.requires:
                self.requires.append(other.id)
        return self

    # Transitions

    def set_status(self, status: ItemStatus, error: Optional[str] = None) -> None:
        previous = self.state.status
        if previous == status:
            return
        if previous in _TERMINAL:
            raise StewardError(f"{self.render()}: illegal transition {previous.value} -> {status.value}")
        self.state.status = status
        payload = {"item_id": self.id, "kind": self.kind, "previous": previous.value, "next": status.value}
        if error is not None:
            payload["error"] = error
        self._emit("item:status_change", payload)

    def mark_applied(self) -> None:
        self.set_status(ItemStatus.APPLIED)
        self.state.last_error = None
        self._set_attempts(0)
        self.clear_waits()

    def mark_failed(self, error: str) -> None:
        self.state.last_error = error
        self._set_attempts(self.state.attempts + 1)
        self.set_status(ItemStatus.FAILED, error)
        if self.state.attempts >= MAX_ATTEMPTS:
            self.give_up(f"gave up after {self.state.attempts} attempts: {error}")

    def give_up(self, reason: str) -> None:
        if self.state.status == ItemStatus.APPLIED:
            return
        logger.info("%s: giving up (%s)", self.render(), reason)
        self.set_status(ItemStatus.GIVE_UP, reason)

    def _set_attempts(self, attempts: int) -> None:
        if attempts == self.state.attempts:
            return
        self.state.attempts = attempts
        self._emit("item:attempts_change", {"item_id": self.id, "attempts": attempts})

    @property
    def can_retry(self) -> bool:
        return self.state.status == ItemStatus.FAILED and self.state.attempts < MAX_ATTEMPTS

    def add_wait(self, item_id: str) -> None:
        waits = self.state.waiting_on
        if item_id in waits:
            return
        was_empty = not waits
        waits.add(item_id)
        self._emit("item:wait_added", {"item_id": self.id, "added": item_id, "waiting_on": sorted(waits)})
        if was_empty:
            self._emit("item:blocked", {"item_id": self.id, "waiting_on": sorted(waits)})

    def remove_wait(self, item_id: str) -> None:
        waits = self.state.waiting_on
        if item_id not in waits:
            return
        waits.discard(item_id)
        self._emit("item:wait_removed", {"item_id": self.id, "removed": item_id, "waiting_on": sorted(waits)})
        if not waits:
            self._emit("item:unblocked", {"item_id": self.id})

    def clear_waits(self) -> None:
        if not self.state.waiting_on:
            return
        self.state.waiting_on.clear()
        self._emit("item:waits_cleared", {"item_id": self.id})
        self._emit("item:unblocked", {"item_id": self.id})

    # Contract

    def is_compatible(self, facts: HostFacts) -> bool:
        if self.profile is not None and not self.profile.is_active(facts):
            return False
        return self.matches is None or evaluate(facts, self.matches)

    def probe(self, ctx: Context) -> ItemStatus:
        """Inspect the host and report the item's current status. Read-only."""
        raise NotImplementedError(f"{type(self).__name__}.probe")

    def validate(self, ctx: Context) -> None:
        """Raise ItemValidationError when the item's own definition is invalid."""

    def apply(self, ctx: Context) -> None:
        raise NotImplementedError(f"{type(self).__name__}.apply")

    def cleanup(self, ctx: Context) -> None:
        pass

    def describe_change(self, ctx: Context) -> Optional[str]:
        return None

    def plan(self, ctx: Context) -> Optional[PlanDecision]:
        if not self.is_compatible(ctx.facts):
            return PlanDecision(self, PlanAction.SKIP, reason="incompatible host")
        if self.state.status == ItemStatus.APPLIED:
            return PlanDecision(self, PlanAction.NOOP, summary=self.render())
        if self.state.status == ItemStatus.GIVE_UP:
            return PlanDecision(self, PlanAction.SKIP, reason=self.state.last_error or "gave up")
        return PlanDecision(self, PlanAction.APPLY, summary=self.describe_change(ctx) or self.render())

    def render(self) -> str:
        return f"[{self.kind}] {self.short_id}"

    def dedupe_key(self) -> str:
        return self.id


class Plugin(Item):
    """An item other items are executed through.

    Plugins are graph nodes like any other item and are applied before the
    items they own.
    """

    kind = "plugin"

    def __init__(self, key: str, matches: MatchExpr, *, item_id: Optional[str] = None) -> None:
        if matches is None:
            raise ValueError(f"plugin {key!r} must declare host compatibility")
        super().__init__(kind="plugin", item_id=item_id, matches=matches)
        self.key = key

    def used_plugins(self) -> List["UsedPlugin"]:
        return []

    def apply(self, ctx: Context) -> None:
        pass

    def render(self) -> str:
        return f"[plugin] {self.key}"

    def dedupe_key(self) -> str:
        return f"plugin:{self.key}"


@dataclass(frozen=True)
class UsedPlugin:
    """Helper plugin a plugin asks to have injected before it runs."""

    key: str
    factory: Callable[[], Plugin]
    assign: Callable[[Plugin], None]


class PluginBound:
    """Capability of items executed through an owning plugin.

    Either `plugin` is set explicitly, or the engine resolves one by
    `plugin_key`, calling `plugin_factory()` at most once per key.
    """

    plugin_key: str = ""
    plugin: Optional[Plugin] = None

    def plugin_factory(self) -> Plugin:
        raise NotImplementedError(f"{type(self).__name__}.plugin_factory")

    def bind_plugin(self, plugin: Plugin) -> None:
        self.plugin = plugin
