"""Event sink threaded through a run via the execution context.

Listeners are invoked sequentially, in registration order, so the observed
event order is deterministic. A listener that raises propagates to the emitter.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("host_steward.events")

Listener = Callable[[Any], None]
AnyListener = Callable[[str, Any], None]

EVENTS = (
    "manager:init_start",
    "manager:init_done",
    "manager:analyze_start",
    "manager:analyze_done",
    "manager:plan_start",
    "manager:plan_done",
    "manager:apply_start",
    "manager:apply_done",
    "manager:cleanup_start",
    "manager:cleanup_done",
    "manager:deps_built",
    "item:probe_start",
    "item:probe_done",
    "item:probe_error",
    "item:validate_error",
    "item:apply_start",
    "item:apply_done",
    "item:apply_error",
    "item:cleanup_start",
    "item:cleanup_done",
    "item:cleanup_error",
    "item:status_change",
    "item:attempts_change",
    "item:wait_added",
    "item:wait_removed",
    "item:waits_cleared",
    "item:blocked",
    "item:unblocked",
    "item:attached",
)


class EventSink:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._any: List[AnyListener] = []

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def once(self, event: str, listener: Listener) -> Callable[[], None]:
        def wrap(payload: Any) -> None:
            self.off(event, wrap)
            listener(payload)

        return self.on(event, wrap)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners or listener not in listeners:
            return
        listeners.remove(listener)
        if not listeners:
            del self._listeners[event]

    def on_any(self, listener: AnyListener) -> Callable[[], None]:
        self._any.append(listener)

        def unsubscribe() -> None:
            if listener in self._any:
                self._any.remove(listener)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners.get(event, ())):
            listener(payload)
        for any_listener in list(self._any):
            any_listener(event, payload)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
            self._any.clear()
        else:
            self._listeners.pop(event, None)


def log_events(sink: EventSink) -> Callable[[], None]:
    """Mirror every event to the `host_steward.events` logger."""

    def _log(event: str, payload: Any) -> None:
        if event.endswith("_error"):
            events_logger.warning("%s %s", event, payload)
        else:
            events_logger.debug("%s %s", event, payload)

    return sink.on_any(_log)


@dataclass(frozen=True)
class EventJournal:
    """Append-only JSON-lines record of the events of a run."""

    path: Path

    def record(self, event: str, payload: Any) -> None:
        entry: Dict[str, Any] = {"event": event, "ts": time.time()}
        if payload is not None:
            entry["payload"] = payload
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, sort_keys=True, default=str) + "\n")

    def attach(self, sink: EventSink) -> Callable[[], None]:
        logger.info("Recording events to %s", self.path)
        return sink.on_any(self.record)
