import json
import logging

import pytest

from host_steward.events import EventJournal, EventSink, log_events


def test_listeners_run_in_registration_order() -> None:
    sink = EventSink()
    seen: list[str] = []
    sink.on("x", lambda p: seen.append(f"a{p}"))
    sink.on("x", lambda p: seen.append(f"b{p}"))
    sink.on_any(lambda e, p: seen.append(f"any:{e}"))

    sink.emit("x", 1)

    assert seen == ["a1", "b1", "any:x"]


def test_unsubscribe_and_once() -> None:
    sink = EventSink()
    seen: list[object] = []
    off = sink.on("x", seen.append)
    sink.once("x", lambda p: seen.append(("once", p)))

    sink.emit("x", 1)
    off()
    sink.emit("x", 2)

    assert seen == [1, ("once", 1)]
    assert sink.listener_count("x") == 0


def test_listener_exceptions_propagate_to_emitter() -> None:
    sink = EventSink()

    def boom(_payload: object) -> None:
        raise RuntimeError("listener failed")

    sink.on("x", boom)
    with pytest.raises(RuntimeError, match="listener failed"):
        sink.emit("x")


def test_remove_all_listeners() -> None:
    sink = EventSink()
    seen: list[object] = []
    sink.on("x", seen.append)
    sink.on("y", seen.append)
    sink.remove_all_listeners("x")
    sink.emit("x", 1)
    sink.emit("y", 2)
    sink.remove_all_listeners()
    sink.emit("y", 3)
    assert seen == [2]


def test_log_events_warns_on_errors(caplog) -> None:
    sink = EventSink()
    log_events(sink)
    with caplog.at_level(logging.DEBUG, logger="host_steward.events"):
        sink.emit("item:apply_done", {"item_id": "a"})
        sink.emit("item:apply_error", {"item_id": "a", "error": "nope"})

    levels = [(r.levelno, r.getMessage().split(" ")[0]) for r in caplog.records]
    assert (logging.DEBUG, "item:apply_done") in levels
    assert (logging.WARNING, "item:apply_error") in levels


def test_journal_appends_json_lines(tmp_path) -> None:
    sink = EventSink()
    journal = EventJournal(path=tmp_path / "events" / "run.jsonl")
    journal.attach(sink)

    sink.emit("manager:plan_start")
    sink.emit("manager:plan_done", {"apply": 1})

    lines = (tmp_path / "events" / "run.jsonl").read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert [e["event"] for e in entries] == ["manager:plan_start", "manager:plan_done"]
    assert "payload" not in entries[0]
    assert entries[1]["payload"] == {"apply": 1}
