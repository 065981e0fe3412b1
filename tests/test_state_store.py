import json

import pytest

from host_steward.state_store import (
    AppliedEntry,
    ApplySnapshot,
    PlanSnapshot,
    load_last_apply,
    load_state,
    save_last_apply,
    save_last_plan,
    save_state,
)


def test_missing_state_file_reads_as_empty(tmp_path) -> None:
    assert load_state(str(tmp_path / "nope.json")) == {}
    assert load_last_apply(str(tmp_path / "nope.json")) is None


def test_yaml_and_json_are_chosen_by_suffix(tmp_path) -> None:
    save_state(str(tmp_path / "s.yaml"), {"a": 1})
    save_state(str(tmp_path / "s.json"), {"a": 1})
    assert (tmp_path / "s.yaml").read_text(encoding="utf-8").strip() == "a: 1"
    assert json.loads((tmp_path / "s.json").read_text(encoding="utf-8")) == {"a": 1}
    assert load_state(str(tmp_path / "s.yaml")) == {"a": 1}


def test_non_mapping_state_is_rejected(tmp_path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError, match="object/dict"):
        load_state(str(path))


def test_last_apply_survives_a_save(tmp_path) -> None:
    path = str(tmp_path / "state" / "last-apply.json")
    snapshot = ApplySnapshot(
        config_path="/cfg.yaml",
        host={"os": "linux", "arch": "x86_64", "home": "/home/dev"},
        applied=[AppliedEntry(id="1", kind="file:content", label="~/.x", profile="base", summary="write ~/.x")],
    )
    save_last_apply(path, snapshot)

    raw = json.loads((tmp_path / "state" / "last-apply.json").read_text(encoding="utf-8"))
    assert raw["configPath"] == "/cfg.yaml"
    assert load_last_apply(path) == snapshot


def test_last_plan_is_written(tmp_path) -> None:
    path = str(tmp_path / "last-plan.json")
    save_last_plan(path, PlanSnapshot(config_path="/cfg.yaml", host={}, decisions=[{"item_id": "a", "action": "apply"}]))
    raw = json.loads((tmp_path / "last-plan.json").read_text(encoding="utf-8"))
    assert raw["decisions"] == [{"item_id": "a", "action": "apply"}]


@pytest.mark.parametrize("name, text", [("last-apply.json", "{not json"), ("last-apply.json", "[]"), ("last-apply.yaml", "a: [")])
def test_unreadable_last_apply_reads_as_absent(tmp_path, name, text) -> None:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    assert load_last_apply(str(path)) is None
