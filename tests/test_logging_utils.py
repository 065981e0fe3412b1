import logging

from host_steward.logging_utils import configure_logging


def test_run_log_goes_to_state_dir_and_is_configured_once(tmp_path, monkeypatch) -> None:
    root = logging.getLogger()
    monkeypatch.setattr(root, "_host_steward_log_path", None, raising=False)
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "level", root.level)
    monkeypatch.setenv("HOST_STEWARD_HOME", str(tmp_path / "state"))
    before = len(root.handlers)

    path = configure_logging()
    assert path == str(tmp_path / "state" / "host-steward.log")
    assert configure_logging(str(tmp_path / "other.log"), also_console=True) == path
    assert len(root.handlers) == before + 1

    logging.getLogger("host_steward.events").warning("item:apply_error boom")
    assert "item:apply_error boom" in (tmp_path / "state" / "host-steward.log").read_text(encoding="utf-8")
    assert not (tmp_path / "other.log").exists()
