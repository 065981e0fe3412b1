import json
import os

import pytest
import yaml

from host_steward.engine import Manager
from host_steward.errors import ApplyError, CommandError, ConfigError
from host_steward.host import HostFacts, HostUser
from host_steward.item import Context, ItemStatus, PlanAction
from host_steward.lib.command import run_cmd, shell_argv
from host_steward.lib.pkg import apt_install_argv, is_valid_apt_name
from host_steward.plugins import AptPackage, AptPlugin, ExecCommand, ExecPlugin, FileContent
from host_steward.profile import Profile


def _facts(home) -> HostFacts:
    return HostFacts(os="linux", arch="x86_64", user=HostUser(name="dev", home=str(home)))


def _run(tmp_path, *items, dry_run: bool = False) -> Manager:
    mgr = Manager(facts=_facts(tmp_path), dry_run=dry_run).init([Profile("base", items=list(items))])
    mgr.analyze()
    return mgr


def test_file_content_writes_then_probes_applied(tmp_path) -> None:
    item = FileContent(".config/tool/settings.json", data={"b": 1, "a": [1, 2]}, fmt="json")
    mgr = _run(tmp_path, item)
    assert item.status == ItemStatus.PENDING
    assert item.render() == "~/.config/tool/settings.json"

    mgr.apply()

    target = tmp_path / ".config" / "tool" / "settings.json"
    assert json.loads(target.read_text(encoding="utf-8")) == {"a": [1, 2], "b": 1}

    again = FileContent(".config/tool/settings.json", data={"b": 1, "a": [1, 2]}, fmt="json")
    mgr = _run(tmp_path, again)
    assert again.status == ItemStatus.APPLIED
    assert mgr.plan()[-1].action == PlanAction.NOOP


def test_file_content_yaml_mode_and_cleanup(tmp_path) -> None:
    item = FileContent("conf.yaml", data={"name": "x"}, fmt="yaml", mode=0o600)
    mgr = _run(tmp_path, item)
    mgr.apply()

    target = tmp_path / "conf.yaml"
    assert yaml.safe_load(target.read_text(encoding="utf-8")) == {"name": "x"}
    assert (target.stat().st_mode & 0o777) == 0o600

    mgr.cleanup()
    assert not target.exists()


def test_file_content_dry_run_writes_nothing(tmp_path) -> None:
    item = FileContent("notes.txt", content="hello\n")
    mgr = _run(tmp_path, item, dry_run=True)
    mgr.apply()
    assert not (tmp_path / "notes.txt").exists()


def test_file_content_invalid_format_is_skipped(tmp_path) -> None:
    item = FileContent("x.toml", data={"a": 1}, fmt="toml")
    mgr = _run(tmp_path, item)
    decision = mgr.plan()[-1]
    assert decision.action == PlanAction.SKIP
    assert decision.reason.startswith("invalid: unsupported file format")


def test_file_from_config_parses_octal_mode() -> None:
    item = FileContent.from_config({"path": "/etc/x", "content": "y", "mode": "0644"}, item_id="x")
    assert item.mode == 0o644
    assert item.id == "x"
    with pytest.raises(ConfigError, match="octal"):
        FileContent.from_config({"path": "/etc/x", "mode": "rw"})


def test_exec_command_uses_check_for_probe(tmp_path) -> None:
    marker = tmp_path / "marker"
    item = ExecCommand("touch marker", "touch marker", check="test -f marker", cleanup_command="rm -f marker")
    mgr = _run(tmp_path, item)
    assert isinstance(mgr.plugins["exec"], ExecPlugin)
    assert item.status == ItemStatus.PENDING

    mgr.apply()
    assert marker.exists()

    again = ExecCommand("touch marker", "touch marker", check="test -f marker")
    _run(tmp_path, again)
    assert again.status == ItemStatus.APPLIED

    mgr.cleanup()
    assert not marker.exists()


def test_exec_command_failure_surfaces_as_apply_error(tmp_path) -> None:
    item = ExecCommand("fail", "exit 3")
    mgr = _run(tmp_path, item)
    with pytest.raises(ApplyError, match="Command failed \\(3\\)"):
        mgr.apply()
    assert item.status == ItemStatus.FAILED


def test_exec_command_rejects_unknown_shell(tmp_path) -> None:
    item = ExecCommand("odd", "true", shell="fish")
    mgr = _run(tmp_path, item)
    assert mgr.plan()[-1].reason == "invalid: exec: unsupported shell 'fish'"


def test_apt_plugin_gets_exec_helper_injected(tmp_path) -> None:
    pkg = AptPackage("ripgrep")
    mgr = Manager(facts=_facts(tmp_path)).init([Profile("base", items=[pkg])])

    apt = mgr.plugins["apt"]
    assert isinstance(apt, AptPlugin)
    assert apt.exec is mgr.plugins["exec"]
    order = mgr.deps.topo_order()
    assert order.index(apt.exec.id) < order.index(apt.id) < order.index(pkg.id)


def test_apt_package_is_linux_only() -> None:
    pkg = AptPackage("ripgrep")
    assert pkg.is_compatible(HostFacts(os="linux"))
    assert not pkg.is_compatible(HostFacts(os="darwin"))


def test_apt_names_and_argv() -> None:
    assert is_valid_apt_name("libssl3")
    assert is_valid_apt_name("g++")
    assert not is_valid_apt_name("Bad Name")
    assert apt_install_argv(["git"]) == ["apt-get", "install", "-y", "--no-install-recommends", "git"]
    assert apt_install_argv(["git"], with_recommends=True) == ["apt-get", "install", "-y", "git"]


def test_shell_argv_with_sudo() -> None:
    assert shell_argv("id") == ["sh", "-c", "id"]
    assert shell_argv("id", shell="bash", sudo=True, sudo_user="root") == ["sudo", "-n", "-u", "root", "bash", "-c", "id"]
    with pytest.raises(ValueError, match="Unsupported shell"):
        shell_argv("id", shell="fish")


def test_run_cmd_reports_missing_executable() -> None:
    r = run_cmd(["definitely-not-a-real-binary-xyz"], check=False)
    assert r.returncode == 127
    with pytest.raises(CommandError):
        run_cmd(["definitely-not-a-real-binary-xyz"])


def test_run_cmd_dry_run_does_not_execute(tmp_path) -> None:
    target = tmp_path / "nope"
    r = run_cmd(["touch", os.fspath(target)], dry_run=True)
    assert r.ok
    assert not target.exists()


def test_exec_plugin_honours_sudo_auto(monkeypatch, tmp_path) -> None:
    seen: list[list[str]] = []

    def fake_run_cmd(argv, **kwargs):
        seen.append(list(argv))
        return None

    monkeypatch.setattr("host_steward.plugins.exec.run_cmd", fake_run_cmd)
    plugin = ExecPlugin()
    sudoer = HostFacts(os="linux", user=HostUser(can_sudo=True))
    plain = HostFacts(os="linux", user=HostUser(can_sudo=False))

    plugin.run("id", Context(facts=sudoer), sudo="auto")
    plugin.run("id", Context(facts=plain), sudo="auto")

    assert seen == [["sudo", "-n", "sh", "-c", "id"], ["sh", "-c", "id"]]


def test_exec_command_runs_as_sudo_user(monkeypatch, tmp_path) -> None:
    seen: list[list[str]] = []

    def fake_run_cmd(argv, **kwargs):
        seen.append(list(argv))
        return None

    monkeypatch.setattr("host_steward.plugins.exec.run_cmd", fake_run_cmd)
    item = ExecCommand.from_config({"command": "id", "sudo": True, "sudo_user": "deploy"})
    item.bind_plugin(ExecPlugin())

    item.apply(Context(facts=_facts(tmp_path)))

    assert seen == [["sudo", "-n", "-u", "deploy", "sh", "-c", "id"]]


def test_exec_command_rejects_empty_sudo_user(tmp_path) -> None:
    item = ExecCommand("odd", "true", sudo=True, sudo_user="")
    mgr = _run(tmp_path, item)
    assert mgr.plan()[-1].reason == "invalid: exec: sudo_user must be a non-empty string"
