import pytest

from host_steward.engine import Manager
from host_steward.errors import ApplyError, CleanupError, ConfigError, ItemValidationError, ProbeError, StewardError
from host_steward.events import EventSink
from host_steward.host import HostFacts, HostUser
from host_steward.item import Context, Item, ItemStatus, PlanAction, Plugin, PluginBound, UsedPlugin
from host_steward.matching import ANY_OS, os_is
from host_steward.profile import Profile


class Step(Item):
    def __init__(self, item_id: str, log: list[str], *, fail: bool = False, probed=ItemStatus.PENDING, **kwargs) -> None:
        super().__init__(kind="step", item_id=item_id, **kwargs)
        self.log = log
        self.fail = fail
        self.probed = probed

    def probe(self, ctx: Context) -> ItemStatus:
        self.log.append(f"probe:{self.id}")
        return self.probed

    def apply(self, ctx: Context) -> None:
        self.log.append(f"apply:{self.id}")
        if self.fail:
            raise RuntimeError(f"{self.id} exploded")

    def cleanup(self, ctx: Context) -> None:
        self.log.append(f"cleanup:{self.id}")
        if self.fail:
            raise RuntimeError(f"{self.id} cleanup exploded")


class Strict(Step):
    validated = 0

    def validate(self, ctx: Context) -> None:
        self.validated += 1
        raise ItemValidationError("bad definition")


class HostPlugin(Plugin):
    def __init__(self, key: str = "tool", log: list[str] | None = None) -> None:
        super().__init__(key, ANY_OS)
        self.log = log if log is not None else []
        self.helper: Plugin | None = None

    def probe(self, ctx: Context) -> ItemStatus:
        self.log.append(f"probe:{self.key}")
        return ItemStatus.APPLIED


class NeedsHelper(HostPlugin):
    def used_plugins(self) -> list[UsedPlugin]:
        return [UsedPlugin(key="helper", factory=lambda: HostPlugin("helper", self.log), assign=self._assign)]

    def _assign(self, plugin: Plugin) -> None:
        self.helper = plugin


class Tooled(PluginBound, Step):
    plugin_key = "tool"
    built = 0

    def plugin_factory(self) -> Plugin:
        Tooled.built += 1
        return HostPlugin("tool", self.log)


def _facts() -> HostFacts:
    return HostFacts(os="linux", arch="x86_64", hostname="box", user=HostUser(name="dev", home="/home/dev"))


def _manager(*profiles: Profile, events: EventSink | None = None) -> Manager:
    return Manager(events=events, facts=_facts()).init(list(profiles))


def test_apply_runs_in_dependency_order_and_stops_at_first_failure() -> None:
    log: list[str] = []
    a = Step("a", log)
    b = Step("b", log, fail=True, requires=["a"])
    c = Step("c", log, requires=["b"])
    mgr = _manager(Profile("base", items=[c, b, a]))
    mgr.analyze()
    log.clear()

    with pytest.raises(ApplyError, match="b exploded") as err:
        mgr.apply()

    assert err.value.item_id == "b"
    assert log == ["apply:a", "apply:b"]
    assert a.status == ItemStatus.APPLIED
    assert b.status == ItemStatus.FAILED
    assert b.state.attempts == 1
    assert c.status == ItemStatus.PENDING
    assert c.state.waiting_on == {"b"}


def test_plan_is_idempotent_and_reflects_probes() -> None:
    log: list[str] = []
    done = Step("done", log, probed=ItemStatus.APPLIED)
    todo = Step("todo", log, requires=["done"])
    mac = Step("mac", log, matches=os_is("darwin"))
    mgr = _manager(Profile("base", items=[done, todo, mac]))
    mgr.analyze()

    first = [(d.item.id, d.action, d.reason) for d in mgr.plan()]
    second = [(d.item.id, d.action, d.reason) for d in mgr.plan()]

    assert first == second
    assert first == [
        ("done", PlanAction.NOOP, None),
        ("mac", PlanAction.SKIP, "incompatible host"),
        ("todo", PlanAction.APPLY, None),
    ]
    assert mac.status == ItemStatus.GIVE_UP
    assert "probe:mac" not in log


def test_inactive_profile_items_are_skipped() -> None:
    log: list[str] = []
    item = Step("x", log)
    mgr = _manager(Profile("mac", matches=os_is("darwin"), items=[item]))
    mgr.analyze()
    mgr.apply()
    assert log == []
    assert item.status == ItemStatus.GIVE_UP
    assert mgr.active_profiles() == []


def test_validation_failure_skips_at_plan_and_fails_at_apply() -> None:
    log: list[str] = []
    bad = Strict("bad", log)
    mgr = _manager(Profile("base", items=[bad, Step("after", log, requires=["bad"])]))
    mgr.analyze()

    decision, _ = mgr.plan()
    assert decision.action == PlanAction.SKIP
    assert decision.reason == "invalid: bad definition"

    dependent = mgr.deps.nodes["after"]
    with pytest.raises(ApplyError, match="bad definition"):
        mgr.apply()
    assert "apply:bad" not in log
    assert bad.validated == 1
    assert bad.status == ItemStatus.FAILED
    assert bad.state.last_error == "invalid: bad definition"
    assert "apply:after" not in log
    assert dependent.status == ItemStatus.PENDING


def test_cycle_members_are_skipped_and_never_applied() -> None:
    log: list[str] = []
    a = Step("a", log, requires=["b"])
    b = Step("b", log, requires=["a"])
    free = Step("free", log)
    mgr = _manager(Profile("base", items=[a, b, free]))
    assert mgr.report.cycles

    mgr.analyze()
    decisions = {d.item.id: d for d in mgr.plan()}
    assert decisions["a"].reason == "dependency cycle"
    assert decisions["b"].reason == "dependency cycle"

    mgr.apply()
    assert "apply:a" not in log and "apply:b" not in log
    assert free.status == ItemStatus.APPLIED


def test_missing_dependency_is_reported_but_not_fatal() -> None:
    log: list[str] = []
    item = Step("x", log, requires=["nowhere"])
    mgr = _manager(Profile("base", items=[item]))
    assert mgr.report.missing == ["nowhere"]
    mgr.analyze()
    mgr.apply()
    assert item.status == ItemStatus.APPLIED


def test_duplicate_item_ids_are_rejected() -> None:
    log: list[str] = []
    with pytest.raises(ConfigError, match="Duplicate item id 'x'"):
        _manager(Profile("one", items=[Step("x", log)]), Profile("two", items=[Step("x", log)]))


def test_uninitialized_manager_has_no_context() -> None:
    with pytest.raises(StewardError, match="not initialized"):
        Manager().context


def test_plugins_are_shared_and_ordered_before_items() -> None:
    log: list[str] = []
    Tooled.built = 0
    first = Tooled("first", log)
    second = Tooled("second", log)
    mgr = _manager(Profile("base", items=[first, second]))

    assert Tooled.built == 1
    assert first.plugin is second.plugin
    plugin = mgr.plugins["tool"]
    order = mgr.deps.topo_order()
    assert order.index(plugin.id) < order.index("first")

    mgr.analyze()
    assert log[0] == "probe:tool"
    assert plugin.status == ItemStatus.APPLIED


def test_explicit_plugin_instance_wins_over_factory() -> None:
    log: list[str] = []
    Tooled.built = 0
    shared = HostPlugin("tool", log)
    explicit = Tooled("explicit", log)
    explicit.plugin = shared
    implicit = Tooled("implicit", log)
    mgr = _manager(Profile("base", items=[implicit, explicit]))

    assert Tooled.built == 0
    assert implicit.plugin is shared
    assert mgr.plugins == {"tool": shared}


def test_conflicting_plugin_instances_are_rejected() -> None:
    log: list[str] = []
    one = Tooled("one", log)
    one.plugin = HostPlugin("tool")
    two = Tooled("two", log)
    two.plugin = HostPlugin("tool")
    with pytest.raises(ConfigError, match="Conflicting plugin instances"):
        _manager(Profile("base", items=[one, two]))


def test_helper_plugins_are_injected_before_their_users() -> None:
    log: list[str] = []
    user_plugin = NeedsHelper("tool", log)
    item = Tooled("x", log)
    item.plugin = user_plugin
    mgr = _manager(Profile("base", items=[item]))

    helper = mgr.plugins["helper"]
    assert user_plugin.helper is helper
    order = mgr.deps.topo_order()
    assert order.index(helper.id) < order.index(user_plugin.id) < order.index("x")


def test_probe_errors_are_wrapped() -> None:
    class Broken(Step):
        def probe(self, ctx: Context) -> ItemStatus:
            raise OSError("disk on fire")

    events = EventSink()
    seen: list[str] = []
    events.on("item:probe_error", lambda p: seen.append(p["error"]))
    mgr = _manager(Profile("base", items=[Broken("x", [])]), events=events)

    with pytest.raises(ProbeError, match="disk on fire"):
        mgr.analyze()
    assert seen == ["disk on fire"]


def test_cleanup_runs_in_reverse_and_collects_failures() -> None:
    log: list[str] = []
    a = Step("a", log)
    b = Step("b", log, fail=True, requires=["a"])
    c = Step("c", log, requires=["b"])
    mgr = _manager(Profile("base", items=[a, b, c]))

    failures = mgr.cleanup()
    assert log == ["cleanup:c", "cleanup:b", "cleanup:a"]
    assert failures == [("b", "b cleanup exploded")]

    with pytest.raises(CleanupError, match="1 item"):
        mgr.cleanup(strict=True)


def test_run_emits_lifecycle_events() -> None:
    events = EventSink()
    seen: list[str] = []
    events.on_any(lambda e, p: seen.append(e))
    mgr = _manager(Profile("base", items=[Step("a", [])]), events=events)
    mgr.analyze()
    mgr.plan()
    mgr.apply()

    manager_events = [e for e in seen if e.startswith("manager:")]
    assert manager_events == [
        "manager:init_start",
        "manager:deps_built",
        "manager:init_done",
        "manager:analyze_start",
        "manager:analyze_done",
        "manager:plan_start",
        "manager:plan_done",
        "manager:apply_start",
        "manager:apply_done",
    ]
    assert seen.index("item:apply_start") < seen.index("item:apply_done")


def test_init_accepts_a_callable() -> None:
    def build() -> list[Profile]:
        return [Profile("base", items=[Step("a", [])])]

    mgr = Manager(facts=_facts()).init(build)
    assert mgr.config_source == "build"
    assert [it.id for it in mgr.items()] == ["a"]
