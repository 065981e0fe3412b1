"""Orchestration engine.

Phases run strictly in sequence: init -> analyze -> plan -> apply -> cleanup.
Items within a phase are processed one at a time in dependency order, so a
dependency's side effects are complete before any dependent starts.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ApplyError, CleanupError, ConfigError, ItemValidationError, ProbeError, StewardError
from .events import EventSink
from .graph import DependencyGraph, GraphReport
from .host import HostFacts, detect_host_facts
from .item import Context, Item, ItemStatus, PlanAction, PlanDecision, Plugin, PluginBound
from .profile import Profile

logger = logging.getLogger(__name__)

ProfileSource = Union[Sequence[Profile], Callable[[], Sequence[Profile]], str, "os.PathLike[str]"]


def _error_text(e: BaseException) -> str:
    return str(e) or type(e).__name__


class Manager:
    def __init__(
        self,
        *,
        events: Optional[EventSink] = None,
        facts: Optional[HostFacts] = None,
        dry_run: bool = False,
        probe_sudo: bool = True,
    ) -> None:
        self.events = events if events is not None else EventSink()
        self.dry_run = dry_run
        self.probe_sudo = probe_sudo
        self.profiles: List[Profile] = []
        self.plugins: Dict[str, Plugin] = {}
        self.deps = DependencyGraph()
        self.report = GraphReport()
        self.config_source: Optional[str] = None
        self._facts = facts
        self._ctx: Optional[Context] = None
        self._invalid: Dict[str, str] = {}

    @property
    def host(self) -> HostFacts:
        if self._facts is None:
            raise StewardError("Manager is not initialized; call init() first")
        return self._facts

    @property
    def context(self) -> Context:
        if self._ctx is None:
            raise StewardError("Manager is not initialized; call init() first")
        return self._ctx

    def items(self) -> List[Item]:
        """Configuration items (plugins excluded), in profile order."""
        return [it for p in self.profiles for it in p.items if not isinstance(it, Plugin)]

    def active_profiles(self) -> List[Profile]:
        return [p for p in self.profiles if p.is_active(self.host)]

    # Init

    def _load(self, source: ProfileSource) -> List[Profile]:
        if isinstance(source, (str, os.PathLike)):
            from .config import load_profiles

            self.config_source = os.fspath(source)
            return load_profiles(self.config_source)
        if callable(source):
            self.config_source = getattr(source, "__name__", repr(source))
            profiles = source()
        else:
            profiles = source
        profiles = list(profiles)
        for p in profiles:
            if not isinstance(p, Profile):
                raise ConfigError(f"Expected Profile, got {type(p).__name__}")
        return profiles

    def init(self, source: ProfileSource) -> "Manager":
        label = os.fspath(source) if isinstance(source, (str, os.PathLike)) else None
        self.events.emit("manager:init_start", {"config": label})

        profiles = self._load(source)
        if self._facts is None:
            self._facts = detect_host_facts(probe_sudo=self.probe_sudo)
        self._ctx = Context(facts=self._facts, events=self.events, dry_run=self.dry_run)

        self.profiles = profiles
        for p in profiles:
            p.attach(self.events)

        items = [it for p in profiles for it in p.items]
        seen: Dict[str, str] = {}
        for p in profiles:
            for it in p.items:
                if it.id in seen and not isinstance(it, Plugin):
                    raise ConfigError(f"Duplicate item id '{it.id}' in profiles '{seen[it.id]}' and '{p.name}'")
                seen[it.id] = p.name

        ownership = self._discover_plugins(items)
        helpers = self._inject_helpers()

        graph = DependencyGraph()
        non_plugins = [it for it in items if not isinstance(it, Plugin)]
        graph.add_items(list(self.plugins.values()) + non_plugins)
        for helper, plugin in helpers:
            graph.add_edge(helper.id, plugin.id)
        for plugin, item in ownership:
            graph.add_edge(plugin.id, item.id)
        self.deps = graph

        self.report = graph.validate()
        self.events.emit(
            "manager:deps_built",
            {
                "items": len(graph),
                "edges": len(graph.edges()),
                "roots": graph.roots(),
                "missing": list(self.report.missing),
                "cycles": [list(c) for c in self.report.cycles],
            },
        )
        if self.report.missing:
            logger.warning("Missing dependencies: %s", ", ".join(self.report.missing))
        for cycle in self.report.cycles:
            logger.warning("Dependency cycle: %s", " -> ".join(cycle))

        self.events.emit("manager:init_done", {"profiles": len(profiles), "plugins": len(self.plugins)})
        logger.info("Initialized %d profile(s), %d item(s), %d plugin(s)", len(profiles), len(non_plugins), len(self.plugins))
        return self

    def _register_plugin(self, plugin: Plugin) -> Plugin:
        existing = self.plugins.get(plugin.key)
        if existing is None:
            self.plugins[plugin.key] = plugin
            plugin.attach(self.events)
            return plugin
        if existing is not plugin:
            raise ConfigError(f"Conflicting plugin instances for key '{plugin.key}'")
        return existing

    def _discover_plugins(self, items: Sequence[Item]) -> List[Tuple[Plugin, Item]]:
        """Resolve owning plugins, sharing one instance per plugin key."""

        # Explicit instances first so that factories reuse them.
        for item in items:
            if isinstance(item, Plugin):
                self._register_plugin(item)
            elif isinstance(item, PluginBound) and item.plugin is not None:
                self._register_plugin(item.plugin)

        ownership: List[Tuple[Plugin, Item]] = []
        for item in items:
            if isinstance(item, Plugin) or not isinstance(item, PluginBound):
                continue
            plugin = item.plugin
            if plugin is None:
                key = item.plugin_key
                if not key:
                    raise ConfigError(f"{item.render()}: no plugin and no plugin_key")
                plugin = self.plugins.get(key)
                if plugin is None:
                    plugin = item.plugin_factory()
                    if not isinstance(plugin, Plugin):
                        raise ConfigError(f"{item.render()}: plugin factory returned {type(plugin).__name__}")
                    if plugin.key != key:
                        raise ConfigError(f"{item.render()}: factory for '{key}' built plugin '{plugin.key}'")
                    self._register_plugin(plugin)
                item.bind_plugin(plugin)
            ownership.append((plugin, item))
        return ownership

    def _inject_helpers(self) -> List[Tuple[Plugin, Plugin]]:
        edges: List[Tuple[Plugin, Plugin]] = []
        pending = list(self.plugins.values())
        while pending:
            plugin = pending.pop(0)
            for used in plugin.used_plugins():
                helper = self.plugins.get(used.key)
                if helper is None:
                    helper = used.factory()
                    if not isinstance(helper, Plugin) or helper.key != used.key:
                        raise ConfigError(f"{plugin.render()}: helper factory for '{used.key}' is invalid")
                    self._register_plugin(helper)
                    pending.append(helper)
                used.assign(helper)
                edges.append((helper, plugin))
        return edges

    # Analyze

    def _ordered(self) -> List[Item]:
        return [self.deps.nodes[i] for i in self.deps.topo_order()]

    def _probe(self, item: Item) -> None:
        ctx = self.context
        if not item.is_compatible(ctx.facts):
            item.give_up("incompatible host")
            return
        if item.status in (ItemStatus.APPLIED, ItemStatus.GIVE_UP):
            return
        self.events.emit("item:probe_start", item.ref())
        try:
            status = item.probe(ctx)
        except Exception as e:
            self.events.emit("item:probe_error", dict(item.ref(), error=_error_text(e)))
            raise ProbeError(item.id, _error_text(e)) from e
        if isinstance(status, ItemStatus):
            item.set_status(status)
        self.events.emit("item:probe_done", dict(item.ref(), status=item.status.value))

    def analyze(self) -> None:
        self.events.emit("manager:analyze_start")
        ordered = self._ordered()
        for item in ordered:
            if isinstance(item, Plugin):
                self._probe(item)
        for item in ordered:
            if not isinstance(item, Plugin):
                self._probe(item)
        self.events.emit("manager:analyze_done")

    # Plan

    def plan_item(self, item: Item) -> PlanDecision:
        ctx = self.context
        if item.is_compatible(ctx.facts):
            try:
                item.validate(ctx)
            except ItemValidationError as e:
                self._invalid[item.id] = f"invalid: {_error_text(e)}"
                self.events.emit("item:validate_error", dict(item.ref(), error=_error_text(e)))
                return PlanDecision(item, PlanAction.SKIP, reason=self._invalid[item.id])
        self._invalid.pop(item.id, None)
        decision = item.plan(ctx)
        if decision is None:
            decision = Item.plan(item, ctx)
        return decision

    def plan(self) -> List[PlanDecision]:
        self.events.emit("manager:plan_start")
        ordered = self._ordered()
        placed = {it.id for it in ordered}
        decisions = [self.plan_item(it) for it in ordered]
        for item_id, item in self.deps.nodes.items():
            if item_id not in placed:
                decisions.append(PlanDecision(item, PlanAction.SKIP, reason="dependency cycle"))
        counts = {a.value: sum(1 for d in decisions if d.action == a) for a in PlanAction}
        self.events.emit("manager:plan_done", counts)
        return decisions

    # Apply

    def _release(self, item: Item) -> None:
        for dependent in self.deps.dependents_of(item.id):
            node = self.deps.nodes.get(dependent)
            if node is not None:
                node.remove_wait(item.id)

    def _seed_waits(self, ordered: Sequence[Item]) -> None:
        for item in ordered:
            if item.status in (ItemStatus.APPLIED, ItemStatus.GIVE_UP):
                continue
            for dep in self.deps.dependencies_of(item.id):
                node = self.deps.nodes.get(dep)
                if node is not None and node.status != ItemStatus.APPLIED:
                    item.add_wait(dep)

    def apply_item(self, item: Item) -> bool:
        """Apply one item. Returns False when skipped, raises ApplyError on failure.

        An item the last plan found invalid fails without being applied.
        """

        ctx = self.context
        if not item.is_compatible(ctx.facts):
            item.give_up("incompatible host")
            self._release(item)
            return False
        if item.status == ItemStatus.APPLIED:
            self._release(item)
            return False
        if item.status == ItemStatus.GIVE_UP:
            return False

        self.events.emit("item:apply_start", item.ref())
        invalid = self._invalid.get(item.id)
        if invalid is not None:
            item.mark_failed(invalid)
            self.events.emit("item:apply_error", dict(item.ref(), error=invalid))
            raise ApplyError(item.id, invalid)
        try:
            item.apply(ctx)
        except Exception as e:
            msg = _error_text(e)
            item.mark_failed(msg)
            self.events.emit("item:apply_error", dict(item.ref(), error=msg))
            raise ApplyError(item.id, msg) from e
        item.mark_applied()
        self.events.emit("item:apply_done", item.ref())
        self._release(item)
        return True

    def apply(self) -> None:
        """Apply every item in dependency order, stopping at the first failure."""

        self.events.emit("manager:apply_start")
        ordered = self._ordered()
        self._seed_waits(ordered)
        for item in ordered:
            self.apply_item(item)
        self.events.emit("manager:apply_done")

    # Cleanup

    def cleanup(self, *, strict: bool = False) -> List[Tuple[str, str]]:
        """Best-effort reversal in reverse dependency order."""

        ctx = self.context
        self.events.emit("manager:cleanup_start")
        failures: List[Tuple[str, str]] = []
        for item in reversed(self._ordered()):
            if not item.is_compatible(ctx.facts):
                item.give_up("incompatible host")
                continue
            if item.status == ItemStatus.GIVE_UP:
                continue
            self.events.emit("item:cleanup_start", item.ref())
            try:
                item.cleanup(ctx)
            except Exception as e:
                msg = _error_text(e)
                logger.warning("Cleanup failed for %s: %s", item.render(), msg)
                self.events.emit("item:cleanup_error", dict(item.ref(), error=msg))
                failures.append((item.id, msg))
                continue
            self.events.emit("item:cleanup_done", item.ref())
        self.events.emit("manager:cleanup_done", {"failed": len(failures)})
        if strict and failures:
            raise CleanupError(failures)
        return failures
