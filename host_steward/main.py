from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .engine import Manager
from .errors import StewardError
from .events import EventJournal, EventSink, log_events
from .host import host_key
from .item import PlanAction, PlanDecision
from .lib.env import Paths
from .logging_utils import configure_logging
from .removals import RemovalCandidate, compute_removals, group_by_profile, snapshot_from_run
from .runner import apply_all, plan_stats
from .state_store import PlanSnapshot, load_last_apply, save_last_apply, save_last_plan

logger = logging.getLogger(__name__)


def _paths(args: argparse.Namespace) -> Paths:
    return Paths(state_dir=args.state_dir) if args.state_dir else Paths()


def _config_key(args: argparse.Namespace) -> str:
    return str(Path(args.config).expanduser().resolve())


def _manager(args: argparse.Namespace) -> Manager:
    events = EventSink()
    log_events(events)
    if args.event_log:
        EventJournal(path=Path(args.event_log).expanduser()).attach(events)
    mgr = Manager(events=events, dry_run=bool(getattr(args, "dry_run", False)))
    mgr.init(_config_key(args))
    return mgr


def _print_decisions(decisions: Sequence[PlanDecision]) -> None:
    for d in decisions:
        if d.action == PlanAction.APPLY:
            print(f"+ {d.summary or d.item.render()}")
        elif d.action == PlanAction.NOOP:
            print(f"= {d.item.render()}")
        else:
            print(f"- {d.item.render()} ({d.reason or 'skipped'})")


def _print_removals(removed: List[RemovalCandidate]) -> None:
    if not removed:
        return
    print("")
    print("Removals (from last apply):")
    for profile_name, entries in group_by_profile(removed).items():
        print(f"  {profile_name}:")
        for r in entries:
            print(f"  ! {r.label}")


def _save_plan(args: argparse.Namespace, mgr: Manager, decisions: Sequence[PlanDecision]) -> None:
    snapshot = PlanSnapshot(
        config_path=_config_key(args),
        host=host_key(mgr.host),
        decisions=[
            {"item_id": d.item.id, "action": d.action.value, "reason": d.reason, "summary": d.summary}
            for d in decisions
        ],
    )
    save_last_plan(_paths(args).last_plan, snapshot)


def cmd_analyze(args: argparse.Namespace) -> int:
    mgr = _manager(args)
    mgr.analyze()
    report = mgr.report
    print(f"Items: {len(mgr.deps)}  Edges: {len(mgr.deps.edges())}  Plugins: {len(mgr.plugins)}")
    for missing in report.missing:
        print(f"missing dependency: {missing}")
    for cycle in report.cycles:
        print(f"dependency cycle: {' -> '.join(cycle)}")
    for item in mgr.deps.all_items():
        print(f"{item.status.value:>9}  {item.render()}")
    return 0 if report.ok else 1


def cmd_plan(args: argparse.Namespace) -> int:
    mgr = _manager(args)
    mgr.analyze()
    decisions = mgr.plan()
    stats = plan_stats(decisions)
    print(f"Summary: to apply {stats.to_apply}, skipped {stats.skipped}, no-op {stats.noop}")
    print("")
    _print_decisions(decisions)
    last = load_last_apply(_paths(args).last_apply)
    _print_removals(compute_removals(decisions, last, config_path=_config_key(args), facts=mgr.host))
    _save_plan(args, mgr, decisions)
    return 0


def cmd_apply(args: argparse.Namespace) -> int:
    mgr = _manager(args)
    mgr.analyze()
    paths = _paths(args)
    last = load_last_apply(paths.last_apply)
    result = apply_all(mgr)
    _save_plan(args, mgr, result.decisions)

    s = result.stats
    print(f"Summary: to apply {s.to_apply}, skipped {s.skipped}, no-op {s.noop}")
    print("")
    for d in result.decisions:
        if d.action == PlanAction.APPLY:
            print(f"+ {d.summary or d.item.render()}")

    _print_removals(compute_removals(result.decisions, last, config_path=_config_key(args), facts=mgr.host))

    if not result.ok:
        print("", file=sys.stderr)
        print("Errors:", file=sys.stderr)
        for e in result.errors:
            node = mgr.deps.nodes.get(e.item_id)
            label = node.render() if node is not None else (e.item_id or "item")
            print(f"! {label} -> {e.error}", file=sys.stderr)
        return 1

    if not mgr.dry_run:
        save_last_apply(paths.last_apply, snapshot_from_run(mgr, result.decisions, config_path=_config_key(args)))
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    mgr = _manager(args)
    mgr.analyze()
    failures = mgr.cleanup()
    for item_id, error in failures:
        node = mgr.deps.nodes.get(item_id)
        print(f"! {node.render() if node is not None else item_id} -> {error}", file=sys.stderr)
    return 1 if failures else 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="host-steward")
    p.add_argument("--log", default=None, help="Log file (defaults to <state-dir>/host-steward.log)")
    p.add_argument("--state-dir", default=None, help="State directory (default: $HOST_STEWARD_HOME or ~/.host-steward)")
    p.add_argument("--event-log", default=None, help="Append every lifecycle event as JSON lines to this file")
    p.add_argument("-v", "--verbose", action="store_true", help="Also log to the console")

    sub = p.add_subparsers(dest="subcmd", required=True)

    def add(name: str, help_text: str, func) -> argparse.ArgumentParser:
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("-c", "--config", default=Paths.config_default, help="Path to the YAML profile config")
        sp.set_defaults(func=func)
        return sp

    add("analyze", "Probe plugins and items, report dependency problems", cmd_analyze)
    add("plan", "Show what apply would change", cmd_plan)
    sp = add("apply", "Analyze, plan and apply changes", cmd_apply)
    sp.add_argument("--dry-run", action="store_true", help="Log commands and writes without executing them")
    add("cleanup", "Reverse applied items in reverse dependency order", cmd_cleanup)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    log_path = args.log or (str(Path(args.state_dir) / "host-steward.log") if args.state_dir else None)
    configure_logging(log_path=log_path, also_console=bool(args.verbose))

    try:
        return int(args.func(args))
    except StewardError as e:
        logger.error("%s failed: %s", args.subcmd, e)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception:
        logger.exception("%s failed", args.subcmd)
        raise


if __name__ == "__main__":
    raise SystemExit(main())
