"""host-steward: declarative host configuration.

Core design goals:
- Profiles activated by facts about the running machine
- Dependency-ordered, fail-fast apply
- Idempotent re-runs (probe before planning)
- Removal detection across runs
- Centralized logging and an observable event stream
"""

from .engine import Manager
from .events import EventSink
from .graph import DependencyGraph, GraphReport
from .host import HostEnv, HostFacts, HostUser, detect_host_facts
from .item import MAX_ATTEMPTS, Context, Item, ItemStatus, PlanAction, PlanDecision, Plugin, PluginBound, UsedPlugin
from .profile import Profile, profile

__all__ = [
    "Context",
    "DependencyGraph",
    "EventSink",
    "GraphReport",
    "HostEnv",
    "HostFacts",
    "HostUser",
    "Item",
    "ItemStatus",
    "MAX_ATTEMPTS",
    "Manager",
    "PlanAction",
    "PlanDecision",
    "Plugin",
    "PluginBound",
    "Profile",
    "UsedPlugin",
    "detect_host_facts",
    "profile",
]
