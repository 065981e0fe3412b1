from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from .events import EventSink
from .host import HostFacts
from .item import Item
from .matching import MatchExpr, evaluate

Entry = Union[Item, Iterable["Entry"]]


@dataclass
class Profile:
    """Named, conditionally active group of items."""

    name: str
    matches: Optional[MatchExpr] = None
    items: List[Item] = field(default_factory=list)

    def add(self, *entries: Entry) -> "Profile":
        # Accepts items, lists of items or nested lists.
        for entry in entries:
            if isinstance(entry, Item):
                self.items.append(entry)
            else:
                self.add(*entry)
        return self

    def is_active(self, facts: HostFacts) -> bool:
        return self.matches is None or evaluate(facts, self.matches)

    def attach(self, events: EventSink) -> None:
        for item in self.items:
            item.profile = self
            item.attach(events)


def profile(name: str, matches: Optional[MatchExpr] = None, *entries: Entry) -> Profile:
    return Profile(name=name, matches=matches).add(*entries)
