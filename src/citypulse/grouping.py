"""Partition drafted events into near-duplicate groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from citypulse.models import CanonicalEvent, EventSeverity
from citypulse.utils.text import normalize_area


ESCALATED_SEVERITIES = (EventSeverity.HIGH, EventSeverity.CRITICAL)


@dataclass
class CanonicalGroup:
    """Members that will become one canonical record."""

    key: str
    members: list[CanonicalEvent] = field(default_factory=list)

    @property
    def is_singleton(self) -> bool:
        return len(self.members) == 1

    @property
    def member_ids(self) -> list[str]:
        return [member.id for member in self.members]


def group_key(event: CanonicalEvent) -> str:
    """``CATEGORY_area`` plus ``_SEVERITY`` for HIGH and CRITICAL events."""
    key = f"{event.category.value}_{normalize_area(event.area)}"
    if event.severity in ESCALATED_SEVERITIES:
        key = f"{key}_{event.severity.value}"
    return key


def _tokens(key: str) -> set[str]:
    return {token for token in key.split("_") if token}


def group(events: Sequence[CanonicalEvent]) -> list[CanonicalGroup]:
    """Group events by key, then fold singletons into related groups.

    Keys are visited in lexicographic order. A singleton joins the first
    already-placed group whose key shares an underscore-delimited token;
    otherwise it stays on its own. Every input lands in exactly one group.
    """
    buckets: dict[str, list[CanonicalEvent]] = {}
    for event in events:
        buckets.setdefault(group_key(event), []).append(event)

    placed: dict[str, CanonicalGroup] = {}
    for key in sorted(buckets):
        members = buckets[key]
        if len(members) < 2:
            target = next(
                (existing for existing in placed if _tokens(existing) & _tokens(key)),
                None,
            )
            if target is not None:
                placed[target].members.extend(members)
                continue
        placed[key] = CanonicalGroup(key=key, members=list(members))

    return list(placed.values())
