"""Resolve status entry times and blocked intervals from label events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from kanban.core.classify import BLOCKED_LABEL, status_of
from kanban.sources.base import TimelineEvent


@dataclass
class BlockedInterval:
    start: datetime
    end: datetime | None  # None while the issue is still blocked
    hours: float


@dataclass
class TimelineResult:
    status_entries: dict[str, datetime] = field(default_factory=dict)
    blocked_periods: list[BlockedInterval] = field(default_factory=list)
    total_blocked_hours: float = 0.0


def _hours(start: datetime, end: datetime) -> float:
    return max((end - start).total_seconds() / 3600.0, 0.0)


def resolve_timeline(events: list[TimelineEvent], now: datetime) -> TimelineResult:
    """Walk label events once, in chronological order.

    Only the first time a status label is added counts as the entry into that
    status. A ``blocked`` label opens an interval and its removal closes it;
    removals without an open interval and re-adds while open are ignored. An
    interval still open at the end is measured against ``now``.
    """
    result = TimelineResult()
    open_since: datetime | None = None

    # sorted() is stable, so same-timestamp events keep their feed order
    for ev in sorted(events, key=lambda e: e.created_at):
        label = ev.label.strip().lower()
        if label == BLOCKED_LABEL:
            if ev.event == "labeled" and open_since is None:
                open_since = ev.created_at
            elif ev.event == "unlabeled" and open_since is not None:
                result.blocked_periods.append(
                    BlockedInterval(open_since, ev.created_at, _hours(open_since, ev.created_at))
                )
                open_since = None
            continue

        if ev.event != "labeled":
            continue
        status = status_of([label])
        if status and status not in result.status_entries:
            result.status_entries[status] = ev.created_at

    if open_since is not None:
        result.blocked_periods.append(BlockedInterval(open_since, None, _hours(open_since, now)))

    result.total_blocked_hours = sum(p.hours for p in result.blocked_periods)
    return result
