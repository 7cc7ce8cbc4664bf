"""Tests for resolving label timelines into entry times and blocked intervals."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from kanban.core.timeline import resolve_timeline
from kanban.sources.base import TimelineEvent

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _ev(event: str, label: str, hours: float) -> TimelineEvent:
    return TimelineEvent(event=event, label=label, created_at=T0 + timedelta(hours=hours))


class TestStatusEntries:
    def test_first_labeled_wins(self):
        result = resolve_timeline([
            _ev("labeled", "status: ready", 0),
            _ev("labeled", "status: in-progress", 24),
            _ev("unlabeled", "status: in-progress", 30),
            _ev("labeled", "status: in-progress", 48),
        ], now=T0 + timedelta(days=5))
        assert result.status_entries == {
            "ready": T0,
            "in-progress": T0 + timedelta(hours=24),
        }

    def test_unlabeled_does_not_enter(self):
        result = resolve_timeline([_ev("unlabeled", "status: review", 1)], now=T0)
        assert result.status_entries == {}

    def test_events_sorted_by_time(self):
        result = resolve_timeline([
            _ev("labeled", "status: review", 10),
            _ev("labeled", "status: review", 2),
        ], now=T0 + timedelta(days=1))
        assert result.status_entries["review"] == T0 + timedelta(hours=2)

    def test_non_kanban_labels_ignored(self):
        result = resolve_timeline([_ev("labeled", "type: bug", 1)], now=T0)
        assert result.status_entries == {}
        assert result.blocked_periods == []


class TestBlocked:
    def test_closed_interval(self):
        result = resolve_timeline([
            _ev("labeled", "blocked", 1),
            _ev("unlabeled", "blocked", 6),
        ], now=T0 + timedelta(days=2))
        assert len(result.blocked_periods) == 1
        period = result.blocked_periods[0]
        assert period.start == T0 + timedelta(hours=1)
        assert period.end == T0 + timedelta(hours=6)
        assert period.hours == 5.0
        assert result.total_blocked_hours == 5.0

    def test_open_interval_measured_to_now(self):
        result = resolve_timeline([_ev("labeled", "Blocked", 0)], now=T0 + timedelta(hours=12))
        assert result.blocked_periods[0].end is None
        assert result.total_blocked_hours == 12.0

    def test_stray_and_duplicate_events_ignored(self):
        result = resolve_timeline([
            _ev("unlabeled", "blocked", 0),
            _ev("labeled", "blocked", 2),
            _ev("labeled", "blocked", 3),
            _ev("unlabeled", "blocked", 4),
            _ev("labeled", "blocked", 10),
            _ev("unlabeled", "blocked", 11),
        ], now=T0 + timedelta(days=1))
        assert [(p.hours) for p in result.blocked_periods] == [2.0, 1.0]
        assert result.total_blocked_hours == 3.0

    def test_empty(self):
        result = resolve_timeline([], now=T0)
        assert result.status_entries == {}
        assert result.total_blocked_hours == 0.0
