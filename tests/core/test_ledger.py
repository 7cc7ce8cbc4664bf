"""Tests for the transition ledger and blocked periods."""

from __future__ import annotations

from datetime import timedelta

import pytest

from kanban.core.ledger import FROM_TIMELINE, OBSERVED
from kanban.core.schema import IssueState
from kanban.core.store import IssueRecord
from kanban.core.timeline import BlockedInterval


@pytest.fixture
def issue_id(store, repo, now) -> int:
    record = IssueRecord(
        repo_id=repo.id, number=42, title="Flaky deploy", state=IssueState.open,
        created_at=now - timedelta(days=3), updated_at=now - timedelta(days=3),
    )
    return store.upsert_issue(record, now).id


class TestTransitions:
    def test_record_and_read_back(self, store, issue_id, now):
        store.ledger.record(issue_id, None, "ready", now - timedelta(days=2), now)
        store.ledger.record(issue_id, "ready", "in-progress", now - timedelta(days=1), now)
        history = store.ledger.for_issue(issue_id)
        assert [(t.from_status, t.to_status) for t in history] == [
            (None, "ready"), ("ready", "in-progress"),
        ]
        assert store.ledger.count(issue_id) == 2
        assert store.ledger.count() == 2

    def test_never_goes_back_in_time(self, store, issue_id, now):
        store.ledger.record(issue_id, None, "review", now)
        late = store.ledger.record(issue_id, "review", "testing", now - timedelta(hours=5))
        assert late.transitioned_at == now
        times = [t.transitioned_at for t in store.ledger.for_issue(issue_id)]
        assert times == sorted(times)


class TestBlockedPeriods:
    def test_open_once(self, store, issue_id, now):
        assert store.ledger.open_blocked(issue_id, now)
        assert not store.ledger.open_blocked(issue_id, now + timedelta(hours=1))
        (period,) = store.ledger.blocked_periods(issue_id)
        assert period.reason == OBSERVED
        assert period.unblocked_at is None

    def test_close_without_open(self, store, issue_id, now):
        assert not store.ledger.close_blocked(issue_id, now)

    def test_close_computes_duration(self, store, issue_id, now):
        store.ledger.open_blocked(issue_id, now)
        assert store.ledger.close_blocked(issue_id, now + timedelta(hours=3))
        (period,) = store.ledger.blocked_periods(issue_id)
        assert period.duration_hours == pytest.approx(3.0)

    def test_close_before_start_is_zero(self, store, issue_id, now):
        store.ledger.open_blocked(issue_id, now)
        store.ledger.close_blocked(issue_id, now - timedelta(hours=1))
        (period,) = store.ledger.blocked_periods(issue_id)
        assert period.duration_hours == 0.0

    def test_blocked_hours_counts_open_period_until(self, store, issue_id, now):
        store.ledger.open_blocked(issue_id, now - timedelta(hours=10))
        store.ledger.close_blocked(issue_id, now - timedelta(hours=8))
        store.ledger.open_blocked(issue_id, now - timedelta(hours=4))
        assert store.ledger.blocked_hours(issue_id, now) == pytest.approx(6.0)


class TestMergeBlocked:
    def test_merge_is_idempotent(self, store, issue_id, now):
        intervals = [
            BlockedInterval(now - timedelta(days=2), now - timedelta(days=1), 24.0),
            BlockedInterval(now - timedelta(hours=6), None, 6.0),
        ]
        store.ledger.merge_blocked(issue_id, intervals)
        store.ledger.merge_blocked(issue_id, intervals)
        periods = store.ledger.blocked_periods(issue_id)
        assert len(periods) == 2
        assert {p.reason for p in periods} == {FROM_TIMELINE}

    def test_open_period_is_closed_by_later_merge(self, store, issue_id, now):
        start = now - timedelta(hours=6)
        store.ledger.merge_blocked(issue_id, [BlockedInterval(start, None, 6.0)])
        store.ledger.merge_blocked(issue_id, [BlockedInterval(start, now, 6.0)])
        (period,) = store.ledger.blocked_periods(issue_id)
        assert period.unblocked_at == now
        assert period.duration_hours == pytest.approx(6.0)

    def test_closed_period_is_never_reopened(self, store, issue_id, now):
        start = now - timedelta(hours=6)
        store.ledger.merge_blocked(issue_id, [BlockedInterval(start, now, 6.0)])
        store.ledger.merge_blocked(issue_id, [BlockedInterval(start, None, 6.0)])
        (period,) = store.ledger.blocked_periods(issue_id)
        assert period.unblocked_at == now

    def test_observed_periods_replaced(self, store, issue_id, now):
        store.ledger.open_blocked(issue_id, now - timedelta(hours=1))
        store.ledger.merge_blocked(issue_id, [
            BlockedInterval(now - timedelta(hours=3), None, 3.0),
        ])
        (period,) = store.ledger.blocked_periods(issue_id)
        assert period.reason == FROM_TIMELINE
        assert period.blocked_at == now - timedelta(hours=3)
