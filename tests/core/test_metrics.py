"""Tests for the flow metrics engine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from kanban.core.metrics import (
    compute_all,
    compute_metrics,
    distribution,
    filter_aging,
    flow_efficiency,
    identify_bottlenecks,
    littles_law,
    sort_aging,
    time_stats,
    wip_limit,
)
from kanban.core.schema import AgingIssue, IssueState
from kanban.core.store import IssueRecord

DAY = timedelta(days=1)


def _aging(number: int, age: float, assignee: str | None = None, status: str = "in-progress",
           repo: str = "web") -> AgingIssue:
    return AgingIssue(repo=repo, number=number, title=f"#{number}", status=status,
                      assignee=assignee, age_days=age)


class TestDistribution:
    def test_one_to_five(self):
        s = time_stats([1, 2, 3, 4, 5])
        assert s.average_days == 3
        assert s.median_days == 3
        assert s.p85_days == 5
        assert s.min_days == 1
        assert s.max_days == 5
        assert s.sample_count == 5

    def test_even_median(self):
        assert distribution([4, 1, 3, 2]).median == 2.5

    def test_stddev(self):
        assert distribution([2, 4, 4, 4, 5, 5, 7, 9]).stddev == pytest.approx(2.0)

    def test_empty(self):
        s = time_stats([])
        assert s.sample_count == 0
        assert s.average_days == 0.0

    def test_rounding_happens_once(self):
        s = time_stats([1.04, 1.04, 1.04])
        assert s.average_days == 1.0


class TestFlowEfficiency:
    def test_half(self):
        assert flow_efficiency([(10, 5), (20, None)]) == 50.0

    def test_no_cycle_times(self):
        assert flow_efficiency([(10, None)]) is None

    def test_empty(self):
        assert flow_efficiency([]) is None


class TestLittlesLaw:
    def test_variance(self):
        law = littles_law(2.0, 5.0, 12)
        assert law.predicted_wip == 10.0
        assert law.actual_wip == 12
        assert law.variance_percent == 20.0

    def test_nothing_predicted(self):
        assert littles_law(0.0, 5.0, 3).variance_percent is None


class TestBottlenecks:
    def test_single_wip_limit_signal(self):
        signals = identify_bottlenecks({"review": 6, "in-progress": 4}, {"review": 5})
        assert signals == ["WIP LIMIT: review has 6 items (limit: 5)"]

    def test_prefixed_limit_key(self):
        assert wip_limit({"status: review": 3}, "review") == 3
        assert wip_limit({"review": 2, "status: review": 3}, "review") == 2
        signals = identify_bottlenecks({"review": 4}, {"status: review": 3})
        assert signals == ["WIP LIMIT: review has 4 items (limit: 3)"]

    def test_at_limit_does_not_fire(self):
        assert identify_bottlenecks({"review": 5}, {"review": 5}) == []

    def test_limits_in_board_order(self):
        signals = identify_bottlenecks(
            {"testing": 4, "ready": 9, "in-progress": 2}, {"testing": 1, "ready": 3}
        )
        assert [s.split(":")[1].split()[0] for s in signals if s.startswith("WIP")] == ["ready", "testing"]

    def test_overload(self):
        signals = identify_bottlenecks({}, arrival_rate=2.0, departure_rate=1.0)
        assert signals == ["OVERLOAD: Arrival rate (2.0/day) > Departure rate (1.0/day)"]

    def test_overload_needs_minimum_arrival(self):
        assert identify_bottlenecks({}, arrival_rate=0.4, departure_rate=0.1) == []

    def test_review_and_testing(self):
        signals = identify_bottlenecks({"in-progress": 1, "review": 3, "testing": 7})
        assert "REVIEW BOTTLENECK: Consider prioritizing code reviews" in signals
        assert "TESTING BOTTLENECK: Consider prioritizing QA" in signals

    def test_stale_and_instability(self):
        signals = identify_bottlenecks({}, stale_count=2, variance_percent=-60.0)
        assert signals == [
            "STALE ITEMS: 2 issues stuck >14 days",
            "FLOW INSTABILITY: Actual WIP deviates -60% from predicted",
        ]


class TestAging:
    def test_sort_by_age(self):
        items = [_aging(1, 2.0), _aging(2, 9.0), _aging(3, 5.0)]
        assert [i.number for i in sort_aging(items)] == [2, 3, 1]

    def test_sort_by_assignee_unassigned_last(self):
        items = [_aging(1, 2.0), _aging(2, 9.0, "zoe"), _aging(3, 5.0, "ana"), _aging(4, 7.0, "ana")]
        assert [i.number for i in sort_aging(items, "assignee")] == [4, 3, 2, 1]

    def test_sort_by_status(self):
        items = [_aging(1, 2.0, status="ready"), _aging(2, 1.0, status="review"), _aging(3, 3.0)]
        assert [i.number for i in sort_aging(items, "status")] == [3, 2, 1]

    def test_unknown_sort(self):
        with pytest.raises(ValueError, match="Unknown sort"):
            sort_aging([], "priority")

    def test_filter_assignee(self):
        items = [_aging(1, 2.0, "Ana"), _aging(2, 3.0, "bo"), _aging(3, 1.0)]
        assert [i.number for i in filter_aging(items, "@ana")] == [1]
        assert filter_aging(items, None) == items


class TestComputeMetrics:
    def _populate(self, store, repo, now):
        created = now - 10 * DAY

        def record(number, status, state=IssueState.open, created_at=created, closed_at=None):
            return IssueRecord(
                repo_id=repo.id, number=number, title=f"Issue {number}", state=state,
                created_at=created_at, updated_at=created_at, closed_at=closed_at, status=status,
            )

        # 1: done in the window: lead 5d, cycle 3d
        store.upsert_issue(record(1, "ready"), created)
        store.upsert_issue(record(1, "in-progress"), now - 8 * DAY)
        store.upsert_issue(record(1, "done", IssueState.closed, closed_at=now - 5 * DAY), now - 5 * DAY)
        # 2: in progress for 20 days, stale
        store.upsert_issue(record(2, "in-progress", created_at=now - 20 * DAY), now)
        # 3: backlog, not aging
        store.upsert_issue(record(3, "backlog", created_at=now - 2 * DAY), now)

    def test_empty_repository(self, store, repo, now):
        m = compute_metrics(store, repo, days=30, now=now)
        assert m.throughput.total == 0
        assert m.lead_time.sample_count == 0
        assert m.flow_efficiency_percent is None
        assert m.littles_law.variance_percent is None
        assert m.bottlenecks == []

    def test_days_must_be_positive(self, store, repo, now):
        with pytest.raises(ValueError):
            compute_metrics(store, repo, days=0, now=now)

    def test_populated(self, store, repo, now):
        self._populate(store, repo, now)
        m = compute_metrics(store, repo, days=30, wip_limits={"in-progress": 3}, now=now)

        assert m.repo == "web"
        assert m.throughput.total == 1
        assert m.throughput.per_day == 0.03
        assert m.lead_time.average_days == 5.0
        assert m.cycle_time.average_days == 3.0
        assert m.flow_efficiency_percent == 60.0
        assert m.wip == {"done": 1, "in-progress": 1, "backlog": 1}
        assert m.flow_load == 3
        assert m.arrival_rate_per_day == 0.1
        assert m.stale_count == 1
        assert [i.number for i in m.aging_issues] == [2]
        assert m.aging_issues[0].age_days == 20.0
        assert "STALE ITEMS: 1 issues stuck >14 days" in m.bottlenecks
        assert not any(s.startswith("WIP LIMIT") for s in m.bottlenecks)

    def test_compute_all_skips_empty_repositories(self, store, repo, now):
        store.get_or_create_repo("acme", "empty")
        self._populate(store, repo, now)
        results = compute_all(store, 30, now=now)
        assert [m.repo for m in results] == ["web"]
        assert compute_all(store, 30, now=now, repo="acme/empty") == []
