"""Flow metrics: lead/cycle distributions, throughput, WIP, Little's Law, bottlenecks.

Everything here reads from a KanbanStore and never writes. Values keep full
precision until they are placed on the result models, where each scalar is
rounded once.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from kanban.core.schema import (
    ACTIVE_STATUSES,
    STALE_AFTER_DAYS,
    STATUS_ORDER,
    AgingIssue,
    KanbanMetrics,
    LittlesLaw,
    RateStats,
    Repository,
    TimeStats,
)
from kanban.utils.timeutil import utcnow

if TYPE_CHECKING:
    from kanban.core.store import KanbanStore

AGING_LIMIT = 10

# Bottleneck thresholds
OVERLOAD_RATIO = 1.5
OVERLOAD_MIN_ARRIVAL = 0.5
COLUMN_RATIO = 2
COLUMN_MIN_COUNT = 2
INSTABILITY_PERCENT = 50

AGING_SORTS = ("age", "assignee", "status", "repo")

# Column order used when grouping aging issues by status.
_AGING_STATUS_ORDER = {"in-progress": 0, "review": 1, "testing": 2, "ready": 3, "backlog": 4}


@dataclass
class Distribution:
    """Unrounded summary of a sample."""

    average: float = 0.0
    median: float = 0.0
    p85: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    stddev: float = 0.0
    count: int = 0

    def to_model(self) -> TimeStats:
        return TimeStats(
            average_days=round(self.average, 1),
            median_days=round(self.median, 1),
            p85_days=round(self.p85, 1),
            min_days=round(self.minimum, 1),
            max_days=round(self.maximum, 1),
            std_dev_days=round(self.stddev, 1),
            sample_count=self.count,
        )


def distribution(values: list[float]) -> Distribution:
    """Average, median, p85, min, max and population stddev of values.

    Median averages the two middle values for an even count. The 85th
    percentile is the element at floor(0.85 * n), clamped to the last one.
    """
    if not values:
        return Distribution()
    ordered = sorted(values)
    n = len(ordered)
    mean = sum(ordered) / n
    variance = sum((v - mean) ** 2 for v in ordered) / n

    mid = n // 2
    median = (ordered[mid - 1] + ordered[mid]) / 2 if n % 2 == 0 else ordered[mid]
    p85_index = min(int(n * 0.85), n - 1)

    return Distribution(
        average=mean,
        median=median,
        p85=ordered[p85_index],
        minimum=ordered[0],
        maximum=ordered[-1],
        stddev=math.sqrt(variance),
        count=n,
    )


def time_stats(values: list[float]) -> TimeStats:
    return distribution(values).to_model()


def flow_efficiency(pairs: list[tuple[float, float | None]]) -> float | None:
    """Average cycle over average lead, in percent, for (lead, cycle) pairs.

    Only pairs with a cycle time contribute, to both averages.
    """
    subset = [(lead, cycle) for lead, cycle in pairs if cycle is not None]
    if not subset:
        return None
    lead_avg = sum(lead for lead, _ in subset) / len(subset)
    if lead_avg <= 0:
        return None
    cycle_avg = sum(cycle for _, cycle in subset) / len(subset)
    return cycle_avg / lead_avg * 100


def wip_variance(predicted: float, active_wip: int) -> float | None:
    """Percent deviation of actual from predicted WIP, None when nothing is predicted."""
    if predicted <= 0:
        return None
    return (active_wip - predicted) / predicted * 100


def littles_law(throughput_per_day: float, avg_lead_days: float, active_wip: int) -> LittlesLaw:
    """Predicted WIP = throughput x lead time."""
    predicted = throughput_per_day * avg_lead_days
    variance = wip_variance(predicted, active_wip)
    return LittlesLaw(
        throughput_per_day=round(throughput_per_day, 2),
        avg_lead_days=round(avg_lead_days, 1),
        predicted_wip=round(predicted, 1),
        actual_wip=active_wip,
        variance_percent=round(variance, 1) if variance is not None else None,
    )


def wip_limit(limits: dict[str, int], status: str) -> int | None:
    """Limit for a status; keys may be the bare status or 'status: <name>'."""
    if status in limits:
        return limits[status]
    return limits.get(f"status: {status}")


def _ordered_statuses(statuses) -> list[str]:
    known = [s for s in STATUS_ORDER if s in statuses]
    return known + sorted(s for s in statuses if s not in STATUS_ORDER)


def identify_bottlenecks(
    wip: dict[str, int],
    wip_limits: dict[str, int] | None = None,
    arrival_rate: float = 0.0,
    departure_rate: float = 0.0,
    stale_count: int = 0,
    variance_percent: float | None = None,
) -> list[str]:
    """Evaluate each bottleneck rule in a fixed order; every rule fires on its own."""
    signals: list[str] = []
    limits = wip_limits or {}

    for status in _ordered_statuses(wip):
        limit = wip_limit(limits, status)
        count = wip[status]
        if limit is not None and count > limit:
            signals.append(f"WIP LIMIT: {status} has {count} items (limit: {limit})")

    if arrival_rate > departure_rate * OVERLOAD_RATIO and arrival_rate > OVERLOAD_MIN_ARRIVAL:
        signals.append(
            f"OVERLOAD: Arrival rate ({arrival_rate:.1f}/day) > "
            f"Departure rate ({departure_rate:.1f}/day)"
        )

    in_progress = wip.get("in-progress", 0)
    review = wip.get("review", 0)
    testing = wip.get("testing", 0)
    if review > in_progress * COLUMN_RATIO and review > COLUMN_MIN_COUNT:
        signals.append("REVIEW BOTTLENECK: Consider prioritizing code reviews")
    if testing > review * COLUMN_RATIO and testing > COLUMN_MIN_COUNT:
        signals.append("TESTING BOTTLENECK: Consider prioritizing QA")

    if stale_count > 0:
        signals.append(f"STALE ITEMS: {stale_count} issues stuck >{STALE_AFTER_DAYS} days")

    if variance_percent is not None and abs(variance_percent) > INSTABILITY_PERCENT:
        signals.append(
            f"FLOW INSTABILITY: Actual WIP deviates {variance_percent:.0f}% from predicted"
        )

    return signals


def compute_metrics(
    store: KanbanStore,
    repo: Repository,
    days: int = 30,
    wip_limits: dict[str, int] | None = None,
    now: datetime | None = None,
) -> KanbanMetrics:
    """Metrics for one repository over the last ``days`` days.

    An empty repository yields zeroed statistics, never an error.
    """
    if days < 1:
        raise ValueError("days must be at least 1")
    now = now or utcnow()
    since = now - timedelta(days=days)
    limits = dict(wip_limits or {})

    # -- WIP and aging --
    board = store.board_issues(repo.full_name, now=now)
    wip = dict(Counter(issue.status for issue in board))

    aging: list[AgingIssue] = []
    ages: list[float] = []
    blocked_hours = 0.0
    for issue in board:
        if issue.status in ("done", "backlog"):
            continue
        age = issue.age_hours / 24
        ages.append(age)
        blocked_hours += issue.blocked_time_hours
        aging.append(AgingIssue(
            repo=repo.name,
            number=issue.number,
            title=issue.title,
            status=issue.status,
            assignee=issue.assignee,
            age_days=round(age, 1),
            blocked_hours=round(issue.blocked_time_hours, 1),
            is_blocked=issue.is_blocked,
        ))
    stale_count = sum(1 for age in ages if age > STALE_AFTER_DAYS)
    aging = sort_aging(aging, "age")

    flow_load = sum(wip.get(s, 0) for s in STATUS_ORDER)
    density = {}
    if flow_load:
        density = {s: round(n / flow_load * 100, 1) for s, n in wip.items()}

    # -- Flow over closed issues --
    closed = store.closed_issues(repo.id, since)
    per_day = len(closed) / days
    throughput = RateStats(total=len(closed), per_day=round(per_day, 2), per_week=round(per_day * 7, 2))

    lead_days = [i.lead_time_hours / 24 for i in closed if i.lead_time_hours is not None]
    cycle_days = [i.cycle_time_hours / 24 for i in closed if i.cycle_time_hours is not None]
    lead = distribution(lead_days)
    efficiency = flow_efficiency([
        (i.lead_time_hours / 24, i.cycle_time_hours / 24 if i.cycle_time_hours is not None else None)
        for i in closed
        if i.lead_time_hours is not None
    ])

    arrival = store.count_created_since(repo.id, since) / days
    active = sum(wip.get(s, 0) for s in ACTIVE_STATUSES)
    law = littles_law(per_day, lead.average, active)
    raw_variance = wip_variance(per_day * lead.average, active)

    return KanbanMetrics(
        repo=repo.name,
        generated=now,
        period_days=days,
        lead_time=lead.to_model(),
        cycle_time=time_stats(cycle_days),
        throughput=throughput,
        flow_efficiency_percent=round(efficiency, 1) if efficiency is not None else None,
        wip=wip,
        wip_limits=limits,
        wip_age=time_stats(ages),
        littles_law=law,
        arrival_rate_per_day=round(arrival, 2),
        departure_rate_per_day=round(per_day, 2),
        blocked_time_hours=round(blocked_hours, 1),
        flow_load=flow_load,
        density_percent=density,
        aging_issues=aging[:AGING_LIMIT],
        stale_count=stale_count,
        bottlenecks=identify_bottlenecks(wip, limits, arrival, per_day, stale_count, raw_variance),
    )


def compute_all(
    store: KanbanStore,
    days: int = 30,
    wip_limits: dict[str, int] | None = None,
    now: datetime | None = None,
    repo: str | None = None,
) -> list[KanbanMetrics]:
    """Metrics for every repository holding issues, or just ``repo`` (full name)."""
    repos = store.list_repositories()
    if repo:
        repos = [r for r in repos if r.full_name == repo or r.name == repo]
    return [
        compute_metrics(store, r, days, wip_limits, now)
        for r in repos
        if store.list_issues(r.id)
    ]


def sort_aging(issues: list[AgingIssue], by: str = "age") -> list[AgingIssue]:
    """Order aging issues. Every grouping keeps oldest-first within a group.

    ``assignee`` puts unassigned issues last.
    """
    if by not in AGING_SORTS:
        raise ValueError(f"Unknown sort: {by}. Use: {', '.join(AGING_SORTS)}")
    oldest_first = sorted(issues, key=lambda i: -i.age_days)
    if by == "repo":
        return sorted(oldest_first, key=lambda i: i.repo)
    if by == "assignee":
        return sorted(oldest_first, key=lambda i: (not i.assignee, i.assignee or ""))
    if by == "status":
        return sorted(oldest_first, key=lambda i: _AGING_STATUS_ORDER.get(i.status, len(_AGING_STATUS_ORDER)))
    return oldest_first


def filter_aging(issues: list[AgingIssue], assignee: str | None = None) -> list[AgingIssue]:
    if not assignee:
        return issues
    wanted = assignee.lstrip("@").lower()
    return [i for i in issues if (i.assignee or "").lower() == wanted]
