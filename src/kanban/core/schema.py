"""Pydantic v2 models for all kanban store types."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from kanban.core.migrations import SCHEMA_VERSION

# Board column order; also the order WIP limit signals are evaluated in.
STATUS_ORDER = ("backlog", "ready", "in-progress", "review", "testing", "done")

# Statuses with an entered_<status>_at column on issues.
TRACKED_STATUSES = ("ready", "in-progress", "review", "testing", "done")

# Statuses counted as active work.
ACTIVE_STATUSES = ("ready", "in-progress", "review", "testing")

STALE_AFTER_DAYS = 14


def _now() -> datetime:
    return datetime.now(timezone.utc)


def entered_column(status: str) -> str:
    """Column name holding the first-entry time of a tracked status."""
    return "entered_" + status.replace("-", "_") + "_at"


class IssueState(str, Enum):
    open = "open"
    closed = "closed"


class SyncStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


# -- Entities --


class Organization(BaseModel):
    id: int
    name: str
    created_at: datetime = Field(default_factory=_now)


class Repository(BaseModel):
    id: int
    org_id: int
    name: str
    full_name: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)
    last_sync_at: Optional[datetime] = None


class Label(BaseModel):
    name: str
    color: str = ""
    description: str = ""
    category: str = "special"


class Issue(BaseModel):
    id: int
    repo_id: int
    number: int
    title: str
    state: IssueState = IssueState.open
    gh_created_at: datetime
    gh_updated_at: datetime
    gh_closed_at: Optional[datetime] = None

    status: Optional[str] = None
    priority: Optional[str] = None
    type: Optional[str] = None
    size: Optional[str] = None
    is_blocked: bool = False
    assignee: Optional[str] = None

    entered_ready_at: Optional[datetime] = None
    entered_in_progress_at: Optional[datetime] = None
    entered_review_at: Optional[datetime] = None
    entered_testing_at: Optional[datetime] = None
    entered_done_at: Optional[datetime] = None

    lead_time_hours: Optional[float] = None
    cycle_time_hours: Optional[float] = None
    blocked_time_hours: float = 0.0

    synced_at: Optional[datetime] = None

    def entered_at(self, status: str) -> Optional[datetime]:
        if status not in TRACKED_STATUSES:
            return None
        return getattr(self, entered_column(status))


class StatusTransition(BaseModel):
    id: int
    issue_id: int
    from_status: Optional[str] = None
    to_status: str
    transitioned_at: datetime
    recorded_at: datetime = Field(default_factory=_now)


class BlockedPeriod(BaseModel):
    id: int
    issue_id: int
    blocked_at: datetime
    unblocked_at: Optional[datetime] = None
    duration_hours: Optional[float] = None
    reason: str = ""


class PullRequest(BaseModel):
    id: int
    repo_id: int
    number: int
    title: str
    state: str
    is_draft: bool = False
    author: str = ""
    gh_created_at: datetime
    gh_updated_at: datetime
    gh_merged_at: Optional[datetime] = None
    gh_closed_at: Optional[datetime] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    merge_time_hours: Optional[float] = None
    linked_issues: list[int] = Field(default_factory=list)


class CFDSnapshot(BaseModel):
    repo_id: int
    day: date
    status: str
    count: int


class SyncRecord(BaseModel):
    id: int
    repo_id: Optional[int] = None  # None for a run over all repositories
    sync_type: str = "full"
    started_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None
    status: SyncStatus = SyncStatus.running
    items_synced: int = 0
    error_message: Optional[str] = None


# -- Views --


class BoardIssue(BaseModel):
    repo: str
    number: int
    title: str
    state: IssueState
    status: str
    priority: Optional[str] = None
    type: Optional[str] = None
    size: Optional[str] = None
    assignee: Optional[str] = None
    is_blocked: bool = False
    age_hours: float = 0.0
    lead_time_hours: Optional[float] = None
    cycle_time_hours: Optional[float] = None
    blocked_time_hours: float = 0.0


class WIPSummary(BaseModel):
    repo: str
    counts: dict[str, int] = Field(default_factory=dict)

    @property
    def active(self) -> int:
        return sum(self.counts.get(s, 0) for s in ACTIVE_STATUSES)


class PRSummary(BaseModel):
    repo: str
    period_days: int
    total: int = 0
    open: int = 0
    merged: int = 0
    draft: int = 0
    linked_issues: int = 0
    avg_merge_hours: Optional[float] = None


class Stats(BaseModel):
    db_path: str
    size_bytes: int = 0
    schema_version: int = SCHEMA_VERSION
    counts: dict[str, int] = Field(default_factory=dict)
    last_sync_at: Optional[datetime] = None


# -- Metrics --


class TimeStats(BaseModel):
    average_days: float = 0.0
    median_days: float = 0.0
    p85_days: float = 0.0
    min_days: float = 0.0
    max_days: float = 0.0
    std_dev_days: float = 0.0
    sample_count: int = 0


class RateStats(BaseModel):
    total: int = 0
    per_day: float = 0.0
    per_week: float = 0.0


class LittlesLaw(BaseModel):
    throughput_per_day: float = 0.0
    avg_lead_days: float = 0.0
    predicted_wip: float = 0.0
    actual_wip: int = 0
    variance_percent: Optional[float] = None  # None when predicted WIP is zero


class AgingIssue(BaseModel):
    repo: str
    number: int
    title: str
    status: str
    assignee: Optional[str] = None
    age_days: float
    blocked_hours: float = 0.0
    is_blocked: bool = False


class KanbanMetrics(BaseModel):
    repo: str
    generated: datetime = Field(default_factory=_now)
    period_days: int

    lead_time: TimeStats = Field(default_factory=TimeStats)
    cycle_time: TimeStats = Field(default_factory=TimeStats)
    throughput: RateStats = Field(default_factory=RateStats)
    flow_efficiency_percent: Optional[float] = None

    wip: dict[str, int] = Field(default_factory=dict)
    wip_limits: dict[str, int] = Field(default_factory=dict)
    wip_age: TimeStats = Field(default_factory=TimeStats)
    littles_law: LittlesLaw = Field(default_factory=LittlesLaw)

    arrival_rate_per_day: float = 0.0
    departure_rate_per_day: float = 0.0
    blocked_time_hours: float = 0.0

    flow_load: int = 0
    density_percent: dict[str, float] = Field(default_factory=dict)

    aging_issues: list[AgingIssue] = Field(default_factory=list)
    stale_count: int = 0
    bottlenecks: list[str] = Field(default_factory=list)
