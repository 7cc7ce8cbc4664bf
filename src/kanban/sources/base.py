"""Issue tracker interface and the raw records it yields."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


class TrackerError(Exception):
    """Raised when the issue tracker cannot be reached or answers with an error."""


@dataclass
class RawLabel:
    name: str
    color: str = ""  # hex without leading '#'
    description: str = ""


@dataclass
class RawIssue:
    """One issue as last seen on the tracker."""

    number: int
    title: str
    state: str  # "open" | "closed"
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    labels: list[str] = field(default_factory=list)
    assignee: str | None = None


@dataclass
class RawPullRequest:
    number: int
    title: str
    state: str  # "open" | "closed" | "merged"
    created_at: datetime
    updated_at: datetime
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    author: str = ""
    is_draft: bool = False
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    body: str = ""


@dataclass
class TimelineEvent:
    """A label being added to or removed from an issue."""

    event: str  # "labeled" | "unlabeled"
    label: str
    created_at: datetime


@dataclass
class LabelSyncResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)


class IssueTracker(Protocol):
    """Operations the sync orchestrator needs from a remote tracker."""

    def list_repositories(self, org: str) -> list[str]: ...

    def list_labels(self, org: str, repo: str) -> list[RawLabel]: ...

    def sync_labels(self, org: str, repo: str, labels: list[RawLabel]) -> LabelSyncResult: ...

    def list_issues(self, org: str, repo: str, limit: int = 500) -> list[RawIssue]: ...

    def list_closed_issues(self, org: str, repo: str, days: int) -> list[RawIssue]: ...

    def list_pull_requests(self, org: str, repo: str, limit: int = 200) -> list[RawPullRequest]: ...

    def get_linked_issues(self, org: str, repo: str, pr_number: int) -> list[int]: ...

    def get_timeline(self, org: str, repo: str, number: int) -> list[TimelineEvent]: ...
