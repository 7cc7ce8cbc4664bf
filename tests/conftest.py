"""Shared fixtures: temp SQLite store, fixed clock, in-memory tracker."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from kanban.core.schema import Repository
from kanban.core.store import KanbanStore
from kanban.sources.base import (
    LabelSyncResult,
    RawIssue,
    RawLabel,
    RawPullRequest,
    TimelineEvent,
    TrackerError,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeTracker:
    """IssueTracker double holding canned data per repository and recording calls."""

    def __init__(self) -> None:
        self.remote_repos: list[str] = []
        self.labels: dict[str, list[RawLabel]] = {}
        self.issues: dict[str, list[RawIssue]] = {}
        self.prs: dict[str, list[RawPullRequest]] = {}
        self.links: dict[tuple[str, int], list[int]] = {}
        self.timelines: dict[tuple[str, int], list[TimelineEvent]] = {}
        self.closed: dict[str, list[RawIssue]] = {}  # only returned by list_closed_issues
        self.failing: set[str] = set()
        self.broken: set[tuple[str, int]] = set()  # per-issue/PR lookups that fail
        self.calls: list[tuple] = []

    def list_repositories(self, org: str) -> list[str]:
        self.calls.append(("list_repositories", org))
        return list(self.remote_repos)

    def list_labels(self, org: str, repo: str) -> list[RawLabel]:
        if repo in self.failing:
            raise TrackerError(f"HTTP 502 for {org}/{repo}")
        return list(self.labels.get(repo, []))

    def sync_labels(self, org: str, repo: str, labels: list[RawLabel]) -> LabelSyncResult:
        self.calls.append(("sync_labels", repo))
        current = {lbl.name for lbl in self.labels.get(repo, [])}
        self.labels[repo] = list(labels)
        return LabelSyncResult(
            created=[lbl.name for lbl in labels if lbl.name not in current],
            updated=[],
            unchanged=[lbl.name for lbl in labels if lbl.name in current],
        )

    def list_issues(self, org: str, repo: str, limit: int = 500) -> list[RawIssue]:
        self.calls.append(("list_issues", repo))
        if repo in self.failing:
            raise TrackerError(f"HTTP 502 for {org}/{repo}")
        return list(self.issues.get(repo, []))[:limit]

    def list_closed_issues(self, org: str, repo: str, days: int) -> list[RawIssue]:
        self.calls.append(("list_closed_issues", repo, days))
        closed = [i for i in self.issues.get(repo, []) if i.state == "closed"]
        return closed + list(self.closed.get(repo, []))

    def list_pull_requests(self, org: str, repo: str, limit: int = 200) -> list[RawPullRequest]:
        self.calls.append(("list_pull_requests", repo))
        return list(self.prs.get(repo, []))[:limit]

    def get_linked_issues(self, org: str, repo: str, pr_number: int) -> list[int]:
        if (repo, pr_number) in self.broken:
            raise TrackerError(f"Malformed JSON from gh for PR #{pr_number}")
        return list(self.links.get((repo, pr_number), []))

    def get_timeline(self, org: str, repo: str, number: int) -> list[TimelineEvent]:
        self.calls.append(("get_timeline", repo, number))
        if (repo, number) in self.broken:
            raise TrackerError(f"Malformed JSON page from gh for #{number}")
        return list(self.timelines.get((repo, number), []))

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def now() -> datetime:
    """Fixed 'current' time used by every time-dependent test."""
    return NOW


@pytest.fixture
def store(tmp_path: Path) -> KanbanStore:
    """A migrated, empty store in a temp directory."""
    s = KanbanStore.open(tmp_path / "kanban.db")
    yield s
    s.close()


@pytest.fixture
def repo(store: KanbanStore) -> Repository:
    return store.get_or_create_repo("acme", "web")


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()
