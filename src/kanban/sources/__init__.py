"""Remote issue trackers.

A tracker hands the sync orchestrator raw issue, label, PR and timeline
records; it never touches the local store.
"""

from __future__ import annotations

from kanban.sources.base import IssueTracker, RawIssue, RawLabel, RawPullRequest, TimelineEvent, TrackerError

__all__ = ["IssueTracker", "RawIssue", "RawLabel", "RawPullRequest", "TimelineEvent", "TrackerError"]
