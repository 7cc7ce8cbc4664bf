"""Turn raw tracker records into store records."""

from __future__ import annotations

from kanban.core.classify import classify
from kanban.core.schema import IssueState, Label
from kanban.core.store import IssueRecord, PullRequestRecord
from kanban.sources.base import RawIssue, RawLabel, RawPullRequest


class ReconcileError(Exception):
    """A raw record that cannot be stored as-is."""


def issue_record(raw: RawIssue, repo_id: int) -> IssueRecord:
    """Classify an issue's labels into kanban fields.

    A closed issue without a status label counts as done. A closed issue
    still labelled with another status keeps that status.
    """
    if raw.number <= 0:
        raise ReconcileError(f"Invalid issue number {raw.number}")
    try:
        state = IssueState(raw.state.lower())
    except ValueError:
        raise ReconcileError(f"Issue #{raw.number} has unknown state '{raw.state}'")
    if raw.updated_at < raw.created_at:
        raise ReconcileError(f"Issue #{raw.number} was updated before it was created")

    fields = classify(raw.labels)
    status = fields.status
    if state is IssueState.closed and not status:
        status = "done"

    return IssueRecord(
        repo_id=repo_id,
        number=raw.number,
        title=raw.title,
        state=state,
        created_at=raw.created_at,
        updated_at=raw.updated_at,
        closed_at=raw.closed_at if state is IssueState.closed else None,
        status=status,
        priority=fields.priority,
        type=fields.type,
        size=fields.size,
        is_blocked=fields.blocked,
        assignee=raw.assignee or None,
        labels=list(raw.labels),
    )


def pull_request_record(raw: RawPullRequest, repo_id: int) -> PullRequestRecord:
    if raw.number <= 0:
        raise ReconcileError(f"Invalid PR number {raw.number}")
    return PullRequestRecord(
        repo_id=repo_id,
        number=raw.number,
        title=raw.title,
        state=raw.state.lower(),
        created_at=raw.created_at,
        updated_at=raw.updated_at,
        merged_at=raw.merged_at,
        closed_at=raw.closed_at,
        author=raw.author,
        is_draft=raw.is_draft,
        additions=raw.additions,
        deletions=raw.deletions,
        changed_files=raw.changed_files,
    )


def to_raw_labels(labels: list[Label]) -> list[RawLabel]:
    return [RawLabel(name=lbl.name, color=lbl.color, description=lbl.description) for lbl in labels]
