"""Sync orchestrator: fan out over repositories and reconcile tracker data into the store."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable

from kanban.core.schema import Label, Repository, SyncStatus
from kanban.core.store import KanbanStore, StoreError
from kanban.core.timeline import resolve_timeline
from kanban.sources.base import IssueTracker, TrackerError
from kanban.sync.reconcile import ReconcileError, issue_record, pull_request_record, to_raw_labels
from kanban.utils.config import KanbanConfig
from kanban.utils.timeutil import utc_day, utcnow

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Raised before any repository is touched when a sync cannot start."""


def resolve_repositories(
    config: KanbanConfig,
    tracker: IssueTracker,
    repos: list[str] | None = None,
    all_repos: bool = False,
) -> list[str]:
    """Repositories to work on: explicit names, else the configured list, else (with all_repos) the filtered remote list."""
    if repos:
        return list(dict.fromkeys(repos))
    selection = config.repositories
    if selection.repos:
        return list(dict.fromkeys(selection.repos))
    if all_repos:
        try:
            names = tracker.list_repositories(config.organization)
        except TrackerError as e:
            raise SyncError(f"Cannot list repositories for {config.organization}: {e}") from e
        return selection.filter_repos(names)
    return []


@dataclass
class SyncOptions:
    labels: bool = False  # push configured labels to each repository
    issues: bool = True
    pull_requests: bool = False
    timeline: bool = False  # one extra tracker call per issue
    snapshot: bool = True  # take today's CFD snapshot if missing
    concurrency: int = 5
    issue_limit: int = 500
    closed_days: int = 0  # also fetch issues closed in this many days; 0 skips it
    pr_limit: int = 200
    dry_run: bool = False

    @property
    def sync_type(self) -> str:
        return "timeline" if self.timeline else "full"


@dataclass
class RepoSyncResult:
    repo: str
    state: SyncStatus = SyncStatus.pending
    issues: int = 0
    pull_requests: int = 0
    pr_links: int = 0
    timelines: int = 0
    labels_created: int = 0
    labels_updated: int = 0
    labels_skipped: bool = False
    snapshot_taken: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class SyncSummary:
    """Cross-repository totals. Workers report into it through add()."""

    results: dict[str, RepoSyncResult] = field(default_factory=dict)
    total_issues: int = 0
    errors: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, result: RepoSyncResult) -> None:
        with self._lock:
            self.results[result.repo] = result
            self.total_issues += result.issues
            self.errors.extend(f"{result.repo}: {e}" for e in result.errors)

    @property
    def failed(self) -> list[str]:
        return sorted(r.repo for r in self.results.values() if r.state == SyncStatus.failed)

    @property
    def completed(self) -> list[str]:
        return sorted(r.repo for r in self.results.values() if r.state == SyncStatus.completed)

    def to_dict(self) -> dict:
        return {
            "total_issues": self.total_issues,
            "completed": self.completed,
            "failed": self.failed,
            "errors": list(self.errors),
            "repositories": [self.results[k].to_dict() for k in sorted(self.results)],
        }


class SyncOrchestrator:
    """Pull issues, labels and PRs for many repositories with bounded concurrency.

    Each repository is handled by exactly one worker. A repository that fails
    is recorded and skipped; the others carry on. Errors are collected and
    reported together at the end.
    """

    def __init__(
        self,
        store: KanbanStore,
        tracker: IssueTracker,
        config: KanbanConfig,
        options: SyncOptions | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.config = config
        self.options = options or SyncOptions(
            concurrency=config.settings.concurrency,
            closed_days=config.settings.metrics_days,
        )
        self.clock = clock

    # -- Preconditions --

    def resolve_repositories(self, repos: list[str] | None = None, all_repos: bool = False) -> list[str]:
        return resolve_repositories(self.config, self.tracker, repos, all_repos)

    def desired_labels(self) -> list[Label]:
        return [
            Label(name=spec.name, color=spec.color, description=spec.description)
            for spec in self.config.all_labels()
        ]

    # -- Run --

    def run(self, repos: list[str] | None = None, all_repos: bool = False) -> SyncSummary:
        """Sync the resolved repositories and return the aggregated outcome.

        Raises SyncError when no organisation or repository is configured, or
        when label sync is requested without any labels defined.
        """
        org = self.config.organization
        if not org:
            raise SyncError("No organization configured. Run `kanban init --org <name>` first.")
        if self.options.labels and not self.config.all_labels():
            raise SyncError("Label sync requested but no labels are defined in the configuration.")

        names = self.resolve_repositories(repos, all_repos)
        if not names:
            raise SyncError("No repositories to sync. Pass --repo, list them in the config, or use --all.")

        summary = SyncSummary()
        if self.options.dry_run:
            for name in names:
                summary.add(RepoSyncResult(repo=f"{org}/{name}"))
            return summary

        run_id = self.store.start_sync(None, self.options.sync_type, now=self.clock())
        workers = max(1, min(self.options.concurrency, len(names)))
        logger.info("Syncing %d repositories of %s with %d workers", len(names), org, workers)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures: dict[Future[RepoSyncResult], str] = {
                executor.submit(self._sync_repo, org, name, summary): name for name in names
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.exception("Unexpected failure syncing %s/%s", org, name)
                    summary.add(RepoSyncResult(
                        repo=f"{org}/{name}", state=SyncStatus.failed, errors=[str(e)],
                    ))

        self.store.complete_sync(
            run_id,
            summary.total_issues,
            error="; ".join(summary.errors) or None,
            failed=len(summary.failed) == len(names),
            now=self.clock(),
        )
        return summary

    def _sync_repo(self, org: str, name: str, summary: SyncSummary) -> RepoSyncResult:
        result = RepoSyncResult(repo=f"{org}/{name}", state=SyncStatus.running)
        try:
            repo = self.store.get_or_create_repo(org, name)
            sync_id = self.store.start_sync(repo.id, self.options.sync_type, now=self.clock())
        except StoreError as e:
            logger.error("Cannot register %s/%s: %s", org, name, e)
            result.state = SyncStatus.failed
            result.errors.append(str(e))
            summary.add(result)
            return result

        now = self.clock()
        try:
            self._pull(org, repo, now, result)
        except TrackerError as e:
            logger.error("Fetching issues for %s failed: %s", repo.full_name, e)
            return self._fail(sync_id, f"issues: {e}", result, summary)
        except Exception as e:
            logger.exception("Unexpected failure syncing %s", repo.full_name)
            return self._fail(sync_id, str(e), result, summary)

        self.store.complete_sync(
            sync_id,
            result.issues + result.pull_requests,
            error="; ".join(result.errors) or None,
            now=self.clock(),
        )
        self.store.touch_repo_sync(repo.id, now)
        result.state = SyncStatus.completed

        if self.options.snapshot:
            try:
                result.snapshot_taken = self.store.snapshots.snapshot_if_due(repo.id, utc_day(now))
            except StoreError as e:
                result.errors.append(f"snapshot: {e}")

        logger.info(
            "%s: %d issues, %d PRs, %d errors",
            repo.full_name, result.issues, result.pull_requests, len(result.errors),
        )
        summary.add(result)
        return result

    def _pull(self, org: str, repo: Repository, now: datetime, result: RepoSyncResult) -> None:
        """Labels, issues and PRs for one repository. Raises TrackerError only when the issue listing fails."""
        if self.options.labels:
            self._sync_labels(org, repo, result)

        if self.options.issues:
            raw_issues = self.tracker.list_issues(org, repo.name, self.options.issue_limit)
            if self.options.closed_days:
                raw_issues = self._with_recently_closed(org, repo, raw_issues, result)
            self._sync_issues(org, repo, raw_issues, now, result)

        if self.options.pull_requests:
            self._sync_pull_requests(org, repo, result)

    def _with_recently_closed(self, org: str, repo: Repository, raw_issues, result: RepoSyncResult) -> list:
        try:
            closed = self.tracker.list_closed_issues(org, repo.name, self.options.closed_days)
        except TrackerError as e:
            logger.warning("Fetching closed issues for %s failed: %s", repo.full_name, e)
            result.errors.append(f"closed issues: {e}")
            return raw_issues
        seen = {raw.number for raw in raw_issues}
        return list(raw_issues) + [raw for raw in closed if raw.number not in seen]

    def _fail(self, sync_id: int, message: str, result: RepoSyncResult, summary: SyncSummary) -> RepoSyncResult:
        """Mark the repository failed and close its sync record, keeping the counts reached so far."""
        result.state = SyncStatus.failed
        result.errors.append(message)
        try:
            self.store.complete_sync(
                sync_id,
                result.issues + result.pull_requests,
                error=message,
                failed=True,
                now=self.clock(),
            )
        except StoreError as e:
            logger.error("Cannot close sync record for %s: %s", result.repo, e)
        summary.add(result)
        return result

    def _sync_labels(self, org: str, repo: Repository, result: RepoSyncResult) -> None:
        desired = self.desired_labels()
        if not self.store.labels_need_sync(repo.id, desired):
            result.labels_skipped = True
            return
        try:
            outcome = self.tracker.sync_labels(org, repo.name, to_raw_labels(desired))
            self.store.upsert_labels(repo.id, desired)
        except (TrackerError, StoreError) as e:
            logger.warning("Label sync for %s failed: %s", repo.full_name, e)
            result.errors.append(f"labels: {e}")
            return
        result.labels_created = len(outcome.created)
        result.labels_updated = len(outcome.updated)

    def _sync_issues(self, org, repo: Repository, raw_issues, now: datetime, result: RepoSyncResult) -> None:
        for raw in raw_issues:
            try:
                issue = self.store.upsert_issue(issue_record(raw, repo.id), now)
            except (ReconcileError, StoreError) as e:
                logger.warning("Skipping %s#%s: %s", repo.full_name, raw.number, e)
                result.errors.append(f"#{raw.number}: {e}")
                continue
            result.issues += 1

            if not self.options.timeline:
                continue
            try:
                events = self.tracker.get_timeline(org, repo.name, raw.number)
                self.store.apply_timeline(issue.id, resolve_timeline(events, now), now)
                result.timelines += 1
            except (TrackerError, StoreError, ValueError) as e:
                logger.warning("Timeline for %s#%s failed: %s", repo.full_name, raw.number, e)
                result.errors.append(f"#{raw.number} timeline: {e}")

    def _sync_pull_requests(self, org: str, repo: Repository, result: RepoSyncResult) -> None:
        try:
            raw_prs = self.tracker.list_pull_requests(org, repo.name, self.options.pr_limit)
        except TrackerError as e:
            logger.warning("Fetching PRs for %s failed: %s", repo.full_name, e)
            result.errors.append(f"pull requests: {e}")
            return

        for raw in raw_prs:
            try:
                pr_id = self.store.upsert_pull_request(pull_request_record(raw, repo.id))
                result.pull_requests += 1
                for number in self.tracker.get_linked_issues(org, repo.name, raw.number):
                    if self.store.link_pr_to_issue(pr_id, repo.id, number):
                        result.pr_links += 1
            except (ReconcileError, StoreError, TrackerError, ValueError) as e:
                logger.warning("Skipping PR %s#%s: %s", repo.full_name, raw.number, e)
                result.errors.append(f"PR #{raw.number}: {e}")
