"""KanbanStore: SQLite-backed mirror of organisations, repositories, issues and PRs."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator

from kanban.core.classify import categorize_label
from kanban.core.ledger import TransitionLedger
from kanban.core.migrations import MigrationError, current_version, migrate
from kanban.core.schema import (
    STATUS_ORDER,
    TRACKED_STATUSES,
    BoardIssue,
    Issue,
    IssueState,
    Label,
    Organization,
    PRSummary,
    PullRequest,
    Repository,
    Stats,
    SyncRecord,
    SyncStatus,
    WIPSummary,
    entered_column,
)
from kanban.core.snapshots import SnapshotStore
from kanban.core.timeline import TimelineResult
from kanban.utils.timeutil import from_db, hours_between, to_db, utcnow

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# Tables reported by stats(), in display order.
_STAT_TABLES = (
    "organizations",
    "repositories",
    "labels",
    "issues",
    "status_transitions",
    "blocked_periods",
    "pull_requests",
    "pr_issue_links",
    "cfd_data",
    "sync_history",
)

# Issue columns written from an IssueRecord on every upsert.
_MUTABLE_FIELDS = (
    "title",
    "state",
    "gh_created_at",
    "gh_updated_at",
    "gh_closed_at",
    "status",
    "priority",
    "type",
    "size",
    "is_blocked",
    "assignee",
)

_BOARD_FILTER = "(i.state = 'open' OR (i.state = 'closed' AND i.status = 'done'))"


class StoreError(Exception):
    pass


# -- Input records --


@dataclass
class IssueRecord:
    """A reconciled issue, ready to be written."""

    repo_id: int
    number: int
    title: str
    state: IssueState
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    status: str | None = None
    priority: str | None = None
    type: str | None = None
    size: str | None = None
    is_blocked: bool = False
    assignee: str | None = None
    labels: list[str] = field(default_factory=list)


@dataclass
class PullRequestRecord:
    repo_id: int
    number: int
    title: str
    state: str
    created_at: datetime
    updated_at: datetime
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    author: str = ""
    is_draft: bool = False
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


def _sort_status(status: str | None) -> tuple[int, str]:
    if status in STATUS_ORDER:
        return (STATUS_ORDER.index(status), status)
    return (len(STATUS_ORDER), status or "")


def _norm_color(color: str) -> str:
    return (color or "").lstrip("#").lower()


class KanbanStore:
    """Single-writer store over one SQLite connection.

    All statements go through one connection guarded by a re-entrant lock, so
    concurrent sync workers serialise their writes. Each ``transaction()``
    block commits or rolls back as a unit.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = path if str(path) == MEMORY else Path(path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self.ledger = TransitionLedger(self)
        self.snapshots = SnapshotStore(self)

    @classmethod
    def open(cls, path: Path | str) -> KanbanStore:
        store = cls(path)
        store.connect()
        return store

    def connect(self) -> None:
        """Open the database, creating it and applying migrations as needed."""
        if self._conn is not None:
            return
        in_memory = str(self.path) == MEMORY
        if not in_memory:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                str(self.path), check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA busy_timeout = 5000")
        if not in_memory:
            conn.execute("PRAGMA journal_mode = WAL")
        try:
            applied = migrate(conn)
        except (MigrationError, sqlite3.Error) as e:
            conn.close()
            raise StoreError(str(e)) from e
        if applied:
            logger.info("Applied schema migrations %s to %s", applied, self.path)
        self._conn = conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> KanbanStore:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Store is not open. Call connect() first.")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction. Nested blocks join the outer one."""
        with self._lock:
            conn = self.conn
            if conn.in_transaction:
                yield conn
                return
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # -- Organisations and repositories --

    def get_or_create_org(self, name: str) -> Organization:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO organizations (name, created_at) VALUES (?, ?)"
                " ON CONFLICT(name) DO NOTHING",
                (name, to_db(utcnow())),
            )
            row = conn.execute("SELECT * FROM organizations WHERE name = ?", (name,)).fetchone()
        return Organization(id=row["id"], name=row["name"], created_at=from_db(row["created_at"]))

    def get_or_create_repo(self, org: str, name: str) -> Repository:
        """Return the repository row for ``org/name``, creating it (and the org) on first use."""
        full_name = f"{org}/{name}"
        with self.transaction() as conn:
            org_row = self.get_or_create_org(org)
            conn.execute(
                "INSERT INTO repositories (org_id, name, full_name, created_at) VALUES (?, ?, ?, ?)"
                " ON CONFLICT(full_name) DO NOTHING",
                (org_row.id, name, full_name, to_db(utcnow())),
            )
            row = conn.execute(
                "SELECT * FROM repositories WHERE full_name = ?", (full_name,)
            ).fetchone()
        return self._row_to_repo(row)

    def get_repository(self, full_name: str) -> Repository | None:
        rows = self.query("SELECT * FROM repositories WHERE full_name = ?", (full_name,))
        return self._row_to_repo(rows[0]) if rows else None

    def list_repositories(self, active_only: bool = True) -> list[Repository]:
        sql = "SELECT * FROM repositories"
        if active_only:
            sql += " WHERE is_active = 1"
        return [self._row_to_repo(r) for r in self.query(sql + " ORDER BY full_name")]

    def touch_repo_sync(self, repo_id: int, now: datetime | None = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE repositories SET last_sync_at = ? WHERE id = ?",
                (to_db(now or utcnow()), repo_id),
            )

    def _row_to_repo(self, row: sqlite3.Row) -> Repository:
        return Repository(
            id=row["id"],
            org_id=row["org_id"],
            name=row["name"],
            full_name=row["full_name"],
            is_active=bool(row["is_active"]),
            created_at=from_db(row["created_at"]),
            last_sync_at=from_db(row["last_sync_at"]),
        )

    # -- Labels --

    def upsert_labels(self, repo_id: int, labels: list[Label]) -> None:
        with self.transaction() as conn:
            for label in labels:
                conn.execute(
                    "INSERT INTO labels (repo_id, name, color, description, category)"
                    " VALUES (?, ?, ?, ?, ?)"
                    " ON CONFLICT(repo_id, name) DO UPDATE SET"
                    "   color = excluded.color,"
                    "   description = excluded.description,"
                    "   category = excluded.category",
                    (
                        repo_id,
                        label.name,
                        _norm_color(label.color),
                        label.description or "",
                        categorize_label(label.name),
                    ),
                )

    def list_labels(self, repo_id: int) -> list[Label]:
        rows = self.query(
            "SELECT name, color, description, category FROM labels WHERE repo_id = ? ORDER BY name",
            (repo_id,),
        )
        return [
            Label(name=r["name"], color=r["color"], description=r["description"], category=r["category"])
            for r in rows
        ]

    def labels_need_sync(self, repo_id: int, desired: list[Label]) -> bool:
        """True if any desired label is missing from the cache or differs from it."""
        cached = {
            label.name: (_norm_color(label.color), label.description or "")
            for label in self.list_labels(repo_id)
        }
        for label in desired:
            if cached.get(label.name) != (_norm_color(label.color), label.description or ""):
                return True
        return False

    # -- Issues --

    def upsert_issue(self, record: IssueRecord, now: datetime | None = None) -> Issue:
        """Insert or update one issue, appending a transition when its status changes.

        A new issue with a status gets an initial transition stamped with the
        tracker's update time. On a later status change the transition and any
        still-empty ``entered_<status>_at`` are stamped with ``now``.
        Everything runs in one transaction; a failure leaves the issue as it was.
        """
        now = now or utcnow()
        try:
            with self.transaction() as conn:
                row = conn.execute(
                    "SELECT id, status FROM issues WHERE repo_id = ? AND number = ?",
                    (record.repo_id, record.number),
                ).fetchone()
                values = self._issue_values(record)

                if row is None:
                    cols = ", ".join(("repo_id", "number", "synced_at") + _MUTABLE_FIELDS)
                    marks = ", ".join("?" for _ in range(len(_MUTABLE_FIELDS) + 3))
                    cur = conn.execute(
                        f"INSERT INTO issues ({cols}) VALUES ({marks})",
                        (record.repo_id, record.number, to_db(now), *values),
                    )
                    issue_id = cur.lastrowid
                    if record.status:
                        self.ledger.record(issue_id, None, record.status, record.updated_at, now)
                else:
                    issue_id = row["id"]
                    previous = row["status"]
                    if record.status and record.status != previous:
                        self.ledger.record(issue_id, previous, record.status, now, now)
                        if record.status in TRACKED_STATUSES:
                            col = entered_column(record.status)
                            conn.execute(
                                f"UPDATE issues SET {col} = ? WHERE id = ? AND {col} IS NULL",
                                (to_db(now), issue_id),
                            )
                    assignments = ", ".join(f"{f} = ?" for f in _MUTABLE_FIELDS)
                    conn.execute(
                        f"UPDATE issues SET {assignments}, synced_at = ? WHERE id = ?",
                        (*values, to_db(now), issue_id),
                    )

                if record.is_blocked:
                    self.ledger.open_blocked(issue_id, now)
                else:
                    # an issue closed since the last sync was unblocked by then
                    unblocked_at = min(now, record.closed_at) if record.closed_at else now
                    self.ledger.close_blocked(issue_id, unblocked_at)

                self._recalculate(conn, issue_id, now)
        except sqlite3.Error as e:
            raise StoreError(
                f"Failed to store issue #{record.number} (repo {record.repo_id}): {e}"
            ) from e
        return self.get_issue_by_id(issue_id)

    def apply_timeline(self, issue_id: int, result: TimelineResult, now: datetime | None = None) -> Issue:
        """Backfill entry times and blocked periods from a resolved timeline.

        Entry times only fill empty fields; an already recorded time is kept.
        """
        now = now or utcnow()
        try:
            with self.transaction() as conn:
                for status, at in result.status_entries.items():
                    if status not in TRACKED_STATUSES:
                        continue
                    col = entered_column(status)
                    conn.execute(
                        f"UPDATE issues SET {col} = COALESCE({col}, ?) WHERE id = ?",
                        (to_db(at), issue_id),
                    )
                self.ledger.merge_blocked(issue_id, result.blocked_periods)
                self._recalculate(conn, issue_id, now)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to apply timeline to issue {issue_id}: {e}") from e
        return self.get_issue_by_id(issue_id)

    def get_issue(self, repo_id: int, number: int) -> Issue | None:
        rows = self.query(
            "SELECT * FROM issues WHERE repo_id = ? AND number = ?", (repo_id, number)
        )
        return self._row_to_issue(rows[0]) if rows else None

    def get_issue_by_id(self, issue_id: int) -> Issue:
        rows = self.query("SELECT * FROM issues WHERE id = ?", (issue_id,))
        if not rows:
            raise StoreError(f"Issue {issue_id} not found")
        return self._row_to_issue(rows[0])

    def list_issues(self, repo_id: int) -> list[Issue]:
        rows = self.query("SELECT * FROM issues WHERE repo_id = ? ORDER BY number", (repo_id,))
        return [self._row_to_issue(r) for r in rows]

    def _issue_values(self, record: IssueRecord) -> tuple:
        state = record.state.value if isinstance(record.state, IssueState) else record.state
        return (
            record.title,
            state,
            to_db(record.created_at),
            to_db(record.updated_at),
            to_db(record.closed_at),
            record.status,
            record.priority,
            record.type,
            record.size,
            int(record.is_blocked),
            record.assignee,
        )

    def _recalculate(self, conn: sqlite3.Connection, issue_id: int, now: datetime) -> None:
        """Recompute lead, cycle and blocked hours from the stored timestamps.

        Completion is the earlier of entering done and closing. Blocked time is
        counted up to completion, or up to ``now`` while the issue is unfinished.
        """
        row = conn.execute(
            "SELECT gh_created_at, gh_closed_at, entered_in_progress_at, entered_done_at"
            " FROM issues WHERE id = ?",
            (issue_id,),
        ).fetchone()
        created = from_db(row["gh_created_at"])
        started = from_db(row["entered_in_progress_at"])
        ends = [t for t in (from_db(row["entered_done_at"]), from_db(row["gh_closed_at"])) if t]
        completed = min(ends) if ends else None

        blocked = self.ledger.blocked_hours(issue_id, completed or now)
        lead = hours_between(created, completed) if completed else None
        cycle = None
        if started is not None and completed is not None:
            cycle = max(hours_between(started, completed) - blocked, 0.0)

        conn.execute(
            "UPDATE issues SET lead_time_hours = ?, cycle_time_hours = ?, blocked_time_hours = ?"
            " WHERE id = ?",
            (lead, cycle, blocked, issue_id),
        )

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        data = dict(row)
        for key, value in data.items():
            if key.startswith(("gh_", "entered_")) or key == "synced_at":
                data[key] = from_db(value)
        data["is_blocked"] = bool(data["is_blocked"])
        return Issue(**data)

    # -- Pull requests --

    def upsert_pull_request(self, record: PullRequestRecord) -> int:
        merge_hours = None
        if record.merged_at is not None:
            merge_hours = hours_between(record.created_at, record.merged_at)
        values = (
            record.title,
            record.state,
            int(record.is_draft),
            record.author,
            to_db(record.created_at),
            to_db(record.updated_at),
            to_db(record.merged_at),
            to_db(record.closed_at),
            record.additions,
            record.deletions,
            record.changed_files,
            merge_hours,
        )
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO pull_requests (repo_id, number, title, state, is_draft, author,"
                    " gh_created_at, gh_updated_at, gh_merged_at, gh_closed_at,"
                    " additions, deletions, changed_files, merge_time_hours)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
                    " ON CONFLICT(repo_id, number) DO UPDATE SET"
                    "   title = excluded.title, state = excluded.state,"
                    "   is_draft = excluded.is_draft, author = excluded.author,"
                    "   gh_created_at = excluded.gh_created_at, gh_updated_at = excluded.gh_updated_at,"
                    "   gh_merged_at = excluded.gh_merged_at, gh_closed_at = excluded.gh_closed_at,"
                    "   additions = excluded.additions, deletions = excluded.deletions,"
                    "   changed_files = excluded.changed_files,"
                    "   merge_time_hours = excluded.merge_time_hours",
                    (record.repo_id, record.number, *values),
                )
                row = conn.execute(
                    "SELECT id FROM pull_requests WHERE repo_id = ? AND number = ?",
                    (record.repo_id, record.number),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to store PR #{record.number}: {e}") from e
        return row["id"]

    def link_pr_to_issue(self, pr_id: int, repo_id: int, issue_number: int) -> bool:
        """Link a PR to an issue of the same repository. Unknown issues are ignored."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id FROM issues WHERE repo_id = ? AND number = ?", (repo_id, issue_number)
            ).fetchone()
            if row is None:
                return False
            conn.execute(
                "INSERT OR IGNORE INTO pr_issue_links (pr_id, issue_id) VALUES (?, ?)",
                (pr_id, row["id"]),
            )
        return True

    def get_pull_request(self, repo_id: int, number: int) -> PullRequest | None:
        rows = self.query(
            "SELECT * FROM pull_requests WHERE repo_id = ? AND number = ?", (repo_id, number)
        )
        if not rows:
            return None
        data = dict(rows[0])
        for key in ("gh_created_at", "gh_updated_at", "gh_merged_at", "gh_closed_at"):
            data[key] = from_db(data[key])
        data["is_draft"] = bool(data["is_draft"])
        linked = self.query(
            "SELECT i.number FROM pr_issue_links l JOIN issues i ON i.id = l.issue_id"
            " WHERE l.pr_id = ? ORDER BY i.number",
            (data["id"],),
        )
        data["linked_issues"] = [r["number"] for r in linked]
        return PullRequest(**data)

    def pr_summary(self, repo: Repository, days: int = 30, now: datetime | None = None) -> PRSummary:
        since = to_db((now or utcnow()) - timedelta(days=days))
        summary = PRSummary(repo=repo.full_name, period_days=days)
        row = self.query(
            "SELECT"
            " SUM(CASE WHEN gh_created_at >= ? THEN 1 ELSE 0 END) AS created,"
            " SUM(CASE WHEN state = 'open' THEN 1 ELSE 0 END) AS open,"
            " SUM(CASE WHEN state = 'open' AND is_draft = 1 THEN 1 ELSE 0 END) AS draft,"
            " SUM(CASE WHEN gh_merged_at >= ? THEN 1 ELSE 0 END) AS merged,"
            " AVG(CASE WHEN gh_merged_at >= ? THEN merge_time_hours END) AS avg_merge"
            " FROM pull_requests WHERE repo_id = ?",
            (since, since, since, repo.id),
        )[0]
        summary.total = row["created"] or 0
        summary.open = row["open"] or 0
        summary.draft = row["draft"] or 0
        summary.merged = row["merged"] or 0
        if row["avg_merge"] is not None:
            summary.avg_merge_hours = round(row["avg_merge"], 1)
        summary.linked_issues = self.query(
            "SELECT COUNT(DISTINCT l.issue_id) FROM pr_issue_links l"
            " JOIN pull_requests p ON p.id = l.pr_id"
            " WHERE p.repo_id = ? AND p.gh_updated_at >= ?",
            (repo.id, since),
        )[0][0]
        return summary

    # -- Board and flow queries --

    def board_issues(
        self,
        repo: str | None = None,
        status: str | None = None,
        now: datetime | None = None,
    ) -> list[BoardIssue]:
        """Issues on the board: open ones, plus closed ones whose status is done.

        Issues without a status are not on the board. Ordered by repository,
        board column, priority, then number.
        """
        now = now or utcnow()
        sql = (
            "SELECT r.full_name AS repo, i.* FROM issues i"
            " JOIN repositories r ON r.id = i.repo_id"
            f" WHERE {_BOARD_FILTER} AND i.status IS NOT NULL"
        )
        params: list[Any] = []
        if repo:
            sql += " AND r.full_name = ?"
            params.append(repo)
        if status:
            sql += " AND i.status = ?"
            params.append(status)

        issues = [
            BoardIssue(
                repo=r["repo"],
                number=r["number"],
                title=r["title"],
                state=r["state"],
                status=r["status"],
                priority=r["priority"],
                type=r["type"],
                size=r["size"],
                assignee=r["assignee"],
                is_blocked=bool(r["is_blocked"]),
                age_hours=max(hours_between(from_db(r["gh_updated_at"]), now), 0.0),
                lead_time_hours=r["lead_time_hours"],
                cycle_time_hours=r["cycle_time_hours"],
                blocked_time_hours=r["blocked_time_hours"] or 0.0,
            )
            for r in self.query(sql, tuple(params))
        ]
        issues.sort(key=lambda i: (i.repo, _sort_status(i.status), i.priority or "~", i.number))
        return issues

    def status_counts(self, repo_id: int, include_unclassified: bool = False) -> dict[str, int]:
        """Board issue counts per status. Unclassified issues count as 'none' when included."""
        sql = (
            "SELECT COALESCE(i.status, 'none') AS status, COUNT(*) AS n FROM issues i"
            f" WHERE i.repo_id = ? AND {_BOARD_FILTER}"
        )
        if not include_unclassified:
            sql += " AND i.status IS NOT NULL"
        sql += " GROUP BY COALESCE(i.status, 'none')"
        return {r["status"]: r["n"] for r in self.query(sql, (repo_id,))}

    def wip_summary(self, repo: str | None = None) -> list[WIPSummary]:
        repos = [self.get_repository(repo)] if repo else self.list_repositories()
        return [
            WIPSummary(repo=r.full_name, counts=self.status_counts(r.id))
            for r in repos
            if r is not None
        ]

    def closed_issues(self, repo_id: int, since: datetime) -> list[Issue]:
        rows = self.query(
            "SELECT * FROM issues WHERE repo_id = ? AND state = 'closed' AND gh_closed_at >= ?"
            " ORDER BY gh_closed_at",
            (repo_id, to_db(since)),
        )
        return [self._row_to_issue(r) for r in rows]

    def count_created_since(self, repo_id: int, since: datetime) -> int:
        rows = self.query(
            "SELECT COUNT(*) FROM issues WHERE repo_id = ? AND gh_created_at >= ?",
            (repo_id, to_db(since)),
        )
        return rows[0][0]

    # -- Sync history --

    def start_sync(self, repo_id: int | None, sync_type: str = "full", now: datetime | None = None) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO sync_history (repo_id, sync_type, started_at, status) VALUES (?, ?, ?, ?)",
                (repo_id, sync_type, to_db(now or utcnow()), SyncStatus.running.value),
            )
        return cur.lastrowid

    def complete_sync(
        self,
        sync_id: int,
        items_synced: int,
        error: str | None = None,
        failed: bool = False,
        now: datetime | None = None,
    ) -> None:
        status = SyncStatus.failed if failed else SyncStatus.completed
        with self.transaction() as conn:
            conn.execute(
                "UPDATE sync_history SET completed_at = ?, status = ?, items_synced = ?,"
                " error_message = ? WHERE id = ?",
                (to_db(now or utcnow()), status.value, items_synced, error, sync_id),
            )

    def list_sync_records(self, limit: int = 20) -> list[SyncRecord]:
        rows = self.query("SELECT * FROM sync_history ORDER BY id DESC LIMIT ?", (limit,))
        return [
            SyncRecord(
                id=r["id"],
                repo_id=r["repo_id"],
                sync_type=r["sync_type"],
                started_at=from_db(r["started_at"]),
                completed_at=from_db(r["completed_at"]),
                status=r["status"],
                items_synced=r["items_synced"],
                error_message=r["error_message"],
            )
            for r in rows
        ]

    # -- Diagnostics --

    def stats(self) -> Stats:
        counts = {
            table: self.query(f"SELECT COUNT(*) FROM {table}")[0][0] for table in _STAT_TABLES
        }
        last = self.query("SELECT MAX(last_sync_at) FROM repositories")[0][0]
        size = 0
        if str(self.path) != MEMORY and Path(self.path).exists():
            size = Path(self.path).stat().st_size
        with self._lock:
            version = current_version(self.conn)
        return Stats(
            db_path=str(self.path),
            size_bytes=size,
            schema_version=version,
            counts=counts,
            last_sync_at=from_db(last),
        )

    def optimize(self) -> None:
        """Reclaim space and refresh query planner statistics."""
        with self._lock:
            self.conn.execute("VACUUM")
            self.conn.execute("ANALYZE")
