"""Database versioning and migration framework.

Provides a registry for schema migrations with decorator-based registration
and BFS path finding for multi-step upgrades. Versions are integers that only
ever go up; a database newer than this code is refused rather than downgraded.
"""

from __future__ import annotations

import sqlite3
from collections import deque
from datetime import datetime, timezone
from typing import Callable

SCHEMA_VERSION = 3

MigrationFn = Callable[[sqlite3.Connection], None]

_registry: dict[tuple[int, int], MigrationFn] = {}


class MigrationError(Exception):
    pass


def register_migration(from_version: int, to_version: int):
    """Decorator to register a migration step between two schema versions.

    Usage:
        @register_migration(1, 2)
        def migrate_1_to_2(conn: sqlite3.Connection) -> None:
            conn.execute("ALTER TABLE ...")
    """
    if to_version <= from_version:
        raise ValueError(f"Migration must move forward: {from_version} -> {to_version}")

    def decorator(fn: MigrationFn) -> MigrationFn:
        _registry[(from_version, to_version)] = fn
        return fn
    return decorator


def get_migration_path(from_version: int, to_version: int) -> list[int] | None:
    """Find the shortest migration path between two versions using BFS.

    Returns the version sequence (including start and end), or None if no path exists.
    """
    if from_version == to_version:
        return [from_version]

    adjacency: dict[int, list[int]] = {}
    for (src, dst) in _registry:
        adjacency.setdefault(src, []).append(dst)

    queue: deque[list[int]] = deque([[from_version]])
    visited = {from_version}

    while queue:
        path = queue.popleft()
        current = path[-1]

        for neighbor in sorted(adjacency.get(current, [])):
            if neighbor == to_version:
                return path + [neighbor]
            if neighbor not in visited and neighbor < to_version:
                visited.add(neighbor)
                queue.append(path + [neighbor])

    return None


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied schema version, 0 for an empty database."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version ("
        " version INTEGER PRIMARY KEY,"
        " applied_at TEXT NOT NULL)"
    )
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def migrate(conn: sqlite3.Connection, target_version: int | None = None) -> list[int]:
    """Bring the database up to the target version (defaults to SCHEMA_VERSION).

    Each step runs in its own transaction together with its version row.
    Returns the versions applied, empty when already current.

    Raises MigrationError if the database is newer than the target or no path exists.
    """
    target = target_version or SCHEMA_VERSION
    stored = current_version(conn)

    if stored > target:
        raise MigrationError(
            f"Database schema version {stored} is newer than supported version {target}. "
            f"Upgrade kanban-flow instead of opening this database with an older release."
        )
    if stored == target:
        return []

    path = get_migration_path(stored, target)
    if path is None:
        raise MigrationError(f"No migration path from schema version {stored} to {target}.")

    applied: list[int] = []
    for i in range(len(path) - 1):
        step = (path[i], path[i + 1])
        conn.execute("BEGIN")
        try:
            _registry[step](conn)
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (step[1], datetime.now(timezone.utc).isoformat()),
            )
        except Exception:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        applied.append(step[1])
    return applied


def check_version_compatible(db_version: int) -> bool:
    """Check if a database at db_version can be opened by this code.

    Returns True if the version matches current or a migration path exists.
    """
    if db_version == SCHEMA_VERSION:
        return True
    if db_version > SCHEMA_VERSION:
        return False
    return get_migration_path(db_version, SCHEMA_VERSION) is not None


def _run(conn: sqlite3.Connection, statements: list[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


@register_migration(0, 1)
def migrate_0_to_1(conn: sqlite3.Connection) -> None:
    """Create the core tables: organisations, repositories, labels, issues, ledger, CFD, sync log."""
    _run(conn, [
        """CREATE TABLE organizations (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL UNIQUE,
            created_at  TEXT NOT NULL
        )""",
        """CREATE TABLE repositories (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            org_id       INTEGER NOT NULL REFERENCES organizations(id),
            name         TEXT NOT NULL,
            full_name    TEXT NOT NULL UNIQUE,
            is_active    INTEGER NOT NULL DEFAULT 1,
            created_at   TEXT NOT NULL,
            last_sync_at TEXT,
            UNIQUE(org_id, name)
        )""",
        """CREATE TABLE labels (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_id     INTEGER NOT NULL REFERENCES repositories(id),
            name        TEXT NOT NULL,
            color       TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            category    TEXT NOT NULL DEFAULT 'special',
            UNIQUE(repo_id, name)
        )""",
        """CREATE TABLE issues (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_id       INTEGER NOT NULL REFERENCES repositories(id),
            number        INTEGER NOT NULL,
            title         TEXT NOT NULL,
            state         TEXT NOT NULL,
            gh_created_at TEXT NOT NULL,
            gh_updated_at TEXT NOT NULL,
            gh_closed_at  TEXT,
            status        TEXT,
            priority      TEXT,
            type          TEXT,
            size          TEXT,
            is_blocked    INTEGER NOT NULL DEFAULT 0,
            assignee      TEXT,
            entered_ready_at       TEXT,
            entered_in_progress_at TEXT,
            entered_review_at      TEXT,
            entered_testing_at     TEXT,
            entered_done_at        TEXT,
            lead_time_hours    REAL,
            cycle_time_hours   REAL,
            blocked_time_hours REAL NOT NULL DEFAULT 0,
            UNIQUE(repo_id, number)
        )""",
        """CREATE TABLE status_transitions (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            issue_id        INTEGER NOT NULL REFERENCES issues(id),
            from_status     TEXT,
            to_status       TEXT NOT NULL,
            transitioned_at TEXT NOT NULL,
            recorded_at     TEXT NOT NULL
        )""",
        """CREATE TABLE blocked_periods (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            issue_id       INTEGER NOT NULL REFERENCES issues(id),
            blocked_at     TEXT NOT NULL,
            unblocked_at   TEXT,
            duration_hours REAL,
            reason         TEXT NOT NULL DEFAULT ''
        )""",
        """CREATE TABLE cfd_data (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_id       INTEGER NOT NULL REFERENCES repositories(id),
            snapshot_date TEXT NOT NULL,
            status        TEXT NOT NULL,
            count         INTEGER NOT NULL,
            UNIQUE(repo_id, snapshot_date, status)
        )""",
        """CREATE TABLE sync_history (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_id       INTEGER REFERENCES repositories(id),
            sync_type     TEXT NOT NULL,
            started_at    TEXT NOT NULL,
            completed_at  TEXT,
            status        TEXT NOT NULL,
            items_synced  INTEGER NOT NULL DEFAULT 0,
            error_message TEXT
        )""",
        "CREATE INDEX idx_issues_repo_status ON issues(repo_id, status)",
        "CREATE INDEX idx_issues_repo_state ON issues(repo_id, state)",
        "CREATE INDEX idx_issues_gh_closed ON issues(gh_closed_at)",
        "CREATE INDEX idx_transitions_issue ON status_transitions(issue_id, transitioned_at)",
        "CREATE INDEX idx_blocked_issue ON blocked_periods(issue_id)",
        "CREATE INDEX idx_cfd_repo_date ON cfd_data(repo_id, snapshot_date)",
    ])


@register_migration(1, 2)
def migrate_1_to_2(conn: sqlite3.Connection) -> None:
    """Add pull requests and their links to issues."""
    _run(conn, [
        """CREATE TABLE pull_requests (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_id       INTEGER NOT NULL REFERENCES repositories(id),
            number        INTEGER NOT NULL,
            title         TEXT NOT NULL,
            state         TEXT NOT NULL,
            is_draft      INTEGER NOT NULL DEFAULT 0,
            author        TEXT NOT NULL DEFAULT '',
            gh_created_at TEXT NOT NULL,
            gh_updated_at TEXT NOT NULL,
            gh_merged_at  TEXT,
            gh_closed_at  TEXT,
            additions     INTEGER NOT NULL DEFAULT 0,
            deletions     INTEGER NOT NULL DEFAULT 0,
            changed_files INTEGER NOT NULL DEFAULT 0,
            merge_time_hours REAL,
            UNIQUE(repo_id, number)
        )""",
        """CREATE TABLE pr_issue_links (
            pr_id    INTEGER NOT NULL REFERENCES pull_requests(id),
            issue_id INTEGER NOT NULL REFERENCES issues(id),
            PRIMARY KEY (pr_id, issue_id)
        )""",
        "CREATE INDEX idx_prs_repo_state ON pull_requests(repo_id, state)",
        "CREATE INDEX idx_pr_links_issue ON pr_issue_links(issue_id)",
    ])


@register_migration(2, 3)
def migrate_2_to_3(conn: sqlite3.Connection) -> None:
    """Make blocked periods mergeable by start time and track when issues were last synced."""
    _run(conn, [
        "ALTER TABLE issues ADD COLUMN synced_at TEXT",
        # keep the earliest row of any duplicate (issue, blocked_at) pair
        """DELETE FROM blocked_periods WHERE id NOT IN (
            SELECT MIN(id) FROM blocked_periods GROUP BY issue_id, blocked_at
        )""",
        "CREATE UNIQUE INDEX idx_blocked_issue_start ON blocked_periods(issue_id, blocked_at)",
    ])
