"""Tests for schema versioning and migrations."""

from __future__ import annotations

import sqlite3

import pytest

from kanban.core.migrations import (
    SCHEMA_VERSION,
    MigrationError,
    check_version_compatible,
    current_version,
    get_migration_path,
    migrate,
    register_migration,
)


@pytest.fixture
def conn():
    c = sqlite3.connect(":memory:", isolation_level=None)
    yield c
    c.close()


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {r[0] for r in rows}


class TestMigrate:
    def test_fresh_database(self, conn):
        assert current_version(conn) == 0
        assert migrate(conn) == [1, 2, 3]
        assert current_version(conn) == SCHEMA_VERSION
        assert {"issues", "status_transitions", "pull_requests", "cfd_data"} <= _tables(conn)

    def test_already_current(self, conn):
        migrate(conn)
        assert migrate(conn) == []

    def test_step_by_step(self, conn):
        assert migrate(conn, 2) == [1, 2]
        assert "pull_requests" in _tables(conn)
        assert migrate(conn) == [3]
        columns = {r[1] for r in conn.execute("PRAGMA table_info(issues)")}
        assert "synced_at" in columns

    def test_dedupes_blocked_periods(self, conn):
        migrate(conn, 2)
        for _ in range(3):
            conn.execute(
                "INSERT INTO blocked_periods (issue_id, blocked_at) VALUES (1, '2026-01-01T00:00:00+00:00')"
            )
        migrate(conn)
        assert conn.execute("SELECT COUNT(*) FROM blocked_periods").fetchone()[0] == 1
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO blocked_periods (issue_id, blocked_at) VALUES (1, '2026-01-01T00:00:00+00:00')"
            )

    def test_never_downgrades(self, conn):
        migrate(conn)
        conn.execute("INSERT INTO schema_version (version, applied_at) VALUES (99, 'x')")
        with pytest.raises(MigrationError, match="newer"):
            migrate(conn)


class TestPaths:
    def test_path(self):
        assert get_migration_path(0, 3) == [0, 1, 2, 3]
        assert get_migration_path(2, 2) == [2]

    def test_no_path(self):
        assert get_migration_path(3, 7) is None

    def test_register_rejects_backwards(self):
        with pytest.raises(ValueError):
            register_migration(2, 1)

    def test_compatibility(self):
        assert check_version_compatible(SCHEMA_VERSION)
        assert check_version_compatible(0)
        assert not check_version_compatible(SCHEMA_VERSION + 1)
