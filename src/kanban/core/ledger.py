"""Append-only status transition log and blocked intervals per issue."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING

from kanban.core.schema import BlockedPeriod, StatusTransition
from kanban.core.timeline import BlockedInterval
from kanban.utils.timeutil import from_db, hours_between, to_db, utcnow

if TYPE_CHECKING:
    from kanban.core.store import KanbanStore

# Reason tags for blocked periods: seen flipping between two syncs, or read from the timeline.
OBSERVED = "label"
FROM_TIMELINE = "timeline"


class TransitionLedger:
    """Status history for issues in a KanbanStore.

    Transitions can only be appended. Blocked periods are opened, closed and
    merged by start time; a closed period is never reopened.
    """

    def __init__(self, store: KanbanStore) -> None:
        self.store = store

    # -- Status transitions --

    def record(
        self,
        issue_id: int,
        from_status: str | None,
        to_status: str,
        at: datetime,
        recorded_at: datetime | None = None,
    ) -> StatusTransition:
        """Append one transition.

        A timestamp earlier than the issue's latest transition is raised to it,
        so an issue's history never goes backwards in time.
        """
        recorded_at = recorded_at or utcnow()
        with self.store.transaction() as conn:
            last = self._last_at(conn, issue_id)
            if last is not None and at < last:
                at = last
            cur = conn.execute(
                "INSERT INTO status_transitions"
                " (issue_id, from_status, to_status, transitioned_at, recorded_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (issue_id, from_status, to_status, to_db(at), to_db(recorded_at)),
            )
        return StatusTransition(
            id=cur.lastrowid,
            issue_id=issue_id,
            from_status=from_status,
            to_status=to_status,
            transitioned_at=at,
            recorded_at=recorded_at,
        )

    def for_issue(self, issue_id: int) -> list[StatusTransition]:
        rows = self.store.query(
            "SELECT * FROM status_transitions WHERE issue_id = ? ORDER BY transitioned_at, id",
            (issue_id,),
        )
        return [
            StatusTransition(
                id=r["id"],
                issue_id=r["issue_id"],
                from_status=r["from_status"],
                to_status=r["to_status"],
                transitioned_at=from_db(r["transitioned_at"]),
                recorded_at=from_db(r["recorded_at"]),
            )
            for r in rows
        ]

    def count(self, issue_id: int | None = None) -> int:
        if issue_id is None:
            rows = self.store.query("SELECT COUNT(*) FROM status_transitions")
        else:
            rows = self.store.query(
                "SELECT COUNT(*) FROM status_transitions WHERE issue_id = ?", (issue_id,)
            )
        return rows[0][0]

    def _last_at(self, conn: sqlite3.Connection, issue_id: int) -> datetime | None:
        row = conn.execute(
            "SELECT MAX(transitioned_at) FROM status_transitions WHERE issue_id = ?",
            (issue_id,),
        ).fetchone()
        return from_db(row[0])

    # -- Blocked periods --

    def open_blocked(self, issue_id: int, blocked_at: datetime, reason: str = OBSERVED) -> bool:
        """Open a blocked period unless one is already open. Returns True if a row was added."""
        with self.store.transaction() as conn:
            if self._open_period(conn, issue_id) is not None:
                return False
            cur = conn.execute(
                "INSERT INTO blocked_periods (issue_id, blocked_at, reason) VALUES (?, ?, ?)"
                " ON CONFLICT(issue_id, blocked_at) DO NOTHING",
                (issue_id, to_db(blocked_at), reason),
            )
            return cur.rowcount > 0

    def close_blocked(self, issue_id: int, unblocked_at: datetime) -> bool:
        """Close the open blocked period, if any, and compute its duration."""
        with self.store.transaction() as conn:
            row = self._open_period(conn, issue_id)
            if row is None:
                return False
            start = from_db(row["blocked_at"])
            end = max(unblocked_at, start)
            conn.execute(
                "UPDATE blocked_periods SET unblocked_at = ?, duration_hours = ? WHERE id = ?",
                (to_db(end), hours_between(start, end), row["id"]),
            )
            return True

    def merge_blocked(self, issue_id: int, intervals: list[BlockedInterval]) -> None:
        """Merge timeline intervals into the stored periods, keyed by start time.

        Periods observed between syncs are approximations and are replaced.
        New intervals are inserted; an open stored period is closed when the
        timeline reports its end; closed periods are left alone.
        """
        with self.store.transaction() as conn:
            conn.execute(
                "DELETE FROM blocked_periods WHERE issue_id = ? AND reason = ?",
                (issue_id, OBSERVED),
            )
            for interval in intervals:
                duration = None
                if interval.end is not None:
                    duration = hours_between(interval.start, interval.end)
                conn.execute(
                    "INSERT INTO blocked_periods"
                    " (issue_id, blocked_at, unblocked_at, duration_hours, reason)"
                    " VALUES (?, ?, ?, ?, ?)"
                    " ON CONFLICT(issue_id, blocked_at) DO UPDATE SET"
                    "   unblocked_at = excluded.unblocked_at,"
                    "   duration_hours = excluded.duration_hours"
                    " WHERE blocked_periods.unblocked_at IS NULL"
                    "   AND excluded.unblocked_at IS NOT NULL",
                    (issue_id, to_db(interval.start), to_db(interval.end), duration, FROM_TIMELINE),
                )

    def blocked_periods(self, issue_id: int) -> list[BlockedPeriod]:
        rows = self.store.query(
            "SELECT * FROM blocked_periods WHERE issue_id = ? ORDER BY blocked_at",
            (issue_id,),
        )
        return [
            BlockedPeriod(
                id=r["id"],
                issue_id=r["issue_id"],
                blocked_at=from_db(r["blocked_at"]),
                unblocked_at=from_db(r["unblocked_at"]),
                duration_hours=r["duration_hours"],
                reason=r["reason"],
            )
            for r in rows
        ]

    def blocked_hours(self, issue_id: int, until: datetime) -> float:
        """Closed period durations plus any open period measured up to ``until``."""
        total = 0.0
        for period in self.blocked_periods(issue_id):
            if period.unblocked_at is not None:
                total += period.duration_hours or 0.0
            elif period.blocked_at < until:
                total += hours_between(period.blocked_at, until)
        return total

    def _open_period(self, conn: sqlite3.Connection, issue_id: int) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT id, blocked_at FROM blocked_periods"
            " WHERE issue_id = ? AND unblocked_at IS NULL ORDER BY blocked_at DESC LIMIT 1",
            (issue_id,),
        ).fetchone()
