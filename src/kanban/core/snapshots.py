"""Daily cumulative-flow snapshots: one count per (repository, day, status)."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING

from kanban.core.schema import CFDSnapshot
from kanban.utils.timeutil import utc_day

if TYPE_CHECKING:
    from kanban.core.store import KanbanStore

logger = logging.getLogger(__name__)


class SnapshotStore:
    """CFD rows for a KanbanStore. Re-saving a day replaces that day."""

    def __init__(self, store: KanbanStore) -> None:
        self.store = store

    def save(self, repo_id: int, day: date, counts: dict[str, int]) -> list[CFDSnapshot]:
        """Write the status counts for one day, replacing whatever that day held."""
        with self.store.transaction() as conn:
            conn.execute(
                "DELETE FROM cfd_data WHERE repo_id = ? AND snapshot_date = ?",
                (repo_id, day.isoformat()),
            )
            conn.executemany(
                "INSERT INTO cfd_data (repo_id, snapshot_date, status, count) VALUES (?, ?, ?, ?)",
                [(repo_id, day.isoformat(), status, n) for status, n in sorted(counts.items())],
            )
        return [
            CFDSnapshot(repo_id=repo_id, day=day, status=status, count=n)
            for status, n in sorted(counts.items())
        ]

    def should_snapshot_today(self, repo_id: int, today: date | None = None) -> bool:
        """True when no snapshot exists yet for the current UTC day."""
        today = today or utc_day()
        rows = self.store.query(
            "SELECT 1 FROM cfd_data WHERE repo_id = ? AND snapshot_date = ? LIMIT 1",
            (repo_id, today.isoformat()),
        )
        return not rows

    def snapshot(self, repo_id: int, today: date | None = None) -> list[CFDSnapshot]:
        """Take a snapshot of the repository's current counts, unconditionally."""
        today = today or utc_day()
        counts = self.store.status_counts(repo_id, include_unclassified=True)
        return self.save(repo_id, today, counts)

    def snapshot_if_due(self, repo_id: int, today: date | None = None) -> bool:
        """Snapshot once per day. Returns True if a snapshot was written."""
        today = today or utc_day()
        if not self.should_snapshot_today(repo_id, today):
            return False
        rows = self.snapshot(repo_id, today)
        logger.info("CFD snapshot for repo %d on %s: %d statuses", repo_id, today, len(rows))
        return True

    def history(self, repo_id: int, days: int = 30, today: date | None = None) -> list[CFDSnapshot]:
        """Snapshots from the last ``days`` days, ordered by day then status."""
        today = today or utc_day()
        since = today - timedelta(days=days)
        rows = self.store.query(
            "SELECT repo_id, snapshot_date, status, count FROM cfd_data"
            " WHERE repo_id = ? AND snapshot_date >= ? AND snapshot_date <= ?"
            " ORDER BY snapshot_date, status",
            (repo_id, since.isoformat(), today.isoformat()),
        )
        return [
            CFDSnapshot(
                repo_id=r["repo_id"],
                day=date.fromisoformat(r["snapshot_date"]),
                status=r["status"],
                count=r["count"],
            )
            for r in rows
        ]

    def last_snapshot_day(self, repo_id: int) -> date | None:
        rows = self.store.query(
            "SELECT MAX(snapshot_date) FROM cfd_data WHERE repo_id = ?", (repo_id,)
        )
        value = rows[0][0]
        return date.fromisoformat(value) if value else None
