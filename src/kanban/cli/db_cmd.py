"""Database subcommands: stats, optimize, sync history."""

from __future__ import annotations

from typing import Optional

import typer

from kanban.cli._shared import FORMAT_OPTION, get_store
from kanban.utils.output import console, info, output, output_table, success

db_app = typer.Typer(no_args_is_help=True)


@db_app.command("stats")
def db_stats(fmt: Optional[str] = FORMAT_OPTION) -> None:
    """Row counts, file size and schema version."""
    store = get_store()
    try:
        stats = store.stats()
    finally:
        store.close()

    if fmt == "json":
        output(stats, fmt="json")
        return
    console.print(f"[bold]{stats.db_path}[/bold] (schema v{stats.schema_version})")
    console.print(f"  Size: {stats.size_bytes / 1024:.1f} KiB")
    for table, count in stats.counts.items():
        console.print(f"  {table}: {count}")


@db_app.command("optimize")
def db_optimize(fmt: Optional[str] = FORMAT_OPTION) -> None:
    """VACUUM and ANALYZE the database."""
    store = get_store()
    try:
        before = store.stats().size_bytes
        store.optimize()
        after = store.stats().size_bytes
    finally:
        store.close()

    if fmt == "json":
        output({"size_before": before, "size_after": after}, fmt="json")
    else:
        success(f"Optimized: {before / 1024:.1f} KiB -> {after / 1024:.1f} KiB")


@db_app.command("history")
def db_history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of records"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Recent sync runs, newest first."""
    store = get_store()
    try:
        records = store.list_sync_records(limit=limit)
    finally:
        store.close()

    if fmt == "json":
        output(records, fmt="json")
        return
    if not records:
        info("No syncs recorded yet.")
        return
    rows = [
        {
            "id": r.id,
            "scope": f"repo {r.repo_id}" if r.repo_id else "all",
            "type": r.sync_type,
            "started": r.started_at.strftime("%Y-%m-%d %H:%M"),
            "status": r.status.value,
            "items": r.items_synced,
            "error": r.error_message,
        }
        for r in records
    ]
    output_table(rows, ["id", "scope", "type", "started", "status", "items", "error"],
                 fmt="text", title="Sync history")
