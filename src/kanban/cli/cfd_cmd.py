"""CFD subcommands: take and show cumulative flow snapshots."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from kanban.cli._shared import FORMAT_OPTION, full_repo_name, get_config, get_store
from kanban.core.schema import STATUS_ORDER
from kanban.utils.output import console, error, info, output, success

cfd_app = typer.Typer(no_args_is_help=True)


@cfd_app.command("snapshot")
def cfd_snapshot(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Only this repository"),
    force: bool = typer.Option(False, "--force", help="Replace today's snapshot if one exists"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Record today's status counts for each repository."""
    config = get_config()
    store = get_store()
    try:
        repos = store.list_repositories()
        name = full_repo_name(config, repo)
        if name:
            repos = [r for r in repos if r.full_name == name]
            if not repos:
                error(f"Repository not synced: {name}")
                raise typer.Exit(1)

        taken: dict[str, dict[str, int]] = {}
        for r in repos:
            if force:
                rows = store.snapshots.snapshot(r.id)
            elif store.snapshots.snapshot_if_due(r.id):
                rows = store.snapshots.history(r.id, days=0)
            else:
                continue
            taken[r.full_name] = {row.status: row.count for row in rows}
    finally:
        store.close()

    if fmt == "json":
        output(taken, fmt="json")
    elif taken:
        for full_name, counts in sorted(taken.items()):
            success(f"{full_name}: {sum(counts.values())} issues in {len(counts)} statuses")
    else:
        info("Snapshots already taken today. Use --force to replace them.")


@cfd_app.command("show")
def cfd_show(
    repo: str = typer.Option(..., "--repo", "-r", help="Repository"),
    days: int = typer.Option(30, "--days", "-d", help="Days of history"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Show stored snapshots as a day by status table."""
    config = get_config()
    store = get_store()
    try:
        name = full_repo_name(config, repo)
        found = store.get_repository(name)
        if found is None:
            error(f"Repository not synced: {name}")
            raise typer.Exit(1)
        rows = store.snapshots.history(found.id, days=days)
    finally:
        store.close()

    if fmt == "json":
        output(rows, fmt="json")
        return
    if not rows:
        info(f"No snapshots for {name} in the last {days} days.")
        return

    by_day: dict = {}
    for row in rows:
        by_day.setdefault(row.day, {})[row.status] = row.count
    statuses = [s for s in STATUS_ORDER if any(s in c for c in by_day.values())]
    statuses += sorted({s for c in by_day.values() for s in c} - set(statuses))

    table = Table(title=f"Cumulative flow: {name}")
    table.add_column("Day")
    for status in statuses:
        table.add_column(status, justify="right")
    for day in sorted(by_day):
        counts = by_day[day]
        table.add_row(day.isoformat(), *[str(counts.get(s, 0)) for s in statuses])
    console.print(table)
