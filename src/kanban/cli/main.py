"""Typer app: top-level command groups and root commands (init, status)."""

from __future__ import annotations

from typing import List, Optional

import typer

from kanban import __version__
from kanban.cli._shared import FORMAT_OPTION, configure_logging, get_config, get_store
from kanban.utils.config import KanbanConfig, RepoSelection, save_config
from kanban.utils.output import error, info, output, success
from kanban.utils.paths import config_path

app = typer.Typer(
    name="kanban",
    help="Kanban flow metrics for GitHub issues: sync, board, metrics, CFD.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kanban-flow {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    configure_logging(verbose)


@app.command()
def init(
    org: str = typer.Option(..., "--org", "-o", help="GitHub organization or user"),
    repos: Optional[List[str]] = typer.Option(None, "--repo", "-r", help="Repository to track (repeatable)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Write a config with the default label set and create the database."""
    path = config_path()
    if path.exists() and not force:
        error(f"Config already exists at {path}. Use --force to overwrite.")
        raise typer.Exit(1)

    config = KanbanConfig(organization=org, repositories=RepoSelection(repos=list(repos or [])))
    save_config(config, path)
    store = get_store()
    store.close()

    if fmt == "json":
        output({"config": str(path), "database": str(store.path), "organization": org}, fmt="json")
    else:
        success(f"Initialized kanban for '{org}'")
        info(f"  Config:   {path}")
        info(f"  Database: {store.path}")


@app.command()
def status(fmt: Optional[str] = FORMAT_OPTION) -> None:
    """Show configuration, database contents and recent syncs."""
    config = get_config()
    store = get_store()
    try:
        stats = store.stats()
        records = store.list_sync_records(limit=5)
    finally:
        store.close()

    if fmt == "json":
        output({
            "organization": config.organization,
            "config": str(config_path()),
            "stats": stats.model_dump(mode="json"),
            "recent_syncs": [r.model_dump(mode="json") for r in records],
        }, fmt="json")
        return

    from rich.panel import Panel
    from kanban.utils.output import console

    console.print(Panel(f"[bold]{config.organization or '(no organization)'}[/bold]", title="Kanban"))
    console.print(f"  Config: {config_path()}")
    console.print(f"  Database: {stats.db_path} (schema v{stats.schema_version})")
    console.print(f"  Repositories: {stats.counts.get('repositories', 0)}")
    console.print(f"  Issues: {stats.counts.get('issues', 0)}")
    console.print(f"  Transitions: {stats.counts.get('status_transitions', 0)}")
    last = stats.last_sync_at.strftime("%Y-%m-%d %H:%M UTC") if stats.last_sync_at else "never"
    console.print(f"  Last sync: {last}")
    if records:
        console.print("  Recent syncs:")
        for r in records:
            scope = f"repo {r.repo_id}" if r.repo_id else "all"
            console.print(f"    #{r.id} {scope} {r.status.value} ({r.items_synced} items)")


# Register subcommand groups
from kanban.cli.sync_cmd import sync_command
from kanban.cli.audit_cmd import audit_command
from kanban.cli.metrics_cmd import board_command, metrics_command, prs_command, wip_command
from kanban.cli.cfd_cmd import cfd_app
from kanban.cli.db_cmd import db_app
from kanban.cli.config_cmd import config_app

app.command("sync")(sync_command)
app.command("metrics")(metrics_command)
app.command("board")(board_command)
app.command("wip")(wip_command)
app.command("prs")(prs_command)
app.command("audit")(audit_command)
app.add_typer(cfd_app, name="cfd", help="Cumulative flow snapshots")
app.add_typer(db_app, name="db", help="Database maintenance and diagnostics")
app.add_typer(config_app, name="config", help="Show and edit the configuration")
