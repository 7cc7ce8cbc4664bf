"""Sync command: pull issues, labels and PRs from GitHub into the local database."""

from __future__ import annotations

from typing import List, Optional

import typer

from kanban.cli._shared import FORMAT_OPTION, REPO_OPTION, get_config, get_store, get_tracker
from kanban.sync.orchestrator import SyncError, SyncOptions, SyncOrchestrator
from kanban.utils.output import console, error, info, output, success, warning


def sync_command(
    repos: Optional[List[str]] = REPO_OPTION,
    all_repos: bool = typer.Option(False, "--all", "-a", help="Sync every repository of the organization"),
    labels: bool = typer.Option(False, "--labels", help="Push the configured labels to each repository"),
    prs: bool = typer.Option(False, "--prs", help="Also sync pull requests and their linked issues"),
    timeline: bool = typer.Option(
        False, "--timeline", help="Fetch label history per issue for exact status times (slow)"
    ),
    no_snapshot: bool = typer.Option(False, "--no-snapshot", help="Skip the daily CFD snapshot"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-j", help="Parallel repositories"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List what would be synced"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Sync repositories into the local database."""
    config = get_config()
    settings = config.settings
    options = SyncOptions(
        labels=labels,
        pull_requests=prs,
        timeline=timeline,
        snapshot=not no_snapshot,
        concurrency=concurrency or settings.concurrency,
        issue_limit=settings.issue_limit,
        closed_days=settings.metrics_days,
        pr_limit=settings.pr_limit,
        dry_run=dry_run,
    )

    store = get_store()
    try:
        orchestrator = SyncOrchestrator(store, get_tracker(), config, options)
        summary = orchestrator.run(repos=list(repos or []), all_repos=all_repos)
    except SyncError as e:
        error(str(e))
        raise typer.Exit(1)
    finally:
        store.close()

    if fmt == "json":
        output(summary.to_dict(), fmt="json")
    elif dry_run:
        info("Dry run, nothing written. Would sync:")
        for name in sorted(summary.results):
            console.print(f"  {name}")
    else:
        for name in sorted(summary.results):
            result = summary.results[name]
            if result.state.value == "failed":
                console.print(f"  [red]✗[/red] {name}")
                continue
            extras = []
            if prs:
                extras.append(f"{result.pull_requests} PRs")
            if timeline:
                extras.append(f"{result.timelines} timelines")
            if labels:
                extras.append("labels unchanged" if result.labels_skipped
                              else f"labels +{result.labels_created} ~{result.labels_updated}")
            if result.snapshot_taken:
                extras.append("CFD snapshot")
            detail = f" ({', '.join(extras)})" if extras else ""
            console.print(f"  [green]✓[/green] {name}: {result.issues} issues{detail}")

        for msg in summary.errors:
            warning(msg)
        if summary.failed:
            error(f"{len(summary.failed)} of {len(summary.results)} repositories failed")
        else:
            success(f"Synced {summary.total_issues} issues across {len(summary.results)} repositories")

    if summary.failed:
        raise typer.Exit(1)
