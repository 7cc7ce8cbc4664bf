"""Audit command: report label drift between repositories and the config."""

from __future__ import annotations

from typing import List, Optional

import typer

from kanban.cli._shared import FORMAT_OPTION, REPO_OPTION, get_config, get_tracker
from kanban.sync.audit import audit_labels
from kanban.sync.orchestrator import SyncError, resolve_repositories
from kanban.utils.output import console, error, output


def audit_command(
    repos: Optional[List[str]] = REPO_OPTION,
    all_repos: bool = typer.Option(False, "--all", "-a", help="Audit every repository of the organization"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Check that each repository's labels match the configured set."""
    config = get_config()
    if not config.organization:
        error("No organization configured. Run `kanban init --org <name>` first.")
        raise typer.Exit(1)

    tracker = get_tracker()
    try:
        names = resolve_repositories(config, tracker, list(repos or []), all_repos)
    except SyncError as e:
        error(str(e))
        raise typer.Exit(1)
    if not names:
        error("No repositories to audit. Pass --repo, list them in the config, or use --all.")
        raise typer.Exit(1)

    results = audit_labels(config, tracker, names)

    if fmt == "json":
        output([r.to_dict() for r in results], fmt="json")
        return

    for r in results:
        console.print(f"\n[bold]{r.repo}[/bold]")
        if r.error:
            console.print(f"  [red]✗[/red] {r.error}")
            continue
        if r.clean:
            console.print("  [green]✓[/green] All labels match config")
            continue
        for heading, labels, mark in (
            ("Missing labels", r.missing, "-"),
            ("Modified labels (color/description differs)", r.modified, "~"),
            ("Extra labels (not in config)", r.extra, "+"),
        ):
            if labels:
                console.print(f"  {heading}:")
                for name in labels:
                    console.print(f"    {mark} {name}")
