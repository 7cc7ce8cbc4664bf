"""Config subcommands: show, set-org, wip-limit."""

from __future__ import annotations

from typing import Optional

import typer

from kanban.cli._shared import FORMAT_OPTION, get_config
from kanban.core.schema import STATUS_ORDER
from kanban.utils.config import save_config
from kanban.utils.output import console, error, info, output, success
from kanban.utils.paths import config_path

config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(fmt: Optional[str] = FORMAT_OPTION) -> None:
    """Show the effective configuration."""
    config = get_config()
    if fmt == "json":
        output(config, fmt="json")
        return

    console.print(f"[bold]Config:[/bold] {config_path()}")
    console.print(f"  Organization: {config.organization or '(not set)'}")
    sel = config.repositories
    console.print(f"  Repositories: {', '.join(sel.repos) or '(all, with --all)'}")
    if sel.include:
        console.print(f"  Include: {', '.join(sel.include)}")
    if sel.exclude:
        console.print(f"  Exclude: {', '.join(sel.exclude)}")
    s = config.settings
    console.print(f"  Concurrency: {s.concurrency}")
    console.print(f"  Issue limit: {s.issue_limit}  PR limit: {s.pr_limit}")
    console.print(f"  Metrics window: {s.metrics_days} days")
    if s.wip_limits:
        limits = ", ".join(f"{k}={v}" for k, v in sorted(s.wip_limits.items()))
        console.print(f"  WIP limits: {limits}")
    for category, specs in config.labels.items():
        console.print(f"  Labels ({category}): {len(specs)}")


@config_app.command("set-org")
def config_set_org(
    org: str = typer.Argument(..., help="GitHub organization or user"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Set the organization repositories are read from."""
    config = get_config()
    config.organization = org
    save_config(config)
    if fmt == "json":
        output({"key": "organization", "value": org}, fmt="json")
    else:
        success(f"organization = {org}")


@config_app.command("wip-limit")
def config_wip_limit(
    status: str = typer.Argument(..., help="Board column, e.g. review"),
    limit: int = typer.Argument(..., help="Maximum items; 0 removes the limit"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Set or remove the WIP limit of a column."""
    status = status.removeprefix("status:").strip()
    if status not in STATUS_ORDER:
        error(f"Unknown status: {status}. Valid statuses: {', '.join(STATUS_ORDER)}")
        raise typer.Exit(1)
    if limit < 0:
        error("Limit must be zero or positive")
        raise typer.Exit(1)

    config = get_config()
    limits = config.settings.wip_limits
    limits.pop(f"status: {status}", None)
    if limit:
        limits[status] = limit
    else:
        limits.pop(status, None)
    save_config(config)

    if fmt == "json":
        output({"status": status, "limit": limit or None}, fmt="json")
    elif limit:
        success(f"WIP limit {status} = {limit}")
    else:
        info(f"WIP limit for {status} removed")
