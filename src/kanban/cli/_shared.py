"""Shared CLI utilities to avoid circular imports."""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from kanban.core.store import KanbanStore, StoreError
from kanban.sources.github import GitHubSource
from kanban.utils.config import ConfigError, KanbanConfig, load_config
from kanban.utils.output import error, error_console
from kanban.utils.paths import db_path

FORMAT_OPTION = typer.Option(None, "--format", "-F", help="Output format: json or text")
REPO_OPTION = typer.Option(None, "--repo", "-r", help="Repository name (repeatable)")


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr through rich; DEBUG when verbose, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


def get_config() -> KanbanConfig:
    try:
        return load_config()
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(1)


def get_store() -> KanbanStore:
    """Open the kanban database, creating it on first use."""
    try:
        return KanbanStore.open(db_path())
    except StoreError as e:
        error(str(e))
        raise typer.Exit(1)


def get_tracker() -> GitHubSource:
    return GitHubSource()


def full_repo_name(config: KanbanConfig, repo: str | None) -> str | None:
    """Qualify a bare repository name with the configured organisation."""
    if not repo or "/" in repo or not config.organization:
        return repo
    return f"{config.organization}/{repo}"
