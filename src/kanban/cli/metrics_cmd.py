"""Metrics and board commands: read-only views over the synced database."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from kanban.cli._shared import FORMAT_OPTION, full_repo_name, get_config, get_store
from kanban.core.metrics import AGING_SORTS, compute_all, filter_aging, sort_aging
from kanban.core.schema import STATUS_ORDER, KanbanMetrics, TimeStats
from kanban.utils.output import (
    console,
    error,
    format_days,
    info,
    output,
    output_table,
    styled_status,
    truncate,
)


def metrics_command(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Only this repository"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Window in days (default from config)"),
    aging: bool = typer.Option(False, "--aging", help="Show only the aging work list"),
    sort: str = typer.Option("age", "--sort", "-s", help="Aging sort: age, assignee, status, repo"),
    assignee: Optional[str] = typer.Option(None, "--assignee", help="Only aging items of this assignee"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Flow metrics per repository: lead/cycle time, throughput, WIP, bottlenecks."""
    if sort not in AGING_SORTS:
        error(f"Invalid sort: {sort}. Use: {', '.join(AGING_SORTS)}")
        raise typer.Exit(1)

    config = get_config()
    window = days or config.settings.metrics_days
    if window < 1:
        error("--days must be at least 1")
        raise typer.Exit(1)

    store = get_store()
    try:
        results = compute_all(
            store, window, config.settings.wip_limits, repo=full_repo_name(config, repo)
        )
    finally:
        store.close()

    if not results:
        error("No data found. Run `kanban sync` first.")
        raise typer.Exit(1)

    for m in results:
        m.aging_issues = sort_aging(filter_aging(m.aging_issues, assignee), sort)

    if aging:
        items = [i for m in results for i in m.aging_issues]
        items = sort_aging(items, sort)
        if fmt == "json":
            output(items, fmt="json")
        else:
            _print_aging(items)
        return

    if fmt == "json":
        output(results, fmt="json")
        return
    for m in results:
        _print_metrics(m)


def board_command(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Only this repository"),
    status: Optional[str] = typer.Option(None, "--status", help="Only this column"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Show the board: issues grouped by status column."""
    config = get_config()
    store = get_store()
    try:
        issues = store.board_issues(repo=full_repo_name(config, repo), status=status)
    finally:
        store.close()

    if fmt == "json":
        output(issues, fmt="json")
        return
    if not issues:
        info("Board is empty. Run `kanban sync` first.")
        return

    columns: dict[str, list] = {}
    for issue in issues:
        columns.setdefault(issue.status, []).append(issue)

    limits = config.settings.wip_limits
    for name in list(STATUS_ORDER) + sorted(set(columns) - set(STATUS_ORDER)):
        if name not in columns:
            continue
        items = columns[name]
        limit = limits.get(name, limits.get(f"status: {name}"))
        header = f"{styled_status(name)} ({len(items)}{f'/{limit}' if limit else ''})"
        rows = [
            {
                "issue": f"{i.repo.split('/')[-1]}#{i.number}",
                "title": truncate(i.title, 50),
                "assignee": i.assignee,
                "priority": i.priority,
                "age": format_days(i.age_hours / 24),
                "blocked": i.is_blocked,
            }
            for i in items
        ]
        output_table(rows, ["issue", "title", "assignee", "priority", "age", "blocked"],
                     fmt="text", title=header)


def wip_command(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Only this repository"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Work in progress per repository and column, against configured limits."""
    config = get_config()
    store = get_store()
    try:
        summaries = store.wip_summary(full_repo_name(config, repo))
    finally:
        store.close()

    if fmt == "json":
        output(summaries, fmt="json")
        return
    if not summaries:
        info("No repositories synced yet.")
        return

    limits = config.settings.wip_limits
    table = Table(title="Work in progress")
    table.add_column("Repo")
    for status in STATUS_ORDER:
        table.add_column(status)
    table.add_column("Active")
    for s in summaries:
        cells = []
        for status in STATUS_ORDER:
            count = s.counts.get(status, 0)
            limit = limits.get(status, limits.get(f"status: {status}"))
            cell = f"{count}/{limit}" if limit else str(count)
            cells.append(f"[red]{cell}[/red]" if limit and count > limit else cell)
        table.add_row(s.repo, *cells, str(s.active))
    console.print(table)


def prs_command(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Only this repository"),
    days: int = typer.Option(30, "--days", "-d", help="Window in days"),
    fmt: Optional[str] = FORMAT_OPTION,
) -> None:
    """Pull request summary: opened, merged, drafts and merge time."""
    config = get_config()
    store = get_store()
    try:
        repos = store.list_repositories()
        name = full_repo_name(config, repo)
        if name:
            repos = [r for r in repos if r.full_name == name]
        summaries = [store.pr_summary(r, days) for r in repos]
    finally:
        store.close()

    if fmt == "json":
        output(summaries, fmt="json")
        return
    rows = [
        {
            "repo": s.repo,
            "opened": s.total,
            "open": s.open,
            "draft": s.draft,
            "merged": s.merged,
            "avg_merge": format_days(s.avg_merge_hours / 24) if s.avg_merge_hours is not None else None,
            "linked_issues": s.linked_issues,
        }
        for s in summaries
    ]
    output_table(rows, ["repo", "opened", "open", "draft", "merged", "avg_merge", "linked_issues"],
                 fmt="text", title=f"Pull requests (last {days} days)")


# -- Rendering --


def _stats_row(label: str, s: TimeStats) -> list[str]:
    if not s.sample_count:
        return [label, "-", "-", "-", "-", "0"]
    return [
        label,
        f"{s.average_days:.1f}",
        f"{s.median_days:.1f}",
        f"{s.p85_days:.1f}",
        f"{s.min_days:.1f}-{s.max_days:.1f}",
        str(s.sample_count),
    ]


def _print_metrics(m: KanbanMetrics) -> None:
    console.rule(f"[bold]{m.repo}[/bold] (last {m.period_days} days)")

    table = Table(show_edge=False)
    for col in ("", "Avg (d)", "Median", "P85", "Range", "N"):
        table.add_column(col)
    table.add_row(*_stats_row("Lead time", m.lead_time))
    table.add_row(*_stats_row("Cycle time", m.cycle_time))
    table.add_row(*_stats_row("WIP age", m.wip_age))
    console.print(table)

    eff = f"{m.flow_efficiency_percent:.1f}%" if m.flow_efficiency_percent is not None else "-"
    console.print(
        f"  Throughput: {m.throughput.total} ({m.throughput.per_day:.2f}/day, "
        f"{m.throughput.per_week:.1f}/week)   Flow efficiency: {eff}"
    )
    console.print(
        f"  Arrival: {m.arrival_rate_per_day:.2f}/day   Departure: {m.departure_rate_per_day:.2f}/day"
    )

    wip_parts = []
    for status in list(STATUS_ORDER) + sorted(set(m.wip) - set(STATUS_ORDER)):
        if status in m.wip:
            density = m.density_percent.get(status)
            suffix = f" ({density:.0f}%)" if density is not None else ""
            wip_parts.append(f"{styled_status(status)} {m.wip[status]}{suffix}")
    console.print(f"  WIP: {'  '.join(wip_parts) or '-'}   Flow load: {m.flow_load}")

    law = m.littles_law
    variance = f"{law.variance_percent:+.1f}%" if law.variance_percent is not None else "n/a"
    console.print(
        f"  Little's Law: predicted {law.predicted_wip:.1f}, actual {law.actual_wip}, variance {variance}"
    )

    if m.aging_issues:
        _print_aging(m.aging_issues)

    if m.bottlenecks:
        console.print("  [bold red]Bottlenecks:[/bold red]")
        for signal in m.bottlenecks:
            console.print(f"    [red]•[/red] {signal}")
    console.print()


def _print_aging(items) -> None:
    rows = [
        {
            "issue": f"{i.repo}#{i.number}",
            "title": truncate(i.title, 40),
            "status": i.status,
            "assignee": i.assignee,
            "age": format_days(i.age_days),
            "blocked": f"{i.blocked_hours:.0f}h" if i.blocked_hours else ("now" if i.is_blocked else ""),
        }
        for i in items
    ]
    output_table(rows, ["issue", "title", "status", "assignee", "age", "blocked"],
                 fmt="text", title="Aging work")
