"""Output formatting utilities: text vs JSON, rich tables."""

from __future__ import annotations

import json
import sys
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    "backlog": "dim",
    "ready": "cyan",
    "in-progress": "yellow",
    "review": "blue",
    "testing": "magenta",
    "done": "green",
}


def is_piped() -> bool:
    return not sys.stdout.isatty()


def resolve_format(fmt: str | None) -> str:
    """json when piped, text for a TTY, unless fmt says otherwise."""
    if fmt is None:
        return "json" if is_piped() else "text"
    return fmt


def _to_jsonable(data: Any) -> Any:
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json")
    if isinstance(data, list):
        return [_to_jsonable(d) for d in data]
    if isinstance(data, dict):
        return {k: _to_jsonable(v) for k, v in data.items()}
    return data


def output(data: Any, fmt: str | None = None, title: str | None = None) -> None:
    """Output data in the requested format.

    If fmt is None, auto-detect: json when piped, text for TTY.
    """
    fmt = resolve_format(fmt)

    if fmt == "json":
        if isinstance(data, str):
            print(json.dumps({"value": data}))
        elif hasattr(data, "model_dump"):
            print(data.model_dump_json(indent=2))
        elif isinstance(data, (dict, list)):
            print(json.dumps(_to_jsonable(data), indent=2, default=str))
        else:
            print(json.dumps({"value": str(data)}, default=str))
    else:
        if isinstance(data, str):
            if title:
                console.print(Panel(data, title=title))
            else:
                console.print(data)
        elif hasattr(data, "model_dump"):
            console.print_json(data.model_dump_json(indent=2))
        elif isinstance(data, (dict, list)):
            console.print_json(json.dumps(_to_jsonable(data), default=str))
        else:
            console.print(str(data))


def output_table(
    rows: list[dict[str, Any]],
    columns: list[str],
    fmt: str | None = None,
    title: str | None = None,
) -> None:
    fmt = resolve_format(fmt)

    if fmt == "json":
        print(json.dumps(rows, indent=2, default=str))
    else:
        table = Table(title=title)
        for col in columns:
            table.add_column(col.replace("_", " ").title())
        for row in rows:
            table.add_row(*[_cell(row.get(col)) for col in columns])
        console.print(table)


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else ""
    return str(value)


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


def format_days(days: float | None) -> str:
    if days is None:
        return "-"
    if days < 1:
        return f"{days * 24:.0f}h"
    return f"{days:.1f}d"


def truncate(text: str, width: int = 40) -> str:
    return text if len(text) <= width else text[: width - 1] + "…"


def error(msg: str) -> None:
    error_console.print(f"[red]Error:[/red] {msg}")


def warning(msg: str) -> None:
    error_console.print(f"[yellow]Warning:[/yellow] {msg}")


def success(msg: str) -> None:
    console.print(f"[green]{msg}[/green]")


def info(msg: str) -> None:
    console.print(f"[dim]{msg}[/dim]")
