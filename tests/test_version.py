"""Test that __version__ stays in sync with pyproject.toml."""

from __future__ import annotations

from pathlib import Path

import kanban


def test_version_matches_pyproject():
    """kanban.__version__ must match the version in pyproject.toml."""
    pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
    for line in pyproject.read_text().splitlines():
        if line.startswith("version = "):
            toml_version = line.split('"')[1]
            break
    else:
        raise AssertionError("Could not find version in pyproject.toml")

    assert kanban.__version__ == toml_version, (
        f"Version mismatch: kanban.__version__={kanban.__version__!r} vs pyproject.toml={toml_version!r}"
    )


def test_cli_reports_distribution_version():
    from typer.testing import CliRunner

    from kanban.cli.main import app

    result = CliRunner().invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.strip() == f"kanban-flow {kanban.__version__}"
