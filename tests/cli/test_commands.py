"""Integration tests for CLI commands via typer.testing.CliRunner."""

import json
from datetime import timedelta
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from kanban import __version__
from kanban.cli.main import app
from kanban.sources.base import RawIssue, RawLabel
from kanban.utils.timeutil import utcnow

runner = CliRunner()


def _raw_issue(number, labels, state="open", age_days=10):
    created = utcnow() - timedelta(days=age_days)
    return RawIssue(
        number=number,
        title=f"Issue {number}",
        state=state,
        created_at=created,
        updated_at=created + timedelta(days=1),
        closed_at=utcnow() - timedelta(days=1) if state == "closed" else None,
        labels=labels,
        assignee="ana",
    )


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Point config and database at a temp directory."""
    monkeypatch.setenv("KANBAN_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("KANBAN_DB", str(tmp_path / "kanban.db"))
    return tmp_path


@pytest.fixture
def initialized(env):
    """Config for org 'acme' tracking the 'web' repository."""
    result = runner.invoke(app, ["init", "--org", "acme", "--repo", "web"])
    assert result.exit_code == 0
    return env


@pytest.fixture
def synced(initialized, tracker):
    """Database populated by one sync of acme/web."""
    tracker.issues = {"web": [
        _raw_issue(1, ["status: in-progress", "priority: high"]),
        _raw_issue(2, ["status: review"], age_days=20),
        _raw_issue(3, [], state="closed"),
    ]}
    with patch("kanban.cli.sync_cmd.get_tracker", return_value=tracker):
        result = runner.invoke(app, ["sync"])
    assert result.exit_code == 0, result.output
    return initialized


class TestRoot:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestInit:
    def test_init_success(self, env):
        result = runner.invoke(app, ["init", "--org", "acme"])
        assert result.exit_code == 0
        assert "acme" in result.output
        assert (env / "config.json").exists()
        assert (env / "kanban.db").exists()

    def test_init_twice_fails(self, initialized):
        result = runner.invoke(app, ["init", "--org", "other"])
        assert result.exit_code == 1

    def test_init_force(self, initialized):
        result = runner.invoke(app, ["init", "--org", "other", "--force", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["organization"] == "other"


class TestStatus:
    def test_status_json(self, synced):
        result = runner.invoke(app, ["status", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["organization"] == "acme"
        assert data["stats"]["counts"]["issues"] == 3
        assert len(data["recent_syncs"]) >= 1

    def test_status_text(self, synced):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "acme" in result.output


class TestSync:
    def test_sync_text(self, initialized, tracker):
        tracker.issues = {"web": [_raw_issue(1, ["status: ready"]), _raw_issue(2, [])]}
        with patch("kanban.cli.sync_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["sync", "--prs"])
        assert result.exit_code == 0
        assert "Synced 2 issues" in result.output
        assert tracker.count("list_pull_requests") == 1

    def test_sync_json(self, initialized, tracker):
        tracker.issues = {"web": [_raw_issue(1, ["status: ready"])]}
        with patch("kanban.cli.sync_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["sync", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["total_issues"] == 1
        assert data["completed"] == ["acme/web"]

    def test_sync_without_org(self, env, tracker):
        with patch("kanban.cli.sync_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["sync", "--repo", "web"])
        assert result.exit_code == 1

    def test_failed_repository_exits_nonzero(self, initialized, tracker):
        tracker.failing = {"web"}
        with patch("kanban.cli.sync_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["sync"])
        assert result.exit_code == 1

    def test_dry_run(self, initialized, tracker):
        with patch("kanban.cli.sync_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["sync", "--dry-run"])
        assert result.exit_code == 0
        assert "acme/web" in result.output
        assert tracker.count("list_issues") == 0


class TestMetrics:
    def test_metrics_json(self, synced):
        result = runner.invoke(app, ["metrics", "--format", "json"])
        assert result.exit_code == 0
        (metrics,) = json.loads(result.output)
        assert metrics["repo"] == "web"
        assert metrics["throughput"]["total"] == 1
        assert metrics["wip"]["review"] == 1
        assert "STALE ITEMS: 1 issues stuck >14 days" in metrics["bottlenecks"]

    def test_metrics_text(self, synced):
        result = runner.invoke(app, ["metrics", "--days", "14"])
        assert result.exit_code == 0
        assert "Throughput" in result.output

    def test_aging_only(self, synced):
        result = runner.invoke(app, ["metrics", "--aging", "--sort", "status", "--format", "json"])
        assert result.exit_code == 0
        assert [i["number"] for i in json.loads(result.output)] == [1, 2]

    def test_invalid_sort(self, synced):
        result = runner.invoke(app, ["metrics", "--sort", "priority"])
        assert result.exit_code == 1

    def test_no_data(self, initialized):
        result = runner.invoke(app, ["metrics"])
        assert result.exit_code == 1

    def test_wip_limit_at_count_is_quiet(self, synced):
        runner.invoke(app, ["config", "wip-limit", "review", "1"])
        result = runner.invoke(app, ["metrics", "--format", "json"])
        (metrics,) = json.loads(result.output)
        assert not any(s.startswith("WIP LIMIT") for s in metrics["bottlenecks"])


class TestBoard:
    def test_board_json(self, synced):
        result = runner.invoke(app, ["board", "--repo", "web", "--format", "json"])
        assert result.exit_code == 0
        issues = json.loads(result.output)
        assert [(i["number"], i["status"]) for i in issues] == [(1, "in-progress"), (2, "review"), (3, "done")]

    def test_board_status_filter(self, synced):
        result = runner.invoke(app, ["board", "--status", "review", "--format", "json"])
        assert [i["number"] for i in json.loads(result.output)] == [2]

    def test_board_text(self, synced):
        result = runner.invoke(app, ["board"])
        assert result.exit_code == 0
        assert "review" in result.output

    def test_empty_board(self, initialized):
        result = runner.invoke(app, ["board"])
        assert result.exit_code == 0


class TestWipAndPrs:
    def test_wip_json(self, synced):
        result = runner.invoke(app, ["wip", "--format", "json"])
        assert result.exit_code == 0
        (summary,) = json.loads(result.output)
        assert summary["repo"] == "acme/web"
        assert summary["counts"]["in-progress"] == 1

    def test_prs_json(self, synced):
        result = runner.invoke(app, ["prs", "--format", "json"])
        assert result.exit_code == 0
        (summary,) = json.loads(result.output)
        assert summary["total"] == 0


class TestCfd:
    def test_show_after_sync(self, synced):
        result = runner.invoke(app, ["cfd", "show", "--repo", "web", "--format", "json"])
        assert result.exit_code == 0
        counts = {r["status"]: r["count"] for r in json.loads(result.output)}
        assert counts == {"in-progress": 1, "review": 1, "done": 1}

    def test_show_unknown_repo(self, synced):
        result = runner.invoke(app, ["cfd", "show", "--repo", "nope"])
        assert result.exit_code == 1

    def test_snapshot_already_taken(self, synced):
        result = runner.invoke(app, ["cfd", "snapshot", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {}

    def test_snapshot_force(self, synced):
        result = runner.invoke(app, ["cfd", "snapshot", "--force", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["acme/web"]["review"] == 1


class TestAudit:
    def test_audit_json(self, initialized, tracker):
        tracker.labels = {"web": [RawLabel(name="blocked", color="000000")]}
        with patch("kanban.cli.audit_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["audit", "--format", "json"])
        assert result.exit_code == 0
        (report,) = json.loads(result.output)
        assert report["repo"] == "acme/web"
        assert report["modified"] == ["blocked"]
        assert "status: ready" in report["missing"]

    def test_audit_text_clean(self, initialized, tracker):
        config = json.loads(runner.invoke(app, ["config", "show", "--format", "json"]).output)
        tracker.labels = {"web": [
            RawLabel(name=spec["name"], color=spec["color"], description=spec["description"])
            for specs in config["labels"].values() for spec in specs
        ]}
        with patch("kanban.cli.audit_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["audit", "--repo", "web"])
        assert result.exit_code == 0
        assert "All labels match config" in result.output

    def test_audit_without_org(self, env, tracker):
        with patch("kanban.cli.audit_cmd.get_tracker", return_value=tracker):
            result = runner.invoke(app, ["audit"])
        assert result.exit_code == 1


class TestDb:
    def test_stats(self, synced):
        result = runner.invoke(app, ["db", "stats", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["counts"]["issues"] == 3

    def test_history(self, synced):
        result = runner.invoke(app, ["db", "history", "--format", "json"])
        assert result.exit_code == 0
        records = json.loads(result.output)
        assert {r["status"] for r in records} == {"completed"}

    def test_optimize(self, synced):
        result = runner.invoke(app, ["db", "optimize"])
        assert result.exit_code == 0


class TestConfig:
    def test_set_org_and_show(self, initialized):
        result = runner.invoke(app, ["config", "set-org", "globex"])
        assert result.exit_code == 0
        data = json.loads(runner.invoke(app, ["config", "show", "--format", "json"]).output)
        assert data["organization"] == "globex"
        assert data["repositories"]["repos"] == ["web"]

    def test_wip_limit(self, initialized):
        assert runner.invoke(app, ["config", "wip-limit", "status: review", "5"]).exit_code == 0
        data = json.loads(runner.invoke(app, ["config", "show", "--format", "json"]).output)
        assert data["settings"]["wip_limits"] == {"review": 5}

        assert runner.invoke(app, ["config", "wip-limit", "review", "0"]).exit_code == 0
        data = json.loads(runner.invoke(app, ["config", "show", "--format", "json"]).output)
        assert data["settings"]["wip_limits"] == {}

    def test_wip_limit_unknown_status(self, initialized):
        result = runner.invoke(app, ["config", "wip-limit", "shipping", "3"])
        assert result.exit_code == 1

    def test_invalid_config_file(self, env):
        (env / "config.json").write_text("{not json")
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 1
