"""Kanban configuration: organisation, repository selection, labels and settings."""

from __future__ import annotations

import json
import re
from fnmatch import fnmatch
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from kanban.utils.paths import config_path

CONFIG_VERSION = 1

_HEX_COLOR = re.compile(r"^[0-9a-fA-F]{6}$")


class ConfigError(Exception):
    pass


class LabelSpec(BaseModel):
    name: str
    color: str = "ededed"
    description: str = ""

    @field_validator("color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        value = value.lstrip("#")
        if not _HEX_COLOR.match(value):
            raise ValueError(f"invalid hex color '{value}'")
        return value.lower()


class RepoSelection(BaseModel):
    repos: list[str] = Field(default_factory=list)  # explicit repositories, used as-is
    include: list[str] = Field(default_factory=list)  # glob patterns applied to --all
    exclude: list[str] = Field(default_factory=list)

    def filter_repos(self, names: list[str]) -> list[str]:
        """Drop excluded names, then keep included ones (everything when include is empty)."""
        kept = [n for n in names if not any(fnmatch(n, p) for p in self.exclude)]
        if self.include:
            kept = [n for n in kept if any(fnmatch(n, p) for p in self.include)]
        return kept


class Settings(BaseModel):
    concurrency: int = Field(default=5, ge=1, le=32)
    wip_limits: dict[str, int] = Field(default_factory=dict)
    issue_limit: int = Field(default=500, ge=1)
    pr_limit: int = Field(default=200, ge=1)
    metrics_days: int = Field(default=30, ge=1)
    preserve_unknown: bool = True  # labels not in the config are left alone and not reported


def default_labels() -> dict[str, list[LabelSpec]]:
    """The standard kanban label set."""
    return {
        "status": [
            LabelSpec(name="status: backlog", color="d4c5f9", description="Not yet planned"),
            LabelSpec(name="status: ready", color="0e8a16", description="Ready to start"),
            LabelSpec(name="status: in-progress", color="fbca04", description="Being worked on"),
            LabelSpec(name="status: review", color="1d76db", description="In code review"),
            LabelSpec(name="status: testing", color="5319e7", description="In QA"),
            LabelSpec(name="status: done", color="0e8a16", description="Completed"),
        ],
        "priority": [
            LabelSpec(name="priority: critical", color="b60205"),
            LabelSpec(name="priority: high", color="d93f0b"),
            LabelSpec(name="priority: medium", color="fbca04"),
            LabelSpec(name="priority: low", color="c2e0c6"),
        ],
        "type": [
            LabelSpec(name="type: bug", color="d73a4a"),
            LabelSpec(name="type: feature", color="a2eeef"),
            LabelSpec(name="type: chore", color="cfd3d7"),
        ],
        "size": [
            LabelSpec(name="size: s", color="c5def5"),
            LabelSpec(name="size: m", color="bfd4f2"),
            LabelSpec(name="size: l", color="1d76db"),
        ],
        "special": [
            LabelSpec(name="blocked", color="b60205", description="Waiting on something external"),
        ],
    }


class KanbanConfig(BaseModel):
    version: int = CONFIG_VERSION
    organization: str = ""
    repositories: RepoSelection = Field(default_factory=RepoSelection)
    labels: dict[str, list[LabelSpec]] = Field(default_factory=default_labels)
    settings: Settings = Field(default_factory=Settings)

    @field_validator("labels")
    @classmethod
    def _unique_names(cls, value: dict[str, list[LabelSpec]]) -> dict[str, list[LabelSpec]]:
        seen: set[str] = set()
        for specs in value.values():
            for spec in specs:
                key = spec.name.lower()
                if key in seen:
                    raise ValueError(f"duplicate label '{spec.name}'")
                seen.add(key)
        return value

    def all_labels(self) -> list[LabelSpec]:
        return [spec for specs in self.labels.values() for spec in specs]


def load_config(path: Path | None = None) -> KanbanConfig:
    """Read the config file. A missing file yields the defaults."""
    path = path or config_path()
    if not path.exists():
        return KanbanConfig()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    try:
        return KanbanConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}:\n{e}") from e


def save_config(config: KanbanConfig, path: Path | None = None) -> Path:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2) + "\n")
    return path
