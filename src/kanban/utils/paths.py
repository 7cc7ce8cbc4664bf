"""XDG path resolution for the kanban config file and database."""

from __future__ import annotations

import os
from pathlib import Path

APP_DIR = "kanban"
DB_FILENAME = "kanban.db"
CONFIG_FILENAME = "config.json"


def config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


def data_home() -> Path:
    return Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")


def config_dir() -> Path:
    return config_home() / APP_DIR


def data_dir() -> Path:
    return data_home() / APP_DIR


def config_path() -> Path:
    """Config file location; KANBAN_CONFIG overrides the XDG default."""
    override = os.environ.get("KANBAN_CONFIG")
    if override:
        return Path(override).expanduser()
    return config_dir() / CONFIG_FILENAME


def db_path() -> Path:
    """Database location; KANBAN_DB overrides the XDG default."""
    override = os.environ.get("KANBAN_DB")
    if override:
        return Path(override).expanduser()
    return data_dir() / DB_FILENAME
