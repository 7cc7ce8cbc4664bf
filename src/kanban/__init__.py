"""Kanban flow metrics over a local mirror of GitHub issues."""

__version__ = "0.3.0"
