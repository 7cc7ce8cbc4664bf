"""Label classification: map label names onto kanban fields."""

from __future__ import annotations

from dataclasses import dataclass

# Prefix -> Classification attribute. First matching label per prefix wins.
_PREFIXES: dict[str, str] = {
    "status:": "status",
    "priority:": "priority",
    "type:": "type",
    "size:": "size",
}

BLOCKED_LABEL = "blocked"

LABEL_CATEGORIES = ("status", "priority", "type", "size")


@dataclass
class Classification:
    status: str | None = None
    priority: str | None = None
    type: str | None = None
    size: str | None = None
    blocked: bool = False


def classify(label_names: list[str]) -> Classification:
    """Classify a list of label names.

    Matching is case-insensitive; values are lower-cased and stripped, so
    ``"Status: In-Progress"`` yields status ``in-progress``.
    """
    result = Classification()
    for name in label_names:
        lowered = name.strip().lower()
        if lowered == BLOCKED_LABEL:
            result.blocked = True
            continue
        for prefix, attr in _PREFIXES.items():
            if lowered.startswith(prefix):
                value = lowered[len(prefix):].strip()
                if value and getattr(result, attr) is None:
                    setattr(result, attr, value)
                break
    return result


def status_of(label_names: list[str]) -> str | None:
    """Return the status value carried by a label set, if any."""
    return classify(label_names).status


def categorize_label(name: str) -> str:
    """Return the category of a label: status, priority, type, size or special.

    Both ``status: x`` and ``status x`` spellings are recognised.
    """
    lowered = name.strip().lower()
    for category in LABEL_CATEGORIES:
        if lowered.startswith(f"{category}:") or lowered.startswith(f"{category} "):
            return category
    return "special"
