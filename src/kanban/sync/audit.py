"""Label audit: compare each repository's labels with the configured set."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from kanban.sources.base import IssueTracker, RawLabel, TrackerError
from kanban.utils.config import KanbanConfig, LabelSpec

logger = logging.getLogger(__name__)


@dataclass
class AuditResult:
    repo: str
    missing: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)  # color or description differs
    extra: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def clean(self) -> bool:
        return self.error is None and not (self.missing or self.modified or self.extra)

    def to_dict(self) -> dict:
        return asdict(self)


def _norm_color(color: str) -> str:
    return (color or "").lstrip("#").lower()


def compare_labels(
    repo: str,
    expected: list[LabelSpec],
    current: list[RawLabel],
    report_extra: bool = False,
) -> AuditResult:
    result = AuditResult(repo=repo)
    actual = {lbl.name: lbl for lbl in current}
    for spec in expected:
        found = actual.get(spec.name)
        if found is None:
            result.missing.append(spec.name)
        elif (
            _norm_color(found.color) != _norm_color(spec.color)
            or (found.description or "") != spec.description
        ):
            result.modified.append(spec.name)
    if report_extra:
        wanted = {spec.name for spec in expected}
        result.extra = sorted(name for name in actual if name not in wanted)
    return result


def audit_labels(config: KanbanConfig, tracker: IssueTracker, repos: list[str]) -> list[AuditResult]:
    """Audit every repository. A repository whose labels cannot be read gets an error entry."""
    org = config.organization
    expected = config.all_labels()
    report_extra = not config.settings.preserve_unknown
    results = []
    for name in repos:
        full_name = f"{org}/{name}"
        try:
            current = tracker.list_labels(org, name)
        except TrackerError as e:
            logger.warning("Cannot audit %s: %s", full_name, e)
            results.append(AuditResult(repo=full_name, error=str(e)))
            continue
        results.append(compare_labels(full_name, expected, current, report_extra))
    return results
