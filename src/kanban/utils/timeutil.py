"""UTC timestamp helpers shared by the store, ledger and metrics."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db(dt: datetime | None) -> str | None:
    """Serialize to ISO-8601 in UTC so stored values sort as text."""
    if dt is None:
        return None
    return as_utc(dt).isoformat()


def from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def parse_iso(value: str | None) -> datetime | None:
    """Parse tracker timestamps like '2026-02-23T14:30:00Z'."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def hours_between(start: datetime, end: datetime) -> float:
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600.0


def utc_day(dt: datetime | None = None) -> date:
    """Calendar day of dt (default now) in UTC."""
    return as_utc(dt or utcnow()).date()
