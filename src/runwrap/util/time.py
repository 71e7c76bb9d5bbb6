"""Clock helpers shared by execution results and command logs."""

from __future__ import annotations

from datetime import UTC, datetime


def now() -> datetime:
    return datetime.now(UTC)


def duration_sec(start: datetime, end: datetime) -> float:
    """Elapsed seconds, rounded to milliseconds."""
    return round((end - start).total_seconds(), 3)


def duration_ms(start: datetime, end: datetime) -> int:
    return round((end - start).total_seconds() * 1000)
