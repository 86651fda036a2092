from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


def _utc_now() -> datetime:
    """Description: Get current UTC timestamp.
    Layer: L0
    Input: None
    Output: datetime (UTC)
    """
    return datetime.now(timezone.utc)


def _iso_utc(dt: datetime) -> str:
    """Description: Convert datetime to ISO-8601 Zulu time.
    Layer: L0
    Input: datetime
    Output: str (e.g., 2026-02-20T12:34:56Z)
    """
    return as_utc(dt).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Clock(Protocol):
    """Description: Source of the reference time passed into planning.
    Layer: L0
    Input: None
    Output: timezone-aware datetime
    """

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock. Only the orchestration facade reads it."""

    def now(self) -> datetime:
        return _utc_now()

    def sleep(self, seconds: float) -> None:
        time.sleep(max(0.0, seconds))


class FixedClock:
    """Clock frozen at one instant."""

    def __init__(self, at: datetime) -> None:
        self._at = as_utc(at)

    def now(self) -> datetime:
        return self._at


class ManualClock:
    """Description: Clock advanced explicitly; sleep() moves time instead of blocking.
    Layer: L0
    Input: start instant
    Output: now() / sleep() pair for simulated elapsed time
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = as_utc(start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc))
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
