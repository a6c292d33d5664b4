"""Clock abstraction for timestamps and heartbeat staleness.

Production code uses SystemClock (the default). Tests inject MockClock to
make heartbeat timeouts and retention cutoffs deterministic.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of timezone-aware UTC wall-clock time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Production clock backed by datetime.now(UTC)."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(datetime(2026, 1, 5, tzinfo=UTC))
        store = TaskStore(db, clock=clock)
        clock.advance(seconds=301)
        assert store.fail_stale(timeout_seconds=300) == [task_id]
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start if start is not None else datetime(2026, 1, 1, tzinfo=UTC)
        if self._current.tzinfo is None:
            raise ValueError("MockClock requires a timezone-aware start time")

    def now(self) -> datetime:
        return self._current

    def advance(self, *, seconds: float = 0.0, days: float = 0.0) -> None:
        """Move time forward.

        Raises:
            ValueError: If asked to move backwards
        """
        delta = timedelta(seconds=seconds, days=days)
        if delta < timedelta(0):
            raise ValueError("Cannot advance clock backwards")
        self._current = self._current + delta


DEFAULT_CLOCK: Clock = SystemClock()


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite.

    Everything waypoint stores is UTC; SQLite drops the offset on write.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
