"""
Injectable time source.

Services take a ``Clock`` in their constructor and never call
``datetime.now()`` themselves; requested_at, approved_at, rejected_at,
completed_at and the audit columns all come from it.  Tests pass a
``DeterministicClock`` so stamps are exact.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


DEFAULT_TEST_INSTANT = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class DeterministicClock:
    """Frozen clock; moves only when told to."""

    def __init__(self, start: datetime = DEFAULT_TEST_INSTANT):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware start")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def set_time(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware instant")
        self._current = instant.astimezone(timezone.utc)
