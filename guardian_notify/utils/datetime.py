# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities and the injectable clock.

Design Decisions:
-----------------
1. All timestamps are stored in UTC
2. All Python datetimes are timezone-aware (with timezone.utc)
3. Components never call datetime.now() directly; they receive a Clock so
   delay windows, escalation timeouts and suppression dates are testable

Usage:
------
    from guardian_notify.utils.datetime import SystemClock, utc_now

    clock = SystemClock()
    scheduled_for = clock.now() + timedelta(minutes=30)
"""

import time
from datetime import date, datetime, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string."""
    if dt is None:
        return None

    dt_utc = ensure_utc(dt)
    return dt_utc.isoformat()


def parse_iso(iso_string: str | None) -> datetime | None:
    """Parse an ISO 8601 datetime string into an aware UTC datetime."""
    if iso_string is None:
        return None

    dt = datetime.fromisoformat(iso_string.replace("Z", "+00:00"))
    return ensure_utc(dt)


def local_date(dt: datetime, tz_name: str) -> date:
    """Return the calendar date of an instant in the given timezone.

    Suppression keys are calendar dates as the school sees them, so an
    absence marked at 23:30 UTC may belong to the next day locally.

    Args:
        dt: Aware instant.
        tz_name: IANA timezone name of the school.

    Returns:
        Local calendar date.
    """
    return ensure_utc(dt).astimezone(ZoneInfo(tz_name)).date()


def exponential_backoff(attempt: int, base_seconds: float, max_seconds: float) -> timedelta:
    """Compute the backoff delay before the next attempt.

    Args:
        attempt: Number of attempts already made (1 for the first retry).
        base_seconds: Delay after the first failed attempt.
        max_seconds: Upper bound for the delay.

    Returns:
        Delay as timedelta: base * 2**(attempt-1), capped at max_seconds.
    """
    exponent = max(attempt - 1, 0)
    return timedelta(seconds=min(base_seconds * (2 ** exponent), max_seconds))


class Clock(Protocol):
    """Time source used by the notification core.

    ``now`` is the wall clock used for scheduling and suppression dates;
    ``monotonic`` is used for measuring timeouts and durations.
    """

    def now(self) -> datetime:
        ...

    def monotonic(self) -> float:
        ...


class SystemClock:
    """Clock backed by the operating system."""

    def now(self) -> datetime:
        return utc_now()

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock that only moves when told to.

    Used by tests and by replay tooling that re-evaluates recorded events
    at their original instants.

    Example:
        >>> clock = ManualClock(datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc))
        >>> clock.advance(minutes=30)
    """

    def __init__(self, start: datetime) -> None:
        self._now = ensure_utc(start)
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def set(self, value: datetime) -> None:
        """Jump to an absolute instant (may go backwards to simulate skew)."""
        new_value = ensure_utc(value)
        if new_value > self._now:
            self._monotonic += (new_value - self._now).total_seconds()
        self._now = new_value

    def advance(self, **kwargs: float) -> datetime:
        """Move forward by a timedelta given as keyword arguments."""
        delta = timedelta(**kwargs)
        self._now += delta
        self._monotonic += delta.total_seconds()
        return self._now
