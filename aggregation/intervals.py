"""Interval clock: aligned UTC time buckets for the 1-minute, 10-minute and hourly levels."""

from datetime import datetime, timedelta, timezone
from enum import Enum

ONE_MINUTE = timedelta(minutes=1)
TEN_MINUTES = timedelta(minutes=10)
ONE_HOUR = timedelta(hours=1)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Level(str, Enum):
    ONE_MINUTE = "1min"
    TEN_MINUTES = "10min"
    HOURLY = "hourly"

    @property
    def width(self) -> timedelta:
        return _WIDTHS[self]

    @property
    def child(self) -> "Level | None":
        return _CHILDREN[self]

    @property
    def expected_children(self) -> int:
        child = self.child
        if child is None:
            return 0
        return int(self.width / child.width)

    @property
    def data_type(self) -> str:
        return f"wind_{self.value}"

    @property
    def permanent(self) -> bool:
        return self is Level.HOURLY


_WIDTHS = {
    Level.ONE_MINUTE: ONE_MINUTE,
    Level.TEN_MINUTES: TEN_MINUTES,
    Level.HOURLY: ONE_HOUR,
}

_CHILDREN = {
    Level.ONE_MINUTE: None,
    Level.TEN_MINUTES: Level.ONE_MINUTE,
    Level.HOURLY: Level.TEN_MINUTES,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(timestamp: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def floor_to_interval(timestamp: datetime, width: timedelta) -> datetime:
    """Start of the width-aligned interval that contains ``timestamp``.

    Works on UTC epoch microseconds, so the result does not depend on the
    timestamp's original timezone.
    """
    step = _micros(width)
    if step <= 0:
        raise ValueError(f"interval width must be positive, got {width}")
    offset = _micros(ensure_utc(timestamp) - _EPOCH)
    return _EPOCH + timedelta(microseconds=offset - offset % step)


def is_complete(start: datetime, width: timedelta, now: datetime) -> bool:
    return ensure_utc(now) >= start + width


def next_boundary_delay(now: datetime, width: timedelta) -> timedelta:
    """Time left until the next aligned boundary (a full width when exactly on one)."""
    now = ensure_utc(now)
    return floor_to_interval(now, width) + width - now


def _micros(delta: timedelta) -> int:
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
