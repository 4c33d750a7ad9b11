"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from aggregation.intervals import Level
from aggregation.models import IntervalSummary
from aggregation.pipeline import WindAggregationPipeline
from config import Settings
from storage.retention_policies import RetentionPolicyRepository, default_policies
from storage.summary_store import MemorySummaryStore, StoreUnavailableError

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock; tests move time explicitly instead of sleeping."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def set(self, now: datetime):
        self.now = now


class RecordingPublisher:
    def __init__(self):
        self.messages: list[tuple[str, IntervalSummary]] = []

    def publish(self, channel: str, summary: IntervalSummary):
        self.messages.append((channel, summary))

    def channels(self) -> list[str]:
        return [channel for channel, _ in self.messages]


class FlakyStore(MemorySummaryStore):
    """Memory store that can be switched into an outage."""

    def __init__(self):
        super().__init__()
        self.available = True

    def _check(self):
        if not self.available:
            raise StoreUnavailableError("store offline")

    def upsert_if_absent(self, summary):
        self._check()
        return super().upsert_if_absent(summary)

    def query_range(self, station_id, level, start, end):
        self._check()
        return super().query_range(station_id, level, start, end)

    def latest(self, station_id, level):
        self._check()
        return super().latest(station_id, level)

    def delete_before(self, level, cutoff):
        self._check()
        return super().delete_before(level, cutoff)


def _make_summary(
    station_id: str,
    level: Level,
    interval_start: datetime,
    avg: float,
    min_speed: float | None = None,
    max_speed: float | None = None,
    direction: float = 270,
    **extra,
) -> IntervalSummary:
    return IntervalSummary(
        station_id=station_id,
        level=level,
        interval_start=interval_start,
        avg_speed=avg,
        min_speed=avg - 2.0 if min_speed is None else min_speed,
        max_speed=avg + 2.0 if max_speed is None else max_speed,
        dominant_direction=direction,
        **extra,
    )


@pytest.fixture
def make_summary():
    """Build an IntervalSummary with min/max defaulting to avg -/+ 2 m/s."""
    return _make_summary


@pytest.fixture
def settings():
    """Test settings: in-memory store, localhost defaults."""
    return Settings(
        kafka_bootstrap_servers="localhost:9092",
        redis_url="redis://localhost:6379/1",
        store_backend="memory",
        scheduler_enabled=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def policies(settings):
    return RetentionPolicyRepository(None, default_policies(settings))


@pytest.fixture
def pipeline(settings, store, publisher, policies, clock):
    return WindAggregationPipeline(settings, store, publisher, policies, clock=clock)
