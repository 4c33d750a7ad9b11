"""Tests for summary storage: the in-process and Redis stores, row mapping and Redis error handling."""

import json
from datetime import datetime, timedelta, timezone

import pytest
import redis

from aggregation.intervals import Level
from aggregation.models import Tendency
from storage.publisher import SummaryPublisher
from storage.redis_client import CircuitBreaker, CircuitOpenError, RedisClient
from storage.summary_store import (
    MemorySummaryStore,
    RedisSummaryStore,
    StoreUnavailableError,
    summary_from_row,
    summary_to_row,
)

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
MINUTE = timedelta(minutes=1)


class TestMemorySummaryStore:
    def test_upsert_is_idempotent(self, make_summary):
        store = MemorySummaryStore()
        assert store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 5.0))
        assert not store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 9.0))
        assert store.count(Level.ONE_MINUTE) == 1
        assert store.latest("s1", Level.ONE_MINUTE).avg_speed == 5.0

    def test_key_includes_level_and_station(self, make_summary):
        store = MemorySummaryStore()
        assert store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 5.0))
        assert store.upsert_if_absent(make_summary("s2", Level.ONE_MINUTE, T0, 5.0))
        assert store.upsert_if_absent(make_summary("s1", Level.TEN_MINUTES, T0, 5.0))

    def test_query_range_half_open_and_ordered(self, make_summary):
        store = MemorySummaryStore()
        for i in (3, 0, 2, 1):
            store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0 + i * MINUTE, float(i)))
        rows = store.query_range("s1", Level.ONE_MINUTE, T0, T0 + 3 * MINUTE)
        assert [r.avg_speed for r in rows] == [0.0, 1.0, 2.0]

    def test_latest_and_stations(self, make_summary):
        store = MemorySummaryStore()
        assert store.latest("s1", Level.HOURLY) is None
        store.upsert_if_absent(make_summary("s2", Level.ONE_MINUTE, T0, 1.0))
        store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0 + MINUTE, 2.0))
        store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 1.0))
        assert store.latest("s1", Level.ONE_MINUTE).interval_start == T0 + MINUTE
        assert store.stations(Level.ONE_MINUTE) == ["s1", "s2"]
        assert store.stations(Level.HOURLY) == []

    def test_delete_before_only_touches_level(self, make_summary):
        store = MemorySummaryStore()
        store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 1.0))
        store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0 + MINUTE, 1.0))
        store.upsert_if_absent(make_summary("s1", Level.TEN_MINUTES, T0, 1.0))
        assert store.delete_before(Level.ONE_MINUTE, T0 + MINUTE) == 1
        assert store.count(Level.ONE_MINUTE) == 1
        assert store.count(Level.TEN_MINUTES) == 1

    def test_delete_before_forgets_emptied_stations(self, make_summary):
        store = MemorySummaryStore()
        store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 1.0))
        store.upsert_if_absent(make_summary("s2", Level.ONE_MINUTE, T0 + MINUTE, 1.0))
        store.delete_before(Level.ONE_MINUTE, T0 + MINUTE)
        assert store.stations(Level.ONE_MINUTE) == ["s2"]
        store.delete_before(Level.ONE_MINUTE, T0 + 2 * MINUTE)
        assert store.stations(Level.ONE_MINUTE) == []
        assert store.latest("s2", Level.ONE_MINUTE) is None


class TestRowMapping:
    def test_hourly_row_columns(self, make_summary):
        summary = make_summary(
            "s1", Level.HOURLY, T0, 7.5,
            tendency=Tendency.DECREASING, gust_speed=15.0, calm_period_count=2,
        )
        row = summary_to_row(summary)
        assert row["timestamp"] == "2025-01-01T12:00:00+00:00"
        assert row["calm_periods"] == 2
        assert "sample_count" not in row
        assert summary_from_row(Level.HOURLY, row) == summary

    def test_one_minute_row_has_sample_count(self, make_summary):
        row = summary_to_row(make_summary("s1", Level.ONE_MINUTE, T0, 3.0, sample_count=12))
        assert row["sample_count"] == 12
        assert "tendency" not in row


class _FailingRedisClient:
    def __init__(self, error: Exception):
        self.error = error

    def execute_with_retry(self, func, max_retries=3):
        raise self.error


class TestRedisSummaryStoreErrors:
    @pytest.mark.parametrize(
        "error",
        [redis.ConnectionError("refused"), CircuitOpenError("open"), redis.ResponseError("WRONGTYPE")],
    )
    def test_errors_become_store_unavailable(self, error, make_summary):
        store = RedisSummaryStore(_FailingRedisClient(error))
        with pytest.raises(StoreUnavailableError):
            store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 1.0))
        with pytest.raises(StoreUnavailableError):
            store.query_range("s1", Level.ONE_MINUTE, T0, T0 + MINUTE)
        with pytest.raises(StoreUnavailableError):
            store.delete_before(Level.ONE_MINUTE, T0)


def _score_bound(value):
    if value in ("-inf", "+inf"):
        return float(value), False
    text = str(value)
    if text.startswith("("):
        return float(text[1:]), True
    return float(text), False


class _InMemoryPipeline:
    """Queues commands until execute(); runs them immediately between watch() and multi()."""

    def __init__(self, redis_):
        self._redis = redis_
        self._queue = []
        self._immediate = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._queue = []

    def watch(self, *keys):
        self._immediate = True

    def multi(self):
        self._immediate = False

    def execute(self):
        queued, self._queue = self._queue, []
        return [command() for command in queued]

    def __getattr__(self, name):
        command = getattr(self._redis, name)
        if self._immediate:
            return command
        return lambda *args, **kwargs: self._queue.append(lambda: command(*args, **kwargs))


class _InMemoryRedis:
    """Just enough of the hash, sorted set and set commands for RedisSummaryStore."""

    def __init__(self):
        self.hashes = {}
        self.zsets = {}
        self.sets = {}

    def execute_with_retry(self, func, max_retries=None):
        return func(self)

    def pipeline(self, transaction=True):
        return _InMemoryPipeline(self)

    def hsetnx(self, key, field, value):
        fields = self.hashes.setdefault(key, {})
        if field in fields:
            return False
        fields[field] = value
        return True

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hmget(self, key, fields):
        return [self.hget(key, field) for field in fields]

    def hdel(self, key, *fields):
        existing = self.hashes.get(key, {})
        return sum(1 for field in fields if existing.pop(field, None) is not None)

    def zadd(self, key, mapping):
        members = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update(mapping)
        return added

    def _in_range(self, key, low, high):
        low, low_open = _score_bound(low)
        high, high_open = _score_bound(high)
        members = self.zsets.get(key, {})
        return [
            member
            for member, score in sorted(members.items(), key=lambda item: item[1])
            if (score > low if low_open else score >= low)
            and (score < high if high_open else score <= high)
        ]

    def zrangebyscore(self, key, low, high):
        return self._in_range(key, low, high)

    def zremrangebyscore(self, key, low, high):
        doomed = self._in_range(key, low, high)
        for member in doomed:
            del self.zsets[key][member]
        return len(doomed)

    def zrevrange(self, key, start, stop):
        members = sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1], reverse=True)
        return [member for member, _ in members[start:stop + 1]]

    def zcard(self, key):
        return len(self.zsets.get(key, {}))

    def sadd(self, key, *members):
        values = self.sets.setdefault(key, set())
        added = len(set(members) - values)
        values.update(members)
        return added

    def srem(self, key, *members):
        values = self.sets.get(key, set())
        removed = len(values & set(members))
        values.difference_update(members)
        return removed

    def smembers(self, key):
        return set(self.sets.get(key, set()))


class TestRedisSummaryStore:
    @pytest.fixture
    def redis_store(self):
        return RedisSummaryStore(_InMemoryRedis())

    def test_upsert_is_idempotent(self, redis_store, make_summary):
        first = make_summary("s1", Level.TEN_MINUTES, T0, 5.0, tendency=Tendency.STABLE)
        assert redis_store.upsert_if_absent(first)
        assert not redis_store.upsert_if_absent(make_summary("s1", Level.TEN_MINUTES, T0, 9.0))
        assert redis_store.latest("s1", Level.TEN_MINUTES) == first

    def test_query_range_half_open(self, redis_store, make_summary):
        for i in (2, 0, 1):
            redis_store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0 + i * MINUTE, float(i)))
        rows = redis_store.query_range("s1", Level.ONE_MINUTE, T0, T0 + 2 * MINUTE)
        assert [r.avg_speed for r in rows] == [0.0, 1.0]

    def test_delete_before_forgets_emptied_stations(self, redis_store, make_summary):
        redis_store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 1.0))
        redis_store.upsert_if_absent(make_summary("s2", Level.ONE_MINUTE, T0, 1.0))
        redis_store.upsert_if_absent(make_summary("s2", Level.ONE_MINUTE, T0 + MINUTE, 1.0))

        assert redis_store.delete_before(Level.ONE_MINUTE, T0 + MINUTE) == 2

        assert redis_store.stations(Level.ONE_MINUTE) == ["s2"]
        assert redis_store.latest("s1", Level.ONE_MINUTE) is None
        assert redis_store.latest("s2", Level.ONE_MINUTE).interval_start == T0 + MINUTE

    def test_station_returns_after_new_rows(self, redis_store, make_summary):
        redis_store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0, 1.0))
        redis_store.delete_before(Level.ONE_MINUTE, T0 + MINUTE)
        assert redis_store.stations(Level.ONE_MINUTE) == []
        redis_store.upsert_if_absent(make_summary("s1", Level.ONE_MINUTE, T0 + MINUTE, 1.0))
        assert redis_store.stations(Level.ONE_MINUTE) == ["s1"]


class TestCircuitBreaker:
    def test_opens_after_threshold_and_recovers(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=10, clock=lambda: now[0])
        breaker.record_failure()
        assert breaker.can_execute()
        breaker.record_failure()
        assert breaker.state == "open"
        assert not breaker.can_execute()

        now[0] = 10.0
        assert breaker.can_execute()
        assert breaker.state == "half_open"
        breaker.record_success()
        assert breaker.state == "closed"

    def test_half_open_failure_reopens(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=5, clock=lambda: now[0])
        breaker.record_failure()
        now[0] = 6.0
        assert breaker.can_execute()
        breaker.record_failure()
        assert breaker.state == "open"
        assert not breaker.can_execute()


class TestRedisClientRetry:
    @pytest.fixture
    def client(self, settings):
        tuned = settings.model_copy(
            update={"redis_retry_backoff_sec": 0.0, "redis_breaker_threshold": 3}
        )
        return RedisClient(tuned)

    def test_retries_connection_errors(self, client):
        calls = []

        def _flaky(r):
            calls.append(r)
            if len(calls) < 3:
                raise redis.ConnectionError("reset")
            return "ok"

        assert client.execute_with_retry(_flaky) == "ok"
        assert len(calls) == 3
        assert client.circuit_state == "closed"

    def test_breaker_opens_and_fails_fast(self, client):
        def _down(r):
            raise redis.ConnectionError("refused")

        with pytest.raises(redis.ConnectionError):
            client.execute_with_retry(_down)
        assert client.circuit_state == "open"
        with pytest.raises(CircuitOpenError):
            client.execute_with_retry(lambda r: "never")

    def test_command_errors_are_not_retried(self, client):
        calls = []

        def _bad(r):
            calls.append(r)
            raise redis.ResponseError("WRONGTYPE")

        with pytest.raises(redis.ResponseError):
            client.execute_with_retry(_bad)
        assert len(calls) == 1


class _RecordingRedis:
    def __init__(self):
        self.published = []

    def execute_with_retry(self, func, max_retries=3):
        return func(self)

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


class TestSummaryPublisher:
    def test_publishes_payload_json(self, make_summary):
        client = _RecordingRedis()
        SummaryPublisher(client).publish("wind/aggregated/1min/s1", make_summary("s1", Level.ONE_MINUTE, T0, 4.0))
        ((channel, payload),) = client.published
        assert channel == "wind/aggregated/1min/s1"
        assert payload["stationId"] == "s1"
        assert payload["avgSpeed"] == 4.0

    def test_failures_are_logged_not_raised(self, make_summary):
        publisher = SummaryPublisher(_FailingRedisClient(redis.ConnectionError("down")))
        publisher.publish("wind/aggregated/1min/s1", make_summary("s1", Level.ONE_MINUTE, T0, 4.0))
