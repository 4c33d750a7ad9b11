"""Durable interval-summary storage, unique per (level, station_id, interval_start)."""

import json
import threading
from datetime import datetime
from typing import Callable, Protocol, TypeVar

import redis

from aggregation.intervals import Level, ensure_utc
from aggregation.models import IntervalSummary, Tendency
from storage.redis_client import CircuitOpenError, RedisClient

T = TypeVar("T")


class StoreUnavailableError(Exception):
    """The durable store could not be reached; the caller retries on its next tick."""


class SummaryStore(Protocol):
    def upsert_if_absent(self, summary: IntervalSummary) -> bool: ...

    def query_range(
        self, station_id: str, level: Level, start: datetime, end: datetime
    ) -> list[IntervalSummary]: ...

    def latest(self, station_id: str, level: Level) -> IntervalSummary | None: ...

    def stations(self, level: Level) -> list[str]: ...

    def delete_before(self, level: Level, cutoff: datetime) -> int: ...


# ─── Row mapping ────────────────────────────────────────────────────


def summary_to_row(summary: IntervalSummary) -> dict:
    """Column layout of the wind_data_* tables; optional columns are omitted."""
    row = {
        "station_id": summary.station_id,
        "timestamp": summary.interval_start.isoformat(),
        "avg_speed": summary.avg_speed,
        "min_speed": summary.min_speed,
        "max_speed": summary.max_speed,
        "dominant_direction": summary.dominant_direction,
    }
    if summary.sample_count is not None:
        row["sample_count"] = summary.sample_count
    if summary.tendency is not None:
        row["tendency"] = summary.tendency.value
    if summary.gust_speed is not None:
        row["gust_speed"] = summary.gust_speed
    if summary.calm_period_count is not None:
        row["calm_periods"] = summary.calm_period_count
    return row


def summary_from_row(level: Level, row: dict) -> IntervalSummary:
    tendency = row.get("tendency")
    return IntervalSummary(
        station_id=row["station_id"],
        level=level,
        interval_start=ensure_utc(datetime.fromisoformat(row["timestamp"])),
        avg_speed=float(row["avg_speed"]),
        min_speed=float(row["min_speed"]),
        max_speed=float(row["max_speed"]),
        dominant_direction=row["dominant_direction"],
        sample_count=row.get("sample_count"),
        tendency=Tendency(tendency) if tendency is not None else None,
        gust_speed=row.get("gust_speed"),
        calm_period_count=row.get("calm_periods"),
    )


def _epoch(ts: datetime) -> int:
    return int(ensure_utc(ts).timestamp())


# ─── Redis ──────────────────────────────────────────────────────────


class RedisSummaryStore:
    """
    Per (level, station):
        wind:{level}:{station}:rows   hash, epoch seconds → JSON row (HSETNX = unique key)
        wind:{level}:{station}:index  sorted set, score = epoch seconds, for range scans
    Per level:
        wind:{level}:stations         set of station ids with rows at that level
    """

    def __init__(self, client: RedisClient):
        self._client = client

    @staticmethod
    def _rows_key(level: Level, station_id: str) -> str:
        return f"wind:{level.value}:{station_id}:rows"

    @staticmethod
    def _index_key(level: Level, station_id: str) -> str:
        return f"wind:{level.value}:{station_id}:index"

    @staticmethod
    def _stations_key(level: Level) -> str:
        return f"wind:{level.value}:stations"

    def _run(self, op: Callable[[redis.Redis], T]) -> T:
        try:
            return self._client.execute_with_retry(op)
        except (redis.RedisError, CircuitOpenError) as e:
            raise StoreUnavailableError(str(e)) from e

    def upsert_if_absent(self, summary: IntervalSummary) -> bool:
        level, station = summary.level, summary.station_id
        epoch = _epoch(summary.interval_start)
        payload = json.dumps(summary_to_row(summary))

        def _op(r):
            # Index writes are repeated on duplicates so a half-written earlier
            # attempt still ends up queryable.
            pipe = r.pipeline(transaction=True)
            pipe.hsetnx(self._rows_key(level, station), str(epoch), payload)
            pipe.zadd(self._index_key(level, station), {str(epoch): epoch})
            pipe.sadd(self._stations_key(level), station)
            inserted, _, _ = pipe.execute()
            return bool(inserted)

        return self._run(_op)

    def query_range(
        self, station_id: str, level: Level, start: datetime, end: datetime
    ) -> list[IntervalSummary]:
        def _op(r):
            fields = r.zrangebyscore(
                self._index_key(level, station_id), _epoch(start), f"({_epoch(end)}"
            )
            if not fields:
                return []
            raw = r.hmget(self._rows_key(level, station_id), fields)
            return [summary_from_row(level, json.loads(item)) for item in raw if item]

        return self._run(_op)

    def latest(self, station_id: str, level: Level) -> IntervalSummary | None:
        def _op(r):
            newest = r.zrevrange(self._index_key(level, station_id), 0, 0)
            if not newest:
                return None
            raw = r.hget(self._rows_key(level, station_id), newest[0])
            return summary_from_row(level, json.loads(raw)) if raw else None

        return self._run(_op)

    def stations(self, level: Level) -> list[str]:
        return sorted(self._run(lambda r: r.smembers(self._stations_key(level))))

    def delete_before(self, level: Level, cutoff: datetime) -> int:
        upper = f"({_epoch(cutoff)}"

        def _op(r):
            deleted = 0
            for station in r.smembers(self._stations_key(level)):
                index_key = self._index_key(level, station)
                fields = r.zrangebyscore(index_key, "-inf", upper)
                if fields:
                    pipe = r.pipeline(transaction=True)
                    pipe.hdel(self._rows_key(level, station), *fields)
                    pipe.zremrangebyscore(index_key, "-inf", upper)
                    removed, _ = pipe.execute()
                    deleted += removed
                self._forget_if_empty(r, level, station)
            return deleted

        return self._run(_op)

    def _forget_if_empty(self, r: redis.Redis, level: Level, station: str):
        """Drop a station with no rows left from the level's station set."""
        index_key = self._index_key(level, station)
        with r.pipeline() as pipe:
            try:
                pipe.watch(index_key)
                if pipe.zcard(index_key):
                    return
                pipe.multi()
                pipe.srem(self._stations_key(level), station)
                pipe.execute()
            except redis.WatchError:
                # A row was written concurrently; the station stays listed
                return


# ─── In-process ─────────────────────────────────────────────────────


class MemorySummaryStore:
    """Same contract as RedisSummaryStore, held in a dict. Used for tests and local runs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[tuple[Level, str], dict[datetime, IntervalSummary]] = {}

    def upsert_if_absent(self, summary: IntervalSummary) -> bool:
        start = ensure_utc(summary.interval_start)
        with self._lock:
            rows = self._rows.setdefault((summary.level, summary.station_id), {})
            if start in rows:
                return False
            rows[start] = summary
            return True

    def query_range(
        self, station_id: str, level: Level, start: datetime, end: datetime
    ) -> list[IntervalSummary]:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            rows = self._rows.get((level, station_id), {})
            return [rows[ts] for ts in sorted(rows) if start <= ts < end]

    def latest(self, station_id: str, level: Level) -> IntervalSummary | None:
        with self._lock:
            rows = self._rows.get((level, station_id))
            if not rows:
                return None
            return rows[max(rows)]

    def stations(self, level: Level) -> list[str]:
        with self._lock:
            return sorted(station for lvl, station in self._rows if lvl is level)

    def delete_before(self, level: Level, cutoff: datetime) -> int:
        cutoff = ensure_utc(cutoff)
        deleted = 0
        with self._lock:
            for key in [key for key in self._rows if key[0] is level]:
                rows = self._rows[key]
                for ts in [ts for ts in rows if ts < cutoff]:
                    del rows[ts]
                    deleted += 1
                if not rows:
                    del self._rows[key]
        return deleted

    def count(self, level: Level, station_id: str | None = None) -> int:
        with self._lock:
            return sum(
                len(rows)
                for (lvl, station), rows in self._rows.items()
                if lvl is level and (station_id is None or station == station_id)
            )
