"""Live bucket store: one running reducer per (station, open 1-minute interval)."""

import threading
from collections import Counter
from datetime import datetime
from typing import Hashable, Iterable

import structlog

from aggregation.intervals import Level, ONE_MINUTE, floor_to_interval, is_complete
from aggregation.models import IntervalSummary, WindSample

BucketKey = tuple[str, datetime]

log = structlog.get_logger(component="bucket-store")


def direction_key(direction: float) -> int:
    """Histogram slot for a direction: nearest whole degree, 360 folds onto 0."""
    return int(round(direction)) % 360


def dominant_value(values: Iterable[Hashable]):
    """Most frequent value. Ties go to the value seen first."""
    counts = Counter(values)
    if not counts:
        return None
    # Counter keeps insertion order and most_common() is stable on ties
    return counts.most_common(1)[0][0]


class LiveBucket:
    """Running min/max/sum/count plus a direction histogram for one station-minute."""

    __slots__ = (
        "station_id",
        "bucket_start",
        "min_speed",
        "max_speed",
        "speed_sum",
        "sample_count",
        "direction_counts",
    )

    def __init__(self, station_id: str, bucket_start: datetime):
        self.station_id = station_id
        self.bucket_start = bucket_start
        self.min_speed = float("inf")
        self.max_speed = float("-inf")
        self.speed_sum = 0.0
        self.sample_count = 0
        self.direction_counts: Counter[int] = Counter()

    @property
    def key(self) -> BucketKey:
        return (self.station_id, self.bucket_start)

    def add(self, speed: float, direction: float):
        if speed < self.min_speed:
            self.min_speed = speed
        if speed > self.max_speed:
            self.max_speed = speed
        self.speed_sum += speed
        self.sample_count += 1
        self.direction_counts[direction_key(direction)] += 1

    @property
    def avg_speed(self) -> float:
        return self.speed_sum / self.sample_count

    def dominant_direction(self) -> int:
        return self.direction_counts.most_common(1)[0][0]

    def to_summary(self) -> IntervalSummary:
        return IntervalSummary(
            station_id=self.station_id,
            level=Level.ONE_MINUTE,
            interval_start=self.bucket_start,
            avg_speed=self.avg_speed,
            min_speed=self.min_speed,
            max_speed=self.max_speed,
            dominant_direction=self.dominant_direction(),
            sample_count=self.sample_count,
        )

    def describe(self) -> dict:
        return {
            "stationId": self.station_id,
            "bucketStart": self.bucket_start.isoformat(),
            "sampleCount": self.sample_count,
            "avgSpeed": round(self.avg_speed, 3),
            "minSpeed": self.min_speed,
            "maxSpeed": self.max_speed,
        }


class LiveBucketStore:
    """
    Thread-safe map of open 1-minute buckets.

    Buckets move through two stages: open (still accepting samples) and
    pending (sealed, waiting for a successful write). Sealing advances the
    station's watermark, so a sample for a sealed or flushed minute is
    counted as late and dropped instead of reopening the interval.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._open: dict[BucketKey, LiveBucket] = {}
        self._pending: dict[BucketKey, LiveBucket] = {}
        self._watermarks: dict[str, datetime] = {}
        self._accepted_samples = 0
        self._late_samples = 0

    def ingest(self, sample: WindSample) -> bool:
        """Fold a validated sample into its minute. Returns False for late samples."""
        bucket_start = floor_to_interval(sample.observed_at, ONE_MINUTE)
        key = (sample.station_id, bucket_start)
        with self._lock:
            watermark = self._watermarks.get(sample.station_id)
            if watermark is not None and bucket_start <= watermark:
                self._late_samples += 1
                late_total = self._late_samples
            else:
                bucket = self._open.get(key)
                if bucket is None:
                    bucket = self._open[key] = LiveBucket(sample.station_id, bucket_start)
                bucket.add(sample.speed, sample.direction)
                self._accepted_samples += 1
                return True

        log.debug(
            "late_sample_dropped",
            station_id=sample.station_id,
            bucket_start=bucket_start.isoformat(),
            watermark=watermark.isoformat(),
            late_total=late_total,
        )
        return False

    def seal_elapsed(self, now: datetime) -> list[LiveBucket]:
        """Seal every bucket whose minute has fully elapsed; return all pending buckets."""
        with self._lock:
            elapsed = [
                key for key, bucket in self._open.items()
                if is_complete(bucket.bucket_start, ONE_MINUTE, now)
            ]
            return self._seal(elapsed)

    def seal_all(self) -> list[LiveBucket]:
        """Seal every open bucket, including the current minute (shutdown/force flush)."""
        with self._lock:
            return self._seal(list(self._open))

    def _seal(self, keys: list[BucketKey]) -> list[LiveBucket]:
        for key in keys:
            bucket = self._open.pop(key)
            self._pending[key] = bucket
            station_id, bucket_start = key
            current = self._watermarks.get(station_id)
            if current is None or bucket_start > current:
                self._watermarks[station_id] = bucket_start
        return sorted(self._pending.values(), key=lambda b: b.key)

    def release(self, key: BucketKey):
        with self._lock:
            self._pending.pop(key, None)

    def snapshot(self) -> list[dict]:
        with self._lock:
            return [bucket.describe() for bucket in self._open.values()]

    @property
    def open_bucket_count(self) -> int:
        with self._lock:
            return len(self._open)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def accepted_sample_count(self) -> int:
        with self._lock:
            return self._accepted_samples

    @property
    def late_sample_count(self) -> int:
        with self._lock:
            return self._late_samples
