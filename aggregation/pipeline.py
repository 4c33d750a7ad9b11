"""Wind aggregation pipeline: ingest, flush, roll up and prune, behind one facade."""

import threading
from datetime import datetime, timedelta
from typing import Callable

import structlog

from aggregation.buckets import LiveBucketStore
from aggregation.flusher import BucketFlusher, FlushReport
from aggregation.hierarchy import AggregationReport, HierarchicalAggregator
from aggregation.intervals import ONE_MINUTE, Level, utc_now
from aggregation.models import InvalidSampleError, build_sample
from aggregation.retention import RetentionSweeper
from aggregation.scheduler import AlignedTicker
from config import Settings
from storage.summary_store import SummaryStore

log = structlog.get_logger(component="wind-pipeline")

PARENT_LEVELS = (Level.TEN_MINUTES, Level.HOURLY)


class WindAggregationPipeline:
    """
    Owns the live bucket store and every stage that reads from it.

    Ingestion only touches the bucket store lock. Flush, aggregation, sweep and
    the admin ``force_*`` calls share one re-entrant lock, so a forced
    operation never interleaves with a scheduled tick.
    """

    def __init__(
        self,
        settings: Settings,
        summaries: SummaryStore,
        publisher,
        policies,
        clock: Callable[[], datetime] = utc_now,
        buckets: LiveBucketStore | None = None,
    ):
        self.settings = settings
        self._clock = clock
        self.summaries = summaries
        self.buckets = buckets or LiveBucketStore()
        self.flusher = BucketFlusher(self.buckets, summaries, publisher)
        self.sweeper = RetentionSweeper(summaries, policies, clock)
        self.aggregator = HierarchicalAggregator(
            summaries,
            publisher,
            sweeper=self.sweeper,
            tendency_threshold=settings.tendency_threshold,
            calm_threshold=settings.calm_threshold,
            catchup_horizon=timedelta(hours=settings.catchup_horizon_hours),
        )
        self._tick_lookback = timedelta(hours=settings.tick_lookback_hours)
        self._max_future_skew = timedelta(seconds=settings.max_future_skew_sec)
        self._work_lock = threading.RLock()
        self._tickers: list[AlignedTicker] = []
        self._started = False
        self.counters = {
            "summaries_flushed": 0,
            "summaries_aggregated": 0,
            "flush_failures": 0,
            "aggregation_failures": 0,
            "tick_errors": 0,
        }

    # ─── Ingestion ──────────────────────────────────────────────────

    def submit_sample(
        self,
        station_id: str,
        speed: float,
        direction: float,
        timestamp: datetime | str | None = None,
    ) -> bool:
        """
        Validate and fold one reading. Raises InvalidSampleError for bad input,
        including timestamps too far ahead of the pipeline clock; returns False
        when the reading's minute was already flushed.
        """
        now = self._clock()
        sample = build_sample(station_id, speed, direction, timestamp if timestamp is not None else now)
        if sample.observed_at > now + self._max_future_skew:
            raise InvalidSampleError(
                f"invalid wind sample for station {station_id!r}: observed_at "
                f"{sample.observed_at.isoformat()} is more than "
                f"{self._max_future_skew.total_seconds():g}s ahead of {now.isoformat()}"
            )
        return self.buckets.ingest(sample)

    # ─── Scheduled ticks ────────────────────────────────────────────

    def flush_tick(self, boundary: datetime | None = None):
        self._guarded("flush", lambda: self._record_flush(self.flusher.flush(self._clock())))

    def aggregate_tick(self, level: Level = Level.HOURLY, boundary: datetime | None = None):
        """
        Roll up every level up to ``level``, lowest first, retrying any interval
        inside the tick lookback that is still missing its row.
        """
        self._guarded(
            f"aggregate_{level.value}",
            lambda: self._roll_up(self._clock(), level, self._tick_lookback),
        )

    def sweep_tick(self, boundary: datetime | None = None):
        self._guarded("sweep", self.sweeper.sweep_all)

    def _guarded(self, name: str, work: Callable[[], object]):
        try:
            with self._work_lock:
                work()
        except Exception as e:
            self.counters["tick_errors"] += 1
            log.error("tick_handler_failed", tick=name, error=str(e), exc_info=True)

    def _roll_up(
        self, now: datetime, upto: Level, horizon: timedelta | None = None
    ) -> list[AggregationReport]:
        """
        Catch up each parent level in order. A level with failures stops the
        levels above it, so a parent is never built while one of its children
        is still owed.
        """
        reports = []
        for level in PARENT_LEVELS:
            report = self._record_aggregation(self.aggregator.catch_up(level, now, horizon))
            reports.append(report)
            if level is upto:
                break
            if report.failed:
                log.warning("rollup_deferred", level=level.value, failed=report.failed)
                break
        return reports

    def _record_flush(self, report: FlushReport) -> FlushReport:
        self.counters["summaries_flushed"] += report.flushed
        self.counters["flush_failures"] += report.failed
        return report

    def _record_aggregation(self, report: AggregationReport) -> AggregationReport:
        self.counters["summaries_aggregated"] += report.aggregated
        self.counters["aggregation_failures"] += report.failed
        return report

    # ─── Administrative triggers ────────────────────────────────────

    def force_flush(self) -> FlushReport:
        """Flush every bucket, including the still-open minute."""
        with self._work_lock:
            return self._record_flush(self.flusher.flush_all())

    def force_aggregate(self, level: Level) -> AggregationReport:
        """
        Aggregate the last completed ``level`` interval. The lower parent levels
        go first so an hourly row always sees its final 10-minute child.
        """
        with self._work_lock:
            now = self._clock()
            for lower in PARENT_LEVELS:
                report = self._record_aggregation(self.aggregator.aggregate_level(lower, now))
                if lower is level:
                    return report
                if report.failed:
                    log.warning("rollup_deferred", level=lower.value, failed=report.failed)
                    return AggregationReport(level, failed=report.failed)
            raise ValueError(f"{level.value} is the base level and cannot be aggregated")

    def force_catchup(self) -> list[AggregationReport]:
        """Fill every missed 10-minute interval, then every missed hour."""
        with self._work_lock:
            now = self._clock()
            self._record_flush(self.flusher.flush(now))
            return self._roll_up(now, Level.HOURLY)

    # ─── Lifecycle ──────────────────────────────────────────────────

    def start(self):
        if self._started:
            return
        try:
            self.force_catchup()
        except Exception as e:
            log.error("startup_catchup_failed", error=str(e))

        self._tickers = [
            AlignedTicker(
                "flush-1min",
                ONE_MINUTE,
                self.flush_tick,
                offset=timedelta(seconds=self.settings.flush_delay_sec),
                clock=self._clock,
            ),
            # One ticker for both parent levels keeps 10-minute ahead of hourly
            AlignedTicker(
                "rollup-10min",
                Level.TEN_MINUTES.width,
                lambda boundary: self.aggregate_tick(Level.HOURLY, boundary),
                offset=timedelta(seconds=self.settings.aggregation_delay_sec),
                clock=self._clock,
            ),
            AlignedTicker(
                "retention-daily",
                timedelta(days=1),
                self.sweep_tick,
                offset=timedelta(minutes=5),
                clock=self._clock,
            ),
        ]
        for ticker in self._tickers:
            ticker.start()
        self._started = True
        log.info("pipeline_started", tickers=[t.name for t in self._tickers])

    def stop(self):
        """Stop the tickers, then persist every open bucket instead of dropping it."""
        for ticker in self._tickers:
            ticker.stop()
        self._tickers = []
        self._started = False
        report = self.force_flush()
        log.info(
            "pipeline_stopped",
            flushed=report.flushed,
            failed=report.failed,
            pending=self.buckets.pending_count,
        )

    def status(self) -> dict:
        return {
            "running": self._started,
            "bucketCount": self.buckets.open_bucket_count,
            "pendingFlush": self.buckets.pending_count,
            "acceptedSamples": self.buckets.accepted_sample_count,
            "lateSamples": self.buckets.late_sample_count,
            "bucketInfo": self.buckets.snapshot(),
            "retentionDeleted": self.sweeper.deleted_total,
            "counters": dict(self.counters),
        }


def create_pipeline(settings: Settings, clock: Callable[[], datetime] = utc_now):
    """Wire the pipeline to the configured backend. Returns (pipeline, redis_client or None)."""
    # Imported here so the core modules never depend on the Redis wiring
    from storage import (
        MemorySummaryStore,
        NullPublisher,
        RedisClient,
        RedisSummaryStore,
        RetentionPolicyRepository,
        SummaryPublisher,
        default_policies,
    )

    defaults = default_policies(settings)
    if settings.store_backend == "memory":
        pipeline = WindAggregationPipeline(
            settings,
            MemorySummaryStore(),
            NullPublisher(),
            RetentionPolicyRepository(None, defaults),
            clock=clock,
        )
        return pipeline, None

    client = RedisClient(settings)
    pipeline = WindAggregationPipeline(
        settings,
        RedisSummaryStore(client),
        SummaryPublisher(client),
        RetentionPolicyRepository(client, defaults, cache_ttl=settings.retention_policy_cache_sec),
        clock=clock,
    )
    return pipeline, client
