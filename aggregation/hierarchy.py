"""Hierarchical aggregation: 10-minute rows from 1-minute rows, hourly rows from 10-minute rows."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import fmean

import structlog

from aggregation.buckets import dominant_value
from aggregation.intervals import Level, floor_to_interval
from aggregation.models import IntervalSummary, channel_for
from aggregation.tendency import DEFAULT_THRESHOLD, classify_tendency
from storage.summary_store import StoreUnavailableError, SummaryStore

log = structlog.get_logger(component="hierarchical-aggregator")

DEFAULT_CALM_THRESHOLD = 1.0  # m/s


@dataclass
class AggregationReport:
    level: Level
    aggregated: int = 0
    duplicates: int = 0
    empty: int = 0
    failed: int = 0


class HierarchicalAggregator:
    """
    Builds each parent level purely from the persisted rows of the level below.

    The parent average is the plain mean of the child averages, not weighted
    by sample count. Intervals with missing children still get a row built
    from whatever children exist; intervals with no children get none.
    """

    def __init__(
        self,
        summaries: SummaryStore,
        publisher,
        sweeper=None,
        tendency_threshold: float = DEFAULT_THRESHOLD,
        calm_threshold: float = DEFAULT_CALM_THRESHOLD,
        catchup_horizon: timedelta = timedelta(hours=24),
    ):
        self._summaries = summaries
        self._publisher = publisher
        self._sweeper = sweeper
        self.tendency_threshold = tendency_threshold
        self.calm_threshold = calm_threshold
        self.catchup_horizon = catchup_horizon

    @staticmethod
    def _check_level(level: Level) -> Level:
        if level.child is None:
            raise ValueError(f"{level.value} is the base level and cannot be aggregated")
        return level

    def compute(
        self,
        station_id: str,
        interval_start: datetime,
        level: Level,
        children: list[IntervalSummary],
        previous: IntervalSummary | None,
    ) -> IntervalSummary:
        """Derive the parent summary from its (non-empty, chronological) children."""
        avg_speed = fmean(c.avg_speed for c in children)
        fields = dict(
            station_id=station_id,
            level=level,
            interval_start=interval_start,
            avg_speed=avg_speed,
            min_speed=min(c.min_speed for c in children),
            max_speed=max(c.max_speed for c in children),
            dominant_direction=dominant_value(c.dominant_direction for c in children),
            tendency=classify_tendency(
                avg_speed,
                previous.avg_speed if previous is not None else None,
                self.tendency_threshold,
            ),
        )
        if level is Level.HOURLY:
            fields["gust_speed"] = max(c.max_speed for c in children)
            fields["calm_period_count"] = sum(
                1 for c in children if c.avg_speed < self.calm_threshold
            )
        return IntervalSummary(**fields)

    def aggregate_interval(
        self, station_id: str, interval_start: datetime, level: Level
    ) -> IntervalSummary | None:
        summary, _ = self._aggregate(station_id, interval_start, level)
        return summary

    def _aggregate(
        self, station_id: str, interval_start: datetime, level: Level
    ) -> tuple[IntervalSummary | None, bool]:
        level = self._check_level(level)
        width = level.width
        start = floor_to_interval(interval_start, width)
        if start != interval_start:
            raise ValueError(f"{interval_start.isoformat()} is not aligned to {level.value}")

        children = self._summaries.query_range(station_id, level.child, start, start + width)
        if not children:
            return None, False
        if len(children) < level.expected_children:
            log.info(
                "partial_aggregation",
                station_id=station_id,
                level=level.value,
                interval_start=start.isoformat(),
                children=len(children),
                expected=level.expected_children,
            )

        previous_rows = self._summaries.query_range(station_id, level, start - width, start)
        previous = previous_rows[-1] if previous_rows else None
        summary = self.compute(station_id, start, level, children, previous)

        inserted = self._summaries.upsert_if_absent(summary)
        if inserted:
            self._publisher.publish(channel_for(level, station_id), summary)
            log.info(
                "interval_aggregated",
                station_id=station_id,
                level=level.value,
                interval_start=start.isoformat(),
                avg_speed=round(summary.avg_speed, 3),
                tendency=summary.tendency.value,
            )
            if self._sweeper is not None:
                self._sweeper.on_superseded(level.child)
        return summary, inserted

    def aggregate_level(self, level: Level, now: datetime) -> AggregationReport:
        """Aggregate the most recently completed interval of ``level`` for every station."""
        level = self._check_level(level)
        interval_start = floor_to_interval(now, level.width) - level.width
        report = AggregationReport(level)
        for station_id in self._stations(report):
            self._run_one(report, station_id, interval_start)
        return report

    def missing_intervals(
        self, station_id: str, level: Level, begin: datetime, end: datetime
    ) -> list[datetime]:
        """Elapsed ``level`` intervals in ``[begin, end)`` that have child rows but no row of their own."""
        width = level.width
        covered = {
            floor_to_interval(child.interval_start, width)
            for child in self._summaries.query_range(station_id, level.child, begin, end)
        }
        done = {row.interval_start for row in self._summaries.query_range(station_id, level, begin, end)}
        return sorted(covered - done)

    def catch_up(
        self, level: Level, now: datetime, horizon: timedelta | None = None
    ) -> AggregationReport:
        """
        Aggregate every fully elapsed interval within ``horizon`` (the catch-up
        horizon by default) that has children but no row yet, oldest first.

        Intervals are found by scanning for missing rows rather than resuming
        after the newest one, so an interval that failed earlier is picked up
        again even after later intervals succeeded.
        """
        level = self._check_level(level)
        width = level.width
        begin = floor_to_interval(now - (horizon or self.catchup_horizon), width)
        end = floor_to_interval(now, width)
        report = AggregationReport(level)

        for station_id in self._stations(report):
            try:
                pending = self.missing_intervals(station_id, level, begin, end)
            except StoreUnavailableError as e:
                report.failed += 1
                log.error("catchup_failed", station_id=station_id, level=level.value, error=str(e))
                continue
            for interval_start in pending:
                if not self._run_one(report, station_id, interval_start):
                    # Keep chronological order: stop this station, retry next tick
                    break

        if report.aggregated:
            log.info(
                "catchup_complete",
                level=level.value,
                aggregated=report.aggregated,
                failed=report.failed,
            )
        return report

    def _stations(self, report: AggregationReport) -> list[str]:
        try:
            return self._summaries.stations(report.level.child)
        except StoreUnavailableError as e:
            report.failed += 1
            log.error("station_listing_failed", level=report.level.value, error=str(e))
            return []

    def _run_one(self, report: AggregationReport, station_id: str, interval_start: datetime) -> bool:
        try:
            summary, inserted = self._aggregate(station_id, interval_start, report.level)
        except StoreUnavailableError as e:
            report.failed += 1
            log.error(
                "aggregation_failed",
                station_id=station_id,
                level=report.level.value,
                interval_start=interval_start.isoformat(),
                error=str(e),
            )
            return False
        if summary is None:
            report.empty += 1
        elif inserted:
            report.aggregated += 1
        else:
            report.duplicates += 1
        return True
