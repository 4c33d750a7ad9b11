"""Bucket flusher: turns elapsed 1-minute buckets into persisted, published summaries."""

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from aggregation.buckets import LiveBucket, LiveBucketStore
from aggregation.intervals import Level
from aggregation.models import channel_for
from storage.summary_store import StoreUnavailableError, SummaryStore

log = structlog.get_logger(component="bucket-flusher")


@dataclass
class FlushReport:
    flushed: int = 0
    duplicates: int = 0
    failed: int = 0
    stations: set[str] = field(default_factory=set)


class BucketFlusher:
    """
    Seals elapsed buckets and writes each one exactly once.

    A bucket is released only after the store accepted it or reported it as
    already present. On StoreUnavailableError it stays pending and is retried
    by the next flush, so nothing is discarded while the store is down.
    """

    def __init__(self, buckets: LiveBucketStore, summaries: SummaryStore, publisher):
        self._buckets = buckets
        self._summaries = summaries
        self._publisher = publisher

    def flush(self, now: datetime) -> FlushReport:
        return self._write(self._buckets.seal_elapsed(now))

    def flush_all(self) -> FlushReport:
        return self._write(self._buckets.seal_all())

    def _write(self, sealed: list[LiveBucket]) -> FlushReport:
        report = FlushReport()
        for bucket in sealed:
            summary = bucket.to_summary()
            try:
                inserted = self._summaries.upsert_if_absent(summary)
            except StoreUnavailableError as e:
                report.failed += 1
                log.error(
                    "bucket_flush_failed",
                    station_id=bucket.station_id,
                    bucket_start=bucket.bucket_start.isoformat(),
                    error=str(e),
                )
                continue

            if inserted:
                report.flushed += 1
                report.stations.add(bucket.station_id)
                self._publisher.publish(channel_for(Level.ONE_MINUTE, bucket.station_id), summary)
            else:
                report.duplicates += 1
            self._buckets.release(bucket.key)

        if sealed:
            log.info(
                "buckets_flushed",
                flushed=report.flushed,
                duplicates=report.duplicates,
                failed=report.failed,
            )
        return report
