"""Retention sweeper: prunes superseded 1-minute and 10-minute rows. Hourly rows are kept forever."""

from datetime import datetime, timedelta
from typing import Callable

import structlog

from aggregation.intervals import Level, utc_now
from storage.summary_store import SummaryStore

log = structlog.get_logger(component="retention-sweeper")


class RetentionSweeper:
    def __init__(
        self,
        summaries: SummaryStore,
        policies,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._summaries = summaries
        self._policies = policies
        self._clock = clock
        self.deleted_total = 0

    def sweep(self, level: Level) -> int:
        """Delete rows of ``level`` older than its policy horizon. Never raises."""
        if level.permanent:
            return 0
        try:
            policy = self._policies.get_retention_horizon(level.data_type)
            if policy is None or not policy.active:
                log.debug("retention_skipped", data_type=level.data_type)
                return 0
            cutoff = self._clock() - timedelta(days=policy.retention_days)
            deleted = self._summaries.delete_before(level, cutoff)
        except Exception as e:
            # Extra rows only cost storage; the next cycle retries
            log.error("retention_sweep_failed", data_type=level.data_type, error=str(e))
            return 0

        self.deleted_total += deleted
        if deleted:
            log.info(
                "retention_swept",
                data_type=level.data_type,
                deleted=deleted,
                cutoff=cutoff.isoformat(),
            )
        return deleted

    def sweep_all(self) -> int:
        return sum(self.sweep(level) for level in Level if not level.permanent)

    def on_superseded(self, level: Level):
        """Called once a parent row covering ``level`` data has been written."""
        self.sweep(level)
