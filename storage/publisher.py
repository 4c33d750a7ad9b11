"""Best-effort pub/sub fan-out of finished interval summaries."""

import json

import redis
import structlog

from aggregation.models import IntervalSummary
from storage.redis_client import CircuitOpenError, RedisClient

log = structlog.get_logger(component="publisher")


class SummaryPublisher:
    """Publishes to Redis Pub/Sub. Delivery failures are logged and dropped, never retried."""

    def __init__(self, client: RedisClient):
        self._client = client

    def publish(self, channel: str, summary: IntervalSummary):
        message = json.dumps(summary.as_payload())
        try:
            self._client.execute_with_retry(lambda r: r.publish(channel, message), max_retries=1)
        except (redis.RedisError, CircuitOpenError) as e:
            log.warning("publish_failed", channel=channel, error=str(e))


class NullPublisher:
    """Used with the in-memory store, where nobody is listening."""

    def publish(self, channel: str, summary: IntervalSummary):
        log.debug("publish_skipped", channel=channel, interval_start=summary.interval_start.isoformat())
