"""Read-only retention policy lookup with a short-lived local cache."""

import json
import threading
import time
from typing import Callable

import redis
import structlog

from aggregation.intervals import Level
from aggregation.models import RetentionPolicy
from config import Settings
from storage.redis_client import CircuitOpenError, RedisClient

log = structlog.get_logger(component="retention-policies")

POLICIES_KEY = "retention:policies"


def default_policies(settings: Settings) -> dict[str, RetentionPolicy]:
    return {
        Level.ONE_MINUTE.data_type: RetentionPolicy(
            Level.ONE_MINUTE.data_type, settings.retention_1min_days
        ),
        Level.TEN_MINUTES.data_type: RetentionPolicy(
            Level.TEN_MINUTES.data_type, settings.retention_10min_days
        ),
    }


class RetentionPolicyRepository:
    """
    Policies live in the ``retention:policies`` hash as
    ``data_type → {"retention_days": int, "active": bool}``. They are written by
    operators, never by the pipeline. Without a client, or when Redis cannot be
    reached, the configured defaults are used.
    """

    def __init__(
        self,
        client: RedisClient | None,
        defaults: dict[str, RetentionPolicy],
        cache_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._defaults = defaults
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: dict[str, RetentionPolicy] = {}
        self._loaded_at: float | None = None

    def get_retention_horizon(self, data_type: str) -> RetentionPolicy | None:
        with self._lock:
            if self._loaded_at is None or self._clock() - self._loaded_at >= self._cache_ttl:
                self._cached = self._load()
                self._loaded_at = self._clock()
            return self._cached.get(data_type)

    def _load(self) -> dict[str, RetentionPolicy]:
        policies = dict(self._defaults)
        if self._client is None:
            return policies
        try:
            raw = self._client.execute_with_retry(lambda r: r.hgetall(POLICIES_KEY))
        except (redis.RedisError, CircuitOpenError) as e:
            log.warning("retention_policies_unavailable", error=str(e))
            return policies
        for data_type, value in raw.items():
            try:
                data = json.loads(value)
                policies[data_type] = RetentionPolicy(
                    data_type=data_type,
                    retention_days=int(data["retention_days"]),
                    active=bool(data.get("active", True)),
                )
            except (ValueError, KeyError, TypeError) as e:
                log.warning("retention_policy_malformed", data_type=data_type, error=str(e))
        return policies
