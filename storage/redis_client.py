"""Resilient Redis client shared by the summary store, publisher and caches."""

import threading
import time
from typing import Any, Callable

import redis

from config import Settings, configure_logging


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Three-state circuit breaker: CLOSED → OPEN → HALF_OPEN.

    CLOSED:    Normal operation, consecutive failures are counted.
    OPEN:      After failure_threshold failures every call fails fast.
    HALF_OPEN: After recovery_timeout one trial call is let through; success
               closes the circuit, failure opens it again.

    Ingest, the API and the tick threads share one breaker, so state changes
    happen under a lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self.state = "closed"
        self.failure_count = 0
        self.opened_at = 0.0

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == "open":
                if self._clock() - self.opened_at < self.recovery_timeout:
                    return False
                self.state = "half_open"
            return True

    def record_success(self):
        with self._lock:
            self.failure_count = 0
            self.state = "closed"

    def record_failure(self):
        with self._lock:
            self.failure_count += 1
            if self.state == "half_open" or self.failure_count >= self.failure_threshold:
                self.state = "open"
                self.opened_at = self._clock()


class RedisClient:
    """Connection pool shared by every Redis user, behind one circuit breaker."""

    def __init__(self, settings: Settings):
        self.log = configure_logging("redis-client", settings.log_level, settings.log_format)
        self._pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_pool_size,
            decode_responses=True,
        )
        self._circuit = CircuitBreaker(
            failure_threshold=settings.redis_breaker_threshold,
            recovery_timeout=settings.redis_breaker_recovery_sec,
        )
        self._max_retries = settings.redis_max_retries
        self._backoff = settings.redis_retry_backoff_sec
        self.log.info("redis_pool_created", url=settings.redis_url, pool_size=settings.redis_pool_size)

    def get_client(self) -> redis.Redis:
        return redis.Redis(connection_pool=self._pool)

    def execute_with_retry(
        self, func: Callable[[redis.Redis], Any], max_retries: int | None = None
    ) -> Any:
        """
        Run ``func`` against a pooled client. Connection-level failures are
        retried with exponential backoff until the attempts run out or the
        breaker opens; command errors propagate on the first attempt.
        """
        attempts = max_retries if max_retries is not None else self._max_retries
        for attempt in range(1, attempts + 1):
            if not self._circuit.can_execute():
                raise CircuitOpenError("Redis circuit breaker is open")
            try:
                result = func(self.get_client())
            except (redis.ConnectionError, redis.TimeoutError) as e:
                self._circuit.record_failure()
                if attempt == attempts:
                    raise
                delay = self._backoff * 2 ** (attempt - 1)
                self.log.warning("redis_retry", attempt=attempt, backoff=delay, error=str(e))
                time.sleep(delay)
            else:
                self._circuit.record_success()
                return result

    def ping(self) -> bool:
        try:
            return self.execute_with_retry(lambda r: r.ping(), max_retries=1)
        except (redis.RedisError, CircuitOpenError):
            return False

    def close(self):
        self._pool.disconnect()
        self.log.info("redis_pool_closed")

    @property
    def circuit_state(self) -> str:
        return self._circuit.state
