"""Centralized configuration using pydantic-settings. All values are env-configurable."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="WIND_")

    # Kafka
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_producer_batch_size: int = 16384
    kafka_producer_linger_ms: int = 50
    kafka_producer_compression: str = "lz4"
    kafka_consumer_group: str = "wind-aggregator"
    kafka_auto_offset_reset: str = "latest"
    kafka_max_poll_records: int = 500
    kafka_session_timeout_ms: int = 30000

    # Redis
    redis_url: str = "redis://redis:6379/0"
    redis_pool_size: int = 20
    redis_max_retries: int = 3
    redis_retry_backoff_sec: float = 0.1
    redis_breaker_threshold: int = 5
    redis_breaker_recovery_sec: float = 30.0

    # Summary store: "redis" in production, "memory" for local runs
    store_backend: Literal["redis", "memory"] = "redis"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    ws_throttle_ms: int = 100
    scheduler_enabled: bool = True

    # Processing
    flush_delay_sec: float = 1.0
    aggregation_delay_sec: float = 15.0
    tendency_threshold: float = 0.5  # m/s
    calm_threshold: float = 1.0  # m/s
    catchup_horizon_hours: int = 24
    tick_lookback_hours: int = 3  # scheduled roll-ups retry missing intervals this far back
    max_future_skew_sec: float = 120.0  # samples further ahead of the clock are rejected

    # Retention (used when no policy row exists in the store)
    retention_1min_days: int = 1
    retention_10min_days: int = 1
    retention_policy_cache_sec: int = 300

    # Producers
    sim_num_stations: int = 3
    sim_publish_interval_ms: int = 1000

    # Topics
    topic_wind_raw: str = "wind.samples.raw"
    topic_dlq: str = "wind.dlq"

    # Monitoring
    enable_prometheus: bool = True
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
