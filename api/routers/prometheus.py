"""Prometheus-compatible metrics endpoint."""

import time

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

router = APIRouter()

CIRCUIT_STATES = {"closed": 0, "open": 1, "half_open": 2}


def _metric(name: str, kind: str, help_text: str, value) -> list[str]:
    return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", f"{name} {value}", ""]


@router.get("/metrics")
async def prometheus_metrics(request: Request):
    """Expose pipeline and connection metrics in Prometheus text exposition format."""
    state = request.app.state
    status = state.pipeline.status()
    counters = status["counters"]

    lines: list[str] = []
    lines += _metric("wind_open_buckets", "gauge", "Open 1-minute buckets held in memory", status["bucketCount"])
    lines += _metric("wind_pending_buckets", "gauge", "Sealed buckets waiting for a successful write", status["pendingFlush"])
    lines += _metric("wind_samples_accepted_total", "counter", "Samples folded into a bucket", status["acceptedSamples"])
    lines += _metric("wind_late_samples_total", "counter", "Samples dropped because their minute was already flushed", status["lateSamples"])
    lines += _metric("wind_summaries_flushed_total", "counter", "1-minute summaries written", counters["summaries_flushed"])
    lines += _metric("wind_summaries_aggregated_total", "counter", "10-minute and hourly summaries written", counters["summaries_aggregated"])
    lines += _metric("wind_flush_failures_total", "counter", "Bucket writes that failed and were kept for retry", counters["flush_failures"])
    lines += _metric("wind_aggregation_failures_total", "counter", "Interval aggregations that failed and will be retried", counters["aggregation_failures"])
    lines += _metric("wind_retention_deleted_total", "counter", "Summary rows removed by retention", status["retentionDeleted"])
    lines += _metric("websocket_connections_active", "gauge", "Current WebSocket connections", state.ws_manager.connection_count)
    if state.redis is not None:
        lines += _metric(
            "redis_circuit_breaker_state",
            "gauge",
            "Circuit breaker state (0=closed, 1=open, 2=half_open)",
            CIRCUIT_STATES.get(state.redis.circuit_state, 0),
        )
    lines += _metric("api_uptime_seconds", "gauge", "Seconds since API start", f"{time.time() - state.start_time:.1f}")
    return PlainTextResponse("\n".join(lines), media_type="text/plain; version=0.0.4")
