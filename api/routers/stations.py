"""Station endpoints: raw wind ingestion, latest live reading and aggregated history."""

from datetime import datetime, timedelta

import redis
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from aggregation.intervals import Level, ensure_utc, utc_now
from aggregation.models import InvalidSampleError
from aggregation.pipeline import WindAggregationPipeline
from api.dependencies import get_pipeline, get_station_cache
from storage.cache import StationCache
from storage.redis_client import CircuitOpenError
from storage.summary_store import StoreUnavailableError

router = APIRouter(prefix="/api/v1/stations")
log = structlog.get_logger(component="stations-api")


class WindReading(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wind_speed: float = Field(alias="windSpeed", description="m/s")
    wind_direction: float = Field(alias="windDirection", description="degrees")
    timestamp: datetime | None = Field(default=None, description="Defaults to receipt time")


@router.post("/{station_id}/wind", status_code=202)
async def submit_wind(
    station_id: str,
    reading: WindReading,
    pipeline: WindAggregationPipeline = Depends(get_pipeline),
    cache: StationCache | None = Depends(get_station_cache),
):
    """Fold one reading into the station's current 1-minute bucket."""
    timestamp = reading.timestamp or utc_now()
    try:
        accepted = pipeline.submit_sample(
            station_id, reading.wind_speed, reading.wind_direction, timestamp
        )
    except InvalidSampleError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if cache is not None:
        # Live fan-out is best-effort and independent of aggregation
        try:
            cache.update_latest(station_id, reading.wind_speed, reading.wind_direction, timestamp)
        except (redis.RedisError, CircuitOpenError) as e:
            log.warning("live_update_failed", station_id=station_id, error=str(e))

    return {"stationId": station_id, "accepted": accepted}


@router.get("/{station_id}/wind/live")
async def get_live_wind(
    station_id: str,
    cache: StationCache | None = Depends(get_station_cache),
):
    """Most recent raw reading for a station."""
    try:
        latest = cache.get_latest(station_id) if cache is not None else None
    except (redis.RedisError, CircuitOpenError) as e:
        raise HTTPException(status_code=503, detail=f"Live cache unavailable: {e}")
    if latest is None:
        raise HTTPException(status_code=404, detail="No live wind data for this station")
    return {"stationId": station_id, **latest}


@router.get("/{station_id}/wind/aggregated")
async def get_aggregated_wind(
    station_id: str,
    interval: Level = Query(default=Level.ONE_MINUTE),
    start: datetime | None = Query(default=None, description="Inclusive, defaults to 24 h ago"),
    end: datetime | None = Query(default=None, description="Exclusive, defaults to now"),
    limit: int = Query(default=100, ge=1, le=1440),
    pipeline: WindAggregationPipeline = Depends(get_pipeline),
):
    """Summaries for one level, oldest first; the newest ``limit`` rows in range."""
    end = ensure_utc(end) if end else utc_now()
    start = ensure_utc(start) if start else end - timedelta(hours=24)
    if start >= end:
        raise HTTPException(status_code=400, detail="start must be before end")
    try:
        rows = pipeline.summaries.query_range(station_id, interval, start, end)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Summary store unavailable: {e}")

    data = [row.as_payload() for row in rows[-limit:]]
    return {
        "stationId": station_id,
        "interval": interval.value,
        "data": data,
        "totalRecords": len(data),
    }


@router.get("/{station_id}/wind/aggregated/latest")
async def get_latest_aggregated_wind(
    station_id: str,
    interval: Level = Query(default=Level.ONE_MINUTE),
    pipeline: WindAggregationPipeline = Depends(get_pipeline),
):
    try:
        latest = pipeline.summaries.latest(station_id, interval)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Summary store unavailable: {e}")
    if latest is None:
        raise HTTPException(status_code=404, detail="No aggregated wind data found for this station")
    return latest.as_payload()
