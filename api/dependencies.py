"""FastAPI dependency injection."""

from fastapi import Request

from aggregation.pipeline import WindAggregationPipeline
from storage.cache import StationCache
from storage.redis_client import RedisClient


def get_pipeline(request: Request) -> WindAggregationPipeline:
    return request.app.state.pipeline


def get_redis(request: Request) -> RedisClient | None:
    return request.app.state.redis


def get_station_cache(request: Request) -> StationCache | None:
    return request.app.state.station_cache
