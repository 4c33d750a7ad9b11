"""Health and readiness check endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from aggregation.pipeline import WindAggregationPipeline
from api.dependencies import get_pipeline, get_redis
from storage.redis_client import RedisClient

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness probe — returns 200 if the process is alive."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    redis: RedisClient | None = Depends(get_redis),
    pipeline: WindAggregationPipeline = Depends(get_pipeline),
):
    """Readiness probe — checks Redis connectivity when the Redis store is in use."""
    if redis is None:
        return {"status": "ready", "store": "memory", "scheduler": pipeline.status()["running"]}
    if not redis.ping():
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "redis": "unreachable"},
        )
    return {
        "status": "ready",
        "redis": "connected",
        "circuit_breaker": redis.circuit_state,
        "scheduler": pipeline.status()["running"],
    }
