"""FastAPI application factory with lifespan management."""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aggregation.pipeline import create_pipeline
from api.routers import aggregation, health, prometheus, stations, websocket
from api.ws_manager import PubSubListener, WebSocketManager
from config import Settings, configure_logging
from storage.cache import StationCache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline on startup; stop its tickers and flush open buckets on shutdown."""
    settings = Settings()
    log = configure_logging("api", settings.log_level, settings.log_format)

    pipeline, redis_client = create_pipeline(settings)
    ws_manager = WebSocketManager(throttle_ms=settings.ws_throttle_ms)

    listener_task = None
    if redis_client is not None:
        listener = PubSubListener(redis_client, ws_manager)
        listener_task = asyncio.create_task(listener.run())

    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.redis = redis_client
    app.state.station_cache = StationCache(redis_client) if redis_client is not None else None
    app.state.ws_manager = ws_manager
    app.state.start_time = time.time()

    if settings.scheduler_enabled:
        pipeline.start()
    log.info("api_started", store=settings.store_backend, scheduler=settings.scheduler_enabled)

    yield

    if listener_task is not None:
        listener_task.cancel()
    pipeline.stop()
    if redis_client is not None:
        redis_client.close()
    log.info("api_stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Wind Aggregation API",
        version="1.0.0",
        description="Wind sample ingestion, 1-minute/10-minute/hourly summaries and live updates",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(stations.router)
    app.include_router(aggregation.router)
    app.include_router(websocket.router)
    app.include_router(prometheus.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = Settings()
    uvicorn.run("api.main:app", host=settings.api_host, port=settings.api_port)
