"""Latest raw reading per station, replayed to dashboards that connect between samples."""

import json
from datetime import datetime

from aggregation.models import live_channel_for
from storage.redis_client import RedisClient


class StationCache:
    """Redis hash of the newest reading per station plus a live broadcast of each reading."""

    LATEST_WIND_KEY = "station:wind:latest"

    def __init__(self, client: RedisClient):
        self._client = client

    def update_latest(self, station_id: str, speed: float, direction: float, observed_at: datetime):
        data = json.dumps({
            "windSpeed": speed,
            "windDirection": direction,
            "timestamp": observed_at.isoformat(),
        })

        def _op(r):
            pipe = r.pipeline()
            pipe.hset(self.LATEST_WIND_KEY, station_id, data)
            pipe.publish(live_channel_for(station_id), data)
            pipe.execute()
        self._client.execute_with_retry(_op, max_retries=1)

    def get_latest(self, station_id: str) -> dict | None:
        def _op(r):
            raw = r.hget(self.LATEST_WIND_KEY, station_id)
            return json.loads(raw) if raw else None
        return self._client.execute_with_retry(_op)
