"""Canonical data shapes for the wind aggregation pipeline."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from aggregation.intervals import Level, ensure_utc, utc_now


class InvalidSampleError(ValueError):
    """A raw reading that cannot be folded into a bucket."""


class Tendency(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class WindSample(BaseModel):
    station_id: str = Field(min_length=1)
    speed: float = Field(ge=0, allow_inf_nan=False, description="Wind speed in m/s")
    direction: float = Field(allow_inf_nan=False, description="Degrees, normalized to [0, 360)")
    observed_at: datetime = Field(default_factory=utc_now)

    @field_validator("direction")
    @classmethod
    def _normalize_direction(cls, value: float) -> float:
        if not 0 <= value <= 360:
            raise ValueError(f"direction must be within [0, 360], got {value}")
        return value % 360

    @field_validator("observed_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def partition_key(self) -> str:
        return self.station_id


def build_sample(
    station_id: str,
    speed: float,
    direction: float,
    timestamp: datetime | str | None = None,
) -> WindSample:
    """Validate a raw reading, raising InvalidSampleError with every problem listed."""
    fields: dict[str, Any] = {"station_id": station_id, "speed": speed, "direction": direction}
    if timestamp is not None:
        fields["observed_at"] = timestamp
    try:
        return WindSample(**fields)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidSampleError(f"invalid wind sample for station {station_id!r}: {problems}") from e


@dataclass(frozen=True)
class IntervalSummary:
    station_id: str
    level: Level
    interval_start: datetime
    avg_speed: float
    min_speed: float
    max_speed: float
    dominant_direction: float
    sample_count: int | None = None
    tendency: Tendency | None = None
    gust_speed: float | None = None
    calm_period_count: int | None = None

    def as_payload(self) -> dict:
        payload = {
            "stationId": self.station_id,
            "interval": self.level.value,
            "timestamp": self.interval_start.isoformat(),
            "avgSpeed": round(self.avg_speed, 3),
            "minSpeed": self.min_speed,
            "maxSpeed": self.max_speed,
            "dominantDirection": self.dominant_direction,
        }
        if self.sample_count is not None:
            payload["sampleCount"] = self.sample_count
        if self.tendency is not None:
            payload["tendency"] = self.tendency.value
        if self.gust_speed is not None:
            payload["gustSpeed"] = self.gust_speed
        if self.calm_period_count is not None:
            payload["calmPeriods"] = self.calm_period_count
        return payload


@dataclass(frozen=True)
class RetentionPolicy:
    data_type: str
    retention_days: int
    active: bool = True


def channel_for(level: Level, station_id: str) -> str:
    return f"wind/aggregated/{level.value}/{station_id}"


def live_channel_for(station_id: str) -> str:
    return f"wind/live/{station_id}"
