"""Streaming wind aggregation: 1-minute buckets rolled up into 10-minute and hourly summaries."""

from .intervals import Level, floor_to_interval, next_boundary_delay
from .models import IntervalSummary, InvalidSampleError, Tendency, WindSample

__all__ = [
    "Level",
    "floor_to_interval",
    "next_boundary_delay",
    "IntervalSummary",
    "InvalidSampleError",
    "Tendency",
    "WindSample",
]
