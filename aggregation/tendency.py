"""Tendency: three-valued trend of an interval's average speed against the interval before it."""

from aggregation.models import Tendency

DEFAULT_THRESHOLD = 0.5  # m/s


def classify_tendency(
    current_avg: float, previous_avg: float | None, threshold: float = DEFAULT_THRESHOLD
) -> Tendency:
    """
    increasing: current - previous >  +threshold
    decreasing: current - previous <  -threshold
    stable:     otherwise, or when there is no previous interval
    """
    if previous_avg is None:
        return Tendency.STABLE
    delta = current_avg - previous_avg
    if delta > threshold:
        return Tendency.INCREASING
    if delta < -threshold:
        return Tendency.DECREASING
    return Tendency.STABLE
