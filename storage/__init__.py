from .redis_client import RedisClient
from .summary_store import (
    MemorySummaryStore,
    RedisSummaryStore,
    StoreUnavailableError,
    SummaryStore,
)
from .publisher import NullPublisher, SummaryPublisher
from .retention_policies import RetentionPolicyRepository, default_policies
from .cache import StationCache

__all__ = [
    "RedisClient",
    "MemorySummaryStore",
    "RedisSummaryStore",
    "StoreUnavailableError",
    "SummaryStore",
    "NullPublisher",
    "SummaryPublisher",
    "RetentionPolicyRepository",
    "default_policies",
    "StationCache",
]
