"""Per-series time-series cache with periodic remote refresh."""

from .cache import CacheStore
from .config import ChartType, ConfigStore, SeriesConfig
from .core import CacheRecord, Sample
from .errors import (
    ConfigurationError,
    DataShapeError,
    PersistenceError,
    TransientFetchError,
    TrendError,
)
from .fetcher import RemoteSampleFetcher
from .keys import SeriesKeyResolver
from .scheduler import RefreshScheduler, SchedulerState
from .storage import MemoryKeyValueStore, PersistenceGateway, SQLiteKeyValueStore

__all__ = [
    "CacheRecord",
    "CacheStore",
    "ChartType",
    "ConfigStore",
    "ConfigurationError",
    "DataShapeError",
    "MemoryKeyValueStore",
    "PersistenceError",
    "PersistenceGateway",
    "RefreshScheduler",
    "RemoteSampleFetcher",
    "SQLiteKeyValueStore",
    "Sample",
    "SchedulerState",
    "SeriesConfig",
    "SeriesKeyResolver",
    "TransientFetchError",
    "TrendError",
]
