"""Exception hierarchy shared by the trend cache components."""
from __future__ import annotations


class TrendError(RuntimeError):
    """Base class for every failure raised by the trends package."""


class ConfigurationError(TrendError):
    """Raised when a series or the settings file cannot be used as configured."""


class TransientFetchError(TrendError):
    """Raised when the remote query and its fallback both failed."""


class DataShapeError(TrendError):
    """Raised when a response is present but cannot be turned into samples."""


class PersistenceError(TrendError):
    """Raised when the durable store rejects a write."""
