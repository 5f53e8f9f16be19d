"""Per-series configuration: defaults, coercion and persistence."""
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ConfigurationError
from .storage import PersistenceGateway, config_key

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Real-time trend"
DEFAULT_REFRESH_INTERVAL_MS = 60_000
DEFAULT_RETENTION_DAYS = 7.0
DEFAULT_DISPLAY_WINDOW_DAYS = 1.0
DEFAULT_MAX_POINTS = 1000


class ChartType(str, Enum):
    LINE = "line"
    AREA = "area"
    COLUMN = "column"
    INDICATOR = "indicator"


@dataclass(slots=True)
class SeriesConfig:
    series_id: str
    title: str = DEFAULT_TITLE
    query_name: str = ""
    refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS
    retention_days: float = DEFAULT_RETENTION_DAYS
    display_window_days: float = DEFAULT_DISPLAY_WINDOW_DAYS
    max_points: int = DEFAULT_MAX_POINTS
    chart_type: ChartType = ChartType.LINE
    unit: str = ""
    db_name: str = ""
    table_name: str = ""
    data_field: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "seriesId": self.series_id,
            "title": self.title,
            "queryName": self.query_name,
            "refreshIntervalMs": int(self.refresh_interval_ms),
            "retentionDays": float(self.retention_days),
            "displayWindowDays": float(self.display_window_days),
            "maxPoints": int(self.max_points),
            "chartType": self.chart_type.value,
            "unit": self.unit,
            "dbName": self.db_name,
            "tableName": self.table_name,
            "dataField": self.data_field,
        }

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["chart_type"] = self.chart_type.value
        return payload


# camelCase wire names, plus the names the original widget stored.
_ALIASES: Dict[str, tuple[str, ...]] = {
    "series_id": ("seriesId", "id"),
    "title": ("title",),
    "query_name": ("queryName",),
    "refresh_interval_ms": ("refreshIntervalMs", "refreshInterval"),
    "retention_days": ("retentionDays", "dataSaveTime"),
    "display_window_days": ("displayWindowDays", "timeRange"),
    "max_points": ("maxPoints",),
    "chart_type": ("chartType",),
    "unit": ("unit",),
    "db_name": ("dbName",),
    "table_name": ("tableName",),
    "data_field": ("dataField",),
}

_FIELD_NAMES = {item.name for item in fields(SeriesConfig)}


def canonical_fields(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Map snake_case, camelCase and legacy keys onto the field names."""
    result: Dict[str, Any] = {}
    for name, aliases in _ALIASES.items():
        for candidate in (name, *aliases):
            if raw.get(candidate) is not None:
                result[name] = raw[candidate]
                break
    return result


def _coerce_number(value: Any, cast: Callable[[Any], Any], default: Any, name: str) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        logger.warning("Ignoring boolean value for '%s'", name)
        return default
    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
        if not math.isfinite(number):
            raise ValueError(f"{number} is not finite")
        return int(number) if cast is int else cast(number)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Invalid value %r for '%s'; using default %r", value, name, default)
        return default


def _coerce_chart_type(value: Any) -> ChartType:
    if isinstance(value, ChartType):
        return value
    if value:
        try:
            return ChartType(str(value).lower())
        except ValueError:
            logger.warning("Unknown chart type %r; using line", value)
    return ChartType.LINE


def coerce_config(series_id: str, raw: Optional[Mapping[str, Any]] = None) -> SeriesConfig:
    """Merge ``raw`` over the defaults, coercing numbers stored as strings."""
    values = canonical_fields(raw or {})
    defaults = SeriesConfig(series_id=series_id)
    title = values.get("title")
    data_field = values.get("data_field")
    return SeriesConfig(
        series_id=str(values.get("series_id") or series_id),
        title=str(title) if title else defaults.title,
        query_name=str(values.get("query_name") or ""),
        refresh_interval_ms=_coerce_number(
            values.get("refresh_interval_ms"), int, defaults.refresh_interval_ms, "refresh_interval_ms"
        ),
        retention_days=_coerce_number(
            values.get("retention_days"), float, defaults.retention_days, "retention_days"
        ),
        display_window_days=_coerce_number(
            values.get("display_window_days"), float, defaults.display_window_days, "display_window_days"
        ),
        max_points=_coerce_number(values.get("max_points"), int, defaults.max_points, "max_points"),
        chart_type=_coerce_chart_type(values.get("chart_type")),
        unit=str(values.get("unit") or ""),
        db_name=str(values.get("db_name") or ""),
        table_name=str(values.get("table_name") or ""),
        data_field=str(data_field) if data_field else None,
    )


def validate_config(config: SeriesConfig) -> None:
    if not config.query_name or not config.query_name.strip():
        raise ConfigurationError(f"Series '{config.series_id}' has no bound query")
    for name in ("refresh_interval_ms", "retention_days", "display_window_days", "max_points"):
        if not math.isfinite(getattr(config, name)):
            raise ConfigurationError(f"{name} must be a finite number")
    if config.refresh_interval_ms <= 0:
        raise ConfigurationError("refresh_interval_ms must be greater than zero")
    if config.retention_days <= 0:
        raise ConfigurationError("retention_days must be greater than zero")
    if config.display_window_days <= 0:
        raise ConfigurationError("display_window_days must be greater than zero")
    if config.max_points <= 0:
        raise ConfigurationError("max_points must be greater than zero")


class ConfigStore:
    """Load and save :class:`SeriesConfig` under ``trend_config_{series_key}``."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    def load(self, series_key: str, overrides: Optional[Mapping[str, Any]] = None) -> SeriesConfig:
        stored = self.gateway.get_json(config_key(series_key))
        if stored is not None and not isinstance(stored, dict):
            logger.warning("Stored config for '%s' is not an object; using defaults", series_key)
            stored = None
        merged = canonical_fields(overrides or {})
        merged.update(canonical_fields(stored or {}))
        return coerce_config(series_key, merged)

    def save(self, series_key: str, config: SeriesConfig) -> None:
        validate_config(config)
        self.gateway.put_json(config_key(series_key), config.to_payload())
        logger.info(
            "Saved config for '%s' (query=%s, interval=%ss, retention=%sd, window=%sd)",
            series_key,
            config.query_name,
            config.refresh_interval_ms / 1000,
            config.retention_days,
            config.display_window_days,
        )

    def update(
        self,
        series_key: str,
        overrides: Optional[Mapping[str, Any]] = None,
        **changes: Any,
    ) -> SeriesConfig:
        """Return the stored config with ``changes`` applied; nothing is saved."""
        unknown = set(changes) - _FIELD_NAMES
        if unknown:
            raise ConfigurationError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        current = self.load(series_key, overrides).as_dict()
        current.update({key: value for key, value in changes.items() if value is not None})
        return coerce_config(series_key, current)

    def delete(self, series_key: str) -> None:
        self.gateway.remove(config_key(series_key))
