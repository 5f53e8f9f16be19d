"""Normalization helpers between remote rows, stored payloads and sample frames."""
from __future__ import annotations

import logging
import math
from numbers import Number
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .core import INDEX_NAME, as_utc_timestamp, empty_frame, ensure_frame, utc_now
from .errors import DataShapeError

logger = logging.getLogger(__name__)

TIME_FIELD_CANDIDATES: Sequence[str] = ("time", "timestamp", "datetime", "date")
DEFAULT_TIME_FIELD = "time"
RESPONSE_LIST_KEYS: Sequence[str] = ("data", "results")


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Parse ISO strings, datetimes or epoch milliseconds; ``None`` when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Number):
            if isinstance(value, float) and not math.isfinite(value):
                return None
            ts = pd.Timestamp(int(value), unit="ms", tz="UTC")
        else:
            ts = pd.Timestamp(value)
    except (TypeError, ValueError, OverflowError):
        if isinstance(value, str) and "T" in value:
            return parse_timestamp(value.replace("T", " "))
        return None
    if pd.isna(ts):
        return None
    return as_utc_timestamp(ts).floor("ms")


def safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def format_timestamp(ts: pd.Timestamp) -> str:
    return as_utc_timestamp(ts).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def extract_rows(payload: Any) -> List[Mapping[str, Any]]:
    """Return the row list from a bare array or an object wrapping ``data``/``results``."""
    rows: Any = None
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        for key in RESPONSE_LIST_KEYS:
            if isinstance(payload.get(key), list):
                rows = payload[key]
                break
    if rows is None:
        raise DataShapeError(f"Expected an array of rows, got {type(payload).__name__}")
    return [row for row in rows if isinstance(row, Mapping)]


def detect_time_field(row: Mapping[str, Any]) -> str:
    for key in row.keys():
        if str(key).lower() in TIME_FIELD_CANDIDATES:
            return str(key)
    return DEFAULT_TIME_FIELD


def detect_value_field(row: Mapping[str, Any], time_field: str, preferred: Optional[str] = None) -> str:
    if preferred and preferred in row and safe_float(row[preferred]) is not None:
        return preferred
    for key, value in row.items():
        if key == time_field:
            continue
        if safe_float(value) is not None:
            return str(key)
    raise DataShapeError("No numeric field found in the response rows")


def rows_to_frame(
    rows: Sequence[Mapping[str, Any]],
    *,
    label: str,
    preferred_field: Optional[str] = None,
    now: Optional[pd.Timestamp] = None,
) -> pd.DataFrame:
    """Turn remote rows into a sample frame.

    Rows whose timestamp cannot be parsed are stamped with ``now`` and kept;
    values that cannot be parsed become ``0.0``.
    """
    if not rows:
        return empty_frame()
    first = rows[0]
    time_field = detect_time_field(first)
    value_field = detect_value_field(first, time_field, preferred_field)
    logger.debug("Using time field '%s' and value field '%s'", time_field, value_field)

    fallback = now if now is not None else utc_now()
    stamps: List[pd.Timestamp] = []
    values: List[float] = []
    substituted = 0
    for row in rows:
        ts = parse_timestamp(row.get(time_field))
        if ts is None:
            ts = fallback
            substituted += 1
        value = safe_float(row.get(value_field))
        stamps.append(ts)
        values.append(0.0 if value is None else value)
    if substituted:
        logger.warning("%d row(s) had an unparseable '%s'; stamped with the current time", substituted, time_field)

    frame = pd.DataFrame(
        {"value": values, "category": [label] * len(values)},
        index=pd.DatetimeIndex(stamps, name=INDEX_NAME),
    )
    return ensure_frame(frame)


def frame_to_payload(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    return [
        {"timestamp": format_timestamp(ts), "value": float(value), "category": str(category)}
        for ts, value, category in zip(frame.index, frame["value"], frame["category"])
    ]


def payload_to_frame(payload: Any, *, label: str = "") -> pd.DataFrame:
    """Parse a stored sample array, skipping malformed entries."""
    if not isinstance(payload, list):
        if payload is not None:
            logger.warning("Stored samples are not an array (%s); ignoring", type(payload).__name__)
        return empty_frame()

    stamps: List[pd.Timestamp] = []
    values: List[float] = []
    categories: List[str] = []
    skipped = 0
    for item in payload:
        if not isinstance(item, Mapping):
            skipped += 1
            continue
        ts = parse_timestamp(item.get("timestamp", item.get("time")))
        value = safe_float(item.get("value"))
        if ts is None or value is None:
            skipped += 1
            continue
        stamps.append(ts)
        values.append(value)
        categories.append(str(item.get("category") or label))
    if skipped:
        logger.warning("Skipped %d malformed stored sample(s)", skipped)
    if not stamps:
        return empty_frame()
    frame = pd.DataFrame(
        {"value": values, "category": categories},
        index=pd.DatetimeIndex(stamps, name=INDEX_NAME),
    )
    return ensure_frame(frame)
