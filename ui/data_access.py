"""Conversions from cache state to API payloads."""

from __future__ import annotations

import math
from typing import List, Sequence

import pandas as pd

from trends.config import SeriesConfig
from trends.core import Sample
from trends.manager import SeriesManager

from .schemas import SeriesPayload, SeriesPoint, SeriesResponse, SeriesSummary


def _to_millis(value) -> int:
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value // 1_000_000)


def build_points(samples: Sequence[Sample]) -> List[SeriesPoint]:
    points: List[SeriesPoint] = []
    for sample in samples:
        value = float(sample.value)
        points.append(
            SeriesPoint(
                timestamp=_to_millis(sample.timestamp),
                value=value if math.isfinite(value) else None,
                category=sample.series_label,
            )
        )
    return points


def build_series_response(key: str, config: SeriesConfig, samples: Sequence[Sample]) -> SeriesResponse:
    payload = SeriesPayload(
        name=config.title,
        unit=config.unit,
        chart_type=config.chart_type.value,
        data=build_points(samples),
    )
    meta = {
        "count": len(samples),
        "display_window_days": config.display_window_days,
        "retention_days": config.retention_days,
    }
    if samples:
        meta["first"] = payload.data[0].timestamp
        meta["last"] = payload.data[-1].timestamp
    return SeriesResponse(key=key, config=config.to_payload(), series=payload, meta=meta)


def list_summaries(manager: SeriesManager) -> List[SeriesSummary]:
    summaries: List[SeriesSummary] = []
    open_keys = set(manager.open_keys)
    for definition in manager.list_series():
        config = manager.load_config(definition.id)
        summary = SeriesSummary(
            key=definition.id,
            title=config.title,
            query_name=config.query_name,
            refresh_interval_ms=config.refresh_interval_ms,
            polling=definition.id in open_keys,
        )
        if summary.polling:
            scheduler = manager.scheduler(definition.id)
            summary.state = scheduler.state.value
            summary.error = scheduler.error_message
        summaries.append(summary)
    return summaries
