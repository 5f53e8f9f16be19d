"""Pydantic models for the read API responses."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class SeriesPoint(BaseModel):
    timestamp: int = Field(..., description="Unix timestamp in milliseconds")
    value: Optional[float] = Field(None, description="Numeric value (NaN represented as null)")
    category: str = ""


class SeriesPayload(BaseModel):
    name: str
    unit: str = ""
    chart_type: str = "line"
    data: List[SeriesPoint] = Field(default_factory=list)


class SeriesSummary(BaseModel):
    key: str
    title: str
    query_name: str = ""
    refresh_interval_ms: int
    polling: bool = False
    state: Optional[str] = None
    error: Optional[str] = None


class SeriesListResponse(BaseModel):
    series: List[SeriesSummary] = Field(default_factory=list)


class SeriesResponse(BaseModel):
    key: str
    config: dict = Field(default_factory=dict)
    series: SeriesPayload
    meta: dict = Field(default_factory=dict)


class RefreshResponse(BaseModel):
    key: str
    ok: bool
    skipped: bool = False
    error: Optional[str] = None
    samples: int = 0
