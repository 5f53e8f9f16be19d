"""Core data model for cached series samples."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import pandas as pd

SAMPLE_COLUMNS: Sequence[str] = ("value", "category")
INDEX_NAME = "timestamp"


def utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC").floor("ms")


def as_utc_timestamp(value: datetime | pd.Timestamp) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    if ts.tz is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def days(value: float) -> pd.Timedelta:
    return pd.Timedelta(days=float(value))


def empty_frame() -> pd.DataFrame:
    frame = pd.DataFrame(
        {
            "value": pd.Series(dtype=float),
            "category": pd.Series(dtype="object"),
        },
        index=pd.DatetimeIndex([], dtype="datetime64[ns, UTC]", name=INDEX_NAME),
    )
    return frame


def ensure_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Return a copy with a millisecond UTC index, sorted, with the sample columns."""
    if not isinstance(frame.index, pd.DatetimeIndex):
        raise ValueError("Sample frames must be indexed by pandas.DatetimeIndex")
    if frame.empty:
        return empty_frame()

    working = frame.copy()
    idx = working.index
    if idx.tz is None:
        idx = idx.tz_localize("UTC")
    else:
        idx = idx.tz_convert("UTC")
    working.index = idx.floor("ms").as_unit("ns").rename(INDEX_NAME)
    if "category" not in working.columns:
        working["category"] = ""
    working["value"] = working["value"].astype(float)
    working["category"] = working["category"].fillna("").astype(str)
    working = working.sort_index(kind="mergesort")
    return working.loc[:, list(SAMPLE_COLUMNS)]


@dataclass(frozen=True)
class Sample:
    """A single observation; identity for dedup is the millisecond timestamp."""

    timestamp: datetime
    value: float
    series_label: str = ""


def samples_to_frame(samples: Iterable[Sample]) -> pd.DataFrame:
    rows = list(samples)
    if not rows:
        return empty_frame()
    index = pd.DatetimeIndex([as_utc_timestamp(sample.timestamp) for sample in rows], name=INDEX_NAME)
    frame = pd.DataFrame(
        {
            "value": [float(sample.value) for sample in rows],
            "category": [sample.series_label for sample in rows],
        },
        index=index,
    )
    return ensure_frame(frame)


def frame_to_samples(frame: pd.DataFrame) -> List[Sample]:
    return [
        Sample(timestamp=ts.to_pydatetime(), value=float(value), series_label=str(category))
        for ts, value, category in zip(frame.index, frame["value"], frame["category"])
    ]


@dataclass
class CacheRecord:
    """In-memory state of one series: its samples and the outcome of the last cycle."""

    series_key: str
    frame: pd.DataFrame = field(default_factory=empty_frame)
    last_fetch_at: Optional[pd.Timestamp] = None
    last_persist_error: Optional[str] = None

    @property
    def samples(self) -> List[Sample]:
        return frame_to_samples(self.frame)

    def __len__(self) -> int:
        return len(self.frame)

    def with_frame(self, frame: pd.DataFrame) -> "CacheRecord":
        return replace(self, frame=frame)

    def newest(self, count: int) -> pd.DataFrame:
        if count <= 0:
            return self.frame.iloc[0:0]
        return self.frame.iloc[-count:]
