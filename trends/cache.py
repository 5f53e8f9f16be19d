"""Bounded per-series sample cache: merge, retention, eviction and persistence."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

import pandas as pd

from .config import SeriesConfig
from .core import (
    CacheRecord,
    Sample,
    as_utc_timestamp,
    days,
    empty_frame,
    ensure_frame,
    frame_to_samples,
    samples_to_frame,
    utc_now,
)
from .errors import PersistenceError
from .normalize import frame_to_payload, payload_to_frame
from .storage import PersistenceGateway, data_key

logger = logging.getLogger(__name__)

DEFAULT_REDUCED_PAYLOAD_POINTS = 100

Incoming = Union[Sequence[Sample], pd.DataFrame]


def _as_frame(incoming: Incoming) -> pd.DataFrame:
    if isinstance(incoming, pd.DataFrame):
        return ensure_frame(incoming)
    return samples_to_frame(incoming)


class CacheStore:
    """Operations over :class:`CacheRecord`.

    ``merge``, ``prune``, ``cap`` and ``window`` are pure and return new
    records or sample lists; only ``persist``, ``flush`` and ``delete`` touch
    the gateway.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        reduced_payload_points: int = DEFAULT_REDUCED_PAYLOAD_POINTS,
    ) -> None:
        self.gateway = gateway
        self.reduced_payload_points = reduced_payload_points

    def load(self, series_key: str) -> CacheRecord:
        frame = payload_to_frame(self.gateway.get_json(data_key(series_key)))
        record = self.merge(CacheRecord(series_key=series_key), frame)
        logger.info("Hydrated '%s' with %d stored sample(s)", series_key, len(record))
        return record

    @staticmethod
    def merge(record: CacheRecord, incoming: Incoming) -> CacheRecord:
        """Union by millisecond timestamp; ``incoming`` wins on collisions."""
        new_frame = _as_frame(incoming)
        if new_frame.empty and record.frame.empty:
            return record.with_frame(empty_frame())
        parts = [frame for frame in (record.frame, new_frame) if not frame.empty]
        combined = pd.concat(parts) if len(parts) > 1 else parts[0]
        combined = combined[~combined.index.duplicated(keep="last")]
        return record.with_frame(combined.sort_index(kind="mergesort"))

    @staticmethod
    def prune(record: CacheRecord, now: pd.Timestamp, retention_days: float) -> CacheRecord:
        cutoff = as_utc_timestamp(now) - days(retention_days)
        kept = record.frame.loc[record.frame.index > cutoff]
        return record.with_frame(kept)

    @staticmethod
    def cap(record: CacheRecord, max_points: int) -> CacheRecord:
        if len(record) <= max_points:
            return record
        return record.with_frame(record.newest(max_points))

    @staticmethod
    def window(record: CacheRecord, now: pd.Timestamp, display_window_days: float) -> List[Sample]:
        start = as_utc_timestamp(now) - days(display_window_days)
        return frame_to_samples(record.frame.loc[record.frame.index >= start])

    def apply(
        self,
        record: CacheRecord,
        incoming: Incoming,
        config: SeriesConfig,
        now: Optional[pd.Timestamp] = None,
    ) -> CacheRecord:
        """Merge a completed fetch, then prune and cap with the current config."""
        now = now if now is not None else utc_now()
        merged = self.merge(record, incoming)
        pruned = self.prune(merged, now, config.retention_days)
        capped = self.cap(pruned, config.max_points)
        dropped = len(merged) - len(capped)
        if dropped:
            logger.debug("Dropped %d expired/evicted sample(s) from '%s'", dropped, record.series_key)
        capped.last_fetch_at = now
        return capped

    def persist(self, record: CacheRecord) -> CacheRecord:
        """Write the record; on capacity failure retry once with the newest samples."""
        key = data_key(record.series_key)
        try:
            written = self.gateway.put_json(key, frame_to_payload(record.frame))
        except PersistenceError as exc:
            logger.warning(
                "Persisting %d sample(s) for '%s' failed (%s); retrying with newest %d",
                len(record),
                record.series_key,
                exc,
                self.reduced_payload_points,
            )
        else:
            logger.debug("Persisted %d sample(s) (%d bytes) for '%s'", len(record), written, record.series_key)
            record.last_persist_error = None
            return record

        try:
            self.gateway.put_json(key, frame_to_payload(record.newest(self.reduced_payload_points)))
        except PersistenceError as exc:
            logger.error("Reduced persist for '%s' failed; serving from memory: %s", record.series_key, exc)
            record.last_persist_error = str(exc)
        else:
            record.last_persist_error = None
        return record

    def flush(
        self,
        record: CacheRecord,
        config: SeriesConfig,
        now: Optional[pd.Timestamp] = None,
    ) -> CacheRecord:
        """Final write on teardown: stored snapshot first, in-memory state on top."""
        now = now if now is not None else utc_now()
        stored = self.load(record.series_key)
        merged = self.merge(stored, record.frame)
        merged.last_fetch_at = record.last_fetch_at
        pruned = self.prune(merged, now, config.retention_days)
        final = self.cap(pruned, config.max_points)
        return self.persist(final)

    def delete(self, series_key: str) -> None:
        self.gateway.remove(data_key(series_key))
        logger.info("Removed stored samples for '%s'", series_key)
