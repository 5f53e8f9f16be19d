"""Tests for merge, retention, eviction, windowing and persistence of the cache."""

from __future__ import annotations

import json
from datetime import timedelta

import pandas as pd

from tests.conftest import get_test_logger
from tests.helpers import NOW, build_frame

from trends.cache import CacheStore
from trends.config import SeriesConfig
from trends.core import CacheRecord, Sample
from trends.normalize import frame_to_payload
from trends.storage import MemoryKeyValueStore, PersistenceGateway, data_key

logger = get_test_logger(__name__)
logger.info("Starting tests for cache module")


def _sample(offset_minutes: float, value: float) -> Sample:
    return Sample(timestamp=(NOW + pd.Timedelta(minutes=offset_minutes)).to_pydatetime(), value=value)


def _config(**overrides) -> SeriesConfig:
    values = {"series_id": "feeder", "query_name": "power"}
    values.update(overrides)
    return SeriesConfig(**values)


def _assert_sorted_unique(record: CacheRecord) -> None:
    assert record.frame.index.is_monotonic_increasing
    assert record.frame.index.is_unique


def test_merge_overwrites_on_timestamp_collision() -> None:
    logger.info("Running merge overwrite test")
    record = CacheStore.merge(CacheRecord("feeder"), [_sample(0, 1.0), _sample(1, 2.0)])
    merged = CacheStore.merge(record, [_sample(1, 5.0), _sample(2, 3.0)])

    assert [sample.value for sample in merged.samples] == [1.0, 5.0, 3.0]
    _assert_sorted_unique(merged)


def test_merge_is_idempotent_and_order_independent() -> None:
    batch = [_sample(3, 3.0), _sample(-1, -1.0), _sample(3, 4.0), _sample(0, 0.0)]
    once = CacheStore.merge(CacheRecord("feeder"), batch)
    twice = CacheStore.merge(once, batch)
    pd.testing.assert_frame_equal(once.frame, twice.frame)
    _assert_sorted_unique(once)
    # within a batch the later duplicate wins
    assert once.frame["value"].iloc[-1] == 4.0


def test_merge_dedups_at_millisecond_precision() -> None:
    base = NOW.to_pydatetime()
    record = CacheStore.merge(
        CacheRecord("feeder"),
        [Sample(base, 1.0), Sample(base + timedelta(microseconds=400), 2.0)],
    )
    assert len(record) == 1
    assert record.samples[0].value == 2.0


def test_cap_keeps_newest() -> None:
    record = CacheStore.merge(CacheRecord("feeder"), [_sample(0, 0.0), _sample(1, 1.0), _sample(2, 2.0)])
    capped = CacheStore.cap(record, 2)
    assert [sample.value for sample in capped.samples] == [1.0, 2.0]


def test_prune_honours_retention() -> None:
    logger.info("Running retention prune test")
    record = CacheStore.merge(
        CacheRecord("feeder"),
        [_sample(-25 * 60, 1.0), _sample(-23 * 60, 2.0), _sample(0, 3.0)],
    )
    pruned = CacheStore.prune(record, NOW, retention_days=1)
    assert [sample.value for sample in pruned.samples] == [2.0, 3.0]


def test_window_is_non_destructive() -> None:
    record = CacheStore.merge(CacheRecord("feeder"), [_sample(-180, 1.0), _sample(-30, 2.0), _sample(0, 3.0)])
    window = CacheStore.window(record, NOW, display_window_days=1 / 24)
    assert [sample.value for sample in window] == [2.0, 3.0]
    assert len(record) == 3


def test_apply_scenario_eviction(cache_store) -> None:
    logger.info("Running eviction scenario test")
    existing = CacheStore.merge(CacheRecord("feeder"), build_frame(end=NOW - pd.Timedelta(minutes=300), periods=900))
    incoming = build_frame(end=NOW, periods=300, start_value=10_000)

    result = cache_store.apply(existing, incoming, _config(retention_days=7, max_points=1000), NOW)

    assert len(result) == 1000
    assert result.frame.index[-1] == NOW
    assert result.frame["value"].iloc[-1] == 10_299.0
    assert result.last_fetch_at == NOW
    _assert_sorted_unique(result)


def test_apply_uses_current_retention(cache_store) -> None:
    record = CacheStore.merge(CacheRecord("feeder"), [_sample(-3 * 24 * 60, 1.0)])
    kept = cache_store.apply(record, [_sample(0, 2.0)], _config(retention_days=7), NOW)
    assert len(kept) == 2
    shrunk = cache_store.apply(kept, [], _config(retention_days=1), NOW)
    assert [sample.value for sample in shrunk.samples] == [2.0]


def test_persist_and_load_roundtrip(cache_store, gateway) -> None:
    logger.info("Running persist/load round-trip test")
    stamp = (NOW + pd.Timedelta(milliseconds=123)).to_pydatetime()
    record = CacheStore.merge(CacheRecord("feeder"), [Sample(stamp, 1.25, "Feeder")])
    cache_store.persist(record)

    stored = gateway.get_json(data_key("feeder"))
    assert stored == [{"timestamp": "2024-05-01T12:00:00.123Z", "value": 1.25, "category": "Feeder"}]

    loaded = cache_store.load("feeder")
    pd.testing.assert_frame_equal(loaded.frame, record.frame)


def test_load_accepts_legacy_time_field(cache_store, gateway) -> None:
    gateway.put_json(
        data_key("feeder"),
        [
            {"time": "2024-05-01T11:59:00.000Z", "value": 2, "category": ""},
            {"time": "2024-05-01T11:58:00.000Z", "value": 1, "category": ""},
            {"time": "2024-05-01T11:58:00.000Z", "value": 3, "category": ""},
        ],
    )
    record = cache_store.load("feeder")
    assert [sample.value for sample in record.samples] == [3.0, 2.0]


def test_persist_retries_with_reduced_payload() -> None:
    logger.info("Running reduced payload retry test")
    frame = build_frame(periods=200)
    full_size = len(json.dumps(frame_to_payload(frame)))
    store = MemoryKeyValueStore(quota_bytes=full_size // 2)
    gateway = PersistenceGateway(store)
    cache_store = CacheStore(gateway, reduced_payload_points=50)
    record = CacheStore.merge(CacheRecord("feeder"), frame)

    result = cache_store.persist(record)

    assert result.last_persist_error is None
    assert len(result) == 200
    stored = gateway.get_json(data_key("feeder"))
    assert len(stored) == 50
    assert stored[-1]["value"] == 199.0


def test_persist_failure_keeps_memory() -> None:
    gateway = PersistenceGateway(MemoryKeyValueStore(quota_bytes=10))
    cache_store = CacheStore(gateway, reduced_payload_points=5)
    record = CacheStore.merge(CacheRecord("feeder"), build_frame(periods=20))

    result = cache_store.persist(record)

    assert result.last_persist_error
    assert len(result) == 20
    assert gateway.get_json(data_key("feeder")) is None


def test_flush_merges_memory_over_stored(cache_store, gateway) -> None:
    gateway.put_json(
        data_key("feeder"),
        [
            {"timestamp": "2024-05-01T11:00:00.000Z", "value": 1.0, "category": ""},
            {"timestamp": "2024-05-01T11:30:00.000Z", "value": 2.0, "category": ""},
        ],
    )
    memory = CacheStore.merge(CacheRecord("feeder"), [_sample(-30, 20.0), _sample(0, 30.0)])

    flushed = cache_store.flush(memory, _config(), NOW)

    assert [sample.value for sample in flushed.samples] == [1.0, 20.0, 30.0]
    assert len(gateway.get_json(data_key("feeder"))) == 3
