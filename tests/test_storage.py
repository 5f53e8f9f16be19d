"""Tests for the key/value stores and the JSON gateway."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.conftest import get_test_logger

from trends.errors import PersistenceError
from trends.storage import (
    MemoryKeyValueStore,
    PersistenceGateway,
    SQLiteKeyValueStore,
    config_key,
    data_key,
    identity_key,
)

logger = get_test_logger(__name__)
logger.info("Starting tests for storage module")


def test_key_namespaces() -> None:
    assert data_key("abc") == "trend_data_abc"
    assert config_key("abc") == "trend_config_abc"
    assert identity_key("Main feeder") == "trend_component_id_Main feeder"


def test_memory_store_quota() -> None:
    logger.info("Running memory store quota test")
    store = MemoryKeyValueStore(quota_bytes=40)
    store.put("a", "x" * 20)
    with pytest.raises(PersistenceError):
        store.put("b", "y" * 30)
    # replacing an existing key only counts its new size
    store.put("a", "z" * 30)
    assert store.get("a") == "z" * 30
    assert store.keys() == ["a"]


def test_sqlite_store_roundtrip(tmp_path: Path) -> None:
    logger.info("Running sqlite store round-trip test")
    path = tmp_path / "cache" / "trends.sqlite"
    store = SQLiteKeyValueStore(path)
    store.put("trend_data_a", "[]")
    store.put("trend_data_b", "[1]")
    store.put("trend_config_a", "{}")

    reopened = SQLiteKeyValueStore(path)
    assert reopened.get("trend_data_b") == "[1]"
    assert reopened.keys("trend_data_") == ["trend_data_a", "trend_data_b"]

    reopened.remove("trend_data_a")
    reopened.remove("missing")
    assert reopened.get("trend_data_a") is None


def test_sqlite_store_quota(tmp_path: Path) -> None:
    store = SQLiteKeyValueStore(tmp_path / "quota.sqlite", quota_bytes=50)
    store.put("k1", "v" * 20)
    with pytest.raises(PersistenceError):
        store.put("k2", "w" * 40)
    assert store.get("k2") is None


def test_gateway_json_handling() -> None:
    logger.info("Running gateway JSON test")
    store = MemoryKeyValueStore()
    gateway = PersistenceGateway(store)

    written = gateway.put_json("doc", {"a": 1, "b": [1, 2]})
    assert written == len('{"a":1,"b":[1,2]}')
    assert gateway.get_json("doc") == {"a": 1, "b": [1, 2]}
    assert gateway.get_json("absent") is None

    store.put("broken", "{not json")
    assert gateway.get_json("broken") is None
