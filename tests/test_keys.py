"""Tests for series key resolution."""

from __future__ import annotations

from tests.conftest import get_test_logger

from trends.keys import SeriesKeyResolver, SourceAttributes, normalize_component
from trends.storage import identity_key

logger = get_test_logger(__name__)
logger.info("Starting tests for keys module")


def test_normalize_component() -> None:
    assert normalize_component("Main   Feeder") == "main_feeder"
    assert normalize_component("Plant DB") == "plant_db"
    assert normalize_component(None) == ""


def test_explicit_id_wins(gateway) -> None:
    resolver = SeriesKeyResolver(gateway)
    assert resolver.resolve("explicit-1", "Anything") == "explicit-1"
    assert gateway.get_text(identity_key("Anything")) is None


def test_generated_key_is_persisted(gateway) -> None:
    logger.info("Running generated key test")
    resolver = SeriesKeyResolver(gateway)
    source = SourceAttributes(db_name="Plant", table_name="Readings", field_name="power_kw")
    key = resolver.resolve(None, "Main Feeder", source)
    assert key == "main_feeder_plant_readings_power_kw"

    # a restarted resolver with different attributes still finds the stored key
    again = SeriesKeyResolver(gateway).resolve(None, "Main Feeder", SourceAttributes(db_name="other"))
    assert again == key


def test_title_only_key_keeps_trailing_separator(gateway) -> None:
    resolver = SeriesKeyResolver(gateway)
    assert resolver.resolve(None, "Main feeder", SourceAttributes()) == "main_feeder_"


def test_underscores_collapse_across_parts(gateway) -> None:
    resolver = SeriesKeyResolver(gateway)
    source = SourceAttributes(db_name="plant", table_name="", field_name="power_kw")
    assert resolver.resolve(None, "a_", source) == "a_plant_power_kw"


def test_empty_title_and_forget(gateway) -> None:
    resolver = SeriesKeyResolver(gateway)
    assert resolver.resolve(None, "") == "trend_"
    resolver.forget("")
    assert gateway.get_text(identity_key("")) is None
