"""Shared pytest configuration and fixtures for the trend cache."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable

import pandas as pd
import pytest

from tests.helpers import NOW, FakeSession

from trends.cache import CacheStore
from trends.config import ConfigStore
from trends.fetcher import RemoteSampleFetcher
from trends.manager import SeriesManager, TrendServices, build_services
from trends.queries import DataSource, QueryCommand, QueryRegistry
from trends.settings import RemoteConfig, SchedulerConfig, Settings
from trends.storage import MemoryKeyValueStore, PersistenceGateway

LOGS_ROOT = Path(__file__).resolve().parents[1] / "logs" / "tests"
SESSION_LOG = LOGS_ROOT / "pytest.session.log"
_MODULE_HANDLERS: Dict[str, logging.Handler] = {}


def _initialise_logging() -> None:
    LOGS_ROOT.mkdir(parents=True, exist_ok=True)
    (LOGS_ROOT / ".gitkeep").touch(exist_ok=True)

    handler = logging.FileHandler(SESSION_LOG, mode="w", encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)


def get_test_logger(module_name: str) -> logging.Logger:
    """Return a logger writing into ``logs/tests/<module>.log``."""
    normalised = module_name.replace("tests.", "")
    logger = logging.getLogger(f"tests.{normalised}")
    logger.setLevel(logging.INFO)
    if normalised not in _MODULE_HANDLERS:
        LOGS_ROOT.mkdir(parents=True, exist_ok=True)
        log_path = LOGS_ROOT / f"{normalised}.log"
        handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        logger.addHandler(handler)
        _MODULE_HANDLERS[normalised] = handler
    return logger


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config: pytest.Config) -> None:  # noqa: D401 - pytest hook
    _initialise_logging()


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Iterable[pytest.TestReport]:
    outcome = yield
    report = outcome.get_result()
    if report.outcome != "failed":
        return
    module = getattr(item, "module", None)
    module_name = getattr(module, "__name__", "tests")
    target = LOGS_ROOT / f"{module_name.split('.')[-1]}.log"
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as handle:
        handle.write("\n=== TEST FAILURE ===\n")
        handle.write(f"nodeid: {item.nodeid}\n")
        handle.write(f"phase: {report.when}\n")
        handle.write(str(report.longrepr))
        handle.write("\n")


@pytest.fixture
def now() -> pd.Timestamp:
    return NOW


@pytest.fixture
def gateway() -> PersistenceGateway:
    return PersistenceGateway(MemoryKeyValueStore())


@pytest.fixture
def plant_source() -> DataSource:
    return DataSource(id="plant-db", name="Plant DB", host="db.local", database="plant", username="reader")


@pytest.fixture
def power_query() -> QueryCommand:
    return QueryCommand(
        id="q1",
        name="power",
        sql="SELECT timestamp, power_kw FROM readings WHERE timestamp BETWEEN ${startDate} AND ${endDate}",
        data_source_id="plant-db",
    )


@pytest.fixture
def registry(gateway: PersistenceGateway, plant_source: DataSource, power_query: QueryCommand) -> QueryRegistry:
    registry = QueryRegistry(gateway)
    registry.seed([plant_source], [power_query])
    return registry


@pytest.fixture
def config_store(gateway: PersistenceGateway) -> ConfigStore:
    return ConfigStore(gateway)


@pytest.fixture
def cache_store(gateway: PersistenceGateway) -> CacheStore:
    return CacheStore(gateway)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def remote_config() -> RemoteConfig:
    return RemoteConfig(base_url="http://trends.test")


@pytest.fixture
def fetcher(registry: QueryRegistry, remote_config: RemoteConfig, fake_session: FakeSession) -> RemoteSampleFetcher:
    return RemoteSampleFetcher(registry, remote_config, session=fake_session)


@pytest.fixture
def settings(plant_source: DataSource, power_query: QueryCommand, remote_config: RemoteConfig) -> Settings:
    return Settings(
        remote=remote_config,
        scheduler=SchedulerConfig(config_debounce_ms=10),
        data_sources=[plant_source],
        queries=[power_query],
    )


@pytest.fixture
def services(settings: Settings, fake_session: FakeSession) -> TrendServices:
    return build_services(settings, store=MemoryKeyValueStore(), session=fake_session)


@pytest.fixture
def manager(services: TrendServices) -> SeriesManager:
    return SeriesManager(services, clock=lambda: NOW)


__all__ = [
    "get_test_logger",
]
