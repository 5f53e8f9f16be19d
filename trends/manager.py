"""Wiring and lifecycle for every configured series."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
import requests

from .cache import CacheStore
from .config import ConfigStore, SeriesConfig
from .core import Sample, utc_now
from .errors import ConfigurationError, TrendError
from .fetcher import RemoteSampleFetcher
from .keys import SeriesKeyResolver, SourceAttributes
from .queries import QueryRegistry
from .scheduler import RefreshScheduler, SchedulerState
from .settings import SeriesDefinition, Settings
from .storage import SERIES_KEY, KeyValueStore, PersistenceGateway, SQLiteKeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class TrendServices:
    settings: Settings
    gateway: PersistenceGateway
    registry: QueryRegistry
    resolver: SeriesKeyResolver
    config_store: ConfigStore
    cache_store: CacheStore
    fetcher: RemoteSampleFetcher


def build_services(
    settings: Settings,
    *,
    store: Optional[KeyValueStore] = None,
    session: Optional[requests.Session] = None,
) -> TrendServices:
    """Assemble the storage, catalog and fetch layers described by ``settings``."""
    if store is None:
        store = SQLiteKeyValueStore(settings.storage.path, quota_bytes=settings.storage.quota_bytes)
    gateway = PersistenceGateway(store)
    registry = QueryRegistry(gateway)
    if settings.data_sources or settings.queries:
        registry.seed(settings.data_sources, settings.queries)
    return TrendServices(
        settings=settings,
        gateway=gateway,
        registry=registry,
        resolver=SeriesKeyResolver(gateway),
        config_store=ConfigStore(gateway),
        cache_store=CacheStore(
            gateway, reduced_payload_points=settings.scheduler.reduced_payload_points
        ),
        fetcher=RemoteSampleFetcher(registry, settings.remote, session=session),
    )


def definition_overrides(definition: SeriesDefinition) -> Dict[str, Any]:
    """Config values implied by a series definition; stored config wins over these."""
    overrides: Dict[str, Any] = {
        "title": definition.title,
        "query_name": definition.query_name or None,
        "db_name": definition.db_name or None,
        "table_name": definition.table_name or None,
        "data_field": definition.data_field,
        "refresh_interval_ms": definition.refresh_interval_ms,
    }
    return {key: value for key, value in overrides.items() if value is not None}


class SeriesManager:
    """Registry of series plus one :class:`RefreshScheduler` per open series."""

    def __init__(
        self,
        services: TrendServices,
        *,
        clock: Callable[[], pd.Timestamp] = utc_now,
    ) -> None:
        self.services = services
        self.clock = clock
        self._schedulers: Dict[str, RefreshScheduler] = {}

    # registry ------------------------------------------------------------------

    def list_series(self) -> List[SeriesDefinition]:
        raw = self.services.gateway.get_json(SERIES_KEY) or []
        definitions: List[SeriesDefinition] = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                definitions.append(SeriesDefinition.from_dict(entry))
            except (ConfigurationError, AttributeError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid series entry %r: %s", entry, exc)
        return definitions

    def _write_series(self, definitions: List[SeriesDefinition]) -> None:
        self.services.gateway.put_json(SERIES_KEY, [item.to_payload() for item in definitions])

    def series_key(self, definition: SeriesDefinition) -> str:
        source = SourceAttributes(
            db_name=definition.db_name,
            table_name=definition.table_name,
            field_name=definition.data_field or "",
        )
        return self.services.resolver.resolve(definition.id, definition.title, source)

    def add_series(self, definition: SeriesDefinition) -> str:
        """Register ``definition`` and return its key; re-adding a key replaces it."""
        key = self.series_key(definition)
        stored = replace(definition, id=key)
        definitions = [item for item in self.list_series() if item.id != key]
        definitions.append(stored)
        self._write_series(definitions)

        config = self.services.config_store.load(key, definition_overrides(stored))
        if config.query_name:
            self.services.config_store.save(key, config)
        logger.info("Registered series '%s' (%s)", key, definition.title)
        return key

    def seed(self) -> List[str]:
        """Add the series from settings that are not registered yet."""
        existing = {item.id for item in self.list_series()}
        added: List[str] = []
        for definition in self.services.settings.series:
            key = self.series_key(definition)
            if key not in existing:
                added.append(self.add_series(definition))
        return added

    def find(self, series_key: str) -> SeriesDefinition:
        for definition in self.list_series():
            if definition.id == series_key:
                return definition
        raise ConfigurationError(f"Unknown series '{series_key}'")

    def load_config(self, series_key: str) -> SeriesConfig:
        return self.services.config_store.load(series_key, definition_overrides(self.find(series_key)))

    def configure(self, series_key: str, **changes: Any) -> SeriesConfig:
        """Persist config changes; an open scheduler picks them up after its debounce."""
        definition = self.find(series_key)
        config = self.services.config_store.update(
            series_key, definition_overrides(definition), **changes
        )
        scheduler = self._schedulers.get(series_key)
        if scheduler is not None and scheduler.config is not None:
            scheduler.update_config(config)
        else:
            self.services.config_store.save(series_key, config)
        return config

    def snapshot(
        self,
        series_key: str,
        now: Optional[pd.Timestamp] = None,
    ) -> Tuple[SeriesConfig, List[Sample]]:
        """Config plus display window, from the open scheduler or from storage."""
        scheduler = self._schedulers.get(series_key)
        if scheduler is not None and scheduler.config is not None:
            return scheduler.config, scheduler.window(now)
        config = self.load_config(series_key)
        record = self.services.cache_store.load(series_key)
        now = now if now is not None else self.clock()
        return config, self.services.cache_store.window(record, now, config.display_window_days)

    # schedulers ----------------------------------------------------------------

    def scheduler(self, series_key: str) -> RefreshScheduler:
        scheduler = self._schedulers.get(series_key)
        if scheduler is None:
            definition = self.find(series_key)
            scheduler = RefreshScheduler(
                series_key,
                self.services.config_store,
                self.services.cache_store,
                self.services.fetcher,
                overrides=definition_overrides(definition),
                clock=self.clock,
                config_debounce_s=self.services.settings.scheduler.config_debounce_ms / 1000,
            )
            self._schedulers[series_key] = scheduler
        return scheduler

    @property
    def open_keys(self) -> List[str]:
        return sorted(self._schedulers)

    async def open(self, series_key: str) -> RefreshScheduler:
        scheduler = self.scheduler(series_key)
        if scheduler.config is None:
            await scheduler.start()
        return scheduler

    async def open_all(self) -> List[RefreshScheduler]:
        keys = [definition.id for definition in self.list_series() if definition.id]
        return list(await asyncio.gather(*(self.open(key) for key in keys)))

    async def close(self, series_key: str, *, flush: bool = True) -> None:
        scheduler = self._schedulers.pop(series_key, None)
        if scheduler is not None:
            await scheduler.stop(flush=flush)

    async def close_all(self) -> None:
        await asyncio.gather(*(self.close(key) for key in list(self._schedulers)))

    async def remove_series(self, series_key: str) -> None:
        """Stop polling and delete every stored trace of the series."""
        definition = self.find(series_key)
        await self.close(series_key, flush=False)
        self.services.cache_store.delete(series_key)
        self.services.config_store.delete(series_key)
        self.services.resolver.forget(definition.title)
        self._write_series([item for item in self.list_series() if item.id != series_key])
        logger.info("Removed series '%s'", series_key)

    def is_fetching(self, series_key: str) -> bool:
        scheduler = self._schedulers.get(series_key)
        return scheduler is not None and scheduler.state is SchedulerState.FETCHING

    async def refresh(self, series_key: str) -> Optional[TrendError]:
        """Manual refresh through the open scheduler, or a one-shot cycle if closed."""
        scheduler = self._schedulers.get(series_key)
        if scheduler is not None and scheduler.config is not None:
            return await scheduler.refresh()
        scheduler = self.scheduler(series_key)
        try:
            await scheduler.hydrate()
            return await scheduler.refresh()
        finally:
            await self.close(series_key)
