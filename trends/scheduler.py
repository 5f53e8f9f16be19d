"""Timer-driven refresh loop for one open series view."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional

import pandas as pd

from .cache import CacheStore
from .config import ConfigStore, SeriesConfig, validate_config
from .core import CacheRecord, Sample, days, utc_now
from .errors import ConfigurationError, TransientFetchError, TrendError
from .fetcher import RemoteSampleFetcher

logger = logging.getLogger(__name__)

ErrorCallback = Callable[["RefreshScheduler", TrendError], None]
UpdateCallback = Callable[["RefreshScheduler"], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ERROR = "error"
    STOPPED = "stopped"


class RefreshScheduler:
    """Poll one series and keep its cache current.

    At most one fetch is in flight per series: a tick that lands while the
    state is ``fetching`` is skipped rather than queued. Fetch and persistence
    calls run in the loop's executor; merge, prune and cap run on the loop.

    A failed cycle passes through ``error`` and settles back to ``idle``. After
    a configuration error the series also stays blocked: ticks are skipped and
    the timer is not re-armed until a manual refresh or a config change.
    """

    def __init__(
        self,
        series_key: str,
        config_store: ConfigStore,
        cache_store: CacheStore,
        fetcher: RemoteSampleFetcher,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], pd.Timestamp] = utc_now,
        config_debounce_s: float = 0.1,
        on_update: Optional[UpdateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.series_key = series_key
        self.config_store = config_store
        self.cache_store = cache_store
        self.fetcher = fetcher
        self.clock = clock
        self.config_debounce_s = config_debounce_s
        self.on_update = on_update
        self.on_error = on_error
        self._overrides = dict(overrides or {})

        self.config: Optional[SeriesConfig] = None
        self.record = CacheRecord(series_key=series_key)
        self.state = SchedulerState.IDLE
        self.error: Optional[TrendError] = None
        self.loading = False
        self.fetch_count = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._pending_config: Optional[SeriesConfig] = None
        self._inflight: Optional[asyncio.Task] = None
        self._restart: Optional[asyncio.Task] = None
        self._blocked = False
        self._stopping = False

    # lifecycle -----------------------------------------------------------------

    async def hydrate(self) -> None:
        """Load config and stored samples; no fetch, no timer."""
        self._loop = asyncio.get_running_loop()
        self.config = await self._run_blocking(self.config_store.load, self.series_key, self._overrides)
        stored = await self._run_blocking(self.cache_store.load, self.series_key)
        self.record = self.cache_store.merge(stored, self.record.frame)

    async def start(self) -> Optional[TrendError]:
        """Hydrate, run a foreground fetch, then arm the repeating timer."""
        await self.hydrate()
        logger.info(
            "Starting refresh for '%s' every %ss",
            self.series_key,
            self.config.refresh_interval_ms / 1000,
        )
        return await self._begin()

    async def stop(self, *, flush: bool = True) -> None:
        """Cancel timers, wait for any running cycle, then write the final snapshot."""
        if self.state is SchedulerState.STOPPED:
            return
        self._stopping = True
        self._cancel_timer()
        self._cancel_debounce()
        pending = self._pending_config
        self._pending_config = None

        running = [task for task in (self._inflight, self._restart) if task is not None and not task.done()]
        if running:
            await asyncio.wait(running)

        if pending is not None:
            try:
                await self._run_blocking(self.config_store.save, self.series_key, pending)
                self.config = pending
            except TrendError as exc:
                logger.warning("Dropping pending config for '%s': %s", self.series_key, exc)

        if flush and self.config is not None and self._loop is not None:
            try:
                self.record = await self._run_blocking(
                    self.cache_store.flush, self.record, self.config, self.clock()
                )
                logger.info("Flushed %d sample(s) for '%s' on stop", len(self.record), self.series_key)
            except Exception:  # noqa: BLE001 - teardown always completes
                logger.exception("Final flush for '%s' failed", self.series_key)
        self.state = SchedulerState.STOPPED

    # triggers ------------------------------------------------------------------

    def tick(self) -> Optional[asyncio.Task]:
        """Start a background cycle unless one is already running."""
        if self._loop is None or self.config is None:
            raise RuntimeError("Scheduler must be hydrated before ticking")
        if self.state is not SchedulerState.IDLE or self._stopping or self._blocked:
            logger.debug("Skipping tick for '%s' (state=%s)", self.series_key, self.state.value)
            return None
        self.state = SchedulerState.FETCHING
        self._inflight = self._loop.create_task(self._cycle(foreground=False))
        return self._inflight

    async def refresh(self) -> Optional[TrendError]:
        """Manual refresh; resets the periodic cadence. No-op while fetching."""
        if not self._claim():
            logger.info("Manual refresh for '%s' ignored; a fetch is already running", self.series_key)
            return None
        self._cancel_timer()
        self._blocked = False
        self._inflight = self._loop.create_task(self._cycle(foreground=True))
        outcome = await self._inflight
        self._arm_timer()
        return outcome

    def update_config(self, config: SeriesConfig) -> None:
        """Apply an edited config after the debounce delay, then restart polling."""
        if self._loop is None:
            raise RuntimeError("Scheduler must be hydrated before updating config")
        validate_config(config)
        self._cancel_timer()
        self._cancel_debounce()
        self._pending_config = config
        self._debounce = self._loop.call_later(self.config_debounce_s, self._on_debounce)

    # reads ---------------------------------------------------------------------

    def window(self, now: Optional[pd.Timestamp] = None) -> List[Sample]:
        if self.config is None:
            return []
        now = now if now is not None else self.clock()
        return self.cache_store.window(self.record, now, self.config.display_window_days)

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error else None

    # internals -----------------------------------------------------------------

    def _claim(self) -> bool:
        if self._stopping or self._loop is None:
            return False
        if self.state in (SchedulerState.IDLE, SchedulerState.ERROR):
            self.state = SchedulerState.FETCHING
            return True
        return False

    async def _begin(self) -> Optional[TrendError]:
        outcome: Optional[TrendError] = None
        if self._claim():
            self._inflight = self._loop.create_task(self._cycle(foreground=True))
            outcome = await self._inflight
        self._arm_timer()
        return outcome

    async def _cycle(self, *, foreground: bool) -> Optional[TrendError]:
        config = self.config
        self.loading = foreground
        self.fetch_count += 1
        now = self.clock()
        outcome: Optional[TrendError] = None
        try:
            frame = await self._run_blocking(
                self.fetcher.fetch_frame, config, now - days(config.display_window_days), now
            )
            # Retention comes from whatever config is current once the fetch lands.
            self.record = self.cache_store.apply(self.record, frame, self.config, self.clock())
            self.record = await self._run_blocking(self.cache_store.persist, self.record)
        except TrendError as exc:
            outcome = exc
        except Exception as exc:  # noqa: BLE001 - nothing escapes the tick boundary
            logger.exception("Unexpected failure refreshing '%s'", self.series_key)
            outcome = TransientFetchError(str(exc))
        finally:
            self.loading = False
        self._finish(outcome, foreground)
        return outcome

    def _finish(self, outcome: Optional[TrendError], foreground: bool) -> None:
        if outcome is None:
            self.state = SchedulerState.IDLE
            self.error = None
            logger.info("Refreshed '%s': %d cached sample(s)", self.series_key, len(self.record))
            if self.on_update:
                self.on_update(self)
            return

        self.state = SchedulerState.ERROR
        if isinstance(outcome, ConfigurationError):
            logger.error("Refresh for '%s' disabled until reconfigured: %s", self.series_key, outcome)
            self._blocked = True
            self._surface(outcome)
            self.state = SchedulerState.IDLE
            return
        if foreground:
            logger.warning("Refresh for '%s' failed: %s", self.series_key, outcome)
            self._surface(outcome)
        else:
            logger.warning("Background refresh for '%s' failed: %s", self.series_key, outcome)
        self.state = SchedulerState.IDLE

    def _surface(self, error: TrendError) -> None:
        self.error = error
        if self.on_error:
            self.on_error(self, error)

    def _arm_timer(self) -> None:
        self._cancel_timer()
        if self._stopping or self._blocked or self._loop is None or self.config is None:
            return
        self._timer = self._loop.call_later(self.config.refresh_interval_ms / 1000, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.tick()
        self._arm_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    def _on_debounce(self) -> None:
        self._debounce = None
        self._restart = self._loop.create_task(self._apply_pending_config())

    async def _apply_pending_config(self) -> None:
        config = self._pending_config
        self._pending_config = None
        if config is None or self._stopping:
            return
        if self._inflight is not None and not self._inflight.done():
            await asyncio.wait([self._inflight])
        try:
            await self._run_blocking(self.config_store.save, self.series_key, config)
        except TrendError as exc:
            logger.error("Saving config for '%s' failed: %s", self.series_key, exc)
            self._surface(exc)
            self._arm_timer()
            return
        self.config = config
        self._blocked = False
        await self._begin()

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = self._loop or asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))
