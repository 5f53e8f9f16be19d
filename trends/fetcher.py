"""Remote sample fetching: named query first, direct simplified call as fallback."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

from .config import SeriesConfig
from .core import Sample, frame_to_samples
from .errors import TransientFetchError
from .normalize import extract_rows, rows_to_frame
from .queries import QueryRegistry, render_sql
from .settings import RemoteConfig

logger = logging.getLogger(__name__)

_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class RemoteCallError(RuntimeError):
    """Transport, HTTP or remote-execution failure of a single call."""


class RemoteSampleFetcher:
    def __init__(
        self,
        registry: QueryRegistry,
        remote: RemoteConfig,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.registry = registry
        self.remote = remote
        self.session = session or requests.Session()

    def fetch(self, config: SeriesConfig, start: datetime, end: datetime) -> List[Sample]:
        return frame_to_samples(self.fetch_frame(config, start, end))

    def fetch_frame(
        self,
        config: SeriesConfig,
        start: datetime,
        end: datetime,
        *,
        now: Optional[pd.Timestamp] = None,
    ) -> pd.DataFrame:
        """Fetch and normalize samples for ``config`` between ``start`` and ``end``.

        Raises :class:`ConfigurationError` before any network call when the
        query cannot be resolved, :class:`TransientFetchError` when both the
        named query and the fallback fail, and :class:`DataShapeError` when the
        response cannot be normalized.
        """
        command, source = self.registry.resolve(config.query_name)
        sql = render_sql(command.sql, start, end)
        logger.info("Fetching '%s' with query '%s' from %s", config.title, command.name, source.name)
        try:
            payload = self._execute_named_query(source.descriptor(), sql)
        except RemoteCallError as exc:
            logger.warning("Named query '%s' failed (%s); trying direct call", command.name, exc)
            try:
                payload = self._execute_fallback(config)
            except RemoteCallError as fallback_exc:
                raise TransientFetchError(
                    f"Query '{command.name}' and fallback both failed: {fallback_exc}"
                ) from fallback_exc
        rows = extract_rows(payload)
        logger.info("Received %d row(s) for '%s'", len(rows), config.title)
        return rows_to_frame(rows, label=config.title, preferred_field=config.data_field, now=now)

    def _execute_named_query(self, descriptor: Dict[str, Any], sql: str) -> Any:
        body = {"dataSource": descriptor, "sql": sql, "parameters": {}}
        return self._post(self.remote.query_url, body, self.remote.query_timeout_s)

    def _execute_fallback(self, config: SeriesConfig) -> Any:
        if not config.db_name or not config.table_name:
            raise RemoteCallError("fallback requires db_name and table_name")
        fields = ["timestamp", config.data_field] if config.data_field else ["*"]
        body = {
            "dbName": config.db_name,
            "tableName": config.table_name,
            "fields": ",".join(fields),
            "limit": self.remote.fallback_limit,
            "orderBy": "timestamp",
            "orderDir": "DESC",
        }
        payload = self._post(self.remote.fallback_url, body, self.remote.fallback_timeout_s)
        if not isinstance(payload, list):
            raise RemoteCallError("fallback response is not an array")
        return payload

    def _post(self, url: str, body: Dict[str, Any], timeout: float) -> Any:
        try:
            response = self.session.post(
                url,
                json=body,
                headers=_HEADERS,
                timeout=timeout,
                verify=self.remote.verify_tls,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise RemoteCallError(str(exc)) from exc
        except ValueError as exc:
            raise RemoteCallError(f"invalid JSON from {url}: {exc}") from exc
        if isinstance(payload, dict) and payload.get("error") and not any(
            isinstance(payload.get(key), list) for key in ("data", "results")
        ):
            raise RemoteCallError(f"remote execution error: {payload['error']}")
        return payload
