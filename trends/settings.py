"""Application settings for the trend cache."""
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .queries import TEMPLATE_PLACEHOLDERS, DataSource, QueryCommand

CONFIG_ENV_VAR = "TRENDS_CONFIG"
DEFAULT_CONFIG_PATH = Path("config") / "trends.yaml"
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


@dataclass(slots=True)
class RemoteConfig:
    base_url: str = "http://localhost:9003"
    query_path: str = "/custom-query"
    fallback_path: str = "/custom-query"
    query_timeout_s: float = 15.0
    fallback_timeout_s: float = 10.0
    fallback_limit: int = 100
    verify_tls: bool = True

    @property
    def query_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.query_path.lstrip("/")

    @property
    def fallback_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.fallback_path.lstrip("/")


@dataclass(slots=True)
class StorageConfig:
    path: Path = Path(".cache") / "trends.sqlite"
    quota_bytes: Optional[int] = 5_000_000


@dataclass(slots=True)
class SchedulerConfig:
    config_debounce_ms: int = 100
    reduced_payload_points: int = 100


@dataclass(slots=True)
class SeriesDefinition:
    title: str
    id: Optional[str] = None
    db_name: str = ""
    table_name: str = ""
    data_field: Optional[str] = None
    query_name: str = ""
    refresh_interval_ms: Optional[int] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SeriesDefinition":
        title = raw.get("title")
        if not title:
            raise ConfigurationError("Series entries require a `title`")
        interval = raw.get("refresh_interval_ms", raw.get("refreshInterval"))
        return cls(
            title=str(title),
            id=raw.get("id"),
            db_name=str(raw.get("db_name") or raw.get("dbName") or ""),
            table_name=str(raw.get("table_name") or raw.get("tableName") or ""),
            data_field=raw.get("data_field") or raw.get("dataField"),
            query_name=str(raw.get("query_name") or raw.get("queryName") or ""),
            refresh_interval_ms=int(interval) if interval is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "dbName": self.db_name,
            "tableName": self.table_name,
            "dataField": self.data_field,
            "queryName": self.query_name,
            "refreshInterval": self.refresh_interval_ms,
        }


@dataclass(slots=True)
class Settings:
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    data_sources: List[DataSource] = field(default_factory=list)
    queries: List[QueryCommand] = field(default_factory=list)
    series: List[SeriesDefinition] = field(default_factory=list)


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Configuration file {path} does not exist")
    text = path.read_text(encoding="utf-8")
    try:
        suffix = path.suffix.lower()
        if suffix in {".yaml", ".yml"}:
            return yaml.safe_load(text) or {}
        if suffix == ".json":
            return json.loads(text)
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration format: {exc}") from exc
    raise ConfigurationError("Unsupported configuration format; use YAML or JSON")


def expand_env_values(value: Any, *, source: Optional[Path] = None) -> Any:
    """Replace ``${VAR}`` with environment values, leaving SQL placeholders untouched."""
    if isinstance(value, dict):
        return {key: expand_env_values(val, source=source) for key, val in value.items()}
    if isinstance(value, list):
        return [expand_env_values(item, source=source) for item in value]
    if isinstance(value, str):
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if var_name in TEMPLATE_PLACEHOLDERS:
                return match.group(0)
            if var_name not in os.environ:
                location = f" in config '{source}'" if source else ""
                raise ConfigurationError(f"Environment variable '{var_name}' referenced{location} is not set")
            return os.environ[var_name]

        return _ENV_VAR_PATTERN.sub(replacer, value)
    return value


def parse_settings(raw: Dict[str, Any]) -> Settings:
    try:
        remote = RemoteConfig(**(raw.get("remote") or {}))
        storage_data = dict(raw.get("storage") or {})
        if storage_data.get("path"):
            storage_data["path"] = Path(storage_data["path"]).expanduser()
        storage = StorageConfig(**storage_data)
        scheduler = SchedulerConfig(**(raw.get("scheduler") or {}))
        data_sources = [DataSource.from_dict(item) for item in raw.get("data_sources") or []]
        queries = [QueryCommand.from_dict(item) for item in raw.get("queries") or []]
        series = [SeriesDefinition.from_dict(item) for item in raw.get("series") or []]
    except TypeError as exc:
        raise ConfigurationError(f"Invalid configuration key: {exc}") from exc

    if not remote.base_url:
        raise ConfigurationError("`remote.base_url` is required")
    if remote.query_timeout_s <= 0 or remote.fallback_timeout_s <= 0:
        raise ConfigurationError("Remote timeouts must be positive")
    if scheduler.reduced_payload_points <= 0:
        raise ConfigurationError("`scheduler.reduced_payload_points` must be positive")

    return Settings(
        remote=remote,
        storage=storage,
        scheduler=scheduler,
        data_sources=data_sources,
        queries=queries,
        series=series,
    )


def load_settings(path: Optional[Path | str] = None) -> Settings:
    candidate_paths: List[Path] = []
    if path:
        candidate_paths.append(Path(path))
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        candidate_paths.append(Path(env_path))
    candidate_paths.append(DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.exists():
            raw = expand_env_values(_load_file(candidate), source=candidate)
            return parse_settings(raw)
    raise ConfigurationError("No configuration file found")
