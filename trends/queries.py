"""Query-command catalog and SQL template rendering."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .core import as_utc_timestamp
from .errors import ConfigurationError
from .storage import DATA_SOURCES_KEY, QUERIES_KEY, PersistenceGateway

logger = logging.getLogger(__name__)

TEMPLATE_PLACEHOLDERS = ("startDate", "endDate", "startTimestamp", "endTimestamp")
SQL_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class DataSource:
    id: str
    name: str = ""
    type: str = "mysql"
    host: str = "localhost"
    port: int = 3306
    database: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DataSource":
        if not raw.get("id"):
            raise ConfigurationError("Data source entries require an `id`")
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or raw["id"]),
            type=str(raw.get("type") or "mysql"),
            host=str(raw.get("host") or "localhost"),
            port=int(raw.get("port") or 3306),
            database=str(raw.get("database") or ""),
            username=str(raw.get("username") or ""),
            password=str(raw.get("password") or ""),
        )

    def descriptor(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": self.password,
        }


@dataclass(slots=True)
class QueryCommand:
    id: str
    name: str
    sql: str
    data_source_id: str
    enabled: bool = True
    description: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "QueryCommand":
        name = raw.get("name")
        sql = raw.get("sql")
        if not name or not sql:
            raise ConfigurationError("Query commands require a `name` and `sql`")
        return cls(
            id=str(raw.get("id") or name),
            name=str(name),
            sql=str(sql),
            data_source_id=str(raw.get("dataSourceId") or raw.get("data_source_id") or ""),
            enabled=bool(raw.get("enabled", True)),
            description=str(raw.get("description") or ""),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sql": self.sql,
            "dataSourceId": self.data_source_id,
            "enabled": self.enabled,
            "description": self.description,
        }


def render_sql(sql: str, start: datetime, end: datetime) -> str:
    """Substitute the time-range placeholders; dates are UTC and single-quoted."""
    start_ts = as_utc_timestamp(start)
    end_ts = as_utc_timestamp(end)
    replacements = {
        "startDate": f"'{start_ts.strftime(SQL_DATE_FORMAT)}'",
        "endDate": f"'{end_ts.strftime(SQL_DATE_FORMAT)}'",
        "startTimestamp": str(int(start_ts.timestamp())),
        "endTimestamp": str(int(end_ts.timestamp())),
    }
    rendered = sql
    for name, value in replacements.items():
        rendered = rendered.replace("${" + name + "}", value)
    return rendered


class QueryRegistry:
    """Named SQL templates and their data sources, kept in the shared store."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    def list_queries(self) -> List[QueryCommand]:
        raw = self.gateway.get_json(QUERIES_KEY) or []
        commands: List[QueryCommand] = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                commands.append(QueryCommand.from_dict(entry))
            except (ConfigurationError, AttributeError) as exc:
                logger.warning("Skipping invalid query command %r: %s", entry, exc)
        return commands

    def list_data_sources(self) -> List[DataSource]:
        raw = self.gateway.get_json(DATA_SOURCES_KEY) or []
        sources: List[DataSource] = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                sources.append(DataSource.from_dict(entry))
            except (ConfigurationError, AttributeError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid data source %r: %s", entry, exc)
        return sources

    def register_query(self, command: QueryCommand) -> None:
        commands = [item for item in self.list_queries() if item.name != command.name]
        commands.append(command)
        self.gateway.put_json(QUERIES_KEY, [item.to_payload() for item in commands])

    def register_data_source(self, source: DataSource) -> None:
        sources = [item for item in self.list_data_sources() if item.id != source.id]
        sources.append(source)
        self.gateway.put_json(DATA_SOURCES_KEY, [asdict(item) for item in sources])

    def seed(self, sources: Iterable[DataSource], commands: Iterable[QueryCommand]) -> None:
        for source in sources:
            self.register_data_source(source)
        for command in commands:
            self.register_query(command)

    def find(self, name: str) -> Optional[QueryCommand]:
        for command in self.list_queries():
            if command.enabled and command.name == name:
                return command
        return None

    def resolve(self, name: str) -> Tuple[QueryCommand, DataSource]:
        """Return the enabled command called ``name`` and its data source."""
        command = self.find(name) if name else None
        if command is None:
            raise ConfigurationError(f"query not found: {name or '<unset>'}")
        for source in self.list_data_sources():
            if source.id == command.data_source_id:
                return command, source
        raise ConfigurationError(
            f"Data source '{command.data_source_id}' for query '{name}' is not configured"
        )
