"""Stable series identities derived from explicit ids or title/source attributes."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .storage import PersistenceGateway, identity_key

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_{2,}")


@dataclass(frozen=True)
class SourceAttributes:
    db_name: str = ""
    table_name: str = ""
    field_name: str = ""


def normalize_component(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub("_", value).lower()


class SeriesKeyResolver:
    """Resolve the storage key of a series.

    Keys derived from the title are persisted under ``trend_component_id_{title}``
    so the same series finds its data again after a restart. Two series sharing
    a title resolve to the same key; that ambiguity is accepted rather than
    papered over with random suffixes.
    """

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    def resolve(
        self,
        explicit_id: Optional[str],
        title: str,
        source: Optional[SourceAttributes] = None,
    ) -> str:
        if explicit_id:
            return explicit_id

        stored = self.gateway.get_text(identity_key(title))
        if stored:
            logger.debug("Reusing stored series key '%s' for title '%s'", stored, title)
            return stored

        source = source or SourceAttributes()
        parts = [
            normalize_component(title) or "trend",
            normalize_component(source.db_name),
            normalize_component(source.table_name),
            normalize_component(source.field_name),
        ]
        # Empty parts keep their separator; runs of underscores collapse afterwards.
        key = _UNDERSCORES.sub("_", "_".join(parts))
        self.gateway.put_text(identity_key(title), key)
        logger.info("Generated series key '%s' for title '%s'", key, title)
        return key

    def forget(self, title: str) -> None:
        self.gateway.remove(identity_key(title))
