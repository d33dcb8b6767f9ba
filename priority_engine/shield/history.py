"""
Shield history persistence.

Durable storage, one key per item type and granularity:

    KB history:      {kb_id: {date: ShieldRecord}}
    Scoped history:  {kb_id: {scope_id: {date: ShieldRecord}}}

Dates are ISO (YYYY-MM-DD). Blobs that are not shaped like this are
treated as empty; individual entries that fail validation are skipped.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from loguru import logger

from config import Settings, get_settings
from priority_engine.errors import MalformedRecordError
from priority_engine.models import ShieldRecord
from priority_engine.storage.state_store import StateStore


def today_iso() -> str:
    return date.today().isoformat()


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _series(key: str, entries: Any) -> list[tuple[str, ShieldRecord]]:
    series = []
    for day, blob in _as_dict(entries).items():
        try:
            series.append((day, ShieldRecord.from_blob(key, blob)))
        except MalformedRecordError as e:
            logger.debug(f"Skipping shield entry for {day}: {e}")
    return sorted(series, key=lambda pair: pair[0])


class ShieldHistory:
    """Reads and writes daily ShieldRecord snapshots, namespaced by knowledge base."""

    def __init__(self, store: StateStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    @property
    def kb_id(self) -> str:
        return self.settings.knowledge_base_id

    async def save_kb(self, key: str, record: ShieldRecord, day: str | None = None) -> None:
        history = _as_dict(await self.store.get_durable(key))
        kb_history = _as_dict(history.get(self.kb_id))
        kb_history[day or today_iso()] = record.to_blob()
        history[self.kb_id] = kb_history
        await self.store.set_durable(key, history)

    async def save_scoped(
        self,
        key: str,
        scope_id: str,
        record: ShieldRecord,
        day: str | None = None,
    ) -> None:
        history = _as_dict(await self.store.get_durable(key))
        kb_history = _as_dict(history.get(self.kb_id))
        scope_history = _as_dict(kb_history.get(scope_id))
        scope_history[day or today_iso()] = record.to_blob()
        kb_history[scope_id] = scope_history
        history[self.kb_id] = kb_history
        await self.store.set_durable(key, history)

    async def kb_series(self, key: str) -> list[tuple[str, ShieldRecord]]:
        history = _as_dict(await self.store.get_durable(key))
        return _series(key, history.get(self.kb_id))

    async def scoped_series(self, key: str, scope_id: str) -> list[tuple[str, ShieldRecord]]:
        history = _as_dict(await self.store.get_durable(key))
        return _series(key, _as_dict(history.get(self.kb_id)).get(scope_id))

    async def clear(self, key: str) -> None:
        await self.store.set_durable(key, {})
