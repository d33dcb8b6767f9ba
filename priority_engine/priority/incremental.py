"""
Incremental Item cache.

Incremental items are read from the `incremental` tag on a node and kept as
a session-scoped collection so the resolver, scope resolver and scheduler
never have to hit the graph to answer "is this an incremental item?".
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import ValidationError

from config import Settings, get_settings
from priority_engine.cancellation import CancellationToken, check
from priority_engine.errors import MalformedRecordError
from priority_engine.graph.facade import (
    INCREMENTAL_PRIORITY_SLOT,
    INCREMENTAL_TAG,
    NEXT_REP_DATE_SLOT,
    REP_HISTORY_SLOT,
    GraphFacade,
)
from priority_engine.models import IncrementalItem, parse_priority
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore


def _parse_rep_date(raw: str | None) -> int | None:
    """Accept epoch milliseconds or an ISO date (YYYY-MM-DD)."""
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        return int(datetime.fromisoformat(text).timestamp() * 1000)
    except ValueError:
        return None


def _try_parse_json(raw: str | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


class IncrementalItemCache:
    """Session-tier collection of every IncrementalItem in the knowledge base."""

    def __init__(
        self,
        graph: GraphFacade,
        store: StateStore,
        settings: Settings | None = None,
    ):
        self.graph = graph
        self.store = store
        self.settings = settings or get_settings()

    async def read_from_graph(self, node_id: str | None) -> IncrementalItem | None:
        """
        Read a node's incremental tag.

        Returns None when the node is missing, has no next repetition date,
        or the slots fail validation. An unparsable priority falls back to
        the configured incremental default.
        """
        node = await self.graph.find(node_id)
        if node is None:
            return None

        next_rep_date = _parse_rep_date(
            await self.graph.get_property(node.id, INCREMENTAL_TAG, NEXT_REP_DATE_SLOT)
        )
        if next_rep_date is None:
            return None

        priority = parse_priority(
            await self.graph.get_property(node.id, INCREMENTAL_TAG, INCREMENTAL_PRIORITY_SLOT)
        )
        if priority is None:
            priority = self.settings.default_incremental_priority

        history = _try_parse_json(
            await self.graph.get_property(node.id, INCREMENTAL_TAG, REP_HISTORY_SLOT)
        )

        try:
            return IncrementalItem(
                node_id=node.id,
                next_rep_date=next_rep_date,
                priority=priority,
                history=history,
            )
        except ValidationError as e:
            logger.warning(f"Failed to parse incremental item {node.id}: {e.error_count()} errors")
            return None

    async def load(self, token: CancellationToken | None = None) -> list[IncrementalItem]:
        """Rebuild the collection from every node tagged incremental."""
        items = await self.items_from_graph(token)
        await self._save(items)
        logger.info(f"Incremental item cache holds {len(items)} items")
        return items

    async def items_from_graph(self, token: CancellationToken | None = None) -> list[IncrementalItem]:
        """Read every node tagged incremental without touching the session tier."""
        tagged = await self.graph.tagged_with(INCREMENTAL_TAG)
        batch_size = self.settings.incremental_load_batch_size
        logger.info(f"Reading {len(tagged)} incremental items from the graph")

        items: list[IncrementalItem] = []
        for start in range(0, len(tagged), batch_size):
            batch = tagged[start : start + batch_size]
            for node_id in batch:
                item = await self.read_from_graph(node_id)
                check(token)
                if item is not None:
                    items.append(item)
            if start + batch_size < len(tagged):
                await asyncio.sleep(self.settings.incremental_load_pause_seconds)
                check(token)
        return items

    async def all(self) -> list[IncrementalItem]:
        raw = await self.store.get_session(keys.ALL_INCREMENTAL_ITEMS, [])
        items = []
        for blob in raw:
            try:
                items.append(IncrementalItem.from_blob(keys.ALL_INCREMENTAL_ITEMS, blob))
            except MalformedRecordError as e:
                logger.debug(f"Dropping incremental item: {e}")
        return items

    async def get(self, node_id: str | None) -> IncrementalItem | None:
        if node_id is None:
            return None
        for item in await self.all():
            if item.node_id == node_id:
                return item
        return None

    async def is_incremental(self, node_id: str | None) -> bool:
        return await self.get(node_id) is not None

    async def update(self, item: IncrementalItem) -> None:
        items = [i for i in await self.all() if i.node_id != item.node_id]
        items.append(item)
        await self._save(items)

    async def remove(self, node_id: str) -> None:
        items = await self.all()
        remaining = [i for i in items if i.node_id != node_id]
        if len(remaining) != len(items):
            await self._save(remaining)

    async def refresh(self, node_id: str) -> IncrementalItem | None:
        """Re-read one node from the graph and update or drop its entry."""
        item = await self.read_from_graph(node_id)
        if item is None:
            await self.remove(node_id)
        else:
            await self.update(item)
        return item

    async def _save(self, items: list[IncrementalItem]) -> None:
        await self.store.set_session(keys.ALL_INCREMENTAL_ITEMS, [i.to_blob() for i in items])
