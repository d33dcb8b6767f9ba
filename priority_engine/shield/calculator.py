"""
Priority Shield.

The shield reports the most important item that is due but has not been
reviewed this session (the "top miss") and where it ranks in its whole
population. A shield of percentile 100 means nothing was missed.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Sequence
from typing import TypeVar

from loguru import logger

from priority_engine.cache.percentiles import Prioritized
from priority_engine.cache.priority_cache import PriorityCache
from priority_engine.models import (
    IncrementalItem,
    PriorityRecord,
    ShieldRecord,
    ShieldStatus,
    now_ms,
    round_half_up,
)
from priority_engine.priority.incremental import IncrementalItemCache
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore

P = TypeVar("P", bound=Prioritized)


def is_incremental_due(item: IncrementalItem, at_ms: int | None = None) -> bool:
    return item.is_due(at_ms)


def is_card_due(record: PriorityRecord) -> bool:
    return record.due_unit_count > 0


def volume_based_percentile(
    universe: Sequence[P],
    top_priority: int,
    is_missed: Callable[[P], bool],
) -> int:
    """
    Rank of the top miss within the full universe, as a percentage.

    Items strictly more important than the top miss rank ahead of it, as do
    equally important items that were not missed. Missed ties share the
    top miss's slot.
    """
    total = len(universe)
    if total == 0:
        return 100
    ahead = sum(
        1
        for item in universe
        if item.priority < top_priority
        or (item.priority == top_priority and not is_missed(item))
    )
    return round_half_up((ahead + 1) / total * 100)


def compute_shield(
    universe: Sequence[P],
    is_due: Callable[[P], bool],
    seen_ids: Collection[str],
    current_id: str | None = None,
) -> ShieldRecord:
    """
    Shield of one population.

    Args:
        universe: Every item of one type in the population
        is_due: Due predicate for that item type
        seen_ids: Ids already reviewed this session
        current_id: Item on screen right now; counted as missed even if seen

    Returns:
        ShieldRecord; {None, 100, N} when nothing is missed
    """
    seen = set(seen_ids)

    def missed(item: P) -> bool:
        return (is_due(item) and item.node_id not in seen) or item.node_id == current_id

    misses = [item for item in universe if missed(item)]
    if not misses:
        return ShieldRecord(absolute=None, percentile=100, universe_size=len(universe))

    top = min(misses, key=lambda item: item.priority)
    return ShieldRecord(
        absolute=top.priority,
        percentile=volume_based_percentile(universe, top.priority, missed),
        universe_size=len(universe),
    )


class ShieldCalculator:
    """Computes KB-wide and scope-wide shields for both item types."""

    def __init__(
        self,
        store: StateStore,
        cache: PriorityCache,
        incremental: IncrementalItemCache,
    ):
        self.store = store
        self.cache = cache
        self.incremental = incremental

    async def incremental_status(
        self,
        scope: Collection[str] | None = None,
        current_id: str | None = None,
        at_ms: int | None = None,
    ) -> ShieldStatus:
        now = at_ms if at_ms is not None else now_ms()
        items = await self.incremental.all()
        if not items:
            logger.warning("Incremental item cache is empty; computing incremental shield from the graph")
            items = await self.incremental.items_from_graph()
        seen = await self.store.get_session(keys.SEEN_INCREMENTAL_ITEMS, [])
        return self._status(items, lambda item: is_incremental_due(item, now), seen, scope, current_id)

    async def card_status(
        self,
        scope: Collection[str] | None = None,
        current_id: str | None = None,
    ) -> ShieldStatus:
        records = await self.cache.records()
        if not records:
            logger.warning("Priority cache is empty; computing card shield from the graph")
            records = await self.cache.records_from_graph()
        seen = await self.store.get_session(keys.SEEN_CARDS, [])
        return self._status(records, is_card_due, seen, scope, current_id)

    @staticmethod
    def _status(
        universe: Sequence[P],
        is_due: Callable[[P], bool],
        seen: Collection[str],
        scope: Collection[str] | None,
        current_id: str | None,
    ) -> ShieldStatus:
        status = ShieldStatus()
        if universe:
            status.kb = compute_shield(universe, is_due, seen, current_id)
        if scope:
            scoped = [item for item in universe if item.node_id in scope]
            status.doc = compute_shield(scoped, is_due, seen, current_id)
        return status
