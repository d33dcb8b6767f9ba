"""
Bulk priority maintenance.

- Manual priority changes with propagation to inheriting descendants
- Pre-tagging pass that writes a priority tag on every card-bearing node
- Removal of every priority tag and the state derived from them
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from config import Settings, get_settings
from priority_engine.cache.debounce import OptimisticPatch
from priority_engine.cache.priority_cache import PriorityCache
from priority_engine.cancellation import CancellationToken, check
from priority_engine.errors import OperationCancelled, PriorityEngineError
from priority_engine.graph.facade import (
    LAST_UPDATED_SLOT,
    PRIORITY_SLOT,
    PRIORITY_TAG,
    SOURCE_SLOT,
    GraphFacade,
)
from priority_engine.models import PriorityRecord, PrioritySource
from priority_engine.priority.resolver import PriorityResolver
from priority_engine.shield.history import ShieldHistory
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore


@dataclass
class PretagStats:
    """Counters reported by the pre-tagging pass."""

    total: int = 0
    processed: int = 0
    tagged: int = 0
    changed: int = 0
    skipped_manual: int = 0
    errors: int = 0
    failed_ids: list[str] = field(default_factory=list)


class PriorityMaintenance:
    """Composite write operations over the resolver and the cache."""

    def __init__(
        self,
        graph: GraphFacade,
        store: StateStore,
        resolver: PriorityResolver,
        cache: PriorityCache,
        history: ShieldHistory,
        settings: Settings | None = None,
    ):
        self.graph = graph
        self.store = store
        self.resolver = resolver
        self.cache = cache
        self.history = history
        self.settings = settings or get_settings()

    async def set_manual_priority(self, node_id: str, priority: int, propagate: bool = True) -> PriorityRecord | None:
        """
        Set a manual priority, update the cache and refresh inheriting descendants.

        Returns:
            The node's new record, or None when the node does not exist
        """
        node = await self.graph.find(node_id)
        if node is None:
            logger.warning(f"Cannot set priority on missing node {node_id}")
            return None

        await self.resolver.set_priority(node.id, priority, PrioritySource.MANUAL)
        record = await self.resolver.get_record(node)
        await self.cache.update_cache(node.id, is_light=False, patch=OptimisticPatch(record))

        if propagate:
            await self.propagate(node_id, record.priority)
        return record

    async def propagate(self, parent_id: str, new_priority: int) -> list[str]:
        """Rewrite inheriting descendants and queue a cache update for each."""
        parent = await self.graph.find(parent_id)
        if parent is None:
            return []
        updated = await self.resolver.update_inherited_priorities(parent, new_priority)
        for node_id in updated:
            await self.cache.update_cache(node_id, is_light=True)
        return updated

    async def update_all_priorities(self, token: CancellationToken | None = None) -> PretagStats:
        """
        Pre-tag every node that has review units.

        Manual records are skipped. A tag is written only when it is missing
        or the computed priority or source differs. The pass ends with an
        optimized cache build.
        """
        unit_ids = [unit.node_id for unit in await self.graph.all_review_units()]
        node_ids = list(dict.fromkeys(unit_ids))
        stats = PretagStats(total=len(node_ids))
        logger.info(f"Pre-tagging {stats.total} nodes with review units")

        batch_size = self.settings.pretag_batch_size
        for start in range(0, len(node_ids), batch_size):
            for node_id in node_ids[start : start + batch_size]:
                try:
                    await self._pretag_one(node_id, stats)
                except OperationCancelled:
                    raise
                except PriorityEngineError as e:
                    logger.warning(f"Pre-tagging failed for {node_id}: {e}")
                    stats.errors += 1
                    stats.failed_ids.append(node_id)
                check(token)
            logger.info(
                f"Pre-tagging {stats.processed}/{stats.total}: tagged {stats.tagged}, "
                f"changed {stats.changed}, manual {stats.skipped_manual}, errors {stats.errors}"
            )

        await self.cache.build_optimized(token)
        return stats

    async def _pretag_one(self, node_id: str, stats: PretagStats) -> None:
        node = await self.graph.find(node_id)
        if node is None:
            stats.errors += 1
            stats.failed_ids.append(node_id)
            return

        has_tag = await self.graph.has_tag(node.id, PRIORITY_TAG)
        existing: PriorityRecord | None = None
        if has_tag:
            tag = await self.resolver.read_tag(node.id)
            if tag is not None and tag.source is PrioritySource.MANUAL:
                stats.skipped_manual += 1
                stats.processed += 1
                return
            if tag is not None and tag.priority is not None:
                existing = PriorityRecord(
                    node_id=node.id,
                    priority=tag.priority,
                    source=tag.source or PrioritySource.DEFAULT,
                )

        calculated = await self.resolver.calculate_new_priority(node, existing)
        if (
            not has_tag
            or existing is None
            or calculated.priority != existing.priority
            or calculated.source is not existing.source
        ):
            await self.resolver.set_priority(node.id, calculated.priority, calculated.source, known_has_tag=has_tag)
            stats.tagged += 1
            if existing is not None and calculated.priority != existing.priority:
                stats.changed += 1
        stats.processed += 1

    async def remove_all_priority_tags(self) -> int:
        """
        Strip every priority tag and reset the state derived from them:
        the cached records, both seen sets and card shield history.

        Returns:
            Number of tags removed
        """
        tagged = await self.graph.tagged_with(PRIORITY_TAG)
        batch_size = self.settings.pretag_batch_size
        logger.info(f"Removing {len(tagged)} priority tags")

        for start in range(0, len(tagged), batch_size):
            for node_id in tagged[start : start + batch_size]:
                for slot in (PRIORITY_SLOT, SOURCE_SLOT, LAST_UPDATED_SLOT):
                    await self.graph.set_property(node_id, PRIORITY_TAG, slot, None)
                await self.graph.remove_tag(node_id, PRIORITY_TAG)

        await self.cache.clear()
        await self.store.set_session(keys.SEEN_CARDS, [])
        await self.store.set_session(keys.SEEN_INCREMENTAL_ITEMS, [])
        await self.history.clear(keys.CARD_SHIELD_HISTORY)
        await self.history.clear(keys.CARD_DOC_SHIELD_HISTORY)
        return len(tagged)
