"""
Priority Resolver.

Computes a node's effective priority from three sources, in order:

1. Manual  - an explicit priority tag marked manual; never re-derived
2. Inherited - the node's own incremental item, else the closest ancestor
   carrying an incremental item or a card priority
3. Default - the configured default card priority

Ancestor walks go upward through `parent_id` with a visited-set guard. A
parent id pointing at a deleted node ends the walk (silent degrade to the
default), as does a cycle.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from loguru import logger

from config import Settings, get_settings
from priority_engine.graph.facade import (
    LAST_UPDATED_SLOT,
    PRIORITY_SLOT,
    PRIORITY_TAG,
    SOURCE_SLOT,
    GraphFacade,
    Node,
)
from priority_engine.models import (
    PriorityRecord,
    PrioritySource,
    ResolvedPriority,
    clamp_priority,
    now_ms,
    parse_priority,
)
from priority_engine.priority.incremental import IncrementalItemCache

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class AncestorPriority:
    """Closest ancestor that carries a priority."""

    node_id: str
    priority: int
    kind: Literal["incremental", "card"]
    level: int  # 1 = direct parent


@dataclass
class PriorityTag:
    """Raw contents of a node's priority tag."""

    priority: int | None
    source: PrioritySource | None
    last_updated: int | None


# =============================================================================
# Resolver
# =============================================================================


class PriorityResolver:
    """
    Resolves and writes card priorities.

    `calculate_new_priority` performs resolution without writing so callers
    can detect "would this change?" before paying for a write.
    `set_priority` is the only mutator of the priority tag.
    """

    def __init__(
        self,
        graph: GraphFacade,
        incremental: IncrementalItemCache,
        settings: Settings | None = None,
    ):
        self.graph = graph
        self.incremental = incremental
        self.settings = settings or get_settings()

    @property
    def default_priority(self) -> int:
        return self.settings.default_card_priority

    # =========================================================================
    # Reading
    # =========================================================================

    async def read_tag(self, node_id: str) -> PriorityTag | None:
        """
        Read the priority tag slots of a node.

        Returns:
            PriorityTag, or None when the node has no priority value stored
        """
        raw_priority = await self.graph.get_property(node_id, PRIORITY_TAG, PRIORITY_SLOT)
        if not raw_priority:
            return None

        raw_source = await self.graph.get_property(node_id, PRIORITY_TAG, SOURCE_SLOT)
        raw_updated = await self.graph.get_property(node_id, PRIORITY_TAG, LAST_UPDATED_SLOT)

        try:
            source = PrioritySource(raw_source) if raw_source else None
        except ValueError:
            source = None
        try:
            last_updated = int(raw_updated) if raw_updated else None
        except ValueError:
            last_updated = None

        return PriorityTag(
            priority=parse_priority(raw_priority),
            source=source,
            last_updated=last_updated,
        )

    async def get_record(self, node: Node, at_ms: int | None = None) -> PriorityRecord:
        """
        Build the PriorityRecord of a node as it currently stands.

        Tagged nodes report their stored value (unparsable values fall back
        to the default). Untagged nodes report the closest ancestor priority
        as inherited, else the default. Review unit counts are read from the
        graph.

        Args:
            node: The node to describe
            at_ms: Reference time for the due check (defaults to now)

        Returns:
            PriorityRecord without a kb_percentile
        """
        now = at_ms if at_ms is not None else now_ms()
        units = await self.graph.review_units(node.id)
        due = sum(1 for unit in units if unit.is_due(now))

        tag = await self.read_tag(node.id)
        if tag is not None:
            priority = tag.priority if tag.priority is not None else self.default_priority
            return PriorityRecord(
                node_id=node.id,
                priority=priority,
                source=tag.source or PrioritySource.DEFAULT,
                last_updated=tag.last_updated or now,
                review_unit_count=len(units),
                due_unit_count=due,
            )

        ancestor = await self.find_closest_ancestor_with_priority(node)
        if ancestor is not None:
            priority, source = ancestor.priority, PrioritySource.INHERITED
        else:
            priority, source = self.default_priority, PrioritySource.DEFAULT

        return PriorityRecord(
            node_id=node.id,
            priority=priority,
            source=source,
            last_updated=0,
            review_unit_count=len(units),
            due_unit_count=due,
        )

    async def resolve_priority(self, node: Node) -> ResolvedPriority:
        """Effective priority and its source."""
        record = await self.get_record(node)
        return ResolvedPriority(priority=record.priority, source=record.source)

    async def find_closest_ancestor_with_priority(self, node: Node) -> AncestorPriority | None:
        """
        Walk up the parent chain looking for a priority to inherit.

        An incremental item or a manual card priority ends the walk
        immediately. The closest ancestor holding an inherited card priority
        is remembered and used when no manual source exists above it.
        Default-sourced ancestors are ignored.
        """
        visited = {node.id}
        closest_inherited: AncestorPriority | None = None
        current = node
        level = 0

        while current.parent_id is not None:
            if current.parent_id in visited:
                logger.warning(f"Cycle in parent chain at {current.parent_id}; stopping walk")
                break
            parent = await self.graph.find(current.parent_id)
            if parent is None:
                break
            visited.add(parent.id)
            level += 1

            item = await self.incremental.get(parent.id)
            if item is not None:
                return AncestorPriority(parent.id, item.priority, "incremental", level)

            tag = await self.read_tag(parent.id)
            if tag is not None and tag.priority is not None:
                if tag.source is PrioritySource.MANUAL:
                    return AncestorPriority(parent.id, tag.priority, "card", level)
                if tag.source is PrioritySource.INHERITED and closest_inherited is None:
                    closest_inherited = AncestorPriority(parent.id, tag.priority, "card", level)

            current = parent

        return closest_inherited

    async def calculate_new_priority(
        self,
        node: Node,
        existing: PriorityRecord | None = None,
    ) -> ResolvedPriority:
        """
        Compute what a node's priority should be, without writing.

        Args:
            node: The node to resolve
            existing: Its current record, if known

        Returns:
            ResolvedPriority; echoes `existing` unchanged when it is manual
        """
        if existing is not None and existing.source is PrioritySource.MANUAL:
            return ResolvedPriority(priority=existing.priority, source=PrioritySource.MANUAL)

        own_item = await self.incremental.read_from_graph(node.id)
        if own_item is not None:
            return ResolvedPriority(priority=own_item.priority, source=PrioritySource.INHERITED)

        ancestor = await self.find_closest_ancestor_with_priority(node)
        if ancestor is not None:
            return ResolvedPriority(priority=ancestor.priority, source=PrioritySource.INHERITED)

        if existing is not None and existing.source is PrioritySource.INHERITED:
            return ResolvedPriority(priority=existing.priority, source=PrioritySource.INHERITED)

        return ResolvedPriority(priority=self.default_priority, source=PrioritySource.DEFAULT)

    # =========================================================================
    # Writing
    # =========================================================================

    async def set_priority(
        self,
        node_id: str,
        priority: int,
        source: PrioritySource,
        known_has_tag: bool = False,
    ) -> int:
        """
        Write the priority tag, stamping lastUpdated with the current time.

        The priority is clamped to [0, 100] before it is written.

        Returns:
            The timestamp written
        """
        resolved = ResolvedPriority(priority=clamp_priority(priority), source=source)
        if not known_has_tag and not await self.graph.has_tag(node_id, PRIORITY_TAG):
            await self.graph.add_tag(node_id, PRIORITY_TAG)

        stamp = now_ms()
        await self.graph.set_property(node_id, PRIORITY_TAG, PRIORITY_SLOT, str(resolved.priority))
        await self.graph.set_property(node_id, PRIORITY_TAG, SOURCE_SLOT, resolved.source.value)
        await self.graph.set_property(node_id, PRIORITY_TAG, LAST_UPDATED_SLOT, str(stamp))
        return stamp

    async def auto_assign_card_priority(self, node: Node) -> int:
        """
        Resolve and persist a node's priority unless it is manual.

        Returns:
            The node's effective priority
        """
        existing = await self.get_record(node)
        if existing.source is PrioritySource.MANUAL:
            return existing.priority

        own_item = await self.incremental.read_from_graph(node.id)
        if own_item is not None:
            await self.set_priority(node.id, own_item.priority, PrioritySource.INHERITED)
            return own_item.priority

        ancestor = await self.find_closest_ancestor_with_priority(node)
        if ancestor is not None:
            await self.set_priority(node.id, ancestor.priority, PrioritySource.INHERITED)
            return ancestor.priority

        if existing.source is PrioritySource.INHERITED:
            return existing.priority

        await self.set_priority(node.id, self.default_priority, PrioritySource.DEFAULT)
        return self.default_priority

    async def update_inherited_priorities(self, parent: Node, new_priority: int) -> list[str]:
        """
        Propagate a changed priority to the parent's descendants.

        Incremental items and manual records are left alone. A descendant is
        rewritten when its closest priority ancestor is absent or already
        carries `new_priority`.

        Returns:
            Ids of the descendants that were rewritten
        """
        descendants = await self.graph.descendants(parent.id)
        batch_size = self.settings.pretag_batch_size
        updated: list[str] = []

        for start in range(0, len(descendants), batch_size):
            for descendant in descendants[start : start + batch_size]:
                if await self.incremental.read_from_graph(descendant.id) is not None:
                    continue
                tag = await self.read_tag(descendant.id)
                if tag is not None and tag.source is PrioritySource.MANUAL:
                    continue
                closer = await self.find_closest_ancestor_with_priority(descendant)
                if closer is None or closer.priority == new_priority:
                    await self.set_priority(descendant.id, new_priority, PrioritySource.INHERITED)
                    updated.append(descendant.id)

        logger.debug(f"Propagated priority {new_priority} from {parent.id} to {len(updated)} descendants")
        return updated
