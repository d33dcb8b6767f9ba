"""
Schema slot filter.

Tagging a node with a schema (incremental, cardPriority, sources, uploaded
file metadata, ...) materializes one auto-generated property child per slot.
Those children are tagged with the slot's definition node, so the primary
check intersects a node's tag ids with the cached set of slot definition ids.
When tag lookup is unavailable the filter falls back to matching the node's
text against known slot names.
"""

from __future__ import annotations

from loguru import logger

from priority_engine.errors import GraphLookupError
from priority_engine.graph.facade import SLOT_CONFIGS, GraphFacade, Node

KNOWN_SLOT_NAMES = frozenset(
    {
        # incremental / cardPriority
        "Priority",
        "Next Rep Date",
        "History",
        "Priority Source",
        "Last Updated",
        # built-in
        "Sources",
        "Source",
        "Aliases",
        "Status",
        # file metadata
        "Type",
        "URL",
        "Name",
        "Authors",
        "Keywords",
        "Title",
        "ViewerData",
        "ReadPercent",
        "LastReadDate",
        "HasNoTextLayer",
        "Theme",
        # highlights
        "Data",
        "PdfId",
        "HTMLId",
        "Url",
        "FileURL",
        # document structure
        "Pages",
        "Highlights",
        "Untitled",
        "Automatic Backlink Search Portal",
    }
)


class SlotFilter:
    """Detects auto-generated property children."""

    def __init__(self, graph: GraphFacade):
        self.graph = graph
        self._slot_ids: frozenset[str] | None = None

    async def slot_ids(self) -> frozenset[str]:
        """Slot definition ids for every configured (tag, slot) pair, cached."""
        if self._slot_ids is None:
            ids = set()
            for tag, slots in SLOT_CONFIGS.items():
                for slot in slots:
                    slot_id = await self.graph.slot_tag_id(tag, slot)
                    if slot_id is not None:
                        ids.add(slot_id)
            self._slot_ids = frozenset(ids)
            logger.debug(f"Cached {len(ids)} slot definition ids")
        return self._slot_ids

    def clear(self) -> None:
        self._slot_ids = None

    async def is_slot_child(self, node: Node) -> bool:
        """Tag-id intersection; the name heuristic only when that lookup is unavailable."""
        slot_ids = await self.slot_ids()
        if not slot_ids:
            return await self.is_slot_child_by_name(node)
        try:
            return bool(await self.graph.tag_ids(node.id) & slot_ids)
        except GraphLookupError as e:
            logger.debug(f"{e}; falling back to name check")
            return await self.is_slot_child_by_name(node)

    async def is_slot_child_by_name(self, node: Node) -> bool:
        """
        Name heuristic: empty, "Untitled", a known slot name or a query
        portal, under a parent that carries a slot-generating tag.
        """
        text = node.text.strip()
        name_match = (
            text == ""
            or text in KNOWN_SLOT_NAMES
            or text.lower().startswith("query")
        )
        if not name_match or node.parent_id is None:
            return False

        parent = await self.graph.find(node.parent_id)
        if parent is None:
            return False

        for tag in SLOT_CONFIGS:
            if await self.graph.has_tag(parent.id, tag):
                return True

        if text in ("Sources", "Source") and await self.graph.sources(parent.id):
            return True
        return False

    async def exclude_slots(self, nodes: list[Node]) -> list[Node]:
        return [node for node in nodes if not await self.is_slot_child(node)]
