"""
Graph Access Facade.

The knowledge-graph store is an external collaborator: the engine never
creates or destroys nodes, it only reads them and annotates them through
tag properties. Every call is a suspension point, so all methods are async.

Schema constants (tag codes and slot names) are defined here so that the
resolver, scope resolver and maintenance tasks agree on where priorities
are stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

# =============================================================================
# Schema
# =============================================================================

PRIORITY_TAG = "cardPriority"
PRIORITY_SLOT = "priority"
SOURCE_SLOT = "prioritySource"
LAST_UPDATED_SLOT = "lastUpdated"

INCREMENTAL_TAG = "incremental"
INCREMENTAL_PRIORITY_SLOT = "priority"
NEXT_REP_DATE_SLOT = "nextRepDate"
REP_HISTORY_SLOT = "repHist"

DOCUMENT_TAG = "uploadedFile"
HIGHLIGHT_TAG = "pdfHighlight"
HIGHLIGHT_DOCUMENT_SLOT = "PdfId"

# Tags whose slots materialize as auto-generated property children.
SLOT_CONFIGS: dict[str, tuple[str, ...]] = {
    INCREMENTAL_TAG: (INCREMENTAL_PRIORITY_SLOT, NEXT_REP_DATE_SLOT, REP_HISTORY_SLOT),
    PRIORITY_TAG: (PRIORITY_SLOT, SOURCE_SLOT, LAST_UPDATED_SLOT),
    "sources": ("Sources",),
    DOCUMENT_TAG: ("Type", "URL", "Name", "Authors", "Title", "ReadPercent", "LastReadDate"),
    HIGHLIGHT_TAG: ("Data", HIGHLIGHT_DOCUMENT_SLOT),
    "aliases": ("Aliases",),
    "todo": ("Status",),
}


@dataclass
class Node:
    """An addressable entity in the knowledge graph."""

    id: str
    parent_id: str | None = None
    text: str = ""


@dataclass(frozen=True)
class ReviewUnit:
    """A spaced-repetition card belonging to exactly one node."""

    node_id: str
    next_due_time: int | None = None

    def is_due(self, at_ms: int) -> bool:
        return self.next_due_time is not None and self.next_due_time <= at_ms


@runtime_checkable
class GraphFacade(Protocol):
    """Read/annotate access to the external knowledge graph."""

    async def find(self, node_id: str | None) -> Node | None: ...

    async def children(self, node_id: str) -> list[Node]: ...

    async def descendants(self, node_id: str) -> list[Node]: ...

    async def context_members(self, node_id: str) -> list[Node]:
        """Nodes shown in the node's document, portals or folder queue."""
        ...

    async def sources(self, node_id: str) -> list[Node]: ...

    async def referencing(self, node_id: str) -> list[Node]: ...

    async def has_tag(self, node_id: str, tag: str) -> bool: ...

    async def add_tag(self, node_id: str, tag: str) -> None: ...

    async def remove_tag(self, node_id: str, tag: str) -> None: ...

    async def tagged_with(self, tag: str) -> list[str]: ...

    async def get_property(self, node_id: str, tag: str, slot: str) -> str | None: ...

    async def set_property(self, node_id: str, tag: str, slot: str, value: str | None) -> None: ...

    async def tag_ids(self, node_id: str) -> set[str]:
        """Ids of the tag nodes applied to a node; may raise GraphLookupError."""
        ...

    async def slot_tag_id(self, tag: str, slot: str) -> str | None: ...

    async def review_units(self, node_id: str) -> list[ReviewUnit]: ...

    async def all_review_units(self) -> list[ReviewUnit]: ...
