"""
Scope Resolver.

Materializes the node-id set belonging to a document or queue context. The
result is a frozenset: consumers needing an order impose one themselves.
A root that does not resolve yields the empty set, which callers treat as
"nothing schedulable".
"""

from __future__ import annotations

from loguru import logger

from priority_engine.cancellation import CancellationToken, check
from priority_engine.graph.facade import (
    DOCUMENT_TAG,
    HIGHLIGHT_DOCUMENT_SLOT,
    HIGHLIGHT_TAG,
    GraphFacade,
    Node,
)
from priority_engine.priority.incremental import IncrementalItemCache
from priority_engine.scope.slot_filter import SlotFilter


class ScopeResolver:
    """Builds ScopeSets by unioning descendants, references and extracts."""

    def __init__(
        self,
        graph: GraphFacade,
        incremental: IncrementalItemCache,
        slot_filter: SlotFilter | None = None,
    ):
        self.graph = graph
        self.incremental = incremental
        self.slot_filter = slot_filter or SlotFilter(graph)

    async def build_scope(
        self,
        root_id: str,
        token: CancellationToken | None = None,
    ) -> frozenset[str]:
        """
        Comprehensive scope of a root node.

        Union of:
        - the root and all its descendants
        - nodes shown in its document, portals and folder queue
        - sources attached to the root or any descendant
        - nodes referencing the root (property children map to their parent)
        - highlight extracts of source documents, and their descendants

        Raises:
            OperationCancelled: if the token fires after a suspension point
        """
        root = await self.graph.find(root_id)
        check(token)
        if root is None:
            logger.debug(f"Scope root {root_id} not found; empty scope")
            return frozenset()

        descendants = await self.graph.descendants(root.id)
        check(token)
        context = await self.graph.context_members(root.id)
        check(token)
        referencing = await self._referencing_ids(root, token)

        source_ids, document_ids = await self._collect_sources([root, *descendants], token)
        extract_ids = await self._find_extract_ids(document_ids, token)
        document_descendant_ids = await self._document_descendant_ids(document_ids, token)

        scope = {root.id}
        scope.update(node.id for node in descendants)
        scope.update(node.id for node in context)
        scope.update(source_ids)
        scope.update(referencing)
        scope.update(extract_ids)
        scope.update(document_descendant_ids)

        logger.debug(f"Scope of {root.id} holds {len(scope)} nodes")
        return frozenset(scope)

    async def build_document_scope(
        self,
        document_id: str,
        token: CancellationToken | None = None,
    ) -> frozenset[str]:
        """
        Document scope: the document, its descendants, every source they
        cite, plus extracts and descendants of cited source documents.
        """
        document = await self.graph.find(document_id)
        check(token)
        if document is None:
            return frozenset()

        descendants = await self.graph.descendants(document.id)
        check(token)
        source_ids, document_ids = await self._collect_sources([document, *descendants], token)
        extract_ids = await self._find_extract_ids(document_ids, token)
        document_descendant_ids = await self._document_descendant_ids(document_ids, token)

        scope = {document.id, *(node.id for node in descendants)}
        scope.update(source_ids)
        scope.update(extract_ids)
        scope.update(document_descendant_ids)
        return frozenset(scope)

    async def ordered_scope(self, root_id: str, scope: frozenset[str]) -> list[str]:
        """
        Impose document order on a scope: the root, then its descendants in
        tree order, then every other member sorted by id.
        """
        if not scope:
            return []
        ordered = [root_id] if root_id in scope else []
        placed = set(ordered)
        for node in await self.graph.descendants(root_id):
            if node.id in scope and node.id not in placed:
                ordered.append(node.id)
                placed.add(node.id)
        ordered.extend(sorted(scope - placed))
        return ordered

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _referencing_ids(self, root: Node, token: CancellationToken | None) -> set[str]:
        ids = set()
        for node in await self.graph.referencing(root.id):
            check(token)
            if await self.slot_filter.is_slot_child(node):
                if node.parent_id is not None:
                    ids.add(node.parent_id)
            else:
                ids.add(node.id)
            check(token)
        return ids

    async def _collect_sources(
        self,
        nodes: list[Node],
        token: CancellationToken | None,
    ) -> tuple[set[str], set[str]]:
        """All source ids cited by `nodes`, and the subset that are uploaded documents."""
        source_ids: set[str] = set()
        document_ids: set[str] = set()
        for node in nodes:
            for source in await self.graph.sources(node.id):
                check(token)
                source_ids.add(source.id)
                if await self.graph.has_tag(source.id, DOCUMENT_TAG):
                    document_ids.add(source.id)
            check(token)
        return source_ids, document_ids

    async def _find_extract_ids(
        self,
        document_ids: set[str],
        token: CancellationToken | None,
    ) -> list[str]:
        """Incremental highlight extracts whose document is in `document_ids`."""
        if not document_ids:
            return []
        extract_ids = []
        for item in await self.incremental.all():
            check(token)
            if not await self.graph.has_tag(item.node_id, HIGHLIGHT_TAG):
                continue
            document_id = await self.graph.get_property(
                item.node_id, HIGHLIGHT_TAG, HIGHLIGHT_DOCUMENT_SLOT
            )
            check(token)
            if document_id in document_ids:
                extract_ids.append(item.node_id)
        return extract_ids

    async def _document_descendant_ids(
        self,
        document_ids: set[str],
        token: CancellationToken | None,
    ) -> list[str]:
        ids = []
        for document_id in sorted(document_ids):
            ids.extend(node.id for node in await self.graph.descendants(document_id))
            check(token)
        return ids
