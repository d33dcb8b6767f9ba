"""
Unit tests for ScopeResolver and SlotFilter.
"""

import pytest

from priority_engine.cancellation import CancellationToken
from priority_engine.errors import OperationCancelled
from priority_engine.graph.facade import DOCUMENT_TAG, HIGHLIGHT_DOCUMENT_SLOT, HIGHLIGHT_TAG, INCREMENTAL_TAG
from priority_engine.scope.slot_filter import SlotFilter

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def library(graph, add_item):
    """
    doc
    ├── c1 (cites paper)
    │   └── c1a
    └── c2
    paper (uploaded document) -> p1
    inbox -> hl (highlight extract of paper, incremental)
    ref (references doc), owner -> slot-child (references doc)
    portal-x (context member of doc), other (unrelated)
    """
    graph.add_node("doc", text="Document")
    graph.add_node("c1", "doc", "Chapter 1")
    graph.add_node("c1a", "c1", "Section 1a")
    graph.add_node("c2", "doc", "Chapter 2")

    graph.add_node("paper", text="paper.pdf", tags=[DOCUMENT_TAG])
    graph.add_node("p1", "paper", "Page note")
    graph.add_source("c1", "paper")

    graph.add_node("inbox", text="Inbox")
    add_item("hl", 10, parent_id="inbox", text="Highlighted passage")
    graph.set_tag("hl", HIGHLIGHT_TAG, {HIGHLIGHT_DOCUMENT_SLOT: "paper"})

    graph.add_node("ref", text="See the document")
    graph.add_reference("ref", "doc")

    graph.add_node("owner", text="Owner", tags=[INCREMENTAL_TAG])
    graph.add_node("slot-child", "owner", "Priority")
    graph.add_reference("slot-child", "doc")
    graph.register_slot(INCREMENTAL_TAG, "priority", "slot-def-1")
    graph.apply_tag_id("slot-child", "slot-def-1")

    graph.add_node("portal-x", text="Portal member")
    graph.add_context_member("doc", "portal-x")

    graph.add_node("other", text="Unrelated")
    return graph


# ============================================================================
# Scope
# ============================================================================


class TestBuildScope:
    """Comprehensive scope."""

    @pytest.mark.asyncio
    async def test_union_of_all_sources(self, engine, library):
        await engine.incremental.load()

        scope = await engine.scope.build_scope("doc")

        assert scope == frozenset(
            {"doc", "c1", "c1a", "c2", "paper", "p1", "hl", "ref", "owner", "portal-x"}
        )

    @pytest.mark.asyncio
    async def test_missing_root_is_empty(self, engine, library):
        assert await engine.scope.build_scope("ghost") == frozenset()

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, library):
        await engine.incremental.load()

        first = await engine.scope.build_scope("doc")
        second = await engine.scope.build_scope("doc")

        assert first == second

    @pytest.mark.asyncio
    async def test_deleted_node_leaves_scope(self, engine, library):
        library.delete_node("c2")

        scope = await engine.scope.build_scope("doc")

        assert "c2" not in scope
        assert "c1" in scope

    @pytest.mark.asyncio
    async def test_sources_of_descendants_included(self, engine, graph):
        graph.add_node("root")
        graph.add_node("deep", "root")
        graph.add_node("deeper", "deep")
        graph.add_node("cited")
        graph.add_source("deeper", "cited")

        scope = await engine.scope.build_scope("root")

        assert "cited" in scope

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self, engine, library):
        token = CancellationToken("test")
        token.cancel()

        with pytest.raises(OperationCancelled):
            await engine.scope.build_scope("doc", token)


class TestDocumentScope:
    """Document scope excludes context and referencing nodes."""

    @pytest.mark.asyncio
    async def test_document_scope(self, engine, library):
        await engine.incremental.load()

        scope = await engine.scope.build_document_scope("doc")

        assert scope == frozenset({"doc", "c1", "c1a", "c2", "paper", "p1", "hl"})

    @pytest.mark.asyncio
    async def test_missing_document(self, engine, library):
        assert await engine.scope.build_document_scope("ghost") == frozenset()


class TestOrderedScope:
    """Queue order imposed on a scope set."""

    @pytest.mark.asyncio
    async def test_root_then_tree_order_then_sorted(self, engine, library):
        await engine.incremental.load()
        scope = await engine.scope.build_scope("doc")

        ordered = await engine.scope.ordered_scope("doc", scope)

        assert ordered[:4] == ["doc", "c1", "c1a", "c2"]
        assert ordered[4:] == sorted(scope - {"doc", "c1", "c1a", "c2"})

    @pytest.mark.asyncio
    async def test_empty_scope(self, engine, library):
        assert await engine.scope.ordered_scope("doc", frozenset()) == []


# ============================================================================
# Slot Filter
# ============================================================================


class TestSlotFilter:
    """Detection of auto-generated property children."""

    @pytest.mark.asyncio
    async def test_tag_id_intersection(self, library):
        slot_filter = SlotFilter(library)

        assert await slot_filter.is_slot_child(await library.find("slot-child"))
        assert not await slot_filter.is_slot_child(await library.find("ref"))

    @pytest.mark.asyncio
    async def test_name_fallback_when_lookup_unavailable(self, graph):
        graph.add_node("owner", tags=[INCREMENTAL_TAG])
        graph.add_node("child", "owner", "Next Rep Date")
        graph.register_slot(INCREMENTAL_TAG, "nextRepDate", "slot-def-2")
        graph.make_tag_lookup_unavailable("child")

        assert await SlotFilter(graph).is_slot_child(await graph.find("child"))

    @pytest.mark.asyncio
    async def test_slot_name_ignored_when_tag_lookup_succeeds(self, graph):
        graph.add_node("owner", tags=[INCREMENTAL_TAG])
        graph.add_node("child", "owner", "Priority")
        graph.register_slot(INCREMENTAL_TAG, "priority", "slot-def-1")

        slot_filter = SlotFilter(graph)

        assert await slot_filter.is_slot_child_by_name(await graph.find("child"))
        assert not await slot_filter.is_slot_child(await graph.find("child"))

    @pytest.mark.asyncio
    async def test_name_needs_slot_generating_parent(self, graph):
        graph.add_node("plain")
        graph.add_node("child", "plain", "Priority")

        assert not await SlotFilter(graph).is_slot_child(await graph.find("child"))

    @pytest.mark.asyncio
    async def test_sources_child_of_node_with_sources(self, graph):
        graph.add_node("note")
        graph.add_node("cited")
        graph.add_source("note", "cited")
        graph.add_node("child", "note", "Sources")

        assert await SlotFilter(graph).is_slot_child_by_name(await graph.find("child"))

    @pytest.mark.asyncio
    async def test_query_portal_name(self, graph):
        graph.add_node("owner", tags=[DOCUMENT_TAG])
        graph.add_node("child", "owner", "Query: open highlights")

        assert await SlotFilter(graph).is_slot_child_by_name(await graph.find("child"))

    @pytest.mark.asyncio
    async def test_exclude_slots(self, library):
        nodes = [await library.find("slot-child"), await library.find("ref")]

        kept = await SlotFilter(library).exclude_slots(nodes)

        assert [node.id for node in kept] == ["ref"]

    @pytest.mark.asyncio
    async def test_slot_ids_cached_until_cleared(self, graph):
        graph.register_slot(INCREMENTAL_TAG, "priority", "slot-a")
        slot_filter = SlotFilter(graph)

        assert await slot_filter.slot_ids() == {"slot-a"}
        graph.register_slot(INCREMENTAL_TAG, "nextRepDate", "slot-b")
        assert await slot_filter.slot_ids() == {"slot-a"}

        slot_filter.clear()
        assert await slot_filter.slot_ids() == {"slot-a", "slot-b"}
