"""
Unit tests for IncrementalItemCache.

Covers parsing of the incremental tag slots and the session-tier collection.
"""

import json

import pytest

from priority_engine.graph.facade import INCREMENTAL_TAG, REP_HISTORY_SLOT
from priority_engine.priority.incremental import IncrementalItemCache
from priority_engine.storage import keys


@pytest.fixture
def cache(graph, store, settings):
    return IncrementalItemCache(graph, store, settings)


class TestReadFromGraph:
    """Parsing a node's incremental tag."""

    @pytest.mark.asyncio
    async def test_reads_priority_and_date(self, cache, add_item):
        add_item("a", 30, next_rep_date=1_234)

        item = await cache.read_from_graph("a")

        assert item.node_id == "a"
        assert item.priority == 30
        assert item.next_rep_date == 1_234
        assert item.history is None

    @pytest.mark.asyncio
    async def test_iso_date_accepted(self, cache, graph):
        graph.add_node("a")
        graph.set_tag("a", INCREMENTAL_TAG, {"priority": 5, "nextRepDate": "2024-01-02"})

        item = await cache.read_from_graph("a")

        assert isinstance(item.next_rep_date, int)
        assert item.next_rep_date > 0

    @pytest.mark.asyncio
    async def test_missing_rep_date_is_not_an_item(self, cache, graph):
        graph.add_node("a")
        graph.set_tag("a", INCREMENTAL_TAG, {"priority": 5})

        assert await cache.read_from_graph("a") is None

    @pytest.mark.asyncio
    async def test_missing_node_is_not_an_item(self, cache):
        assert await cache.read_from_graph("ghost") is None
        assert await cache.read_from_graph(None) is None

    @pytest.mark.asyncio
    async def test_unparsable_priority_uses_default(self, cache, graph, settings):
        graph.add_node("a")
        graph.set_tag("a", INCREMENTAL_TAG, {"priority": "urgent", "nextRepDate": 0})

        item = await cache.read_from_graph("a")

        assert item.priority == settings.default_incremental_priority

    @pytest.mark.asyncio
    async def test_history_parsed_from_json(self, cache, graph, add_item):
        add_item("a", 10)
        history = [{"date": 1, "scheduled": 2, "reviewTimeSeconds": 30}]
        await graph.set_property("a", INCREMENTAL_TAG, REP_HISTORY_SLOT, json.dumps(history))

        item = await cache.read_from_graph("a")

        assert len(item.history) == 1
        assert item.history[0].review_time_seconds == 30

    @pytest.mark.asyncio
    async def test_broken_history_json_is_ignored(self, cache, graph, add_item):
        add_item("a", 10)
        await graph.set_property("a", INCREMENTAL_TAG, REP_HISTORY_SLOT, "[{broken")

        item = await cache.read_from_graph("a")

        assert item is not None
        assert item.history is None

    @pytest.mark.asyncio
    async def test_badly_shaped_history_is_not_an_item(self, cache, graph, add_item):
        add_item("a", 10)
        await graph.set_property("a", INCREMENTAL_TAG, REP_HISTORY_SLOT, '{"date": 1}')

        assert await cache.read_from_graph("a") is None


class TestCollection:
    """The session-tier collection."""

    @pytest.mark.asyncio
    async def test_load_skips_invalid_items(self, cache, graph, add_item):
        add_item("a", 10)
        add_item("b", 20)
        graph.add_node("c")
        graph.set_tag("c", INCREMENTAL_TAG, {"priority": 5})

        loaded = await cache.load()

        assert [item.node_id for item in loaded] == ["a", "b"]
        assert [item.node_id for item in await cache.all()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_load_in_batches(self, graph, store, settings, add_item):
        for i in range(5):
            add_item(f"n{i}", i)
        cache = IncrementalItemCache(graph, store, settings.model_copy(update={"incremental_load_batch_size": 2}))

        loaded = await cache.load()

        assert len(loaded) == 5

    @pytest.mark.asyncio
    async def test_get_and_is_incremental(self, cache, add_item):
        add_item("a", 10)
        await cache.load()

        assert (await cache.get("a")).priority == 10
        assert await cache.is_incremental("a")
        assert not await cache.is_incremental("b")
        assert await cache.get(None) is None

    @pytest.mark.asyncio
    async def test_refresh_updates_and_removes(self, cache, graph, add_item):
        add_item("a", 10)
        await cache.load()

        await graph.set_property("a", INCREMENTAL_TAG, "priority", "40")
        refreshed = await cache.refresh("a")
        assert refreshed.priority == 40
        assert (await cache.get("a")).priority == 40

        await graph.remove_tag("a", INCREMENTAL_TAG)
        assert await cache.refresh("a") is None
        assert await cache.all() == []

    @pytest.mark.asyncio
    async def test_malformed_blobs_dropped(self, cache, store):
        await store.set_session(
            keys.ALL_INCREMENTAL_ITEMS,
            [
                {"nodeId": "a", "nextRepDate": 0, "priority": 10},
                {"nodeId": "b"},
                "garbage",
            ],
        )

        items = await cache.all()

        assert [item.node_id for item in items] == ["a"]
