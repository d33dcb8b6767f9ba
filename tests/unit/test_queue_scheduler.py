"""
Unit tests for QueueScheduler.

Every step passes an explicit `at_ms` so due checks are deterministic:
items due at 0 are due, items due at FAR_FUTURE are not.
"""

import random

import pytest

from priority_engine.engine import PriorityEngine
from priority_engine.graph.facade import INCREMENTAL_TAG
from priority_engine.models import IncrementalItem, QueueMode
from priority_engine.scheduler.preferences import NO_CARDS, NO_ITEMS
from priority_engine.scheduler.queue import Continue, QueueInfo, SelectedItem
from priority_engine.storage import keys

FAR_FUTURE = 9_999_999_999_999
NOW = 1_000


class RecordingPresentation:
    """Captures presentation hook calls."""

    def __init__(self):
        self.layouts = []
        self.remaining = []

    async def set_item_layout(self, active):
        self.layouts.append(active)

    async def show_remaining(self, count):
        self.remaining.append(count)


async def run_steps(scheduler, steps, info=None):
    info = info or QueueInfo()
    return [await scheduler.select_next(info, at_ms=NOW) for _ in range(steps)]


@pytest.fixture
def three_items(add_item):
    add_item("a", 10)
    add_item("b", 50)
    add_item("c", 90)


# ============================================================================
# Interleaving
# ============================================================================


class TestInterleaving:
    """Counter-based interleaving of items with ordinary cards."""

    @pytest.mark.asyncio
    async def test_item_every_k_plus_one_steps(self, engine, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(2)

        results = await run_steps(engine.scheduler, 6)

        assert results[0] == Continue("card turn")
        assert results[1] == Continue("card turn")
        assert results[2] == SelectedItem(node_id="a", priority=10, mode=QueueMode.SRS)
        assert isinstance(results[3], Continue)
        assert isinstance(results[4], Continue)
        assert results[5].node_id == "b"
        assert await engine.store.get_session(keys.INTERLEAVE_COUNTER) == 6

    @pytest.mark.asyncio
    async def test_zero_cards_per_item_shows_every_step(self, engine, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)

        results = await run_steps(engine.scheduler, 4)

        assert [r.node_id for r in results[:3]] == ["a", "b", "c"]
        assert results[3] == Continue("no candidates")

    @pytest.mark.asyncio
    async def test_no_cards_shows_until_exhausted(self, engine, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(NO_CARDS)

        results = await run_steps(engine.scheduler, 4)

        assert [r.node_id for r in results[:3]] == ["a", "b", "c"]
        assert results[3] == Continue("no candidates")

    @pytest.mark.asyncio
    async def test_no_items_never_shows(self, engine, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(NO_ITEMS)

        results = await run_steps(engine.scheduler, 10)

        assert all(r == Continue("card turn") for r in results)

    @pytest.mark.asyncio
    async def test_empty_card_queue_shows_immediately(self, engine, three_items):
        await engine.incremental.load()

        result = await engine.scheduler.select_next(QueueInfo(num_cards_remaining=0), at_ms=NOW)

        assert result.node_id == "a"

    @pytest.mark.asyncio
    async def test_unloaded_item_cache_reads_the_graph(self, engine, add_item):
        add_item("a", 10)
        add_item("later", 5, FAR_FUTURE)

        result = await engine.scheduler.select_next(QueueInfo(num_cards_remaining=0), at_ms=NOW)

        assert result == SelectedItem(node_id="a", priority=10, mode=QueueMode.SRS)
        assert await engine.store.get_session(keys.ALL_INCREMENTAL_ITEMS) is None


# ============================================================================
# Candidate Selection
# ============================================================================


class TestCandidates:
    """Filtering, ordering and staleness."""

    @pytest.mark.asyncio
    async def test_srs_excludes_items_not_due(self, engine, add_item):
        add_item("later", 10, FAR_FUTURE)
        add_item("now", 50)
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)

        result = await engine.scheduler.select_next(QueueInfo(), at_ms=NOW)

        assert result.node_id == "now"

    @pytest.mark.asyncio
    async def test_practice_all_ignores_due_date(self, engine, add_item):
        add_item("later", 10, FAR_FUTURE)
        add_item("now", 50)
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)

        result = await engine.scheduler.select_next(QueueInfo(mode=QueueMode.PRACTICE_ALL), at_ms=NOW)

        assert result.node_id == "later"
        assert result.mode is QueueMode.PRACTICE_ALL

    @pytest.mark.asyncio
    async def test_in_order_follows_document_position(self, engine, graph, add_item):
        graph.add_node("doc")
        add_item("first", 90, FAR_FUTURE, parent_id="doc")
        add_item("second", 10, parent_id="doc")
        add_item("outside", 1)
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)
        await engine.session.enter("doc")

        info = QueueInfo(sub_queue_id="doc", mode=QueueMode.IN_ORDER)
        results = await run_steps(engine.scheduler, 3, info)

        assert [r.node_id for r in results[:2]] == ["first", "second"]
        assert results[2] == Continue("no candidates")

    @pytest.mark.asyncio
    async def test_sub_queue_scope_computed_on_the_fly(self, engine, graph, add_item):
        graph.add_node("doc")
        add_item("inside", 60, parent_id="doc")
        add_item("outside", 5)
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)

        result = await engine.scheduler.select_next(QueueInfo(sub_queue_id="doc"), at_ms=NOW)

        assert result.node_id == "inside"

    @pytest.mark.asyncio
    async def test_missing_sub_queue_is_empty_scope(self, engine, three_items):
        await engine.incremental.load()

        result = await engine.scheduler.select_next(QueueInfo(sub_queue_id="ghost"), at_ms=NOW)

        assert result == Continue("empty scope")
        assert await engine.store.get_session(keys.INTERLEAVE_COUNTER) is None

    @pytest.mark.asyncio
    async def test_stale_candidate_skipped(self, engine, graph, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)
        await graph.remove_tag("a", INCREMENTAL_TAG)

        result = await engine.scheduler.select_next(QueueInfo(), at_ms=NOW)

        assert result.node_id == "b"

    @pytest.mark.asyncio
    async def test_all_candidates_stale(self, engine, graph, add_item):
        add_item("a", 10)
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)
        graph.delete_node("a")

        result = await engine.scheduler.select_next(QueueInfo(), at_ms=NOW)

        assert result == Continue("all candidates stale")
        assert await engine.store.get_session(keys.INTERLEAVE_COUNTER) == 1


# ============================================================================
# Session Side Effects
# ============================================================================


class TestSideEffects:
    """Session keys, cooldown and presentation hooks."""

    @pytest.mark.asyncio
    async def test_selection_writes_session_keys(self, engine, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)

        await engine.scheduler.select_next(QueueInfo(), at_ms=NOW)

        store = engine.store
        assert await store.get_session(keys.CURRENT_ITEM) == "a"
        assert await store.get_session(keys.QUEUE_MODE) == "srs"
        assert await store.get_session(keys.REVIEW_START_TIME) == NOW
        assert await store.get_session(keys.SEEN_INCREMENTAL_ITEMS) == ["a"]

    @pytest.mark.asyncio
    async def test_cooldown_defers_without_counting(self, engine, three_items):
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(0)
        await engine.preferences.start_cooldown(5, at_ms=NOW)

        result = await engine.scheduler.select_next(QueueInfo(), at_ms=NOW)

        assert result == Continue("cooldown")
        assert await engine.store.get_session(keys.INTERLEAVE_COUNTER) is None

    @pytest.mark.asyncio
    async def test_presentation_hooks(self, graph, store, settings, add_item):
        presentation = RecordingPresentation()
        engine = PriorityEngine.create(graph, store, settings, presentation=presentation)
        add_item("a", 10)
        add_item("b", 20)
        await engine.incremental.load()
        await engine.preferences.set_cards_per_item(1)

        await run_steps(engine.scheduler, 2)

        assert presentation.remaining == [2, 2]
        assert presentation.layouts == [False, True]

        await engine.preferences.start_cooldown(5, at_ms=NOW)
        await engine.scheduler.select_next(QueueInfo(), at_ms=NOW)

        assert presentation.layouts[-1] is False
        assert presentation.remaining[-1] is None


class TestShuffle:
    """Partial shuffle by randomness."""

    def items(self, count):
        return [IncrementalItem(node_id=f"n{i}", next_rep_date=0, priority=i) for i in range(count)]

    def test_zero_randomness_keeps_order(self, engine):
        candidates = self.items(5)

        engine.scheduler.shuffle(candidates, 0.0)

        assert [c.node_id for c in candidates] == ["n0", "n1", "n2", "n3", "n4"]

    def test_full_randomness_is_a_permutation(self, engine):
        engine.scheduler.rng = random.Random(3)
        candidates = self.items(20)

        engine.scheduler.shuffle(candidates, 1.0)

        assert sorted(c.node_id for c in candidates) == sorted(f"n{i}" for i in range(20))

    def test_empty(self, engine):
        candidates = []

        engine.scheduler.shuffle(candidates, 1.0)

        assert candidates == []
