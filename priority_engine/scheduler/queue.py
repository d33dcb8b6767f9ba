"""
Queue Scheduler.

Decides, one step at a time, whether the review session should show an
incremental item or defer to the host's ordinary card flow. Incremental
items are interleaved every `cards_per_item + 1` steps, sorted by priority
(or by document position in in-order mode) and lightly shuffled according
to the randomness preference.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from priority_engine.models import IncrementalItem, QueueMode, now_ms, round_half_up
from priority_engine.priority.incremental import IncrementalItemCache
from priority_engine.scheduler.preferences import NO_CARDS, QueuePreferences
from priority_engine.scope.resolver import ScopeResolver
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class QueueInfo:
    """What the host reports about the queue at each step."""

    sub_queue_id: str | None = None
    mode: QueueMode = QueueMode.SRS
    num_cards_remaining: int | None = None


@dataclass(frozen=True)
class SelectedItem:
    """An incremental item chosen for presentation."""

    node_id: str
    priority: int
    mode: QueueMode


@dataclass(frozen=True)
class Continue:
    """Defer to the ordinary review flow this step."""

    reason: str = ""


@dataclass
class QueueSessionState:
    """Ephemeral per-session state, persisted in the session tier."""

    seen_incremental: list[str] = field(default_factory=list)
    seen_cards: list[str] = field(default_factory=list)
    scope_ids: list[str] | None = None
    sub_queue_id: str | None = None
    counter: int = 0

    @classmethod
    async def load(cls, store: StateStore) -> QueueSessionState:
        return cls(
            seen_incremental=await store.get_session(keys.SEEN_INCREMENTAL_ITEMS, []),
            seen_cards=await store.get_session(keys.SEEN_CARDS, []),
            scope_ids=await store.get_session(keys.CURRENT_SCOPE_IDS),
            sub_queue_id=await store.get_session(keys.CURRENT_SUB_QUEUE_ID),
            counter=await store.get_session(keys.INTERLEAVE_COUNTER, 0),
        )

    async def save(self, store: StateStore) -> None:
        await store.set_session(keys.SEEN_INCREMENTAL_ITEMS, self.seen_incremental)
        await store.set_session(keys.SEEN_CARDS, self.seen_cards)
        await store.set_session(keys.CURRENT_SCOPE_IDS, self.scope_ids)
        await store.set_session(keys.CURRENT_SUB_QUEUE_ID, self.sub_queue_id)
        await store.set_session(keys.INTERLEAVE_COUNTER, self.counter)

    @staticmethod
    async def clear(store: StateStore) -> None:
        for key in (
            keys.SEEN_INCREMENTAL_ITEMS,
            keys.SEEN_CARDS,
            keys.CURRENT_SCOPE_IDS,
            keys.CURRENT_SUB_QUEUE_ID,
            keys.INTERLEAVE_COUNTER,
            keys.CURRENT_ITEM,
            keys.QUEUE_MODE,
            keys.REVIEW_START_TIME,
        ):
            await store.set_session(key, None)


class QueuePresentation(Protocol):
    """Host-side presentation hooks (layout and remaining-count badge)."""

    async def set_item_layout(self, active: bool) -> None: ...

    async def show_remaining(self, count: int | None) -> None: ...


class NullPresentation:
    """Presentation hooks that do nothing."""

    async def set_item_layout(self, active: bool) -> None:
        return None

    async def show_remaining(self, count: int | None) -> None:
        return None


def partial_shuffle(candidates: list, randomness: float, rng: random.Random) -> None:
    """Partial shuffle in place: round(randomness * n) random pairwise swaps."""
    n = len(candidates)
    for _ in range(round_half_up(randomness * n)):
        i, j = rng.randrange(n), rng.randrange(n)
        candidates[i], candidates[j] = candidates[j], candidates[i]


# =============================================================================
# Scheduler
# =============================================================================


class QueueScheduler:
    """Per-step selection of the next incremental item."""

    def __init__(
        self,
        store: StateStore,
        incremental: IncrementalItemCache,
        scope_resolver: ScopeResolver,
        preferences: QueuePreferences,
        presentation: QueuePresentation | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.incremental = incremental
        self.scope_resolver = scope_resolver
        self.preferences = preferences
        self.presentation = presentation or NullPresentation()
        self.rng = rng or random.Random()

    async def select_next(
        self,
        info: QueueInfo,
        at_ms: int | None = None,
    ) -> SelectedItem | Continue:
        """
        Run one scheduling step.

        Args:
            info: Queue state reported by the host
            at_ms: Reference time for due checks (defaults to now)

        Returns:
            SelectedItem to show, or Continue to defer to ordinary cards
        """
        now = at_ms if at_ms is not None else now_ms()

        if await self.preferences.cooldown_active(now):
            await self.presentation.set_item_layout(False)
            await self.presentation.show_remaining(None)
            return Continue("cooldown")

        state = await QueueSessionState.load(self.store)
        scope_ids = state.scope_ids
        if info.sub_queue_id and scope_ids is None:
            logger.debug(f"Scope for {info.sub_queue_id} not cached; computing on the fly")
            scope = await self.scope_resolver.build_scope(info.sub_queue_id)
            if not scope:
                return Continue("empty scope")
            scope_ids = await self.scope_resolver.ordered_scope(info.sub_queue_id, scope)

        items = await self.incremental.all()
        if not items:
            logger.warning("Incremental item cache is empty; reading items from the graph")
            items = await self.incremental.items_from_graph()

        candidates = self.filter_candidates(
            self.sort_items(items, info.mode, scope_ids),
            info,
            scope_ids,
            set(state.seen_incremental),
            now,
        )
        await self.presentation.show_remaining(len(candidates))

        cards_per_item = await self.preferences.cards_per_item()
        interval = cards_per_item + 1 if isinstance(cards_per_item, int) else cards_per_item
        show_item = (
            (isinstance(interval, int) and (state.counter + 1) % interval == 0)
            or info.num_cards_remaining == 0
            or interval == NO_CARDS
        )

        if not show_item:
            return await self._defer(state, "card turn")
        if not candidates:
            return await self._defer(state, "no candidates")

        self.shuffle(candidates, await self.preferences.randomness())

        chosen: IncrementalItem | None = None
        for candidate in candidates:
            if await self.incremental.read_from_graph(candidate.node_id) is not None:
                chosen = candidate
                break
            logger.debug(f"Skipping stale candidate {candidate.node_id}")
        if chosen is None:
            return await self._defer(state, "all candidates stale")

        state.seen_incremental.append(chosen.node_id)
        state.counter += 1
        await state.save(self.store)
        await self.store.set_session(keys.CURRENT_ITEM, chosen.node_id)
        await self.store.set_session(keys.QUEUE_MODE, info.mode.value)
        await self.store.set_session(keys.REVIEW_START_TIME, now)
        await self.presentation.set_item_layout(True)

        logger.debug(f"Showing incremental item {chosen.node_id} (priority {chosen.priority})")
        return SelectedItem(node_id=chosen.node_id, priority=chosen.priority, mode=info.mode)

    async def _defer(self, state: QueueSessionState, reason: str) -> Continue:
        state.counter += 1
        await state.save(self.store)
        await self.presentation.set_item_layout(False)
        return Continue(reason)

    @staticmethod
    def sort_items(
        items: list[IncrementalItem],
        mode: QueueMode,
        scope_ids: list[str] | None,
    ) -> list[IncrementalItem]:
        """Stable sort: document position in in-order mode, else priority."""
        if mode is QueueMode.IN_ORDER and scope_ids is not None:
            position = {node_id: i for i, node_id in enumerate(scope_ids)}
            return sorted(items, key=lambda item: position.get(item.node_id, len(position)))
        return sorted(items, key=lambda item: item.priority)

    @staticmethod
    def filter_candidates(
        items: list[IncrementalItem],
        info: QueueInfo,
        scope_ids: list[str] | None,
        seen: set[str],
        now: int,
    ) -> list[IncrementalItem]:
        scope = set(scope_ids) if info.sub_queue_id and scope_ids is not None else None
        ignore_due = info.mode in (QueueMode.PRACTICE_ALL, QueueMode.IN_ORDER)
        return [
            item
            for item in items
            if (scope is None or item.node_id in scope)
            and item.node_id not in seen
            and (ignore_due or item.is_due(now))
        ]

    def shuffle(self, candidates: list[IncrementalItem], randomness: float) -> None:
        partial_shuffle(candidates, randomness, self.rng)
