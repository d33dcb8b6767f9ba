"""
Priority Review selection.

Picks the due incremental items and due card nodes of a scope (or the whole
knowledge base), ranks each against its own scope population, applies the
sorting randomness and mixes the two kinds into one capped list. Rendering
the list into a review document is left to the host.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from priority_engine.cache.percentiles import (
    PriorityDistribution,
    all_percentiles,
    bin_index,
    empty_bins,
    sort_by_priority,
)
from priority_engine.cache.priority_cache import PriorityCache
from priority_engine.graph.facade import GraphFacade
from priority_engine.models import PriorityRecord, now_ms
from priority_engine.priority.incremental import IncrementalItemCache
from priority_engine.scheduler.preferences import NO_CARDS, NO_ITEMS, CardsPerItem, QueuePreferences
from priority_engine.scheduler.queue import partial_shuffle
from priority_engine.scope.resolver import ScopeResolver

# =============================================================================
# Data Classes
# =============================================================================


class ReviewKind(str, Enum):
    INCREMENTAL = "incremental"
    CARD = "card"


@dataclass(frozen=True)
class ReviewEntry:
    """One node picked for review, with its percentile inside the scope."""

    node_id: str
    kind: ReviewKind
    priority: int
    percentile: int


@dataclass
class ReviewSelection:
    """Mixed review list plus the scope figures shown alongside it."""

    scope_root_id: str | None
    entries: list[ReviewEntry] = field(default_factory=list)
    item_scope_size: int = 0
    card_scope_size: int = 0
    card_count: int = 0
    item_randomness: float = 0.0
    card_randomness: float = 0.0

    @property
    def item_entries(self) -> list[ReviewEntry]:
        return [e for e in self.entries if e.kind is ReviewKind.INCREMENTAL]

    @property
    def card_entries(self) -> list[ReviewEntry]:
        return [e for e in self.entries if e.kind is ReviewKind.CARD]

    def distribution(self) -> PriorityDistribution:
        """Absolute bins by priority; relative bins by in-scope percentile."""
        absolute = empty_bins()
        relative = empty_bins()
        for entry in self.entries:
            attr = "incremental" if entry.kind is ReviewKind.INCREMENTAL else "card"
            abs_bin = absolute[bin_index(entry.priority)]
            rel_bin = relative[bin_index(entry.percentile)]
            setattr(abs_bin, attr, getattr(abs_bin, attr) + 1)
            setattr(rel_bin, attr, getattr(rel_bin, attr) + 1)
        return PriorityDistribution(bins=absolute, bins_kb_relative=relative)


# =============================================================================
# Mixing
# =============================================================================


def mix_review_entries(
    items: list[ReviewEntry],
    cards: list[ReviewEntry],
    item_count: int,
    card_ratio: CardsPerItem,
) -> list[ReviewEntry]:
    """
    Interleave already-ordered items and cards.

    With an integer ratio each cycle takes one item, then up to `card_ratio`
    cards, until `item_count` entries are taken or both lists run out.
    "no-cards" takes items only; "no-rem" takes cards only.
    """
    if item_count <= 0:
        return []
    if card_ratio == NO_CARDS:
        return items[:item_count]
    if card_ratio == NO_ITEMS:
        return cards[:item_count]

    mixed: list[ReviewEntry] = []
    item_index = card_index = 0
    while len(mixed) < item_count:
        added = False
        if item_index < len(items):
            mixed.append(items[item_index])
            item_index += 1
            added = True
        for _ in range(card_ratio):
            if len(mixed) >= item_count or card_index >= len(cards):
                break
            mixed.append(cards[card_index])
            card_index += 1
            added = True
        if not added:
            break
    return mixed


# =============================================================================
# Builder
# =============================================================================


class PriorityReviewBuilder:
    """Gathers due items and cards for a scope and mixes them."""

    def __init__(
        self,
        graph: GraphFacade,
        incremental: IncrementalItemCache,
        cache: PriorityCache,
        scope_resolver: ScopeResolver,
        preferences: QueuePreferences,
        rng: random.Random | None = None,
    ):
        self.graph = graph
        self.incremental = incremental
        self.cache = cache
        self.scope_resolver = scope_resolver
        self.preferences = preferences
        self.rng = rng or random.Random()

    async def select(
        self,
        scope_root_id: str | None,
        item_count: int,
        card_ratio: CardsPerItem | None = None,
        at_ms: int | None = None,
    ) -> ReviewSelection:
        """
        Build a priority review list.

        Args:
            scope_root_id: Root of the comprehensive scope, or None for the whole KB
            item_count: Maximum number of entries
            card_ratio: Cards per item; defaults to the queue preference
            at_ms: Reference time for due checks (defaults to now)

        Returns:
            ReviewSelection; empty when the scope root does not exist
        """
        now = at_ms if at_ms is not None else now_ms()
        if card_ratio is None:
            card_ratio = await self.preferences.cards_per_item()

        scope = None
        if scope_root_id is not None:
            scope = await self.scope_resolver.build_scope(scope_root_id)
            if not scope:
                logger.warning(f"Priority review scope {scope_root_id} is empty")
                return ReviewSelection(scope_root_id=scope_root_id)

        items = await self.incremental.all()
        if not items:
            logger.warning("Incremental item cache is empty; reading items from the graph")
            items = await self.incremental.items_from_graph()
        if scope is not None:
            items = [item for item in items if item.node_id in scope]

        due_cards = await self.cache.due_records(scope)
        universe = await self._card_universe(scope, due_cards)

        item_percentiles = all_percentiles(items)
        card_percentiles = all_percentiles(universe)

        due_items = []
        for item in sort_by_priority(i for i in items if i.is_due(now)):
            if await self.graph.find(item.node_id) is None:
                logger.debug(f"Skipping deleted item {item.node_id}")
                continue
            due_items.append(item)

        item_randomness = await self.preferences.randomness()
        card_randomness = await self.preferences.card_randomness()

        item_entries = [
            ReviewEntry(
                node_id=item.node_id,
                kind=ReviewKind.INCREMENTAL,
                priority=item.priority,
                percentile=item_percentiles.get(item.node_id, 100),
            )
            for item in due_items
        ]
        card_entries = [
            ReviewEntry(
                node_id=record.node_id,
                kind=ReviewKind.CARD,
                priority=record.priority,
                percentile=card_percentiles.get(record.node_id, 100),
            )
            for record in sort_by_priority(due_cards)
        ]
        partial_shuffle(item_entries, item_randomness, self.rng)
        partial_shuffle(card_entries, card_randomness, self.rng)

        entries = mix_review_entries(item_entries, card_entries, item_count, card_ratio)
        logger.info(
            f"Priority review: {len(entries)} entries from {len(item_entries)} due items "
            f"and {len(card_entries)} due card nodes"
        )
        return ReviewSelection(
            scope_root_id=scope_root_id,
            entries=entries,
            item_scope_size=len(items),
            card_scope_size=len(universe),
            card_count=sum(record.review_unit_count for record in universe),
            item_randomness=item_randomness,
            card_randomness=card_randomness,
        )

    async def _card_universe(
        self,
        scope: frozenset[str] | None,
        due_cards: list[PriorityRecord],
    ) -> list[PriorityRecord]:
        """Cached records in scope, plus any due record the cache is missing."""
        universe = [
            record for record in await self.cache.records() if scope is None or record.node_id in scope
        ]
        known = {record.node_id for record in universe}
        missing = [record for record in due_cards if record.node_id not in known]
        if missing:
            logger.warning(f"{len(missing)} due card nodes missing from the priority cache; merged for ranking")
            universe.extend(missing)
        return universe
