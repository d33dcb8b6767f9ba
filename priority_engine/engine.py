"""
Component wiring.

Builds every engine component around one graph facade and one state store
so callers (CLI, host integrations, tests) share a single cache and session.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from config import Settings, get_settings
from priority_engine.cache.maintenance import PriorityMaintenance
from priority_engine.cache.priority_cache import PriorityCache
from priority_engine.graph.facade import GraphFacade
from priority_engine.priority.incremental import IncrementalItemCache
from priority_engine.priority.resolver import PriorityResolver
from priority_engine.scheduler.preferences import QueuePreferences
from priority_engine.scheduler.queue import QueuePresentation, QueueScheduler
from priority_engine.scheduler.review import PriorityReviewBuilder
from priority_engine.scheduler.session import QueueSessionManager
from priority_engine.scope.resolver import ScopeResolver
from priority_engine.scope.slot_filter import SlotFilter
from priority_engine.shield.calculator import ShieldCalculator
from priority_engine.shield.history import ShieldHistory
from priority_engine.storage.state_store import StateStore


@dataclass
class PriorityEngine:
    """All components, wired."""

    graph: GraphFacade
    store: StateStore
    settings: Settings
    incremental: IncrementalItemCache
    resolver: PriorityResolver
    scope: ScopeResolver
    cache: PriorityCache
    preferences: QueuePreferences
    scheduler: QueueScheduler
    review: PriorityReviewBuilder
    shields: ShieldCalculator
    history: ShieldHistory
    session: QueueSessionManager
    maintenance: PriorityMaintenance

    @classmethod
    def create(
        cls,
        graph: GraphFacade,
        store: StateStore,
        settings: Settings | None = None,
        presentation: QueuePresentation | None = None,
        rng: random.Random | None = None,
    ) -> PriorityEngine:
        settings = settings or get_settings()
        incremental = IncrementalItemCache(graph, store, settings)
        resolver = PriorityResolver(graph, incremental, settings)
        scope = ScopeResolver(graph, incremental, SlotFilter(graph))
        cache = PriorityCache(graph, store, resolver, settings)
        preferences = QueuePreferences(store, settings)
        shields = ShieldCalculator(store, cache, incremental)
        history = ShieldHistory(store, settings)
        rng = rng or random.Random()
        return cls(
            graph=graph,
            store=store,
            settings=settings,
            incremental=incremental,
            resolver=resolver,
            scope=scope,
            cache=cache,
            preferences=preferences,
            scheduler=QueueScheduler(store, incremental, scope, preferences, presentation, rng),
            review=PriorityReviewBuilder(graph, incremental, cache, scope, preferences, rng),
            shields=shields,
            history=history,
            session=QueueSessionManager(store, scope, cache, shields, history),
            maintenance=PriorityMaintenance(graph, store, resolver, cache, history, settings),
        )

    async def start(self) -> None:
        """Load incremental items, then cold-start the priority cache."""
        await self.incremental.load()
        await self.cache.build()

    async def aclose(self) -> None:
        await self.cache.aclose()
        self.store.close()
