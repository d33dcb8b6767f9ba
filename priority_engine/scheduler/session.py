"""
Queue session lifecycle.

enter: reset per-session state and materialize the scope for the sub-queue
exit:  flush the cache, snapshot today's shields into history, clear state

A newer enter or any exit cancels an enter that is still resolving its scope,
so a superseded enter never writes session state.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from priority_engine.cache.priority_cache import PriorityCache
from priority_engine.cancellation import CancellationToken
from priority_engine.errors import OperationCancelled
from priority_engine.models import ItemType, ShieldStatus
from priority_engine.scheduler.queue import QueueSessionState
from priority_engine.scope.resolver import ScopeResolver
from priority_engine.shield.calculator import ShieldCalculator
from priority_engine.shield.history import ShieldHistory
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore


@dataclass
class SessionSummary:
    """Shields captured at session exit."""

    incremental: ShieldStatus
    card: ShieldStatus
    sub_queue_id: str | None = None


class QueueSessionManager:
    """Owns session entry and exit for the review queue."""

    def __init__(
        self,
        store: StateStore,
        scope_resolver: ScopeResolver,
        cache: PriorityCache,
        shields: ShieldCalculator,
        history: ShieldHistory,
    ):
        self.store = store
        self.scope_resolver = scope_resolver
        self.cache = cache
        self.shields = shields
        self.history = history
        self._enter_token: CancellationToken | None = None

    def _cancel_enter(self) -> None:
        if self._enter_token is not None:
            self._enter_token.cancel()
            self._enter_token = None

    async def enter(self, sub_queue_id: str | None = None) -> frozenset[str]:
        """
        Start a session.

        Args:
            sub_queue_id: Root node of the queue; None for the whole KB

        Returns:
            The resolved scope (empty when the whole KB is queued, the root
            is missing, or this enter was superseded)
        """
        self._cancel_enter()
        token = CancellationToken(f"session enter {sub_queue_id}")
        self._enter_token = token

        await QueueSessionState.clear(self.store)
        state = QueueSessionState(sub_queue_id=sub_queue_id)
        scope: frozenset[str] = frozenset()

        try:
            if sub_queue_id:
                scope = await self.scope_resolver.build_scope(sub_queue_id, token)
                state.scope_ids = await self.scope_resolver.ordered_scope(sub_queue_id, scope)
                token.raise_if_cancelled()
                logger.info(f"Session scope for {sub_queue_id}: {len(scope)} nodes")
        except OperationCancelled:
            logger.info(f"Session enter for {sub_queue_id} superseded")
            return frozenset()

        await state.save(self.store)
        if self._enter_token is token:
            self._enter_token = None
        return scope

    async def exit(self) -> SessionSummary:
        """
        End the session: force a heavy flush, save today's KB and scope
        shields for both item types, then clear the session state.
        """
        self._cancel_enter()
        await self.cache.flush_now(force_heavy=True)

        state = await QueueSessionState.load(self.store)
        scope = state.scope_ids
        incremental = await self.shields.incremental_status(scope)
        card = await self.shields.card_status(scope)

        await self._save(keys.INCREMENTAL_SHIELD_HISTORY, keys.INCREMENTAL_DOC_SHIELD_HISTORY,
                         incremental, state.sub_queue_id, ItemType.INCREMENTAL)
        await self._save(keys.CARD_SHIELD_HISTORY, keys.CARD_DOC_SHIELD_HISTORY,
                         card, state.sub_queue_id, ItemType.CARD)

        await QueueSessionState.clear(self.store)
        return SessionSummary(incremental=incremental, card=card, sub_queue_id=state.sub_queue_id)

    async def _save(
        self,
        kb_key: str,
        doc_key: str,
        status: ShieldStatus,
        sub_queue_id: str | None,
        item_type: ItemType,
    ) -> None:
        if status.kb is not None:
            await self.history.save_kb(kb_key, status.kb)
            logger.info(f"Saved KB {item_type.value} shield: {status.kb.absolute} @ {status.kb.percentile}%")
        if status.doc is not None and sub_queue_id:
            await self.history.save_scoped(doc_key, sub_queue_id, status.doc)
            logger.info(f"Saved {item_type.value} shield for {sub_queue_id}: {status.doc.absolute} @ {status.doc.percentile}%")

    async def mark_card_seen(self, node_id: str) -> None:
        """Record that the host showed an ordinary card of `node_id`."""
        seen = await self.store.get_session(keys.SEEN_CARDS, [])
        if node_id not in seen:
            seen.append(node_id)
            await self.store.set_session(keys.SEEN_CARDS, seen)
