"""
Priority Cache.

A percentile-annotated snapshot of every PriorityRecord, held in the session
tier of the state store. Writes are debounced:

- Light update: the record is patched in place and keeps its previous
  (now stale) kb_percentile
- Heavy update: all records are resorted by priority and every
  kb_percentile is reassigned

Cold start runs in two phases. Phase 1 loads nodes that already carry a
priority tag and publishes a ranked cache immediately. Phase 2 starts after
a short delay and works through the untagged nodes in small batches,
re-ranking after each one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from dataclasses import dataclass, field

from loguru import logger

from config import Settings, get_settings
from priority_engine.cache.debounce import (
    DebounceController,
    NeedsFetch,
    OptimisticPatch,
    PartialPatch,
    Patch,
    PendingUpdate,
)
from priority_engine.cache.percentiles import assign_kb_percentiles
from priority_engine.cancellation import CancellationToken, check
from priority_engine.errors import MalformedRecordError, OperationCancelled, PriorityEngineError
from priority_engine.graph.facade import PRIORITY_TAG, GraphFacade
from priority_engine.models import PriorityRecord, now_ms
from priority_engine.priority.resolver import PriorityResolver
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class FlushResult:
    """Outcome of one flush."""

    applied: int = 0
    removed: int = 0
    heavy: bool = False


@dataclass
class BuildResult:
    """Outcome of Phase 1 of a cold-start build."""

    candidates: int = 0
    tagged: int = 0
    untagged: list[str] = field(default_factory=list)


@dataclass
class DeferredProgress:
    """Running totals of the deferred Phase 2 loop."""

    total: int = 0
    processed: int = 0
    errors: int = 0


# =============================================================================
# Deferred Phase 2
# =============================================================================


class DeferredBuild:
    """
    Resumable batch loop over untagged nodes.

    Each `step()` handles one batch: auto-assigns priorities, reads back the
    records, then merges and re-ranks the cache. The token is checked after
    every suspension point; a cancelled step never merges a partial batch.
    """

    def __init__(
        self,
        cache: PriorityCache,
        node_ids: list[str],
        token: CancellationToken,
        batch_size: int,
    ):
        self.cache = cache
        self.node_ids = node_ids
        self.token = token
        self.batch_size = batch_size
        self.position = 0
        self.progress = DeferredProgress(total=len(node_ids))

    @property
    def done(self) -> bool:
        return self.position >= len(self.node_ids)

    async def step(self) -> bool:
        """
        Process the next batch.

        Returns:
            True while batches remain
        """
        if self.done:
            return False

        batch = self.node_ids[self.position : self.position + self.batch_size]
        resolver = self.cache.resolver
        new_records: list[PriorityRecord] = []

        for node_id in batch:
            node = await self.cache.graph.find(node_id)
            check(self.token)
            if node is None:
                self.progress.errors += 1
                continue
            try:
                await resolver.auto_assign_card_priority(node)
                check(self.token)
                new_records.append(await resolver.get_record(node))
            except OperationCancelled:
                raise
            except PriorityEngineError as e:
                logger.warning(f"Deferred build skipped {node_id}: {e}")
                self.progress.errors += 1
                continue
            check(self.token)
            self.progress.processed += 1

        if new_records:
            await self.cache.merge_and_rerank(new_records)

        self.position += len(batch)
        return not self.done

    async def run(self, delay_seconds: float, pause_seconds: float) -> DeferredProgress:
        logger.info(f"Deferred build: {len(self.node_ids)} untagged nodes queued")
        await asyncio.sleep(delay_seconds)
        check(self.token)
        while await self.step():
            await asyncio.sleep(pause_seconds)
            check(self.token)
        logger.info(
            f"Deferred build complete: {self.progress.processed} processed, "
            f"{self.progress.errors} errors"
        )
        return self.progress


# =============================================================================
# Priority Cache
# =============================================================================


class PriorityCache:
    """
    Owner of the session-tier PriorityRecord collection.

    All writers go through `update_cache` / `flush_now`; the build phases
    and merges serialize on one lock.
    """

    def __init__(
        self,
        graph: GraphFacade,
        store: StateStore,
        resolver: PriorityResolver,
        settings: Settings | None = None,
    ):
        self.graph = graph
        self.store = store
        self.resolver = resolver
        self.settings = settings or get_settings()

        self._lock = asyncio.Lock()
        self._debounce = DebounceController(self.settings.debounce_seconds, self._flush_on_timer)
        self._deferred: DeferredBuild | None = None
        self._deferred_task: asyncio.Task | None = None

    # =========================================================================
    # Reads
    # =========================================================================

    async def records(self) -> list[PriorityRecord]:
        """Validated snapshot of the cache; malformed entries are dropped."""
        raw = await self.store.get_session(keys.ALL_PRIORITY_RECORDS, [])
        records = []
        for blob in raw:
            try:
                records.append(PriorityRecord.from_blob(keys.ALL_PRIORITY_RECORDS, blob))
            except MalformedRecordError as e:
                logger.warning(f"Dropping record: {e}")
        return records

    async def record_for(self, node_id: str) -> PriorityRecord | None:
        for record in await self.records():
            if record.node_id == node_id:
                return record
        return None

    async def due_records(self, scope: Collection[str] | None = None) -> list[PriorityRecord]:
        """
        Records with due review units, optionally restricted to a scope.

        Uses the cached due counts; an empty cache falls back to reading
        review units straight from the graph.
        """
        records = await self.records()
        if not records:
            logger.warning("Priority cache is empty; computing due records from the graph")
            return await self._due_records_slow(scope)

        return [
            record
            for record in records
            if record.is_due and (scope is None or record.node_id in scope)
        ]

    async def _due_records_slow(self, scope: Collection[str] | None) -> list[PriorityRecord]:
        now = now_ms()
        due_counts: dict[str, int] = {}
        for unit in await self.graph.all_review_units():
            if unit.is_due(now):
                due_counts[unit.node_id] = due_counts.get(unit.node_id, 0) + 1

        results = []
        for node_id in due_counts:
            if scope is not None and node_id not in scope:
                continue
            node = await self.graph.find(node_id)
            if node is None:
                continue
            results.append(await self.resolver.get_record(node, at_ms=now))
        return results

    @property
    def pending(self) -> dict[str, PendingUpdate]:
        return self._debounce.pending

    # =========================================================================
    # Updates
    # =========================================================================

    async def update_cache(
        self,
        node_id: str,
        is_light: bool = False,
        patch: Patch | None = None,
    ) -> None:
        """
        Queue an update for `node_id` and restart the debounce timer.

        Args:
            node_id: Node whose record changed
            is_light: Patch in place without re-ranking
            patch: Known new values; None means read from the graph
        """
        try:
            record = await self._resolve_patch(patch or NeedsFetch(node_id))
        except PriorityEngineError as e:
            logger.warning(f"Cache update for {node_id} dropped: {e}")
            return
        self._debounce.schedule(node_id, PendingUpdate(record=record, is_light=is_light))

    async def _resolve_patch(self, patch: Patch) -> PriorityRecord | None:
        if isinstance(patch, OptimisticPatch):
            return patch.record

        node_id = patch.node_id
        node = await self.graph.find(node_id)
        if node is None:
            return None
        fetched = await self.resolver.get_record(node)

        if isinstance(patch, PartialPatch):
            merged = {**fetched.model_dump(), **patch.fields, "node_id": node_id}
            return PriorityRecord.model_validate(merged)
        return fetched

    async def flush_now(self, force_heavy: bool = True) -> FlushResult:
        """
        Cancel the timer and apply pending updates immediately.

        Waits for a timer flush that is already running, so the caller sees
        its writes. With force_heavy the percentiles are recomputed even when
        nothing is pending.
        """
        self._debounce.cancel_timer()
        await self._debounce.drain()
        return await self._flush(force_heavy)

    async def flush_light(self) -> FlushResult:
        """Flush without forcing a heavy recompute."""
        return await self.flush_now(force_heavy=False)

    async def _flush_on_timer(self) -> None:
        await self._flush(force_heavy=False)

    async def _flush(self, force_heavy: bool) -> FlushResult:
        pending = self._debounce.take()
        if not pending and not force_heavy:
            return FlushResult()

        heavy = force_heavy or any(not update.is_light for update in pending.values())
        result = FlushResult(heavy=heavy)

        async with self._lock:
            cache = await self.records()
            for node_id, update in pending.items():
                index = next((i for i, r in enumerate(cache) if r.node_id == node_id), -1)
                if index > -1:
                    if update.record is not None:
                        cache[index] = update.record.model_copy(
                            update={"kb_percentile": cache[index].kb_percentile}
                        )
                        result.applied += 1
                    else:
                        del cache[index]
                        result.removed += 1
                elif update.record is not None:
                    cache.append(update.record)
                    result.applied += 1

            if not pending and not cache:
                return result
            if heavy:
                logger.debug(f"Heavy recompute over {len(cache)} records")
                cache = assign_kb_percentiles(cache)
            await self._publish(cache)

        return result

    async def _publish(self, records: list[PriorityRecord]) -> None:
        await self.store.set_session(keys.ALL_PRIORITY_RECORDS, [r.to_blob() for r in records])
        await self.store.set_session(keys.PRIORITY_CACHE_REFRESH, now_ms())

    async def merge_and_rerank(self, new_records: list[PriorityRecord]) -> None:
        """Replace-or-append records by node id, then run a heavy recompute."""
        async with self._lock:
            merged = {record.node_id: record for record in await self.records()}
            for record in new_records:
                merged[record.node_id] = record
            await self._publish(assign_kb_percentiles(merged.values()))

    async def clear(self) -> None:
        self._debounce.cancel_timer()
        self._debounce.take()
        async with self._lock:
            await self._publish([])

    # =========================================================================
    # Builds
    # =========================================================================

    async def _candidate_ids(self) -> list[str]:
        """Nodes with review units plus nodes tagged with a priority, deduplicated."""
        unit_ids = [unit.node_id for unit in await self.graph.all_review_units()]
        tagged_ids = await self.graph.tagged_with(PRIORITY_TAG)
        return list(dict.fromkeys([*unit_ids, *tagged_ids]))

    async def build(self, token: CancellationToken | None = None) -> BuildResult:
        """
        Cold-start build.

        Phase 1 resolves every already-tagged candidate and publishes a
        ranked cache. Untagged candidates are handed to a deferred Phase 2
        task; use `wait_for_deferred()` to await it.
        """
        token = token or CancellationToken("priority cache build")
        candidates = await self._candidate_ids()
        check(token)
        result = BuildResult(candidates=len(candidates))
        logger.info(f"Priority cache build: {len(candidates)} candidate nodes")

        if not candidates:
            async with self._lock:
                await self._publish([])
            return result

        tagged: list[PriorityRecord] = []
        batch_size = self.settings.cache_check_batch_size
        for start in range(0, len(candidates), batch_size):
            for node_id in candidates[start : start + batch_size]:
                node = await self.graph.find(node_id)
                check(token)
                if node is None:
                    continue
                if await self.graph.has_tag(node.id, PRIORITY_TAG):
                    tagged.append(await self.resolver.get_record(node))
                else:
                    result.untagged.append(node.id)
                check(token)

        result.tagged = len(tagged)
        async with self._lock:
            await self._publish(assign_kb_percentiles(tagged))
        logger.info(
            f"Phase 1 complete: {result.tagged} tagged records, "
            f"{len(result.untagged)} deferred"
        )

        if result.untagged:
            self.start_deferred(result.untagged, token)
        return result

    def start_deferred(self, node_ids: list[str], token: CancellationToken) -> DeferredBuild:
        self.cancel_deferred()
        self._deferred = DeferredBuild(
            self, node_ids, token, self.settings.cache_deferred_batch_size
        )
        self._deferred_task = asyncio.create_task(
            self._deferred.run(
                self.settings.cache_deferred_delay_seconds,
                self.settings.cache_deferred_pause_seconds,
            )
        )
        return self._deferred

    def cancel_deferred(self) -> None:
        if self._deferred is not None and not self._deferred.done:
            self._deferred.token.cancel()

    async def wait_for_deferred(self) -> DeferredProgress | None:
        """Await the deferred Phase 2 task; None if none ran or it was cancelled."""
        if self._deferred_task is None:
            return None
        try:
            return await self._deferred_task
        except OperationCancelled:
            logger.info("Deferred build cancelled")
            return None

    async def records_from_graph(self, token: CancellationToken | None = None) -> list[PriorityRecord]:
        """Resolve every candidate straight from the graph, unranked and unpublished."""
        candidates = await self._candidate_ids()
        check(token)
        records: list[PriorityRecord] = []
        batch_size = self.settings.cache_check_batch_size

        for start in range(0, len(candidates), batch_size):
            for node_id in candidates[start : start + batch_size]:
                node = await self.graph.find(node_id)
                check(token)
                if node is None:
                    continue
                records.append(await self.resolver.get_record(node))
                check(token)
            logger.debug(f"Resolved {min(start + batch_size, len(candidates))}/{len(candidates)} candidates")
        return records

    async def build_optimized(self, token: CancellationToken | None = None) -> int:
        """
        Non-deferred build used after a bulk pre-tagging pass: resolve every
        candidate in batches, then run exactly one heavy recompute.

        Returns:
            Number of records published
        """
        records = await self.records_from_graph(token)
        async with self._lock:
            await self._publish(assign_kb_percentiles(records))
        logger.info(f"Optimized build published {len(records)} records")
        return len(records)

    async def aclose(self) -> None:
        self.cancel_deferred()
        await self._debounce.aclose()
        if self._deferred_task is not None:
            await asyncio.gather(self._deferred_task, return_exceptions=True)
