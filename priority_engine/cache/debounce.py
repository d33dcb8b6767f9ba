"""
Debounced pending-update map for the Priority Cache.

Cache writes arrive as patches. Each patch is resolved to a full record (or
None for "remove") before it enters the pending map; repeated updates to the
same node inside the debounce window collapse to the latest one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Union

from loguru import logger

from priority_engine.models import PriorityRecord

# =============================================================================
# Patch Variants
# =============================================================================


@dataclass(frozen=True)
class OptimisticPatch:
    """Caller already knows the complete new record; no graph read needed."""

    record: PriorityRecord


@dataclass(frozen=True)
class PartialPatch:
    """Some fields are known; the rest are fetched and the patch merged on top."""

    node_id: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NeedsFetch:
    """Nothing is known; the record is read from the graph."""

    node_id: str


Patch = Union[OptimisticPatch, PartialPatch, NeedsFetch]


@dataclass
class PendingUpdate:
    """A resolved patch waiting for the next flush."""

    record: PriorityRecord | None
    is_light: bool


# =============================================================================
# Controller
# =============================================================================


class DebounceController:
    """
    Owns the pending-update map and the debounce timer.

    `schedule` restarts the timer; when it expires `on_expire` is awaited.
    Once the timer has fired the flush is no longer cancellable by a later
    `schedule`, which simply starts a fresh timer.
    """

    def __init__(self, delay_seconds: float, on_expire: Callable[[], Awaitable[None]]):
        self.delay_seconds = delay_seconds
        self._on_expire = on_expire
        self._pending: dict[str, PendingUpdate] = {}
        self._timer: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> dict[str, PendingUpdate]:
        return dict(self._pending)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def schedule(self, node_id: str, update: PendingUpdate) -> None:
        self._pending[node_id] = update
        self.cancel_timer()
        self._timer = asyncio.create_task(self._fire())

    def cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def take(self) -> dict[str, PendingUpdate]:
        """Atomically snapshot and clear the pending map."""
        snapshot = self._pending
        self._pending = {}
        return snapshot

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        task = asyncio.current_task()
        self._timer = None
        if task is not None:
            self._running.add(task)
        try:
            await self._on_expire()
        except Exception as e:
            logger.exception(f"Debounced cache flush failed: {e}")
        finally:
            if task is not None:
                self._running.discard(task)

    async def drain(self) -> None:
        """Wait for any flush the timer already started."""
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    async def aclose(self) -> None:
        self.cancel_timer()
        await self.drain()
