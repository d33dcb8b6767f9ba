"""
Queue preferences stored in the durable tier.

- cards per incremental item: int, "no-rem" (never interleave) or
  "no-cards" (incremental items only)
- sorting randomness: float in [0, 1]
- card randomness: float in [0, 1], used when building a priority review
- cooldown: epoch-ms end of a "no incremental items" pause
"""

from __future__ import annotations

from typing import Literal, Union

from loguru import logger

from config import Settings, get_settings
from priority_engine.models import now_ms
from priority_engine.storage import keys
from priority_engine.storage.state_store import StateStore

NO_ITEMS = "no-rem"
NO_CARDS = "no-cards"

CardsPerItem = Union[int, Literal["no-rem", "no-cards"]]


class QueuePreferences:
    """Getters and validating setters for scheduling preferences."""

    def __init__(self, store: StateStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def cards_per_item(self) -> CardsPerItem:
        value = await self.store.get_durable(keys.CARDS_PER_ITEM)
        if value in (NO_ITEMS, NO_CARDS):
            return value
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        return self.settings.default_cards_per_item

    async def set_cards_per_item(self, value: CardsPerItem) -> None:
        if value not in (NO_ITEMS, NO_CARDS) and not (
            isinstance(value, int) and not isinstance(value, bool) and value >= 0
        ):
            raise ValueError(f"cards per item must be a non-negative int, 'no-rem' or 'no-cards', got {value!r}")
        await self.store.set_durable(keys.CARDS_PER_ITEM, value)

    async def randomness(self) -> float:
        return await self._read_randomness(keys.SORTING_RANDOMNESS, self.settings.default_sorting_randomness)

    async def set_randomness(self, value: float) -> None:
        await self.store.set_durable(keys.SORTING_RANDOMNESS, min(1.0, max(0.0, float(value))))

    async def card_randomness(self) -> float:
        """Randomness applied to due cards in a priority review."""
        return await self._read_randomness(keys.CARD_RANDOMNESS, self.settings.default_card_randomness)

    async def set_card_randomness(self, value: float) -> None:
        await self.store.set_durable(keys.CARD_RANDOMNESS, min(1.0, max(0.0, float(value))))

    async def _read_randomness(self, key: str, default: float) -> float:
        value = await self.store.get_durable(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return min(1.0, max(0.0, float(value)))
        return default

    # =========================================================================
    # Cooldown
    # =========================================================================

    async def cooldown_end(self) -> int | None:
        value = await self.store.get_durable(keys.COOLDOWN_END)
        return value if isinstance(value, int) else None

    async def start_cooldown(self, minutes: float, at_ms: int | None = None) -> int:
        """
        Suppress incremental items for `minutes`.

        Returns:
            Cooldown end timestamp (epoch ms)
        """
        end = (at_ms if at_ms is not None else now_ms()) + int(minutes * 60_000)
        await self.store.set_durable(keys.COOLDOWN_END, end)
        logger.info(f"Incremental items paused for {minutes} minutes")
        return end

    async def clear_cooldown(self) -> None:
        await self.store.set_durable(keys.COOLDOWN_END, None)

    async def cooldown_active(self, at_ms: int | None = None) -> bool:
        """True while a cooldown is running; an expired cooldown is cleared."""
        end = await self.cooldown_end()
        if end is None:
            return False
        now = at_ms if at_ms is not None else now_ms()
        if end > now:
            return True
        await self.clear_cooldown()
        logger.debug("Expired cooldown cleared")
        return False
