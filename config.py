"""
Configuration settings for the incremental priority engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Priority Defaults
    # ========================================
    default_card_priority: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Priority given to card-bearing nodes with no manual or inherited priority",
    )
    default_incremental_priority: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Priority given to new incremental items with no ancestor priority",
    )

    # ========================================
    # Priority Cache
    # ========================================
    cache_debounce_ms: int = Field(
        default=200,
        description="Debounce window for coalescing cache updates (milliseconds)",
    )
    cache_check_batch_size: int = Field(
        default=100,
        description="Nodes resolved per batch during Phase 1 and optimized builds",
    )
    cache_deferred_delay_seconds: float = Field(
        default=3.0,
        description="Delay before Phase 2 (untagged nodes) starts after Phase 1",
    )
    cache_deferred_batch_size: int = Field(
        default=30,
        description="Untagged nodes processed per Phase 2 batch",
    )
    cache_deferred_pause_seconds: float = Field(
        default=0.1,
        description="Pause between Phase 2 batches to keep the event loop responsive",
    )
    pretag_batch_size: int = Field(
        default=50,
        description="Nodes processed per batch by the bulk pre-tagging pass",
    )

    # ========================================
    # Incremental Items
    # ========================================
    incremental_load_batch_size: int = Field(
        default=500,
        description="Incremental items read per batch when loading the item cache",
    )
    incremental_load_pause_seconds: float = Field(
        default=0.1,
        description="Pause between incremental item load batches",
    )

    # ========================================
    # Queue Scheduling
    # ========================================
    default_cards_per_item: int = Field(
        default=4,
        ge=0,
        description="Ordinary review units shown between incremental items",
    )
    default_sorting_randomness: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Fraction of candidates swapped at random (0 = strict priority order)",
    )
    default_card_randomness: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Fraction of due cards swapped at random when building a priority review",
    )

    # ========================================
    # Persistence
    # ========================================
    state_db_path: Path = Field(
        default=Path.home() / ".incremental-priority" / "state.db",
        description="SQLite file backing the durable key-value tier",
    )
    knowledge_base_id: str = Field(
        default="global",
        description="Namespace for shield history entries",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    @property
    def debounce_seconds(self) -> float:
        return self.cache_debounce_ms / 1000

    def get_cache_config(self) -> dict[str, float | int]:
        """Get priority cache tuning as a dictionary."""
        return {
            "debounce_ms": self.cache_debounce_ms,
            "check_batch_size": self.cache_check_batch_size,
            "deferred_delay_seconds": self.cache_deferred_delay_seconds,
            "deferred_batch_size": self.cache_deferred_batch_size,
            "deferred_pause_seconds": self.cache_deferred_pause_seconds,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
