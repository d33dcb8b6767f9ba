"""
Domain models for priority resolution and queue scheduling.

Persisted shapes (priority records, incremental items, shield records) are
pydantic models serialized with camelCase aliases so the stored blobs match
the record layout the rest of the system reads. Everything read back from
storage goes through `model_validate`; blobs that fail validation are
treated as absent by the caller.
"""

from __future__ import annotations

import math
import time
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from priority_engine.errors import MalformedRecordError

MIN_PRIORITY = 0
MAX_PRIORITY = 100


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def clamp_priority(value: int | float) -> int:
    """Clamp a priority into [0, 100]."""
    return int(max(MIN_PRIORITY, min(MAX_PRIORITY, round_half_up(value))))


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def parse_priority(raw: Any) -> int | None:
    """Parse a stored priority value; None when it is not an integer."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return clamp_priority(raw)
    try:
        return clamp_priority(int(str(raw).strip()))
    except ValueError:
        return None


class PrioritySource(str, Enum):
    """Where a node's effective priority came from."""

    MANUAL = "manual"
    INHERITED = "inherited"
    DEFAULT = "default"


class QueueMode(str, Enum):
    """Queue modes reported by the review host."""

    SRS = "srs"
    PRACTICE_ALL = "practice-all"
    IN_ORDER = "in-order"
    EDITOR = "editor"


class ItemType(str, Enum):
    """Item populations tracked by the priority shield."""

    INCREMENTAL = "incremental"
    CARD = "card"


M = TypeVar("M", bound="_PersistedModel")


class _PersistedModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_blob(cls: type[M], key: str, blob: Any) -> M:
        """Validate a stored blob; raises MalformedRecordError on a bad shape."""
        try:
            return cls.model_validate(blob)
        except ValidationError as e:
            raise MalformedRecordError(key, f"{e.error_count()} validation errors") from e


class PriorityRecord(_PersistedModel):
    """Cached priority of one node that carries review units or a priority tag."""

    node_id: str
    priority: int
    source: PrioritySource
    last_updated: int = 0
    review_unit_count: int = 0
    due_unit_count: int = 0
    kb_percentile: int | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        parsed = parse_priority(value)
        if parsed is None:
            raise ValueError(f"priority must be an integer, got {value!r}")
        return parsed

    @property
    def is_due(self) -> bool:
        return self.due_unit_count > 0


class IncrementalRep(_PersistedModel):
    """One entry in an incremental item's repetition history."""

    date: int
    scheduled: int
    interval: float | None = None
    review_time_seconds: float | None = None
    was_early: bool | None = None
    days_early_or_late: float | None = None
    queue_mode: QueueMode | None = None


class IncrementalItem(_PersistedModel):
    """A node under active incremental scheduling."""

    node_id: str
    next_rep_date: int
    priority: int
    history: list[IncrementalRep] | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        parsed = parse_priority(value)
        if parsed is None:
            raise ValueError(f"priority must be an integer, got {value!r}")
        return parsed

    def is_due(self, at_ms: int | None = None) -> bool:
        return (at_ms if at_ms is not None else now_ms()) >= self.next_rep_date


class ShieldRecord(_PersistedModel):
    """Priority shield snapshot: the most important due item still unreviewed."""

    absolute: int | None = None
    percentile: int | None = None
    universe_size: int = 0


class ShieldStatus(BaseModel):
    """KB-wide and scope-wide shield for one item type."""

    kb: ShieldRecord | None = None
    doc: ShieldRecord | None = None


class ResolvedPriority(BaseModel):
    """Outcome of priority resolution, before anything is written."""

    model_config = ConfigDict(frozen=True)

    priority: int = Field(ge=MIN_PRIORITY, le=MAX_PRIORITY)
    source: PrioritySource
