"""
Percentile ranking helpers.

All rankings use a stable sort by priority (ties keep their input order) and
assign position i of N the percentile round_half_up((i + 1) / N * 100).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, TypeVar

from priority_engine.models import PriorityRecord, clamp_priority, round_half_up

NUM_BINS = 20
BIN_WIDTH = 5


class Prioritized(Protocol):
    node_id: str
    priority: int


P = TypeVar("P", bound=Prioritized)


def rank_percentile(position: int, total: int) -> int:
    """Percentile of the zero-based `position` among `total` ranked items."""
    if total <= 0:
        return 0
    return round_half_up((position + 1) / total * 100)


def sort_by_priority(items: Iterable[P]) -> list[P]:
    return sorted(items, key=lambda item: item.priority)


def assign_kb_percentiles(records: Iterable[PriorityRecord]) -> list[PriorityRecord]:
    """
    Heavy recompute: resort records by priority and reassign kb_percentile.

    Returns:
        New records in ascending priority order
    """
    ordered = sort_by_priority(records)
    total = len(ordered)
    return [
        record.model_copy(update={"kb_percentile": rank_percentile(i, total)})
        for i, record in enumerate(ordered)
    ]


def all_percentiles(items: Sequence[Prioritized]) -> dict[str, int]:
    """Map node id -> percentile within `items`."""
    ordered = sort_by_priority(items)
    total = len(ordered)
    return {item.node_id: rank_percentile(i, total) for i, item in enumerate(ordered)}


def relative_percentile(items: Sequence[Prioritized], node_id: str) -> int | None:
    """Percentile of one node within `items`; None when it is not among them."""
    ordered = sort_by_priority(items)
    for i, item in enumerate(ordered):
        if item.node_id == node_id:
            return rank_percentile(i, len(ordered))
    return None


# =============================================================================
# Priority Distribution
# =============================================================================


@dataclass
class DistributionBin:
    """Item counts for one priority (or percentile) range."""

    low: int
    high: int
    incremental: int = 0
    card: int = 0

    @property
    def label(self) -> str:
        return f"{self.low}-{self.high}"


@dataclass
class PriorityDistribution:
    """Absolute and KB-relative histograms for a document's items."""

    bins: list[DistributionBin] = field(default_factory=list)
    bins_kb_relative: list[DistributionBin] = field(default_factory=list)
    generated_at: str = ""


def empty_bins() -> list[DistributionBin]:
    return [DistributionBin(i * BIN_WIDTH, (i + 1) * BIN_WIDTH) for i in range(NUM_BINS)]


def bin_index(value: float) -> int:
    return min(int(clamp_priority(value)) // BIN_WIDTH, NUM_BINS - 1)


def priority_distribution(
    doc_items: Sequence[Prioritized],
    doc_records: Sequence[Prioritized],
    all_items: Sequence[Prioritized],
    all_records: Sequence[Prioritized],
) -> PriorityDistribution:
    """
    Bin a document's incremental items and card records.

    Absolute bins use the raw priority. KB-relative bins place the same
    document items by their percentile across the whole knowledge base;
    an item missing from the KB population counts as percentile 100.
    """
    item_percentiles = all_percentiles(all_items)
    record_percentiles = all_percentiles(all_records)

    absolute = empty_bins()
    relative = empty_bins()

    for item in doc_items:
        absolute[bin_index(item.priority)].incremental += 1
        relative[bin_index(item_percentiles.get(item.node_id, 100))].incremental += 1

    for record in doc_records:
        absolute[bin_index(record.priority)].card += 1
        relative[bin_index(record_percentiles.get(record.node_id, 100))].card += 1

    return PriorityDistribution(
        bins=absolute,
        bins_kb_relative=relative,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )
