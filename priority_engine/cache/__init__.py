"""
Priority Cache.

Components:
- PriorityCache: debounced light/heavy updates and two-phase cold start
- DebounceController: pending-update map and timer
- PriorityMaintenance: manual changes, pre-tagging and tag removal
- percentiles: ranking and distribution helpers
"""

from .debounce import DebounceController, NeedsFetch, OptimisticPatch, PartialPatch
from .maintenance import PretagStats, PriorityMaintenance
from .percentiles import all_percentiles, priority_distribution, relative_percentile
from .priority_cache import PriorityCache

__all__ = [
    "PriorityCache",
    "DebounceController",
    "OptimisticPatch",
    "PartialPatch",
    "NeedsFetch",
    "PriorityMaintenance",
    "PretagStats",
    "all_percentiles",
    "relative_percentile",
    "priority_distribution",
]
