"""
Incremental Priority Engine.

Priority resolution and review scheduling over an external knowledge graph.

Components:
- PriorityResolver: manual / inherited / default priority resolution
- ScopeResolver: node-id sets for a document or queue context
- PriorityCache: debounced, percentile-ranked snapshot of all priorities
- QueueScheduler: next-item selection interleaving incremental items with cards
- ShieldCalculator: most important due-but-unreviewed item and its percentile
- StateStore: session + durable key-value persistence
"""

from .cache import PriorityCache
from .engine import PriorityEngine
from .graph import GraphFacade, InMemoryGraph
from .models import (
    IncrementalItem,
    PriorityRecord,
    PrioritySource,
    QueueMode,
    ShieldRecord,
)
from .priority import IncrementalItemCache, PriorityResolver
from .scheduler import Continue, QueueInfo, QueueScheduler, QueueSessionManager, SelectedItem
from .scope import ScopeResolver
from .shield import ShieldCalculator, ShieldHistory, compute_shield
from .storage import StateStore

__version__ = "0.1.0"

__all__ = [
    # Graph
    "GraphFacade",
    "InMemoryGraph",
    # Models
    "PriorityRecord",
    "PrioritySource",
    "IncrementalItem",
    "ShieldRecord",
    "QueueMode",
    # Resolution
    "PriorityResolver",
    "IncrementalItemCache",
    "ScopeResolver",
    # Cache
    "PriorityCache",
    # Scheduling
    "QueueScheduler",
    "QueueSessionManager",
    "QueueInfo",
    "SelectedItem",
    "Continue",
    # Shield
    "ShieldCalculator",
    "ShieldHistory",
    "compute_shield",
    # Persistence
    "StateStore",
    # Wiring
    "PriorityEngine",
]
