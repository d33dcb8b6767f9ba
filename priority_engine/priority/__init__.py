"""Priority resolution."""

from .incremental import IncrementalItemCache
from .resolver import AncestorPriority, PriorityResolver

__all__ = ["IncrementalItemCache", "PriorityResolver", "AncestorPriority"]
