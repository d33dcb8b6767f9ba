"""
Error types for the priority engine.

None of these are meant to abort a scheduling session: callers catch them at
the component boundary and degrade (skip the entity, fall back to a slow
path, or treat the data as absent).
"""

from __future__ import annotations


class PriorityEngineError(Exception):
    """Base class for all priority engine errors."""


class OperationCancelled(PriorityEngineError):
    """Raised when a cancellation token fires after a suspension point."""

    def __init__(self, operation: str = "operation"):
        self.operation = operation
        super().__init__(f"{operation} was cancelled")


class GraphLookupError(PriorityEngineError):
    """A graph facade capability (e.g. tag lookup) is unavailable for a node."""

    def __init__(self, node_id: str, capability: str):
        self.node_id = node_id
        self.capability = capability
        super().__init__(f"{capability} unavailable for node {node_id}")


class MalformedRecordError(PriorityEngineError):
    """A persisted blob failed shape validation on read."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Malformed record under '{key}': {reason}")
