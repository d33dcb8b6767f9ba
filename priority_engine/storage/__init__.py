"""Key-value persistence."""

from .state_store import StateStore

__all__ = ["StateStore"]
