"""Scope resolution."""

from .resolver import ScopeResolver
from .slot_filter import SlotFilter

__all__ = ["ScopeResolver", "SlotFilter"]
