"""Graph Access Facade and its in-memory implementation."""

from .facade import GraphFacade, Node, ReviewUnit
from .memory import InMemoryGraph

__all__ = ["GraphFacade", "Node", "ReviewUnit", "InMemoryGraph"]
