"""
In-memory Graph Access Facade.

Backs the test-suite and the `prio` CLI. Can be loaded from a JSON snapshot:

    {
      "nodes": [
        {"id": "doc", "text": "Paper", "tags": ["uploadedFile"]},
        {"id": "n1", "parent": "doc", "text": "Claim",
         "properties": {"cardPriority": {"priority": "20", "prioritySource": "manual"}},
         "sources": ["doc"], "references": ["other"], "tagIds": ["slot-id"]}
      ],
      "cards": [{"node": "n1", "due": 1700000000000}],
      "slots": {"cardPriority:priority": "slot-id"},
      "context": {"doc": ["portal-member"]}
    }
"""

from __future__ import annotations

import json
from collections import defaultdict
from pathlib import Path
from typing import Any

from priority_engine.errors import GraphLookupError
from priority_engine.graph.facade import Node, ReviewUnit


class InMemoryGraph:
    """Dictionary-backed implementation of `GraphFacade`."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._order: list[str] = []
        self._tags: dict[str, set[str]] = defaultdict(set)
        self._properties: dict[tuple[str, str, str], str] = {}
        self._sources: dict[str, list[str]] = defaultdict(list)
        self._references: dict[str, list[str]] = defaultdict(list)
        self._context: dict[str, list[str]] = defaultdict(list)
        self._tag_ids: dict[str, set[str]] = defaultdict(set)
        self._slot_tag_ids: dict[tuple[str, str], str] = {}
        self._cards: list[ReviewUnit] = []
        self._tag_lookup_unavailable: set[str] = set()

    # =========================================================================
    # Construction
    # =========================================================================

    def add_node(
        self,
        node_id: str,
        parent_id: str | None = None,
        text: str = "",
        tags: list[str] | None = None,
    ) -> Node:
        node = Node(id=node_id, parent_id=parent_id, text=text)
        if node_id not in self._nodes:
            self._order.append(node_id)
        self._nodes[node_id] = node
        for tag in tags or []:
            self._tags[node_id].add(tag)
        return node

    def delete_node(self, node_id: str) -> None:
        """Remove a node; children keep pointing at the missing parent."""
        self._nodes.pop(node_id, None)
        if node_id in self._order:
            self._order.remove(node_id)
        self._tags.pop(node_id, None)
        self._cards = [card for card in self._cards if card.node_id != node_id]

    def add_card(self, node_id: str, next_due_time: int | None) -> None:
        self._cards.append(ReviewUnit(node_id=node_id, next_due_time=next_due_time))

    def add_source(self, node_id: str, source_id: str) -> None:
        self._sources[node_id].append(source_id)

    def add_reference(self, from_id: str, to_id: str) -> None:
        self._references[to_id].append(from_id)

    def add_context_member(self, node_id: str, member_id: str) -> None:
        self._context[node_id].append(member_id)

    def register_slot(self, tag: str, slot: str, slot_tag_id: str) -> None:
        self._slot_tag_ids[(tag, slot)] = slot_tag_id

    def apply_tag_id(self, node_id: str, tag_id: str) -> None:
        self._tag_ids[node_id].add(tag_id)

    def set_tag(self, node_id: str, tag: str, slots: dict[str, Any] | None = None) -> None:
        """Apply a tag and write its slot values (stored as strings)."""
        self._tags[node_id].add(tag)
        for slot, value in (slots or {}).items():
            self._properties[(node_id, tag, slot)] = str(value)

    def make_tag_lookup_unavailable(self, node_id: str) -> None:
        self._tag_lookup_unavailable.add(node_id)

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> InMemoryGraph:
        graph = cls()
        for raw in data.get("nodes", []):
            node_id = raw["id"]
            graph.add_node(node_id, raw.get("parent"), raw.get("text", ""), raw.get("tags"))
            for tag, slots in (raw.get("properties") or {}).items():
                graph.set_tag(node_id, tag, slots)
            for source_id in raw.get("sources", []):
                graph.add_source(node_id, source_id)
            for target_id in raw.get("references", []):
                graph.add_reference(node_id, target_id)
            for tag_id in raw.get("tagIds", []):
                graph.apply_tag_id(node_id, tag_id)
        for card in data.get("cards", []):
            graph.add_card(card["node"], card.get("due"))
        for key, slot_tag_id in (data.get("slots") or {}).items():
            tag, _, slot = key.partition(":")
            graph.register_slot(tag, slot, slot_tag_id)
        for node_id, members in (data.get("context") or {}).items():
            for member_id in members:
                graph.add_context_member(node_id, member_id)
        return graph

    @classmethod
    def from_file(cls, path: Path) -> InMemoryGraph:
        with open(path, encoding="utf-8") as f:
            return cls.from_snapshot(json.load(f))

    def _existing(self, ids: list[str]) -> list[Node]:
        return [self._nodes[i] for i in ids if i in self._nodes]

    # =========================================================================
    # GraphFacade
    # =========================================================================

    async def find(self, node_id: str | None) -> Node | None:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    async def children(self, node_id: str) -> list[Node]:
        return [self._nodes[i] for i in self._order if self._nodes[i].parent_id == node_id]

    async def descendants(self, node_id: str) -> list[Node]:
        """Preorder, skipping anything already visited (guards cyclic parents)."""
        result: list[Node] = []
        visited = {node_id}
        stack = list(reversed(await self.children(node_id)))
        while stack:
            node = stack.pop()
            if node.id in visited:
                continue
            visited.add(node.id)
            result.append(node)
            stack.extend(reversed(await self.children(node.id)))
        return result

    async def context_members(self, node_id: str) -> list[Node]:
        return self._existing(self._context.get(node_id, []))

    async def sources(self, node_id: str) -> list[Node]:
        return self._existing(self._sources.get(node_id, []))

    async def referencing(self, node_id: str) -> list[Node]:
        return self._existing(self._references.get(node_id, []))

    async def has_tag(self, node_id: str, tag: str) -> bool:
        return tag in self._tags.get(node_id, set())

    async def add_tag(self, node_id: str, tag: str) -> None:
        if node_id in self._nodes:
            self._tags[node_id].add(tag)

    async def remove_tag(self, node_id: str, tag: str) -> None:
        self._tags.get(node_id, set()).discard(tag)
        for key in [k for k in self._properties if k[0] == node_id and k[1] == tag]:
            del self._properties[key]

    async def tagged_with(self, tag: str) -> list[str]:
        return [i for i in self._order if tag in self._tags.get(i, set())]

    async def get_property(self, node_id: str, tag: str, slot: str) -> str | None:
        return self._properties.get((node_id, tag, slot))

    async def set_property(self, node_id: str, tag: str, slot: str, value: str | None) -> None:
        if value is None:
            self._properties.pop((node_id, tag, slot), None)
        else:
            self._properties[(node_id, tag, slot)] = value

    async def tag_ids(self, node_id: str) -> set[str]:
        if node_id in self._tag_lookup_unavailable:
            raise GraphLookupError(node_id, "tag lookup")
        return set(self._tag_ids.get(node_id, set()))

    async def slot_tag_id(self, tag: str, slot: str) -> str | None:
        return self._slot_tag_ids.get((tag, slot))

    async def review_units(self, node_id: str) -> list[ReviewUnit]:
        return [card for card in self._cards if card.node_id == node_id]

    async def all_review_units(self) -> list[ReviewUnit]:
        return list(self._cards)
