"""In-memory stand-in for the Neo4j memory graph.

Shapes results like the real driver rows void-server consumes ({"m": node},
{"related": node}, ...) without any query language: each operation is a
direct dict/list manipulation.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

NODE_LABEL = "Memory"
DEFAULT_RELATIONSHIP = "RELATES_TO"


def _text_of(node: Dict[str, Any]) -> str:
    content = node.get("content")
    if isinstance(content, dict):
        content = content.get("text")
    return content if isinstance(content, str) else ""


class MockGraphStore:
    """Memory nodes keyed by id plus a list of typed edges."""

    name = "neo4j"

    def __init__(self) -> None:
        self.memories: Dict[str, Dict[str, Any]] = {}
        self.relationships: List[Dict[str, str]] = []
        self.connected = False
        self.uri = "bolt://mock:7687"
        self.database = "neo4j"

    # ---- adapter lifecycle ------------------------------------------------------
    def start(self) -> None:
        self.connected = True
        logger.info("Mock graph store ready (%s)", self.uri)

    def stop(self) -> None:
        self.connected = False

    def reset(self) -> None:
        self.memories.clear()
        self.relationships.clear()

    def is_available(self) -> bool:
        return self.connected

    def get_status(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "uri": self.uri,
            "database": self.database,
            "error": None,
        }

    # ---- nodes ----------------------------------------------------------------
    def upsert_memory(self, memory: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace a memory. The record must carry an 'id'."""
        memory_id = memory.get("id")
        if not memory_id:
            raise ValueError("memory requires an 'id'")
        self.memories[memory_id] = {**deepcopy(memory), "_type": NODE_LABEL}
        return memory

    def delete_memory(self, memory_id: str) -> bool:
        """Remove a memory and its edges. Returns whether it existed."""
        existed = self.memories.pop(memory_id, None) is not None
        if existed:
            self.relationships[:] = [
                r for r in self.relationships
                if r["from"] != memory_id and r["to"] != memory_id
            ]
        return existed

    def get_memory(self, memory_id: str) -> Optional[Dict[str, Any]]:
        return self.memories.get(memory_id)

    def get_all_memories(self, limit: int = 100) -> List[Dict[str, Any]]:
        return [{"m": m} for m in list(self.memories.values())[:limit]]

    def search_memories(self, query: str, limit: int = 10,
                        category: Optional[str] = None) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on memory content."""
        needle = query.lower()
        results = [
            m for m in self.memories.values()
            if needle in _text_of(m).lower()
            and (category is None or m.get("category") == category)
        ]
        return [{"m": m} for m in results[:limit]]

    # ---- edges ----------------------------------------------------------------
    def link_memories(self, from_id: str, to_id: str,
                      rel_type: str = DEFAULT_RELATIONSHIP) -> List[Dict[str, Any]]:
        self.relationships.append({"from": from_id, "to": to_id, "type": rel_type})
        return [{"m1": self.memories.get(from_id), "m2": self.memories.get(to_id)}]

    def get_related_memories(self, memory_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Neighbours through recorded edges in either direction."""
        related = []
        for rel in self.relationships:
            if rel["from"] == memory_id:
                other = rel["to"]
            elif rel["to"] == memory_id:
                other = rel["from"]
            else:
                continue
            node = self.memories.get(other)
            if node is not None:
                related.append({"related": node, "type": rel["type"]})
        return related[:limit]

    # ---- aggregates -----------------------------------------------------------
    def get_statistics(self) -> List[Dict[str, Any]]:
        counts: Dict[str, int] = {}
        for memory in self.memories.values():
            category = memory.get("category") or "uncategorized"
            counts[category] = counts.get(category, 0) + 1
        return [{"category": c, "count": n} for c, n in counts.items()]

    def count(self) -> int:
        return sum(row["count"] for row in self.get_statistics())

    def get_graph_data(self) -> List[Dict[str, Any]]:
        return [
            {
                "m": memory,
                "relationships": [
                    {"type": r["type"], "target": r["to"]}
                    for r in self.relationships if r["from"] == memory_id
                ],
            }
            for memory_id, memory in self.memories.items()
        ]
