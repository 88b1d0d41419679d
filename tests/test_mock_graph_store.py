"""Tests for the in-memory graph store mock."""
from __future__ import annotations

import pytest

from void_e2e.mocks import MockGraphStore, get_adapter


@pytest.fixture
def store():
    store = MockGraphStore()
    store.start()
    yield store
    store.stop()


def memory(memory_id, text, category=None):
    record = {"id": memory_id, "content": {"text": text}}
    if category:
        record["category"] = category
    return record


def test_lifecycle():
    store = MockGraphStore()
    assert not store.is_available()

    store.start()
    assert store.is_available()
    assert store.get_status()["connected"] is True

    store.stop()
    assert not store.is_available()


def test_upsert_get_and_replace(store):
    store.upsert_memory(memory("m1", "first"))
    store.upsert_memory(memory("m1", "replaced"))

    stored = store.get_memory("m1")
    assert stored["content"]["text"] == "replaced"
    assert stored["_type"] == "Memory"
    assert store.count() == 1


def test_upsert_copies_the_record(store):
    record = memory("m1", "original")
    store.upsert_memory(record)
    record["content"]["text"] = "mutated"

    assert store.get_memory("m1")["content"]["text"] == "original"


def test_upsert_requires_id(store):
    with pytest.raises(ValueError):
        store.upsert_memory({"content": "no id"})


def test_delete_removes_edges(store):
    store.upsert_memory(memory("a", "alpha"))
    store.upsert_memory(memory("b", "beta"))
    store.link_memories("a", "b")

    assert store.delete_memory("a") is True
    assert store.delete_memory("a") is False
    assert store.get_related_memories("b") == []


def test_reset_empties_store(store):
    store.upsert_memory(memory("a", "alpha"))
    store.upsert_memory(memory("b", "beta"))
    store.link_memories("a", "b")

    store.reset()

    assert store.count() == 0
    assert store.get_all_memories() == []
    assert store.relationships == []


def test_get_all_respects_limit(store):
    for i in range(5):
        store.upsert_memory(memory(f"m{i}", f"text {i}"))

    rows = store.get_all_memories(limit=3)
    assert [row["m"]["id"] for row in rows] == ["m0", "m1", "m2"]


def test_search_matches_substring_case_insensitively(store):
    store.upsert_memory(memory("a", "Coffee with Alice", category="social"))
    store.upsert_memory(memory("b", "coffee beans order", category="shopping"))
    store.upsert_memory({"id": "c", "content": "plain string about COFFEE"})
    store.upsert_memory(memory("d", "tea"))

    assert {row["m"]["id"] for row in store.search_memories("coffee")} == {"a", "b", "c"}
    assert [row["m"]["id"] for row in store.search_memories("coffee", category="shopping")] == ["b"]
    assert len(store.search_memories("coffee", limit=1)) == 1


def test_related_memories_in_both_directions(store):
    for memory_id in ("a", "b", "c"):
        store.upsert_memory(memory(memory_id, memory_id))
    store.link_memories("a", "b", "MENTIONS")
    store.link_memories("c", "a")

    related = store.get_related_memories("a")
    assert [(row["related"]["id"], row["type"]) for row in related] == [
        ("b", "MENTIONS"),
        ("c", "RELATES_TO"),
    ]


def test_statistics_group_by_category(store):
    store.upsert_memory(memory("a", "x", category="work"))
    store.upsert_memory(memory("b", "y", category="work"))
    store.upsert_memory(memory("c", "z"))

    stats = {row["category"]: row["count"] for row in store.get_statistics()}
    assert stats == {"work": 2, "uncategorized": 1}


def test_graph_data_lists_outgoing_edges(store):
    store.upsert_memory(memory("a", "x"))
    store.upsert_memory(memory("b", "y"))
    store.link_memories("a", "b")

    graph = {row["m"]["id"]: row["relationships"] for row in store.get_graph_data()}
    assert graph == {"a": [{"type": "RELATES_TO", "target": "b"}], "b": []}


def test_registry_returns_one_instance():
    assert get_adapter("neo4j") is get_adapter("neo4j")
    assert isinstance(get_adapter("neo4j"), MockGraphStore)
