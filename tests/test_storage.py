"""Tests for the document store backends.

The PostgreSQL backend is only exercised through its filter translation,
so no database is required.
"""

import pytest

from src.chatmemory.memory.storage import (
    InMemoryDocumentStore,
    PostgresDocumentStore,
    PostgresConfig,
    matches_filters,
)


class TestMatchesFilters:
    """Tests for in-process filter evaluation."""

    def test_equality(self):
        """Test equality filters."""
        doc = {"user_id": "u1", "category": "fact"}
        assert matches_filters(doc, {"user_id": "u1"})
        assert not matches_filters(doc, {"user_id": "u2"})
        assert matches_filters(doc, None)

    def test_ranges(self):
        """Test range operators."""
        doc = {"importance": 0.5}
        assert matches_filters(doc, {"importance": {"$gte": 0.5, "$lt": 0.6}})
        assert not matches_filters(doc, {"importance": {"$gt": 0.5}})
        assert not matches_filters(doc, {"importance": {"$lte": 0.4}})

    def test_missing_field_fails_range(self):
        """Test a missing field never matches a range."""
        assert not matches_filters({}, {"created_at": {"$lt": 10}})

    def test_in_and_ne(self):
        """Test $in and $ne."""
        doc = {"category": "fact"}
        assert matches_filters(doc, {"category": {"$in": ["fact", "goal"]}})
        assert not matches_filters(doc, {"category": {"$ne": "fact"}})


class TestInMemoryDocumentStore:
    """Tests for the dict-backed store."""

    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore()

    @pytest.mark.asyncio
    async def test_put_get_delete(self, store):
        """Test basic document CRUD."""
        await store.put("things", {"id": "a", "user_id": "u1", "value": 1})

        assert (await store.get("things", "a"))["value"] == 1
        assert await store.delete("things", "a") is True
        assert await store.delete("things", "a") is False
        assert await store.get("things", "a") is None

    @pytest.mark.asyncio
    async def test_documents_are_copied(self, store):
        """Test stored documents are isolated copies."""
        doc = {"id": "a", "tags": ["x"]}
        await store.put("things", doc)
        doc["tags"].append("y")

        fetched = await store.get("things", "a")
        fetched["tags"].append("z")

        assert (await store.get("things", "a"))["tags"] == ["x"]

    @pytest.mark.asyncio
    async def test_query_order_and_limit(self, store):
        """Test ordering and limits."""
        for i, score in enumerate([0.2, 0.9, 0.5]):
            await store.put("things", {"id": str(i), "user_id": "u1", "score": score})
        await store.put("things", {"id": "other", "user_id": "u2", "score": 1.0})

        docs = await store.query("things", {"user_id": "u1"}, order_by="score", descending=True, limit=2)

        assert [d["score"] for d in docs] == [0.9, 0.5]
        assert await store.count("things", {"user_id": "u1"}) == 3

    @pytest.mark.asyncio
    async def test_delete_where(self, store):
        """Test bulk delete by filter."""
        await store.put("things", {"id": "a", "user_id": "u1", "created_at": 1})
        await store.put("things", {"id": "b", "user_id": "u1", "created_at": 100})

        removed = await store.delete_where("things", {"user_id": "u1", "created_at": {"$lt": 50}})

        assert removed == 1
        assert await store.count("things") == 1
        assert store.get_stats()["collections"] == {"things": 1}


class TestPostgresFilters:
    """Tests for JSONB filter translation."""

    @pytest.fixture
    def store(self):
        return PostgresDocumentStore(PostgresConfig(table="docs"))

    def test_collection_only(self, store):
        """Test a query with no filters."""
        where, args = store._build_where("semantic_memories", None)

        assert where == "collection = $1"
        assert args == ["semantic_memories"]

    def test_equality_and_range(self, store):
        """Test JSONB equality and range clauses."""
        where, args = store._build_where(
            "semantic_memories",
            {"user_id": "u1", "importance": {"$gte": 0.5}},
        )

        assert where == (
            "collection = $1 AND data->$2 = $3::jsonb AND (data->>$4)::float >= $5"
        )
        assert args == ["semantic_memories", "user_id", '"u1"', "importance", 0.5]

    def test_in(self, store):
        """Test the JSONB $in clause."""
        where, args = store._build_where("c", {"category": {"$in": ["fact", True]}})

        assert "= ANY($3::text[])" in where
        assert args[2] == ["fact", "true"]

    def test_unknown_operator(self, store):
        """Test an unknown operator is refused."""
        with pytest.raises(ValueError):
            store._build_where("c", {"x": {"$regex": "a.*"}})

    def test_stats_without_connection(self, store):
        """Test stats before connecting."""
        stats = store.get_stats()
        assert stats["connected"] is False
        assert stats["table"] == "docs"
