"""Abstract document store consumed by every memory tier."""

from abc import ABC, abstractmethod
from typing import Any


# Collection names shared by the stores
SHORT_TERM = "short_term_memories"
SEMANTIC = "semantic_memories"
EPISODIC = "episodic_memories"
SETTINGS = "memory_settings"

ALL_COLLECTIONS = (SHORT_TERM, SEMANTIC, EPISODIC, SETTINGS)


class DocumentStore(ABC):
    """Generic per-collection CRUD over JSON-like documents.

    Filters are dicts of ``{field: value}`` for equality or
    ``{field: {"$gte": v, "$lt": v, "$in": [...]}}`` for range/membership.
    Every document carries an ``id`` field.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the storage."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the storage."""
        pass

    @abstractmethod
    async def put(self, collection: str, document: dict[str, Any]) -> None:
        """Insert or replace a document by its ``id``."""
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Retrieve a document by ID."""
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document by ID."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching ``filters``, optionally ordered by one field."""
        pass

    @abstractmethod
    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        """Count documents matching ``filters``."""
        pass

    @abstractmethod
    async def delete_where(self, collection: str, filters: dict[str, Any]) -> int:
        """Delete all documents matching ``filters``. Returns the number removed."""
        pass


def matches_filters(document: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Evaluate a filter dict against a document in Python."""
    if not filters:
        return True

    for field, condition in filters.items():
        value = document.get(field)
        if isinstance(condition, dict):
            # Operators: $eq, $ne, $gt, $gte, $lt, $lte, $in
            for op, expected in condition.items():
                if op == "$eq" and value != expected:
                    return False
                if op == "$ne" and value == expected:
                    return False
                if op == "$in" and value not in expected:
                    return False
                if op in ("$gt", "$gte", "$lt", "$lte"):
                    if value is None:
                        return False
                    if op == "$gt" and not value > expected:
                        return False
                    if op == "$gte" and not value >= expected:
                        return False
                    if op == "$lt" and not value < expected:
                        return False
                    if op == "$lte" and not value <= expected:
                        return False
        elif value != condition:
            return False

    return True
