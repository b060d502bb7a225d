"""In-memory document store.

Dict-backed implementation for development, the CLI demo and tests.
Documents are deep-copied on the way in and out so callers never share
state with the store.
"""

from __future__ import annotations

import copy
from typing import Any

from src.chatmemory.memory.storage.base import DocumentStore, matches_filters


class InMemoryDocumentStore(DocumentStore):
    """Collections of documents held in process memory."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._connected = False

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        """Clean up resources."""
        self._collections.clear()
        self._connected = False

    async def put(self, collection: str, document: dict[str, Any]) -> None:
        self._collection(collection)[document["id"]] = copy.deepcopy(document)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self._collection(collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def delete(self, collection: str, doc_id: str) -> bool:
        docs = self._collection(collection)
        if doc_id in docs:
            del docs[doc_id]
            return True
        return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        docs = [d for d in self._collection(collection).values() if matches_filters(d, filters)]

        if order_by:
            docs.sort(key=lambda d: (d.get(order_by) is None, d.get(order_by)), reverse=descending)

        if limit is not None:
            docs = docs[:limit]

        return [copy.deepcopy(d) for d in docs]

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        return sum(1 for d in self._collection(collection).values() if matches_filters(d, filters))

    async def delete_where(self, collection: str, filters: dict[str, Any]) -> int:
        docs = self._collection(collection)
        doomed = [doc_id for doc_id, d in docs.items() if matches_filters(d, filters)]
        for doc_id in doomed:
            del docs[doc_id]
        return len(doomed)

    def get_stats(self) -> dict[str, Any]:
        """Document counts per collection."""
        return {
            "backend": "memory",
            "connected": self._connected,
            "collections": {name: len(docs) for name, docs in self._collections.items()},
        }
