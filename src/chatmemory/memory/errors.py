"""Typed failures raised by the memory engine.

Background writes and context generation log these and degrade; explicit
user actions (settings update, clear-all) let them propagate to the caller.
"""

from __future__ import annotations


class MemoryEngineError(Exception):
    """Base class for all memory engine failures."""

    code = "memory_error"

    def __init__(self, reason: str, retryable: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable

    def to_dict(self) -> dict:
        return {"code": self.code, "reason": self.reason, "retryable": self.retryable}


class RetrievalError(MemoryEngineError):
    """A tier could not be read. The tier degrades to empty."""

    code = "retrieval_failed"

    def __init__(self, reason: str, tier: str = ""):
        super().__init__(reason, retryable=True)
        self.tier = tier


class EmbeddingError(MemoryEngineError):
    """The embedding provider failed or returned no vector."""

    code = "embedding_failed"

    def __init__(self, reason: str):
        super().__init__(reason, retryable=True)


class StorageError(MemoryEngineError):
    """A write to the document store failed."""

    code = "storage_failed"


class SummarizationError(MemoryEngineError):
    """The generation provider failed or produced an unusable summary."""

    code = "summarization_failed"


class CapacityExceededError(MemoryEngineError):
    """A user's collection is at its cap. Handled inside the stores by eviction."""

    code = "capacity_exceeded"

    def __init__(self, collection: str, count: int, limit: int):
        super().__init__(f"{collection} holds {count} entries (limit {limit})")
        self.collection = collection
        self.count = count
        self.limit = limit
