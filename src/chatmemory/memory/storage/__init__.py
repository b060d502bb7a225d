"""Storage layer for the memory engine."""

from src.chatmemory.memory.storage.base import (
    DocumentStore,
    matches_filters,
    SHORT_TERM,
    SEMANTIC,
    EPISODIC,
    SETTINGS,
    ALL_COLLECTIONS,
)
from src.chatmemory.memory.storage.in_memory import InMemoryDocumentStore
from src.chatmemory.memory.storage.postgres import PostgresDocumentStore, PostgresConfig

__all__ = [
    # Base interface
    "DocumentStore",
    "matches_filters",
    # Collection names
    "SHORT_TERM",
    "SEMANTIC",
    "EPISODIC",
    "SETTINGS",
    "ALL_COLLECTIONS",
    # Backends
    "InMemoryDocumentStore",
    "PostgresDocumentStore",
    "PostgresConfig",
]
