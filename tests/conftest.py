"""Shared fixtures. No external services are needed."""

import pytest

from src.chatmemory.memory.storage.in_memory import InMemoryDocumentStore
from tests.fakes import TopicEmbedder, FailingEmbedder, ScriptedGenerator, SUMMARY_JSON


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def embedder():
    return TopicEmbedder()


@pytest.fixture
def failing_embedder():
    return FailingEmbedder()


@pytest.fixture
def summary_generator():
    return ScriptedGenerator(SUMMARY_JSON)
