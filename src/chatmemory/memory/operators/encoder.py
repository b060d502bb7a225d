"""Encoder - turns text into embedding vectors.

The default provider talks to a local Ollama server. Any failure is raised
as ``EmbeddingError`` so callers can decide whether to degrade.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Awaitable
from dataclasses import dataclass

import ollama

from src.chatmemory.memory.errors import EmbeddingError

logger = logging.getLogger(__name__)


@dataclass
class EncoderConfig:
    """Configuration for the embedding provider."""
    embedding_model: str = "bge-m3:latest"
    embedding_dim: int = 1024
    ollama_host: str | None = None  # None = default localhost:11434
    ollama_timeout: float = 60.0
    max_content_length: int = 8000


class EmbeddingProvider(ABC):
    """Anything that maps text to a fixed-length float vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed ``text``. Raises ``EmbeddingError`` on failure."""
        pass

    async def verify(self) -> bool:
        """Check the provider is reachable. Defaults to True."""
        return True

    async def close(self) -> None:
        """Release resources."""
        pass


class CallbackEmbeddingProvider(EmbeddingProvider):
    """Wraps an async callable, e.g. a hosted embedding API client."""

    def __init__(self, callback: Callable[[str], Awaitable[list[float]]]):
        self._callback = callback

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await self._callback(text)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding callback failed: {e}") from e
        if not vector:
            raise EmbeddingError("Embedding callback returned an empty vector")
        return vector


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embedding via the Ollama Python library."""

    def __init__(self, config: EncoderConfig | None = None):
        self.config = config or EncoderConfig()
        self._client: ollama.AsyncClient | None = None

    def _get_client(self) -> ollama.AsyncClient:
        if self._client is None:
            self._client = ollama.AsyncClient(
                host=self.config.ollama_host,
                timeout=self.config.ollama_timeout
            )
        return self._client

    async def verify(self) -> bool:
        """Check the Ollama connection and detect the embedding dimension."""
        try:
            vector = await self.embed("test")
        except EmbeddingError as e:
            logger.warning("Could not verify Ollama: %s", e.reason)
            logger.warning("Ensure Ollama is running (ollama serve) and the model is pulled: ollama pull %s",
                           self.config.embedding_model)
            return False

        if len(vector) != self.config.embedding_dim:
            logger.info("Updating embedding_dim: %d -> %d", self.config.embedding_dim, len(vector))
            self.config.embedding_dim = len(vector)
        return True

    async def embed(self, text: str) -> list[float]:
        truncated = text[:self.config.max_content_length]

        try:
            response = await self._get_client().embed(
                model=self.config.embedding_model,
                input=truncated
            )
        except Exception as e:
            raise EmbeddingError(f"Ollama embedding error: {e}") from e

        if not response or "embeddings" not in response or not response["embeddings"]:
            raise EmbeddingError("Ollama returned no embeddings")

        return list(response["embeddings"][0])

    async def close(self) -> None:
        self._client = None

    def get_provider_info(self) -> dict:
        return {
            "provider": "ollama",
            "model": self.config.embedding_model,
            "dimension": self.config.embedding_dim,
            "host": self.config.ollama_host or "localhost:11434"
        }
