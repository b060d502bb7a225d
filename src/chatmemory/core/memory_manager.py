"""MemoryManager - main entry point for the conversational memory engine.

Provides the public API for ingesting turns, assembling context, finalizing
conversations into episodes, searching, statistics and user settings.
"""

from __future__ import annotations

import os
import asyncio
import logging
import time
from collections import Counter
from typing import Any
from dataclasses import dataclass

from dotenv import load_dotenv

from src.chatmemory.auth import AuthVerifier, StaticTokenVerifier
from src.chatmemory.context import AssemblerConfig, ContextAssembler, PromptBuilder
from src.chatmemory.llm import LLMConfig, LLMProvider, ModelSelector, TextGenerator
from src.chatmemory.memory import (
    BackgroundConfig,
    BackgroundTaskQueue,
    ConversationContext,
    ConversationMetadata,
    DocumentStore,
    EpisodicConfig,
    EpisodicMemory,
    EpisodicMemoryStore,
    InMemoryDocumentStore,
    MemorySearchResult,
    MemorySettings,
    MemorySettingsRegistry,
    MemoryUsageStats,
    Message,
    PostgresConfig,
    PostgresDocumentStore,
    RetrievalError,
    Role,
    SemanticConfig,
    SemanticMemoryStore,
    ShortTermConfig,
    ShortTermMemoryStore,
    ShortTermMessage,
)
from src.chatmemory.memory.operators import (
    ConversationSummarizer,
    EmbeddingProvider,
    EncoderConfig,
    ImportanceScorer,
    IngestImportanceScorer,
    OllamaEmbeddingProvider,
    SummarizerConfig,
)
from src.chatmemory.memory.storage import SETTINGS

logger = logging.getLogger(__name__)

# Rough per-document sizes used for storage estimates
SEMANTIC_DOC_BYTES = 2000
EPISODIC_DOC_BYTES = 5000
EMBEDDING_BYTES = 3072


@dataclass
class MemoryConfig:
    """Master configuration for the memory engine."""
    # Tier configs
    short_term_config: ShortTermConfig | None = None
    semantic_config: SemanticConfig | None = None
    episodic_config: EpisodicConfig | None = None
    assembler_config: AssemblerConfig | None = None

    # Provider configs
    encoder_config: EncoderConfig | None = None
    llm_config: LLMConfig | None = None
    summarizer_config: SummarizerConfig | None = None

    # Storage
    store_backend: str = "memory"       # memory / postgres
    postgres_config: PostgresConfig | None = None

    # Background work
    background_config: BackgroundConfig | None = None
    summarization_timeout: float = 60.0

    # Periodic retention purge
    auto_start_tasks: bool = False
    retention_interval: float = 3600.0

    @classmethod
    def from_env(cls) -> MemoryConfig:
        """Build a config from environment variables (and a .env file)."""
        load_dotenv()

        tier_timeout = float(os.getenv("TIER_TIMEOUT", "5.0"))

        return cls(
            encoder_config=EncoderConfig(
                embedding_model=os.getenv("EMBEDDING_MODEL", "bge-m3:latest"),
                ollama_host=os.getenv("OLLAMA_HOST") or None,
            ),
            llm_config=LLMConfig(model=os.getenv("MODEL", "gpt-4o-mini")),
            assembler_config=AssemblerConfig(tier_timeout=tier_timeout),
            store_backend=os.getenv("MEMORY_STORE", "memory"),
            postgres_config=PostgresConfig(
                host=os.getenv("POSTGRES_HOST", "localhost"),
                port=int(os.getenv("POSTGRES_PORT", "5432")),
                database=os.getenv("POSTGRES_DB", "chatmemory"),
                user=os.getenv("POSTGRES_USER", ""),
                password=os.getenv("POSTGRES_PASSWORD", ""),
            ),
            summarization_timeout=float(os.getenv("SUMMARIZATION_TIMEOUT", "60.0")),
        )


class MemoryManager:
    """Main entry point for the memory engine.

    Collaborators are injected; anything not supplied is built from config:
    - store: ``InMemoryDocumentStore`` or ``PostgresDocumentStore``
    - embedder: ``OllamaEmbeddingProvider``
    - generator: ``LLMProvider`` (LiteLLM), used for episode summaries
    - auth: ``StaticTokenVerifier``
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        store: DocumentStore | None = None,
        embedder: EmbeddingProvider | None = None,
        generator: TextGenerator | None = None,
        auth: AuthVerifier | None = None,
        model_selector: ModelSelector | None = None,
        ingest_scorer: ImportanceScorer | None = None,
    ):
        self.config = config or MemoryConfig()

        self._store = store or self._build_store()
        self._embedder = embedder or OllamaEmbeddingProvider(self.config.encoder_config or EncoderConfig())
        self._generator = generator or LLMProvider(self.config.llm_config or LLMConfig())
        self._auth = auth or StaticTokenVerifier()
        self._ingest_scorer = ingest_scorer or IngestImportanceScorer()
        self.prompt_builder = PromptBuilder()

        # Tiers
        self.settings = MemorySettingsRegistry(self._store)
        self.short_term = ShortTermMemoryStore(self._store, config=self.config.short_term_config)
        self.semantic = SemanticMemoryStore(self._store, self._embedder, config=self.config.semantic_config)
        self.episodic = EpisodicMemoryStore(
            self._store,
            self._embedder,
            summarizer=ConversationSummarizer(self._generator, self.config.summarizer_config),
            config=self.config.episodic_config,
        )

        self.assembler = ContextAssembler(
            self.short_term,
            self.semantic,
            self.episodic,
            self.settings,
            model_selector=model_selector or ModelSelector(),
            prompt_builder=self.prompt_builder,
            config=self.config.assembler_config,
        )

        self.background = BackgroundTaskQueue(self.config.background_config)
        # Pending finalizations per user
        self._finalize_tasks: dict[str, set[asyncio.Task]] = {}
        self._retention_task: asyncio.Task | None = None
        self._running = False
        self._initialized = False

    def _build_store(self) -> DocumentStore:
        if self.config.store_backend == "postgres":
            return PostgresDocumentStore(self.config.postgres_config or PostgresConfig())
        if self.config.store_backend != "memory":
            raise ValueError(f"Unknown store backend: {self.config.store_backend}")
        return InMemoryDocumentStore()

    async def initialize(self) -> None:
        """Connect the store and start background tasks if configured."""
        if self._initialized:
            return

        await self._store.connect()

        if not await self._embedder.verify():
            logger.warning("Embedding provider unavailable; semantic and episodic tiers will degrade")

        if self.config.auto_start_tasks:
            self._running = True
            self._retention_task = asyncio.create_task(self._retention_loop())

        self._initialized = True
        logger.info("Memory engine initialized (%s store)", self.config.store_backend)

    async def shutdown(self) -> None:
        """Finish outstanding work and release resources."""
        self._running = False
        if self._retention_task:
            self._retention_task.cancel()
            try:
                await self._retention_task
            except asyncio.CancelledError:
                pass
            self._retention_task = None

        await self.background.shutdown()

        pending = [t for tasks in self._finalize_tasks.values() for t in tasks]
        if pending:
            await asyncio.wait(pending, timeout=self.config.summarization_timeout)

        await self._embedder.close()
        await self._store.disconnect()
        self._initialized = False

    async def authenticate(self, bearer_token: str) -> str | None:
        """Resolve a bearer token to a user id."""
        return await self._auth.verify(bearer_token)

    # ==================== Core API ====================

    async def process_message(
        self,
        message: Message,
        conversation_metadata: ConversationMetadata | None = None,
    ) -> None:
        """Record a turn in memory.

        The short-term append and, for user turns, semantic extraction are
        scheduled as background writes. Failures are logged, never raised.
        """
        try:
            settings = await self.settings.get(message.user_id)
        except Exception as e:
            logger.warning("Skipping memory write for %s, settings unavailable: %s", message.id, e)
            return

        if not settings.memory_enabled:
            return

        if settings.short_term_memory_enabled:
            self.background.submit(
                self.short_term.add_message(message.conversation_id, message.user_id, message, settings),
                name=f"short_term:{message.id}",
                key=f"short_term:{message.user_id}:{message.conversation_id}",
            )

        if message.role == Role.USER and settings.semantic_memory_enabled:
            importance = self._ingest_scorer.score(message)
            self.background.submit(
                self.semantic.create_from_message(message, importance=importance, settings=settings),
                name=f"semantic:{message.id}",
            )

    async def generate_conversation_context(
        self,
        conversation_id: str,
        user_id: str,
        prompt: str,
        max_tokens: int | None = None,
        mode: str | None = None,
    ) -> ConversationContext:
        """Assemble the memory context for the next generation call."""
        return await self.assembler.generate_context(
            conversation_id,
            user_id,
            prompt,
            max_tokens=max_tokens,
            mode=mode,
        )

    def finalize_conversation(
        self,
        conversation_id: str,
        user_id: str,
        messages: list[Message],
        metadata: ConversationMetadata | None = None,
    ) -> asyncio.Task:
        """Summarize a finished conversation into an episode in the background.

        Returns the detached task; awaiting it yields the ``EpisodicMemory``
        or None. Must be called from a running event loop.
        """
        task = asyncio.create_task(
            self._finalize(conversation_id, user_id, list(messages), metadata),
            name=f"finalize:{conversation_id}",
        )
        self._finalize_tasks.setdefault(user_id, set()).add(task)
        task.add_done_callback(lambda t: self._release_finalize_task(user_id, t))
        return task

    def _release_finalize_task(self, user_id: str, task: asyncio.Task) -> None:
        tasks = self._finalize_tasks.get(user_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._finalize_tasks[user_id]

    async def _finalize(
        self,
        conversation_id: str,
        user_id: str,
        messages: list[Message],
        metadata: ConversationMetadata | None,
    ) -> EpisodicMemory | None:
        try:
            settings = await self.settings.get(user_id)
            return await asyncio.wait_for(
                self.episodic.create_from_conversation(conversation_id, user_id, messages, metadata, settings),
                timeout=self.config.summarization_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Finalizing %s timed out after %.1fs",
                conversation_id, self.config.summarization_timeout,
            )
        except Exception as e:
            logger.warning("Finalizing %s failed: %s", conversation_id, e, exc_info=True)
        return None

    # ==================== Search ====================

    async def search_all_memories(
        self,
        user_id: str,
        query: str,
        include_short_term: bool = True,
        include_semantic: bool = True,
        include_episodic: bool = True,
        limit: int = 20,
        threshold: float = 0.6,
    ) -> MemorySearchResult:
        """Search every enabled tier.

        Short-term matches are case-insensitive substring hits over the user's
        recent conversations; episodic results are capped at ``limit // 2``.
        """
        start = time.perf_counter()
        result = MemorySearchResult()

        if include_short_term:
            try:
                result.short_term_memories = await self._search_short_term(user_id, query, limit)
            except RetrievalError as e:
                logger.warning("Short-term search failed: %s", e.reason)

        if include_semantic:
            try:
                result.semantic_memories = await self.semantic.search(
                    user_id, query, limit=limit, threshold=threshold
                )
            except RetrievalError as e:
                logger.warning("Semantic search failed: %s", e.reason)

        if include_episodic:
            try:
                result.episodic_memories = await self.episodic.search(
                    user_id, query, limit=limit // 2, threshold=threshold
                )
            except RetrievalError as e:
                logger.warning("Episodic search failed: %s", e.reason)

        result.search_time_ms = (time.perf_counter() - start) * 1000
        return result

    async def _search_short_term(self, user_id: str, query: str, limit: int) -> list[ShortTermMessage]:
        needle = query.lower()
        matches = []
        for memory in await self.short_term.get_recent_conversations(user_id):
            matches.extend(m for m in memory.messages if needle in m.content.lower())
        return matches[:limit]

    # ==================== Statistics ====================

    async def get_memory_usage_stats(self, user_id: str) -> MemoryUsageStats:
        short_stats, semantic_stats, episodic_stats = await asyncio.gather(
            self.short_term.get_stats(user_id),
            self.semantic.get_stats(user_id),
            self.episodic.get_stats(user_id),
        )

        semantic_count = semantic_stats["total_memories"]
        episodic_count = episodic_stats["total_episodes"]
        memory_bytes = semantic_count * SEMANTIC_DOC_BYTES + episodic_count * EPISODIC_DOC_BYTES
        embedding_bytes = (semantic_count + episodic_count) * EMBEDDING_BYTES

        if episodic_count:
            average_length = episodic_stats["average_message_count"]
        else:
            average_length = short_stats["average_window_size"]

        return MemoryUsageStats(
            user_id=user_id,
            short_term_count=short_stats["total_messages"],
            semantic_count=semantic_count,
            episodic_count=episodic_count,
            total_storage_bytes=memory_bytes + embedding_bytes,
            embedding_storage_bytes=embedding_bytes,
            top_categories=Counter(semantic_stats["category_counts"]).most_common(5),
            preferred_model_providers=Counter(episodic_stats["model_provider_usage"]).most_common(),
            average_conversation_length=average_length,
            memory_effectiveness=self._effectiveness(semantic_stats, episodic_stats),
        )

    @staticmethod
    def _effectiveness(semantic_stats: dict[str, Any], episodic_stats: dict[str, Any]) -> float:
        score = 0.5

        if semantic_stats["total_memories"] > 50:
            score += 0.1
        if episodic_stats["total_episodes"] > 10:
            score += 0.1
        if len(semantic_stats["category_counts"]) > 3:
            score += 0.1

        most_accessed = semantic_stats["most_accessed"]
        if most_accessed:
            average_access = sum(m["access_count"] for m in most_accessed) / len(most_accessed)
            if average_access > 2:
                score += 0.1

        score += episodic_stats["average_satisfaction"] * 0.2
        return min(score, 1.0)

    async def get_memory_health(self, user_id: str) -> dict[str, Any]:
        """Overall health score (0-100) with a healthy / warning / error status."""
        try:
            stats = await self.get_memory_usage_stats(user_id)
        except Exception as e:
            logger.warning("Memory health check failed for %s: %s", user_id, e)
            return {"status": "error", "score": 0, "details": {"error": str(e)}}

        score = 50.0
        if stats.semantic_count > 50:
            score += 20
        if stats.episodic_count > 10:
            score += 15
        if stats.short_term_count > 0:
            score += 15
        score += stats.memory_effectiveness * 0.2
        score = min(score, 100.0)

        if score < 40:
            status = "error"
        elif score < 70:
            status = "warning"
        else:
            status = "healthy"

        return {
            "status": status,
            "score": score,
            "details": {
                "semantic_memories": stats.semantic_count,
                "episodic_memories": stats.episodic_count,
                "short_term_messages": stats.short_term_count,
                "effectiveness": stats.memory_effectiveness,
                "background": self.background.get_stats(),
            },
        }

    # ==================== Settings & Maintenance ====================

    async def reset_conversation_context(self, conversation_id: str, user_id: str) -> None:
        """Forget the short-term window of one conversation."""
        await self.short_term.clear(conversation_id, user_id)

    async def get_memory_settings(self, user_id: str) -> MemorySettings:
        return await self.settings.get(user_id)

    async def update_memory_settings(self, user_id: str, patch: dict) -> MemorySettings:
        """Raises ``ValueError`` for unknown fields, ``StorageError`` on save failure."""
        return await self.settings.update(user_id, patch)

    async def clear_all_user_memories(self, user_id: str) -> dict[str, int]:
        """Delete every tier and the settings of ``user_id``. Idempotent."""
        # Let queued writes and running finalizations land first so nothing
        # reappears after the purge
        await self.background.drain()
        pending = list(self._finalize_tasks.get(user_id, ()))
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.short_term.drop_user_cache(user_id)
        return await self.settings.clear_all(user_id)

    async def cleanup_expired(self, user_id: str) -> dict[str, int]:
        """Apply the user's ``data_retention_days`` to every tier."""
        settings = await self.settings.get(user_id)
        days = settings.data_retention_days
        return {
            "short_term": await self.short_term.cleanup_old(user_id, days),
            "semantic": await self.semantic.cleanup_old(user_id, days),
            "episodic": await self.episodic.cleanup_old(user_id, days),
        }

    async def _retention_loop(self) -> None:
        """Periodic retention purge for users with a retention limit."""
        while self._running:
            try:
                docs = await self._store.query(SETTINGS, filters={"data_retention_days": {"$gt": 0}})
                for doc in docs:
                    await self.cleanup_expired(doc["user_id"])
            except Exception as e:
                logger.warning("Retention purge failed: %s", e)

            await asyncio.sleep(self.config.retention_interval)

    def get_stats(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "store": self._store.get_stats() if hasattr(self._store, "get_stats") else {},
            "embedder": self._embedder.get_provider_info() if hasattr(self._embedder, "get_provider_info") else {},
            "background": self.background.get_stats(),
            "pending_finalizations": sum(len(tasks) for tasks in self._finalize_tasks.values()),
        }
