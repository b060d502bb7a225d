"""Episodic memory - one summarized episode per finalized conversation.

Pipeline: summarize -> embed -> derive timespan, category, mood,
satisfaction and importance -> enforce capacity -> store.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any
from dataclasses import dataclass

from src.chatmemory.memory.errors import (
    CapacityExceededError,
    EmbeddingError,
    RetrievalError,
    StorageError,
)
from src.chatmemory.memory.models import (
    ContentType,
    ConversationMetadata,
    EpisodeCategory,
    EpisodicMemory,
    EpisodicSearchHit,
    MemorySettings,
    Message,
    Mood,
    Timespan,
)
from src.chatmemory.memory.operators.encoder import EmbeddingProvider
from src.chatmemory.memory.operators.scoring import (
    EpisodeScorer,
    HeuristicEpisodeScorer,
    TextClassifier,
    episode_category_classifier,
    mood_classifier,
)
from src.chatmemory.memory.operators.similarity import cosine_similarity
from src.chatmemory.memory.operators.summarizer import ConversationSummarizer
from src.chatmemory.memory.storage.base import DocumentStore, EPISODIC

logger = logging.getLogger(__name__)


@dataclass
class EpisodicConfig:
    """Configuration for the episodic tier."""
    min_messages: int = 5
    max_messages: int = 100         # Only the last N messages are summarized
    similarity_threshold: float = 0.6
    search_limit: int = 5


class EpisodicMemoryStore:
    """Per-user collection of conversation episodes."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        summarizer: ConversationSummarizer | None = None,
        category_classifier: TextClassifier | None = None,
        mood_detector: TextClassifier | None = None,
        scorer: EpisodeScorer | None = None,
        config: EpisodicConfig | None = None,
    ):
        self._store = store
        self._embedder = embedder
        self._summarizer = summarizer or ConversationSummarizer()
        self._category_classifier = category_classifier or episode_category_classifier()
        self._mood_classifier = mood_detector or mood_classifier()
        self._scorer = scorer or HeuristicEpisodeScorer()
        self.config = config or EpisodicConfig()

    # ==================== Creation ====================

    async def create_from_conversation(
        self,
        conversation_id: str,
        user_id: str,
        messages: list[Message],
        metadata: ConversationMetadata | None = None,
        settings: MemorySettings | None = None,
    ) -> EpisodicMemory | None:
        """Summarize a finished conversation into an episode.

        Returns None when the tier is disabled, the conversation is too short,
        or the summary could not be embedded.
        """
        settings = settings or MemorySettings(user_id=user_id)
        if not settings.memory_enabled or not settings.episodic_memory_enabled:
            return None

        if len(messages) < self.config.min_messages:
            logger.debug(
                "Conversation %s too short for an episode (%d messages)",
                conversation_id, len(messages),
            )
            return None

        messages = messages[-self.config.max_messages:]
        conversation_type = metadata.type if metadata else ContentType.TEXT

        summary = await self._summarizer.summarize(messages, conversation_type)
        if not summary.summary:
            return None
        if summary.is_fallback:
            logger.info("Using fallback summary for conversation %s", conversation_id)

        try:
            embedding = await self._embedder.embed(summary.summary)
        except EmbeddingError as e:
            logger.warning("Episode for %s not stored, embedding failed: %s", conversation_id, e.reason)
            return None

        text = " ".join(m.content for m in messages).lower()
        category = self._category_classifier.classify(text)
        mood = self._mood_classifier.classify(text)
        satisfaction = self._scorer.satisfaction(mood, messages)
        importance = self._scorer.importance(
            messages,
            summary.key_topics,
            summary.main_outcomes,
            satisfaction,
            category,
        )

        providers = list(dict.fromkeys(m.model_provider for m in messages if m.model_provider))
        if metadata:
            providers = list(dict.fromkeys(providers + metadata.model_providers))

        episode = EpisodicMemory(
            user_id=user_id,
            conversation_id=conversation_id,
            summary=summary.summary,
            key_topics=summary.key_topics,
            main_outcomes=summary.main_outcomes,
            user_goals=summary.user_goals,
            assistant_actions=summary.assistant_actions,
            timespan=Timespan.between(messages[0].timestamp, messages[-1].timestamp),
            message_count=len(messages),
            model_providers_used=providers,
            content_types=list(dict.fromkeys(m.content_type.value for m in messages)),
            category=EpisodeCategory(category),
            mood=Mood(mood),
            satisfaction=satisfaction,
            embedding=embedding,
            importance=importance,
        )

        await self.enforce_capacity(user_id, settings.max_episodic_memories)

        try:
            await self._store.put(EPISODIC, episode.to_dict())
        except Exception as e:
            raise StorageError(f"Failed to save episode for {conversation_id}: {e}") from e

        logger.info(
            "Stored episode %s for conversation %s (%s, importance %.2f)",
            episode.id, conversation_id, category, importance,
        )
        return episode

    # ==================== Retrieval ====================

    async def search(
        self,
        user_id: str,
        query_text: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[EpisodicSearchHit]:
        """Episodes ranked by ``similarity * importance``, filtered on similarity."""
        limit = self.config.search_limit if limit is None else limit
        threshold = self.config.similarity_threshold if threshold is None else threshold
        if limit <= 0:
            return []

        try:
            query_embedding = await self._embedder.embed(query_text)
        except EmbeddingError as e:
            logger.warning("Episodic search skipped, embedding failed: %s", e.reason)
            return []

        episodes = await self._load_user_episodes(user_id)

        hits = []
        for episode in episodes:
            similarity = cosine_similarity(query_embedding, episode.embedding)
            if similarity >= threshold:
                hits.append(EpisodicSearchHit(
                    memory=episode,
                    similarity=similarity,
                    score=similarity * episode.importance,
                ))

        hits.sort(key=lambda h: h.score, reverse=True)
        hits = hits[:limit]

        now = time.time()
        for hit in hits:
            hit.memory.last_accessed_at = now
            try:
                await self._store.put(EPISODIC, hit.memory.to_dict())
            except Exception as e:
                logger.warning("Could not record access for episode %s: %s", hit.memory.id, e)

        return hits

    async def get_relevant(self, user_id: str, prompt_text: str, limit: int | None = None) -> list[EpisodicMemory]:
        hits = await self.search(user_id, prompt_text, limit=limit)
        return [h.memory for h in hits]

    async def get_recent(self, user_id: str, limit: int = 10) -> list[EpisodicMemory]:
        try:
            docs = await self._store.query(
                EPISODIC,
                filters={"user_id": user_id},
                order_by="created_at",
                descending=True,
                limit=limit,
            )
        except Exception as e:
            raise RetrievalError(f"Failed to load recent episodes: {e}", tier="episodic") from e
        return [EpisodicMemory.from_dict(d) for d in docs]

    async def _load_user_episodes(self, user_id: str) -> list[EpisodicMemory]:
        try:
            docs = await self._store.query(EPISODIC, filters={"user_id": user_id})
        except Exception as e:
            raise RetrievalError(f"Failed to load episodes: {e}", tier="episodic") from e
        return [EpisodicMemory.from_dict(d) for d in docs]

    # ==================== Capacity ====================

    async def enforce_capacity(self, user_id: str, max_episodes: int) -> int:
        """Evict lowest-importance (then oldest) episodes so one more fits."""
        count = await self._store.count(EPISODIC, {"user_id": user_id})
        try:
            if count >= max_episodes:
                raise CapacityExceededError(EPISODIC, count, max_episodes)
            return 0
        except CapacityExceededError as e:
            to_evict = e.count - e.limit + 1

        episodes = await self._load_user_episodes(user_id)
        episodes.sort(key=lambda m: (m.importance, m.created_at))

        evicted = 0
        for episode in episodes[:to_evict]:
            if await self._store.delete(EPISODIC, episode.id):
                evicted += 1

        logger.info("Evicted %d episodes for user %s", evicted, user_id)
        return evicted

    # ==================== Maintenance ====================

    async def count(self, user_id: str) -> int:
        return await self._store.count(EPISODIC, {"user_id": user_id})

    async def cleanup_old(self, user_id: str, retention_days: int) -> int:
        """Purge episodes created more than ``retention_days`` ago. 0 keeps everything."""
        if retention_days <= 0:
            return 0
        cutoff = time.time() - retention_days * 86400
        removed = await self._store.delete_where(
            EPISODIC,
            {"user_id": user_id, "created_at": {"$lt": cutoff}},
        )
        if removed:
            logger.info("Purged %d episodes for user %s", removed, user_id)
        return removed

    async def delete_for_user(self, user_id: str) -> int:
        return await self._store.delete_where(EPISODIC, {"user_id": user_id})

    async def get_stats(self, user_id: str) -> dict[str, Any]:
        episodes = await self._load_user_episodes(user_id)

        if not episodes:
            return {
                "total_episodes": 0,
                "category_counts": {},
                "average_duration_minutes": 0.0,
                "average_message_count": 0.0,
                "average_satisfaction": 0.0,
                "model_provider_usage": {},
                "oldest": None,
                "newest": None,
            }

        providers = Counter(p for e in episodes for p in e.model_providers_used)
        return {
            "total_episodes": len(episodes),
            "category_counts": dict(Counter(e.category.value for e in episodes)),
            "average_duration_minutes": sum(e.timespan.duration_minutes for e in episodes) / len(episodes),
            "average_message_count": sum(e.message_count for e in episodes) / len(episodes),
            "average_satisfaction": sum(e.satisfaction for e in episodes) / len(episodes),
            "model_provider_usage": dict(providers),
            "oldest": min(e.created_at for e in episodes),
            "newest": max(e.created_at for e in episodes),
        }
