"""Semantic memory - durable per-user facts and preferences.

Facts are extracted from user messages, embedded, and ranked at query time
by cosine similarity. Retrieval updates access statistics. Each user's
collection is capped; the least important (then oldest) facts are evicted
before an insert that would exceed the cap.
"""

from __future__ import annotations

import logging
import re
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
    Message,
    MemorySettings,
    PrivacyLevel,
    Role,
    SemanticMemory,
    SemanticSearchHit,
)
from src.chatmemory.memory.operators.encoder import EmbeddingProvider
from src.chatmemory.memory.operators.scoring import TextClassifier, semantic_category_classifier
from src.chatmemory.memory.operators.similarity import cosine_similarity
from src.chatmemory.memory.storage.base import DocumentStore, SEMANTIC

logger = logging.getLogger(__name__)


@dataclass
class SemanticConfig:
    """Configuration for the semantic tier."""
    similarity_threshold: float = 0.7   # Default for explicit searches
    relevant_threshold: float = 0.6     # Used when assembling context
    relevant_limit: int = 5
    duplicate_threshold: float = 0.9    # Merge instead of insert above this
    min_content_chars: int = 10
    min_freeform_chars: int = 50
    max_keywords: int = 10


FILLER_PATTERNS = [
    re.compile(r"^(ok|okay|yes|no|thanks|thank you|hi|hello|hey)\.?$", re.IGNORECASE),
    re.compile(r"^(lol|haha|hmm|uh|um|ah)\.?$", re.IGNORECASE),
]

STRUCTURED_PATTERNS = [
    re.compile(r"i (like|love|enjoy|prefer|hate|dislike|need|want) ([^.!?]+)", re.IGNORECASE),
    re.compile(r"my (name|favorite|job|work|hobby|interest) is ([^.!?]+)", re.IGNORECASE),
    re.compile(r"i am (a|an|working as|studying|learning) ([^.!?]+)", re.IGNORECASE),
    re.compile(r"remember that ([^.!?]+)", re.IGNORECASE),
    re.compile(r"important: ([^.!?]+)", re.IGNORECASE),
    re.compile(r"note: ([^.!?]+)", re.IGNORECASE),
]

STOP_WORDS = frozenset({
    "this", "that", "with", "have", "will", "from", "they", "know",
    "want", "been", "good", "much", "some", "time", "very", "when",
    "come", "here", "just", "like", "long", "make", "many", "over",
    "such", "take", "than", "them", "well", "your",
})

CERTAINTY_PATTERNS = [
    re.compile(r"definitely|certainly|absolutely|sure|positive", re.IGNORECASE),
    re.compile(r"always|never|every time|usually", re.IGNORECASE),
    re.compile(r"my (name|job|hobby) is", re.IGNORECASE),
]

UNCERTAINTY_PATTERNS = [
    re.compile(r"maybe|perhaps|might|probably|possibly", re.IGNORECASE),
    re.compile(r"i think|i believe|i guess|not sure", re.IGNORECASE),
]

# Boost applied by update_importance for each access pattern
IMPORTANCE_BOOSTS = {"frequent": 0.1, "recent": 0.05, "relevant": 0.15}


def extract_memory_content(content: str, min_chars: int = 10, min_freeform_chars: int = 50) -> str:
    """Reduce a message to the part worth remembering, or "" if nothing is."""
    content = content.strip()

    if len(content) < min_chars:
        return ""

    if any(p.match(content) for p in FILLER_PATTERNS):
        return ""

    for pattern in STRUCTURED_PATTERNS:
        matches = [m.group(0) for m in pattern.finditer(content)]
        if matches:
            return ". ".join(matches)

    if len(content) > min_freeform_chars:
        return content

    return ""


def extract_keywords(content: str, limit: int = 10) -> list[str]:
    """Unique non-stop-words longer than 3 chars, in order of appearance."""
    words = re.sub(r"[^\w\s]", " ", content.lower()).split()
    keywords = [w for w in words if len(w) > 3 and w not in STOP_WORDS]
    return list(dict.fromkeys(keywords))[:limit]


def calculate_confidence(role: Role, content: str) -> float:
    confidence = 0.5

    # User statements are the reliable source for personal facts
    if role == Role.USER:
        confidence += 0.2

    if any(p.search(content) for p in CERTAINTY_PATTERNS):
        confidence += 0.1

    if any(p.search(content) for p in UNCERTAINTY_PATTERNS):
        confidence -= 0.2

    return max(0.1, min(1.0, confidence))


class SemanticMemoryStore:
    """Per-user collection of embedded facts."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        classifier: TextClassifier | None = None,
        config: SemanticConfig | None = None,
    ):
        self._store = store
        self._embedder = embedder
        self._classifier = classifier or semantic_category_classifier()
        self.config = config or SemanticConfig()

    # ==================== Creation ====================

    async def create_from_message(
        self,
        message: Message,
        category: str = "general",
        importance: float = 0.5,
        settings: MemorySettings | None = None,
    ) -> SemanticMemory | None:
        """Create (or merge into) a fact from ``message``.

        Returns None when the tier is disabled, the importance is below the
        user's threshold, or the message holds nothing worth remembering.
        Raises ``EmbeddingError`` / ``StorageError`` on provider or store failure.
        """
        settings = settings or MemorySettings(user_id=message.user_id)
        if not settings.memory_enabled or not settings.semantic_memory_enabled:
            return None

        if importance < settings.memory_importance_threshold:
            return None

        content = extract_memory_content(
            message.content,
            self.config.min_content_chars,
            self.config.min_freeform_chars,
        )
        if not content:
            return None

        embedding = await self._embedder.embed(content)

        if category == "general":
            category = self._classifier.classify(content)

        memory = SemanticMemory(
            user_id=message.user_id,
            conversation_id=message.conversation_id,
            content=content,
            embedding=embedding,
            category=category,
            keywords=extract_keywords(content, self.config.max_keywords),
            importance=importance,
            confidence=calculate_confidence(message.role, content),
            source_message_ids=[message.id],
            privacy_level=(
                PrivacyLevel.FULL if settings.allow_cross_conversation_memory else PrivacyLevel.LIMITED
            ),
        )

        existing = await self._load_user_memories(message.user_id)
        duplicate = self._find_duplicate(existing, embedding)
        if duplicate is not None:
            merged = self._merge(duplicate, memory)
            await self._save(merged)
            logger.debug("Merged semantic memory into %s", merged.id)
            return merged

        await self.enforce_capacity(message.user_id, settings.max_semantic_memories)
        await self._save(memory)

        logger.debug("Created semantic memory %s (%s)", memory.id, category)
        return memory

    def _find_duplicate(self, memories: list[SemanticMemory], embedding: list[float]) -> SemanticMemory | None:
        best, best_sim = None, self.config.duplicate_threshold
        for memory in memories:
            sim = cosine_similarity(embedding, memory.embedding)
            if sim >= best_sim:
                best, best_sim = memory, sim
        return best

    @staticmethod
    def _merge(existing: SemanticMemory, new: SemanticMemory) -> SemanticMemory:
        if new.content not in existing.content:
            existing.content = f"{existing.content}. {new.content}"
        existing.keywords = list(dict.fromkeys(existing.keywords + new.keywords))
        existing.importance = max(existing.importance, new.importance)
        existing.confidence = (existing.confidence + new.confidence) / 2
        existing.source_message_ids = list(dict.fromkeys(existing.source_message_ids + new.source_message_ids))
        existing.touch()
        return existing

    # ==================== Retrieval ====================

    async def search(
        self,
        user_id: str,
        query_text: str,
        category: str | None = None,
        limit: int = 10,
        threshold: float | None = None,
        conversation_id: str | None = None,
        min_importance: float | None = None,
    ) -> list[SemanticSearchHit]:
        """Rank the user's facts by cosine similarity to ``query_text``.

        Only hits with ``similarity >= threshold`` are returned, ordered by
        similarity then importance. Returned memories are marked accessed.
        ``conversation_id`` is the conversation asking: facts stored with
        limited privacy are only surfaced to their source conversation.
        An embedding failure yields an empty list.
        """
        threshold = self.config.similarity_threshold if threshold is None else threshold

        try:
            query_embedding = await self._embedder.embed(query_text)
        except EmbeddingError as e:
            logger.warning("Semantic search skipped, embedding failed: %s", e.reason)
            return []

        filters: dict[str, Any] = {}
        if category:
            filters["category"] = category
        if min_importance is not None:
            filters["importance"] = {"$gte": min_importance}

        candidates = await self._load_user_memories(user_id, filters)

        hits = []
        for memory in candidates:
            if (
                memory.privacy_level == PrivacyLevel.LIMITED
                and conversation_id is not None
                and memory.conversation_id != conversation_id
            ):
                continue
            similarity = cosine_similarity(query_embedding, memory.embedding)
            if similarity >= threshold:
                hits.append(SemanticSearchHit(memory=memory, similarity=similarity))

        hits.sort(key=lambda h: (h.similarity, h.memory.importance), reverse=True)
        hits = hits[:limit]

        for hit in hits:
            hit.memory.touch()
            try:
                await self._store.put(SEMANTIC, hit.memory.to_dict())
            except Exception as e:
                logger.warning("Could not record access for semantic memory %s: %s", hit.memory.id, e)

        return hits

    async def get_relevant(
        self,
        user_id: str,
        prompt_text: str,
        limit: int | None = None,
        conversation_id: str | None = None,
    ) -> list[SemanticMemory]:
        """Simplified search used by the context assembler."""
        if limit is not None and limit <= 0:
            return []
        hits = await self.search(
            user_id,
            prompt_text,
            limit=limit or self.config.relevant_limit,
            threshold=self.config.relevant_threshold,
            conversation_id=conversation_id,
        )
        return [h.memory for h in hits]

    async def _load_user_memories(
        self,
        user_id: str,
        filters: dict[str, Any] | None = None,
    ) -> list[SemanticMemory]:
        try:
            docs = await self._store.query(SEMANTIC, filters={"user_id": user_id, **(filters or {})})
        except Exception as e:
            raise RetrievalError(f"Failed to load semantic memories: {e}", tier="semantic") from e
        return [SemanticMemory.from_dict(d) for d in docs]

    # ==================== Capacity ====================

    async def enforce_capacity(self, user_id: str, max_memories: int) -> int:
        """Evict until one more memory fits under ``max_memories``.

        Victims are the lowest importance first, oldest first on ties.
        Returns the number evicted.
        """
        count = await self._store.count(SEMANTIC, {"user_id": user_id})
        try:
            self._check_capacity(count, max_memories)
            return 0
        except CapacityExceededError as e:
            to_evict = e.count - e.limit + 1

        memories = await self._load_user_memories(user_id)
        memories.sort(key=lambda m: (m.importance, m.created_at))

        evicted = 0
        for memory in memories[:to_evict]:
            if await self._store.delete(SEMANTIC, memory.id):
                evicted += 1

        logger.info("Evicted %d semantic memories for user %s", evicted, user_id)
        return evicted

    @staticmethod
    def _check_capacity(count: int, limit: int) -> None:
        if count >= limit:
            raise CapacityExceededError(SEMANTIC, count, limit)

    # ==================== Maintenance ====================

    async def _save(self, memory: SemanticMemory) -> None:
        try:
            await self._store.put(SEMANTIC, memory.to_dict())
        except Exception as e:
            raise StorageError(f"Failed to save semantic memory {memory.id}: {e}") from e

    async def update_importance(self, memory_id: str, factors: list[str]) -> SemanticMemory | None:
        """Boost importance for each of ``frequent``, ``recent`` or ``relevant`` in ``factors``."""
        unknown = [f for f in factors if f not in IMPORTANCE_BOOSTS]
        if unknown:
            raise ValueError(f"Unknown importance factors: {unknown}")

        data = await self._store.get(SEMANTIC, memory_id)
        if data is None:
            return None

        memory = SemanticMemory.from_dict(data)
        boost = sum(IMPORTANCE_BOOSTS[f] for f in factors)
        memory.importance = min(1.0, memory.importance + boost)
        memory.touch()
        await self._save(memory)
        return memory

    async def delete(self, memory_id: str, user_id: str) -> bool:
        """Delete a memory if it belongs to ``user_id``."""
        data = await self._store.get(SEMANTIC, memory_id)
        if data is None or data.get("user_id") != user_id:
            return False
        return await self._store.delete(SEMANTIC, memory_id)

    async def count(self, user_id: str) -> int:
        return await self._store.count(SEMANTIC, {"user_id": user_id})

    async def cleanup_old(self, user_id: str, retention_days: int) -> int:
        """Purge facts not accessed within ``retention_days``. 0 keeps everything."""
        if retention_days <= 0:
            return 0
        cutoff = time.time() - retention_days * 86400
        removed = await self._store.delete_where(
            SEMANTIC,
            {"user_id": user_id, "last_accessed_at": {"$lt": cutoff}},
        )
        if removed:
            logger.info("Purged %d semantic memories for user %s", removed, user_id)
        return removed

    async def delete_for_user(self, user_id: str) -> int:
        return await self._store.delete_where(SEMANTIC, {"user_id": user_id})

    async def get_stats(self, user_id: str) -> dict[str, Any]:
        memories = await self._load_user_memories(user_id)

        if not memories:
            return {
                "total_memories": 0,
                "category_counts": {},
                "average_importance": 0.0,
                "average_access_count": 0.0,
                "most_accessed": [],
                "oldest": None,
                "newest": None,
            }

        most_accessed = sorted(memories, key=lambda m: m.access_count, reverse=True)[:5]
        return {
            "total_memories": len(memories),
            "category_counts": dict(Counter(m.category for m in memories)),
            "average_importance": sum(m.importance for m in memories) / len(memories),
            "average_access_count": sum(m.access_count for m in memories) / len(memories),
            "most_accessed": [
                {"id": m.id, "content": m.content, "access_count": m.access_count}
                for m in most_accessed
            ],
            "oldest": min(m.created_at for m in memories),
            "newest": max(m.created_at for m in memories),
        }
