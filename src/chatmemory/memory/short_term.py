"""Short-term memory - importance-weighted rolling window per conversation.

Every appended turn is scored for importance. When the window overflows,
turns are ranked by ``importance * decay_factor ** age_hours`` and only the
top ``window_size`` survive; the survivors are stored in chronological order.
"""

from __future__ import annotations

import heapq
import logging
import time
from typing import Any
from dataclasses import dataclass

from src.chatmemory.memory.errors import RetrievalError, StorageError
from src.chatmemory.memory.models import (
    Message,
    MemorySettings,
    ShortTermMemory,
    ShortTermMessage,
    estimate_tokens,
)
from src.chatmemory.memory.operators.scoring import ImportanceScorer, TurnImportanceScorer
from src.chatmemory.memory.storage.base import DocumentStore, SHORT_TERM

logger = logging.getLogger(__name__)


@dataclass
class ShortTermConfig:
    """Configuration for the short-term window."""
    window_size: int = 12
    decay_factor: float = 0.9       # Per-hour multiplier applied during eviction ranking
    cache_enabled: bool = True


class ShortTermMemoryStore:
    """Rolling window of recent turns, one document per conversation."""

    def __init__(
        self,
        store: DocumentStore,
        scorer: ImportanceScorer | None = None,
        config: ShortTermConfig | None = None,
    ):
        self._store = store
        self._scorer = scorer or TurnImportanceScorer()
        self.config = config or ShortTermConfig()
        self._cache: dict[str, ShortTermMemory] = {}

    @staticmethod
    def _key(conversation_id: str, user_id: str) -> str:
        return f"{user_id}:{conversation_id}"

    # ==================== Core API ====================

    async def add_message(
        self,
        conversation_id: str,
        user_id: str,
        message: Message,
        settings: MemorySettings,
    ) -> None:
        """Append a turn, evicting the lowest-ranked turns if the window overflows."""
        if not settings.memory_enabled or not settings.short_term_memory_enabled:
            return

        memory = await self.get(conversation_id, user_id)
        if memory is None:
            memory = ShortTermMemory(
                conversation_id=conversation_id,
                user_id=user_id,
                window_size=self.config.window_size,
            )

        previous = memory.messages[-1] if memory.messages else None
        memory.messages.append(ShortTermMessage(
            message_id=message.id,
            content=message.content,
            role=message.role,
            timestamp=message.timestamp,
            importance=self._scorer.score(message, previous),
            model_provider=message.model_provider,
        ))

        if len(memory.messages) > memory.window_size:
            memory.messages = self.apply_retention(memory.messages, memory.window_size)

        memory.last_updated = time.time()
        self._cache.pop(self._key(conversation_id, user_id), None)

        try:
            await self._store.put(SHORT_TERM, memory.to_dict())
        except Exception as e:
            raise StorageError(f"Failed to save short-term memory for {conversation_id}: {e}") from e

    async def get(self, conversation_id: str, user_id: str) -> ShortTermMemory | None:
        """Load a conversation's window, served from cache when possible."""
        key = self._key(conversation_id, user_id)
        if self.config.cache_enabled and key in self._cache:
            return self._cache[key]

        try:
            data = await self._store.get(SHORT_TERM, key)
        except Exception as e:
            raise RetrievalError(f"Failed to load short-term memory: {e}", tier="short_term") from e

        if data is None:
            return None

        memory = ShortTermMemory.from_dict(data)
        if self.config.cache_enabled:
            self._cache[key] = memory
        return memory

    async def clear(self, conversation_id: str, user_id: str) -> None:
        key = self._key(conversation_id, user_id)
        self._cache.pop(key, None)
        try:
            await self._store.delete(SHORT_TERM, key)
        except Exception as e:
            raise StorageError(f"Failed to clear short-term memory for {conversation_id}: {e}") from e

    async def get_context(
        self,
        conversation_id: str,
        user_id: str,
        max_tokens: int,
    ) -> tuple[list[ShortTermMessage], int]:
        """Chronological turns that fit within ``max_tokens``, and their token count.

        Stops at the first turn that would exceed the budget.
        """
        memory = await self.get(conversation_id, user_id)
        if memory is None:
            return [], 0

        selected: list[ShortTermMessage] = []
        total = 0
        for msg in memory.messages:
            tokens = estimate_tokens(msg.content)
            if total + tokens > max_tokens:
                break
            selected.append(msg)
            total += tokens

        return selected, total

    # ==================== Retention ====================

    def adjusted_importance(self, message: ShortTermMessage, now: float | None = None) -> float:
        """``importance * decay_factor ** age_hours``."""
        age_hours = max(0.0, ((now or time.time()) - message.timestamp) / 3600)
        return message.importance * self.config.decay_factor ** age_hours

    def apply_retention(
        self,
        messages: list[ShortTermMessage],
        window_size: int,
        now: float | None = None,
    ) -> list[ShortTermMessage]:
        """Keep the top ``window_size`` by decayed importance, in chronological order."""
        if len(messages) <= window_size:
            return list(messages)

        now = now or time.time()
        kept = heapq.nlargest(window_size, messages, key=lambda m: self.adjusted_importance(m, now))
        return sorted(kept, key=lambda m: m.timestamp)

    # ==================== Maintenance ====================

    async def get_recent_conversations(self, user_id: str, limit: int = 10) -> list[ShortTermMemory]:
        try:
            docs = await self._store.query(
                SHORT_TERM,
                filters={"user_id": user_id},
                order_by="last_updated",
                descending=True,
                limit=limit,
            )
        except Exception as e:
            raise RetrievalError(f"Failed to list conversations: {e}", tier="short_term") from e
        return [ShortTermMemory.from_dict(d) for d in docs]

    async def count(self, user_id: str) -> int:
        return await self._store.count(SHORT_TERM, {"user_id": user_id})

    async def cleanup_old(self, user_id: str, retention_days: int) -> int:
        """Purge windows untouched for ``retention_days``. 0 keeps everything."""
        if retention_days <= 0:
            return 0

        cutoff = time.time() - retention_days * 86400
        removed = await self._store.delete_where(
            SHORT_TERM,
            {"user_id": user_id, "last_updated": {"$lt": cutoff}},
        )
        self.drop_user_cache(user_id)
        if removed:
            logger.info("Purged %d short-term windows for user %s", removed, user_id)
        return removed

    async def delete_for_user(self, user_id: str) -> int:
        self.drop_user_cache(user_id)
        return await self._store.delete_where(SHORT_TERM, {"user_id": user_id})

    def drop_user_cache(self, user_id: str) -> None:
        for key in [k for k in self._cache if k.startswith(f"{user_id}:")]:
            del self._cache[key]

    async def get_stats(self, user_id: str) -> dict[str, Any]:
        """Conversation and message counts for a user."""
        docs = await self._store.query(SHORT_TERM, filters={"user_id": user_id})
        memories = [ShortTermMemory.from_dict(d) for d in docs]

        if not memories:
            return {
                "total_conversations": 0,
                "total_messages": 0,
                "average_window_size": 0.0,
                "oldest": None,
                "newest": None,
            }

        total_messages = sum(len(m.messages) for m in memories)
        return {
            "total_conversations": len(memories),
            "total_messages": total_messages,
            "average_window_size": total_messages / len(memories),
            "oldest": min(m.created_at for m in memories),
            "newest": max(m.last_updated for m in memories),
        }
