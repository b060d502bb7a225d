"""Core data models for the conversational memory engine."""

from __future__ import annotations

import math
import uuid
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any

from src.chatmemory.llm.model_selector import ModelRecommendation


class Role(str, Enum):
    """Speaker of a conversation turn."""
    USER = "user"
    ASSISTANT = "assistant"


class ContentType(str, Enum):
    """Kind of content a message or conversation carries."""
    TEXT = "text"
    IMAGE = "image"
    MIXED = "mixed"


class PrivacyLevel(str, Enum):
    """How widely a memory may be reused across conversations."""
    FULL = "full"           # Usable in any conversation of the user
    LIMITED = "limited"     # Only surfaced for its source conversation
    NONE = "none"


class EpisodeCategory(str, Enum):
    """Coarse classification of a finalized conversation."""
    CREATIVE = "creative"
    PROBLEM_SOLVING = "problem_solving"
    INFORMATIONAL = "informational"
    TECHNICAL = "technical"
    GENERAL = "general"


class Mood(str, Enum):
    """Overall tone of a conversation."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


def estimate_tokens(text: str) -> int:
    """Approximate token count used for all budget accounting: ceil(chars / 4)."""
    return math.ceil(len(text) / 4)


# ==================== Conversation Turns ====================

@dataclass
class Message:
    """A single conversation turn. Immutable once written."""
    conversation_id: str
    user_id: str
    content: str
    role: Role = Role.USER
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    model_provider: str = ""
    model_id: str = ""
    timestamp: float = field(default_factory=time.time)
    content_type: ContentType = ContentType.TEXT
    token_count: int | None = None
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "content": self.content,
            "role": self.role.value,
            "model_provider": self.model_provider,
            "model_id": self.model_id,
            "timestamp": self.timestamp,
            "content_type": self.content_type.value,
            "token_count": self.token_count,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            conversation_id=data["conversation_id"],
            user_id=data["user_id"],
            content=data.get("content", ""),
            role=Role(data.get("role", "user")),
            model_provider=data.get("model_provider", ""),
            model_id=data.get("model_id", ""),
            timestamp=data.get("timestamp", time.time()),
            content_type=ContentType(data.get("content_type", "text")),
            token_count=data.get("token_count"),
            success=data.get("success", True),
        )


@dataclass
class ConversationMetadata:
    """Descriptive data about a conversation, supplied by the caller."""
    conversation_id: str
    user_id: str
    title: str = ""
    type: ContentType = ContentType.TEXT
    model_providers: list[str] = field(default_factory=list)
    message_count: int = 0
    total_tokens: int = 0
    privacy_level: PrivacyLevel = PrivacyLevel.FULL
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    last_message_at: float = field(default_factory=time.time)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["privacy_level"] = self.privacy_level.value
        return data


# ==================== Short-Term Tier ====================

@dataclass
class ShortTermMessage:
    """A turn kept in the rolling window, annotated with its importance."""
    message_id: str
    content: str
    role: Role
    timestamp: float
    importance: float = 0.5
    model_provider: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "content": self.content,
            "role": self.role.value,
            "timestamp": self.timestamp,
            "importance": self.importance,
            "model_provider": self.model_provider,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShortTermMessage:
        return cls(
            message_id=data["message_id"],
            content=data.get("content", ""),
            role=Role(data.get("role", "user")),
            timestamp=data.get("timestamp", time.time()),
            importance=data.get("importance", 0.5),
            model_provider=data.get("model_provider", ""),
        )

    def format(self) -> str:
        """Render as a prompt line, e.g. ``USER: hello``."""
        return f"{self.role.value.upper()}: {self.content}"


@dataclass
class ShortTermMemory:
    """Rolling window of recent turns for one conversation.

    Messages are kept in chronological order; ``len(messages)`` never exceeds
    ``window_size`` after a write.
    """
    conversation_id: str
    user_id: str
    messages: list[ShortTermMessage] = field(default_factory=list)
    window_size: int = 12
    created_at: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    @property
    def id(self) -> str:
        return f"{self.user_id}:{self.conversation_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "messages": [m.to_dict() for m in self.messages],
            "window_size": self.window_size,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShortTermMemory:
        return cls(
            conversation_id=data["conversation_id"],
            user_id=data["user_id"],
            messages=[ShortTermMessage.from_dict(m) for m in data.get("messages", [])],
            window_size=data.get("window_size", 12),
            created_at=data.get("created_at", time.time()),
            last_updated=data.get("last_updated", time.time()),
        )


# ==================== Semantic Tier ====================

@dataclass
class SemanticMemory:
    """A durable fact or preference extracted from a user's messages."""
    user_id: str
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str = ""
    embedding: list[float] = field(default_factory=list)
    category: str = "general"
    keywords: list[str] = field(default_factory=list)
    importance: float = 0.5
    confidence: float = 0.5
    created_at: float = field(default_factory=time.time)
    last_accessed_at: float = field(default_factory=time.time)
    access_count: int = 0
    related_memory_ids: list[str] = field(default_factory=list)
    source_message_ids: list[str] = field(default_factory=list)
    privacy_level: PrivacyLevel = PrivacyLevel.FULL

    def touch(self) -> None:
        """Record a retrieval."""
        self.access_count += 1
        self.last_accessed_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "conversation_id": self.conversation_id,
            "content": self.content,
            "embedding": self.embedding,
            "category": self.category,
            "keywords": self.keywords,
            "importance": self.importance,
            "confidence": self.confidence,
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
            "access_count": self.access_count,
            "related_memory_ids": self.related_memory_ids,
            "source_message_ids": self.source_message_ids,
            "privacy_level": self.privacy_level.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SemanticMemory:
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            user_id=data["user_id"],
            conversation_id=data.get("conversation_id", ""),
            content=data.get("content", ""),
            embedding=data.get("embedding", []),
            category=data.get("category", "general"),
            keywords=data.get("keywords", []),
            importance=data.get("importance", 0.5),
            confidence=data.get("confidence", 0.5),
            created_at=data.get("created_at", time.time()),
            last_accessed_at=data.get("last_accessed_at", time.time()),
            access_count=data.get("access_count", 0),
            related_memory_ids=data.get("related_memory_ids", []),
            source_message_ids=data.get("source_message_ids", []),
            privacy_level=PrivacyLevel(data.get("privacy_level", "full")),
        )


# ==================== Episodic Tier ====================

@dataclass
class Timespan:
    """Start/end of a conversation, with its duration in whole minutes."""
    start: float
    end: float
    duration_minutes: int = 0

    @classmethod
    def between(cls, start: float, end: float) -> Timespan:
        return cls(start=start, end=end, duration_minutes=round((end - start) / 60))


@dataclass
class EpisodicMemory:
    """Summary of one finalized conversation."""
    user_id: str
    conversation_id: str
    summary: str
    timespan: Timespan
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    key_topics: list[str] = field(default_factory=list)
    main_outcomes: list[str] = field(default_factory=list)
    user_goals: list[str] = field(default_factory=list)
    assistant_actions: list[str] = field(default_factory=list)
    message_count: int = 0
    model_providers_used: list[str] = field(default_factory=list)
    content_types: list[str] = field(default_factory=list)
    category: EpisodeCategory = EpisodeCategory.GENERAL
    mood: Mood = Mood.NEUTRAL
    satisfaction: float = 0.5
    embedding: list[float] = field(default_factory=list)
    importance: float = 0.5
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    last_accessed_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "conversation_id": self.conversation_id,
            "summary": self.summary,
            "key_topics": self.key_topics,
            "main_outcomes": self.main_outcomes,
            "user_goals": self.user_goals,
            "assistant_actions": self.assistant_actions,
            "timespan": asdict(self.timespan),
            "message_count": self.message_count,
            "model_providers_used": self.model_providers_used,
            "content_types": self.content_types,
            "category": self.category.value,
            "mood": self.mood.value,
            "satisfaction": self.satisfaction,
            "embedding": self.embedding,
            "importance": self.importance,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_accessed_at": self.last_accessed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EpisodicMemory:
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            user_id=data["user_id"],
            conversation_id=data["conversation_id"],
            summary=data.get("summary", ""),
            key_topics=data.get("key_topics", []),
            main_outcomes=data.get("main_outcomes", []),
            user_goals=data.get("user_goals", []),
            assistant_actions=data.get("assistant_actions", []),
            timespan=Timespan(**data["timespan"]),
            message_count=data.get("message_count", 0),
            model_providers_used=data.get("model_providers_used", []),
            content_types=data.get("content_types", []),
            category=EpisodeCategory(data.get("category", "general")),
            mood=Mood(data.get("mood", "neutral")),
            satisfaction=data.get("satisfaction", 0.5),
            embedding=data.get("embedding", []),
            importance=data.get("importance", 0.5),
            created_at=data.get("created_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
            last_accessed_at=data.get("last_accessed_at"),
        )

    def token_estimate(self) -> int:
        """Tokens this episode costs in an assembled context."""
        return estimate_tokens(self.summary) + estimate_tokens(" ".join(self.key_topics))


# ==================== Settings ====================

@dataclass
class MemorySettings:
    """Per-user toggles and limits governing every tier."""
    user_id: str
    memory_enabled: bool = True
    short_term_memory_enabled: bool = True
    semantic_memory_enabled: bool = True
    episodic_memory_enabled: bool = True
    memory_importance_threshold: float = 0.3
    max_semantic_memories: int = 1000
    max_episodic_memories: int = 100
    data_retention_days: int = 0    # 0 = keep forever
    allow_cross_conversation_memory: bool = True
    allow_model_provider_sharing: bool = True
    export_format: str = "json"     # json / markdown / csv
    preferred_model_provider: str = "auto"
    adaptive_model_selection: bool = True
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemorySettings:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


# ==================== Results ====================

@dataclass
class SemanticSearchHit:
    """A semantic memory paired with its similarity to the query."""
    memory: SemanticMemory
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        data = self.memory.to_dict()
        data.pop("embedding", None)
        data["similarity"] = self.similarity
        return data


@dataclass
class EpisodicSearchHit:
    """An episode with its similarity and importance-weighted score."""
    memory: EpisodicMemory
    similarity: float
    score: float

    def to_dict(self) -> dict[str, Any]:
        data = self.memory.to_dict()
        data.pop("embedding", None)
        data["similarity"] = self.similarity
        data["score"] = self.score
        return data


@dataclass
class ConversationContext:
    """Per-request snapshot of all tiers plus token accounting. Never persisted."""
    conversation_id: str
    user_id: str
    current_prompt: str = ""
    short_term_memory: ShortTermMemory | None = None
    relevant_semantic_memories: list[SemanticMemory] = field(default_factory=list)
    relevant_episodic_memories: list[EpisodicMemory] = field(default_factory=list)
    context_prompt: str = ""
    total_token_count: int = 0
    memory_token_count: int = 0
    message_token_count: int = 0
    recommended_model: ModelRecommendation | None = None
    degraded_tiers: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @property
    def recent_messages(self) -> list[ShortTermMessage]:
        return self.short_term_memory.messages if self.short_term_memory else []

    @property
    def is_empty(self) -> bool:
        return not (
            self.recent_messages
            or self.relevant_semantic_memories
            or self.relevant_episodic_memories
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
            "current_prompt": self.current_prompt,
            "recent_messages": [m.to_dict() for m in self.recent_messages],
            "semantic_memories": [m.content for m in self.relevant_semantic_memories],
            "episodic_memories": [e.summary for e in self.relevant_episodic_memories],
            "context_prompt": self.context_prompt,
            "total_token_count": self.total_token_count,
            "memory_token_count": self.memory_token_count,
            "message_token_count": self.message_token_count,
            "recommended_model": self.recommended_model.to_dict() if self.recommended_model else None,
            "degraded_tiers": self.degraded_tiers,
        }


@dataclass
class MemorySearchResult:
    """Combined result of a cross-tier search."""
    short_term_memories: list[ShortTermMessage] = field(default_factory=list)
    semantic_memories: list[SemanticSearchHit] = field(default_factory=list)
    episodic_memories: list[EpisodicSearchHit] = field(default_factory=list)
    search_time_ms: float = 0.0

    @property
    def total_results(self) -> int:
        return (
            len(self.short_term_memories)
            + len(self.semantic_memories)
            + len(self.episodic_memories)
        )


@dataclass
class MemoryUsageStats:
    """Aggregate view of a user's memory footprint."""
    user_id: str
    short_term_count: int = 0
    semantic_count: int = 0
    episodic_count: int = 0
    total_storage_bytes: int = 0
    embedding_storage_bytes: int = 0
    top_categories: list[tuple[str, int]] = field(default_factory=list)
    preferred_model_providers: list[tuple[str, int]] = field(default_factory=list)
    average_conversation_length: float = 0.0
    memory_effectiveness: float = 0.0
    last_updated: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
