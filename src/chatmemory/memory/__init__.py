"""Three-tier conversational memory.

Tiers:
- Short-term: importance-weighted rolling window per conversation
- Semantic: durable per-user facts, ranked by embedding similarity
- Episodic: per-user summaries of finalized conversations

Usage:
    from src.chatmemory.memory import InMemoryDocumentStore, SemanticMemoryStore

    store = InMemoryDocumentStore()
    semantic = SemanticMemoryStore(store, embedder)
    hits = await semantic.search(user_id, "favourite colours")

The orchestrating ``MemoryManager`` lives in ``src.chatmemory.core``.
"""

from src.chatmemory.memory.models import (
    Role,
    ContentType,
    PrivacyLevel,
    EpisodeCategory,
    Mood,
    Message,
    ConversationMetadata,
    ShortTermMessage,
    ShortTermMemory,
    SemanticMemory,
    Timespan,
    EpisodicMemory,
    MemorySettings,
    SemanticSearchHit,
    EpisodicSearchHit,
    ConversationContext,
    MemorySearchResult,
    MemoryUsageStats,
    estimate_tokens,
)
from src.chatmemory.memory.errors import (
    MemoryEngineError,
    RetrievalError,
    EmbeddingError,
    StorageError,
    SummarizationError,
    CapacityExceededError,
)
from src.chatmemory.memory.storage import (
    DocumentStore,
    InMemoryDocumentStore,
    PostgresDocumentStore,
    PostgresConfig,
)
from src.chatmemory.memory.short_term import ShortTermMemoryStore, ShortTermConfig
from src.chatmemory.memory.semantic import SemanticMemoryStore, SemanticConfig
from src.chatmemory.memory.episodic import EpisodicMemoryStore, EpisodicConfig
from src.chatmemory.memory.settings import MemorySettingsRegistry
from src.chatmemory.memory.background import BackgroundTaskQueue, BackgroundConfig

__all__ = [
    # Models
    "Role",
    "ContentType",
    "PrivacyLevel",
    "EpisodeCategory",
    "Mood",
    "Message",
    "ConversationMetadata",
    "ShortTermMessage",
    "ShortTermMemory",
    "SemanticMemory",
    "Timespan",
    "EpisodicMemory",
    "MemorySettings",
    "SemanticSearchHit",
    "EpisodicSearchHit",
    "ConversationContext",
    "MemorySearchResult",
    "MemoryUsageStats",
    "estimate_tokens",
    # Errors
    "MemoryEngineError",
    "RetrievalError",
    "EmbeddingError",
    "StorageError",
    "SummarizationError",
    "CapacityExceededError",
    # Storage
    "DocumentStore",
    "InMemoryDocumentStore",
    "PostgresDocumentStore",
    "PostgresConfig",
    # Tiers
    "ShortTermMemoryStore",
    "ShortTermConfig",
    "SemanticMemoryStore",
    "SemanticConfig",
    "EpisodicMemoryStore",
    "EpisodicConfig",
    "MemorySettingsRegistry",
    # Background work
    "BackgroundTaskQueue",
    "BackgroundConfig",
]
