"""Tests for the memory tiers.

These tests run against the in-memory document store and deterministic
fakes, without Ollama, an LLM or PostgreSQL.
"""

import pytest
import asyncio
import time

from src.chatmemory.memory.models import (
    EpisodicMemory,
    MemorySettings,
    PrivacyLevel,
    Role,
    SemanticMemory,
    ShortTermMemory,
    ShortTermMessage,
    Timespan,
    estimate_tokens,
)
from src.chatmemory.memory.errors import EmbeddingError, StorageError
from src.chatmemory.memory.storage import (
    InMemoryDocumentStore,
    SHORT_TERM,
    SEMANTIC,
    EPISODIC,
    SETTINGS,
)
from src.chatmemory.memory.short_term import ShortTermMemoryStore, ShortTermConfig
from src.chatmemory.memory.semantic import (
    SemanticMemoryStore,
    calculate_confidence,
    extract_keywords,
    extract_memory_content,
)
from src.chatmemory.memory.episodic import EpisodicMemoryStore
from src.chatmemory.memory.settings import MemorySettingsRegistry
from src.chatmemory.memory.background import BackgroundTaskQueue, BackgroundConfig
from src.chatmemory.memory.operators import (
    CallbackEmbeddingProvider,
    ConversationSummarizer,
    EncoderConfig,
    OllamaEmbeddingProvider,
    TurnImportanceScorer,
    cosine_similarity,
)

from tests.fakes import ScriptedGenerator, make_conversation, make_message


def make_episode(conversation_id, importance=0.5, created_at=None, user_id="user1"):
    created_at = created_at or time.time()
    return EpisodicMemory(
        user_id=user_id,
        conversation_id=conversation_id,
        summary=f"Episode for {conversation_id}",
        timespan=Timespan.between(created_at - 600, created_at),
        embedding=[0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        importance=importance,
        created_at=created_at,
    )


class TestSimilarity:
    """Tests for cosine similarity."""

    def test_identity(self):
        """Test a vector is identical to itself."""
        v = [0.3, 0.1, 0.9]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_symmetry(self):
        """Test similarity is symmetric."""
        a, b = [1.0, 2.0, 0.5], [0.2, 0.4, 3.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_orthogonal_and_degenerate(self):
        """Test orthogonal, zero and mismatched vectors."""
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0

    def test_token_estimate(self):
        """Test the four-chars-per-token estimate."""
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestTurnImportance:
    """Tests for the short-term importance heuristic."""

    def test_plain_recent_turn(self):
        """Test the score of an ordinary recent turn."""
        scorer = TurnImportanceScorer()
        assert scorer.score(make_message("plain message")) == pytest.approx(0.7)

    def test_cues_add_up_and_cap(self):
        """Test cue bonuses add up and cap at 1."""
        scorer = TurnImportanceScorer()
        msg = make_message("Remember, my name is Ada. Why was that wrong?")
        assert scorer.score(msg) == 1.0

    def test_provider_switch(self):
        """Test the bonus for a provider switch on an old turn."""
        scorer = TurnImportanceScorer()
        old = time.time() - 2 * 86400
        previous = ShortTermMessage("m0", "hi", Role.USER, old, model_provider="gpt")
        msg = make_message("plain message", timestamp=old, model_provider="claude")
        assert scorer.score(msg, previous) == pytest.approx(0.65)


class TestShortTermMemory:
    """Tests for the rolling window."""

    @pytest.fixture
    def short_term(self, store):
        return ShortTermMemoryStore(store, config=ShortTermConfig(window_size=12))

    @pytest.mark.asyncio
    async def test_window_bound_and_eviction_order(self, short_term):
        """The lowest decayed importance is evicted; order stays chronological."""
        settings = MemorySettings(user_id="user1")
        base = time.time() - 600

        important = make_message("Remember: my name is Ada", timestamp=base)
        await short_term.add_message("conv1", "user1", important, settings)

        plain = [make_message(f"plain message {i}", timestamp=base + 10 + i) for i in range(12)]
        for msg in plain:
            await short_term.add_message("conv1", "user1", msg, settings)

        memory = await short_term.get("conv1", "user1")
        ids = [m.message_id for m in memory.messages]

        assert len(memory.messages) == 12
        assert important.id in ids
        assert plain[0].id not in ids
        timestamps = [m.timestamp for m in memory.messages]
        assert timestamps == sorted(timestamps)

    def test_decay_prefers_recent(self, short_term):
        """Test decay lets a fresh turn outrank a stale one."""
        now = time.time()
        stale = ShortTermMessage("old", "old", Role.USER, now - 48 * 3600, importance=1.0)
        fresh = ShortTermMessage("new", "new", Role.USER, now, importance=0.5)

        kept = short_term.apply_retention([stale, fresh], window_size=1, now=now)

        assert [m.message_id for m in kept] == ["new"]

    @pytest.mark.asyncio
    async def test_disabled_add_is_noop(self, short_term, store):
        """Test a disabled tier stores nothing."""
        settings = MemorySettings(user_id="user1", short_term_memory_enabled=False)

        await short_term.add_message("conv1", "user1", make_message("hello there"), settings)

        assert await store.count(SHORT_TERM) == 0
        assert await short_term.get("conv1", "user1") is None

    @pytest.mark.asyncio
    async def test_get_context_stops_before_budget(self, short_term):
        """Test turns stop at the first one over budget."""
        settings = MemorySettings(user_id="user1")
        for i in range(4):
            # 40 chars -> 10 tokens each
            await short_term.add_message("conv1", "user1", make_message(f"{i}" * 40), settings)

        turns, tokens = await short_term.get_context("conv1", "user1", max_tokens=25)

        assert len(turns) == 2
        assert tokens == 20
        assert turns[0].format().startswith("USER: ")

    @pytest.mark.asyncio
    async def test_cache_invalidated_on_clear(self, short_term):
        """Test clear also empties the cache."""
        settings = MemorySettings(user_id="user1")
        await short_term.add_message("conv1", "user1", make_message("hello there"), settings)
        assert await short_term.get("conv1", "user1") is not None

        await short_term.clear("conv1", "user1")

        assert await short_term.get("conv1", "user1") is None

    @pytest.mark.asyncio
    async def test_stats_and_recent(self, short_term):
        """Test window stats and listing."""
        settings = MemorySettings(user_id="user1")
        await short_term.add_message("a", "user1", make_message("one", conversation_id="a"), settings)
        await short_term.add_message("b", "user1", make_message("two", conversation_id="b"), settings)
        await short_term.add_message("b", "user1", make_message("three", conversation_id="b"), settings)

        stats = await short_term.get_stats("user1")
        recent = await short_term.get_recent_conversations("user1")

        assert stats["total_conversations"] == 2
        assert stats["total_messages"] == 3
        assert {m.conversation_id for m in recent} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_delete_for_user(self, short_term):
        """Test deleting one user's windows."""
        settings = MemorySettings(user_id="user1")
        await short_term.add_message("a", "user1", make_message("one", conversation_id="a"), settings)
        await short_term.add_message("a", "user2", make_message("two", conversation_id="a", user_id="user2"), settings)

        assert await short_term.delete_for_user("user1") == 1
        assert await short_term.get("a", "user1") is None
        assert await short_term.get("a", "user2") is not None

    @pytest.mark.asyncio
    async def test_recent_conversations_newest_first(self, short_term, store):
        """Windows are listed by last update, newest first, up to the limit."""
        now = time.time()
        for i, conv in enumerate(["a", "b", "c"]):
            window = ShortTermMemory(conversation_id=conv, user_id="user1", last_updated=now - 3600 * (3 - i))
            await store.put(SHORT_TERM, window.to_dict())

        recent = await short_term.get_recent_conversations("user1", limit=2)

        assert [m.conversation_id for m in recent] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_retention_purges_stale_windows(self, short_term, store):
        """Windows untouched for longer than the retention period are removed."""
        now = time.time()
        stale = ShortTermMemory(conversation_id="old", user_id="user1", last_updated=now - 10 * 86400)
        fresh = ShortTermMemory(conversation_id="new", user_id="user1", last_updated=now)
        other = ShortTermMemory(conversation_id="old", user_id="user2", last_updated=now - 10 * 86400)
        for window in (stale, fresh, other):
            await store.put(SHORT_TERM, window.to_dict())

        assert await short_term.cleanup_old("user1", 7) == 1
        assert await short_term.get("old", "user1") is None
        assert await short_term.get("new", "user1") is not None
        assert await short_term.count("user2") == 1


class TestSemanticExtraction:
    """Tests for content extraction helpers."""

    def test_filler_and_short_content_dropped(self):
        """Test filler and short text are not remembered."""
        assert extract_memory_content("thanks") == ""
        assert extract_memory_content("thank you.") == ""
        assert extract_memory_content("hmm ok") == ""

    def test_structured_patterns_kept(self):
        """Test preference statements are extracted."""
        content = extract_memory_content("Well, I love hiking. I hate rain! My job is teaching.")
        assert content == "I love hiking. I hate rain"

    def test_freeform_needs_length(self):
        """Test freeform text must be long enough."""
        assert extract_memory_content("The meeting moved to Tuesday") == ""
        long_text = "The quarterly planning meeting has moved to Tuesday afternoon"
        assert extract_memory_content(long_text) == long_text

    def test_keywords(self):
        """Test keyword extraction."""
        keywords = extract_keywords("I really like Python, and Python likes me with coffee!")
        assert keywords == ["really", "python", "likes", "coffee"]

    def test_confidence(self):
        """Test certainty cues raise confidence."""
        assert calculate_confidence(Role.USER, "I definitely love tea") == pytest.approx(0.8)
        assert calculate_confidence(Role.USER, "maybe I like tea") == pytest.approx(0.5)
        assert calculate_confidence(Role.ASSISTANT, "perhaps") == pytest.approx(0.3)


class TestSemanticMemory:
    """Tests for the semantic tier."""

    @pytest.fixture
    def semantic(self, store, embedder):
        return SemanticMemoryStore(store, embedder)

    @pytest.fixture
    def settings(self):
        return MemorySettings(user_id="user1")

    @pytest.mark.asyncio
    async def test_create_categorizes(self, semantic, settings):
        """Test a new fact is categorized and scored."""
        memory = await semantic.create_from_message(
            make_message("I love coffee in the morning"), importance=0.8, settings=settings
        )

        assert memory is not None
        assert memory.category == "preference"
        assert memory.keywords == ["love", "coffee", "morning"]
        assert memory.privacy_level == PrivacyLevel.FULL

    @pytest.mark.asyncio
    async def test_below_threshold_or_disabled(self, semantic, store):
        """Test low importance or a disabled tier stores nothing."""
        low = await semantic.create_from_message(
            make_message("I love coffee"), importance=0.2, settings=MemorySettings(user_id="user1")
        )
        disabled = await semantic.create_from_message(
            make_message("I love coffee"),
            importance=0.9,
            settings=MemorySettings(user_id="user1", semantic_memory_enabled=False),
        )

        assert low is None
        assert disabled is None
        assert await store.count(SEMANTIC) == 0

    @pytest.mark.asyncio
    async def test_search_threshold_and_access(self, semantic, settings, store):
        """Test the similarity threshold and access tracking."""
        exact = await semantic.create_from_message(make_message("I love coffee"), importance=0.6, settings=settings)
        pair = await semantic.create_from_message(
            make_message("I enjoy hiking and coffee"), importance=0.6, settings=settings
        )
        triple = await semantic.create_from_message(
            make_message("I like python, hiking and coffee"), importance=0.6, settings=settings
        )

        hits = await semantic.search("user1", "coffee", threshold=0.7)

        # 1.0 and ~0.707 pass; ~0.577 does not
        assert [h.memory.id for h in hits] == [exact.id, pair.id]
        assert all(h.similarity >= 0.7 for h in hits)
        assert triple.id not in [h.memory.id for h in hits]

        stored = await store.get(SEMANTIC, exact.id)
        assert stored["access_count"] == 1

    @pytest.mark.asyncio
    async def test_embedding_failure_returns_empty(self, store, failing_embedder):
        """Test search degrades to empty on embedding failure."""
        semantic = SemanticMemoryStore(store, failing_embedder)
        assert await semantic.search("user1", "coffee") == []

    @pytest.mark.asyncio
    async def test_capacity_evicts_lowest_importance(self, semantic, store):
        """Test the least important fact is evicted at the cap."""
        settings = MemorySettings(user_id="user1", max_semantic_memories=2)

        low = await semantic.create_from_message(make_message("I love coffee"), importance=0.4, settings=settings)
        mid = await semantic.create_from_message(make_message("I enjoy hiking"), importance=0.5, settings=settings)
        high = await semantic.create_from_message(make_message("I like python"), importance=0.9, settings=settings)

        assert await semantic.count("user1") == 2
        assert await store.get(SEMANTIC, low.id) is None
        assert await store.get(SEMANTIC, mid.id) is not None
        assert await store.get(SEMANTIC, high.id) is not None

    @pytest.mark.asyncio
    async def test_near_duplicate_is_merged(self, semantic, settings):
        """Test near-duplicates merge into one fact."""
        first = await semantic.create_from_message(make_message("I love coffee"), importance=0.5, settings=settings)
        second = await semantic.create_from_message(
            make_message("I love coffee a lot"), importance=0.9, settings=settings
        )

        assert second.id == first.id
        assert second.importance == 0.9
        assert second.access_count == 1
        assert await semantic.count("user1") == 1

    @pytest.mark.asyncio
    async def test_limited_privacy_stays_in_conversation(self, semantic):
        """Test limited facts stay in their conversation."""
        settings = MemorySettings(user_id="user1", allow_cross_conversation_memory=False)
        await semantic.create_from_message(
            make_message("I love coffee", conversation_id="private"), importance=0.8, settings=settings
        )

        elsewhere = await semantic.get_relevant("user1", "coffee", conversation_id="other")
        same = await semantic.get_relevant("user1", "coffee", conversation_id="private")

        assert elsewhere == []
        assert len(same) == 1

    @pytest.mark.asyncio
    async def test_update_importance_and_delete(self, semantic, settings):
        """Test importance boosts and owner-checked delete."""
        memory = await semantic.create_from_message(make_message("I love coffee"), importance=0.5, settings=settings)

        updated = await semantic.update_importance(memory.id, ["frequent", "relevant"])
        assert updated.importance == pytest.approx(0.75)

        with pytest.raises(ValueError):
            await semantic.update_importance(memory.id, ["bogus"])

        assert await semantic.delete(memory.id, "someone-else") is False
        assert await semantic.delete(memory.id, "user1") is True

    @pytest.mark.asyncio
    async def test_delete_for_user(self, semantic, settings):
        """Test deleting one user's facts."""
        await semantic.create_from_message(make_message("I love coffee"), settings=settings)
        await semantic.create_from_message(make_message("I enjoy hiking"), settings=settings)
        await semantic.create_from_message(make_message("I love piano", user_id="user2"), settings=settings)

        assert await semantic.delete_for_user("user1") == 2
        assert await semantic.count("user1") == 0
        assert await semantic.count("user2") == 1

    @pytest.mark.asyncio
    async def test_retention_purges_unused_facts(self, semantic, store):
        """Facts not accessed within the retention period are removed."""
        now = time.time()
        unused = SemanticMemory(user_id="user1", content="I love coffee", last_accessed_at=now - 31 * 86400)
        used = SemanticMemory(user_id="user1", content="I enjoy hiking", last_accessed_at=now - 86400)
        for fact in (unused, used):
            await store.put(SEMANTIC, fact.to_dict())

        assert await semantic.cleanup_old("user1", 30) == 1
        assert await store.get(SEMANTIC, unused.id) is None
        assert await store.get(SEMANTIC, used.id) is not None
        assert await semantic.cleanup_old("user1", 0) == 0


class TestEpisodicMemory:
    """Tests for the episodic tier."""

    @pytest.mark.asyncio
    async def test_short_conversation_creates_nothing(self, store, embedder, summary_generator):
        """Test short conversations skip summarization."""
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(summary_generator))

        episode = await episodic.create_from_conversation("conv1", "user1", make_conversation()[:4])

        assert episode is None
        assert await store.count(EPISODIC) == 0
        assert summary_generator.prompts == []

    @pytest.mark.asyncio
    async def test_create_from_conversation(self, store, embedder, summary_generator):
        """Test episode fields derived from a conversation."""
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(summary_generator))

        episode = await episodic.create_from_conversation("conv1", "user1", make_conversation())

        assert episode.summary.startswith("The user planned a hiking trip")
        assert episode.key_topics == ["hiking", "coffee"]
        assert episode.timespan.duration_minutes == 6
        assert episode.category.value == "general"
        assert episode.mood.value == "positive"
        assert episode.satisfaction == pytest.approx(1.0)
        assert episode.importance == pytest.approx(0.7)
        assert episode.model_providers_used == ["gemini"]
        assert await store.count(EPISODIC) == 1

    @pytest.mark.asyncio
    async def test_generator_failure_uses_fallback(self, store, embedder):
        """Test a failing generator falls back."""
        generator = ScriptedGenerator(RuntimeError("provider down"))
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(generator))

        episode = await episodic.create_from_conversation("conv1", "user1", make_conversation())

        assert episode.summary == (
            "text conversation with 7 messages. "
            "User initiated 4 interactions, assistant provided 3 responses."
        )
        assert episode.key_topics == ["text conversation"]

    @pytest.mark.asyncio
    async def test_malformed_json_uses_fallback(self, store, embedder):
        """Test unparsable output falls back."""
        generator = ScriptedGenerator("not json at all")
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(generator))

        episode = await episodic.create_from_conversation("conv1", "user1", make_conversation())

        assert episode.summary.startswith("text conversation with 7 messages")

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(self, store, failing_embedder, summary_generator):
        """Test no episode without an embedding."""
        episodic = EpisodicMemoryStore(store, failing_embedder, ConversationSummarizer(summary_generator))

        assert await episodic.create_from_conversation("conv1", "user1", make_conversation()) is None
        assert await store.count(EPISODIC) == 0

    @pytest.mark.asyncio
    async def test_search_scores_by_importance(self, store, embedder, summary_generator):
        """Test the score is similarity times importance."""
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(summary_generator))
        episode = await episodic.create_from_conversation("conv1", "user1", make_conversation())

        hits = await episodic.search("user1", "hiking")

        assert len(hits) == 1
        assert hits[0].similarity == pytest.approx(0.7071, abs=1e-3)
        assert hits[0].score == pytest.approx(hits[0].similarity * episode.importance)
        assert (await episodic.get_recent("user1"))[0].last_accessed_at is not None

    @pytest.mark.asyncio
    async def test_search_embedding_failure(self, store, failing_embedder):
        """Test search degrades to empty on embedding failure."""
        episodic = EpisodicMemoryStore(store, failing_embedder)
        assert await episodic.search("user1", "hiking") == []

    @pytest.mark.asyncio
    async def test_delete_for_user(self, store, embedder, summary_generator):
        """Test deleting one user's episodes."""
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(summary_generator))
        await episodic.create_from_conversation("c1", "user1", make_conversation("c1"))
        await episodic.create_from_conversation("c2", "user2", make_conversation("c2", user_id="user2"))

        assert await episodic.delete_for_user("user1") == 1
        assert await episodic.count("user1") == 0
        assert await episodic.count("user2") == 1

    @pytest.mark.asyncio
    async def test_capacity_evicts_lowest_importance(self, store, embedder, summary_generator):
        """At the cap, the least important (then oldest) episode makes room."""
        episodic = EpisodicMemoryStore(store, embedder, ConversationSummarizer(summary_generator))
        now = time.time()
        trivial = make_episode("trivial", importance=0.2, created_at=now - 60)
        older = make_episode("older", importance=0.9, created_at=now - 7200)
        for episode in (trivial, older):
            await store.put(EPISODIC, episode.to_dict())

        settings = MemorySettings(user_id="user1", max_episodic_memories=2)
        created = await episodic.create_from_conversation("c1", "user1", make_conversation("c1"), settings=settings)

        remaining = {e.conversation_id for e in await episodic.get_recent("user1")}
        assert remaining == {"older", "c1"}
        assert created is not None

    @pytest.mark.asyncio
    async def test_recent_newest_first(self, store, embedder):
        """get_recent lists episodes by creation time, newest first."""
        episodic = EpisodicMemoryStore(store, embedder)
        now = time.time()
        for i, conv in enumerate(["first", "second", "third"]):
            await store.put(EPISODIC, make_episode(conv, created_at=now - 3600 * (3 - i)).to_dict())

        recent = await episodic.get_recent("user1", limit=2)

        assert [e.conversation_id for e in recent] == ["third", "second"]

    @pytest.mark.asyncio
    async def test_retention_purges_old_episodes(self, store, embedder):
        """Episodes created before the retention window are removed."""
        episodic = EpisodicMemoryStore(store, embedder)
        now = time.time()
        await store.put(EPISODIC, make_episode("ancient", created_at=now - 100 * 86400).to_dict())
        await store.put(EPISODIC, make_episode("recent", created_at=now - 86400).to_dict())

        assert await episodic.cleanup_old("user1", 90) == 1
        assert [e.conversation_id for e in await episodic.get_recent("user1")] == ["recent"]


class TestEmbeddingProviders:
    """Tests for the embedding provider adapters."""

    @pytest.mark.asyncio
    async def test_callback_provider(self):
        """Test the callback provider passes vectors through."""
        async def embed(text):
            return [float(len(text))]

        provider = CallbackEmbeddingProvider(embed)
        assert await provider.embed("abc") == [3.0]

    @pytest.mark.asyncio
    async def test_callback_errors_become_embedding_errors(self):
        """Test callback failures become EmbeddingError."""
        async def broken(text):
            raise ConnectionError("refused")

        async def empty(text):
            return []

        with pytest.raises(EmbeddingError):
            await CallbackEmbeddingProvider(broken).embed("abc")
        with pytest.raises(EmbeddingError):
            await CallbackEmbeddingProvider(empty).embed("abc")

    @pytest.mark.asyncio
    async def test_ollama_verify_detects_dimension(self, monkeypatch):
        """A successful probe embedding updates the configured dimension."""
        provider = OllamaEmbeddingProvider(EncoderConfig(embedding_dim=1024))

        async def embed(text):
            return [0.1, 0.2, 0.3]

        monkeypatch.setattr(provider, "embed", embed)

        assert await provider.verify() is True
        assert provider.config.embedding_dim == 3
        assert provider.get_provider_info()["dimension"] == 3

    @pytest.mark.asyncio
    async def test_ollama_verify_reports_unreachable_server(self, monkeypatch):
        """An unreachable server makes verify return False instead of raising."""
        provider = OllamaEmbeddingProvider()

        async def embed(text):
            raise EmbeddingError("connection refused")

        monkeypatch.setattr(provider, "embed", embed)

        assert await provider.verify() is False


class TestSettingsRegistry:
    """Tests for per-user settings."""

    @pytest.mark.asyncio
    async def test_defaults_created_on_first_access(self, store):
        """Test defaults are persisted on first read."""
        registry = MemorySettingsRegistry(store)

        settings = await registry.get("user1")

        assert settings.memory_enabled is True
        assert settings.max_semantic_memories == 1000
        assert await store.get(SETTINGS, "user1") is not None

    @pytest.mark.asyncio
    async def test_update(self, store):
        """Test a valid patch and refused fields."""
        registry = MemorySettingsRegistry(store)

        updated = await registry.update("user1", {"max_semantic_memories": 5})

        assert updated.max_semantic_memories == 5
        assert (await registry.get("user1")).max_semantic_memories == 5

        with pytest.raises(ValueError):
            await registry.update("user1", {"no_such_field": True})
        with pytest.raises(ValueError):
            await registry.update("user1", {"user_id": "someone-else"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("patch", [
        {"max_semantic_memories": "5"},
        {"max_semantic_memories": 0},
        {"max_episodic_memories": 2.5},
        {"memory_importance_threshold": 2},
        {"memory_importance_threshold": -0.1},
        {"data_retention_days": -1},
        {"memory_enabled": "yes"},
        {"data_retention_days": True},
        {"export_format": "xml"},
        {"preferred_model_provider": "mistral"},
    ])
    async def test_update_rejects_bad_values(self, store, patch):
        """Badly typed or out-of-range values are refused and nothing is saved."""
        registry = MemorySettingsRegistry(store)
        before = (await registry.get("user1")).to_dict()

        with pytest.raises(ValueError):
            await registry.update("user1", patch)

        assert (await registry.get("user1")).to_dict() == before

    @pytest.mark.asyncio
    async def test_update_accepts_valid_values(self, store):
        """Boundary values and every choice field are accepted."""
        registry = MemorySettingsRegistry(store)

        updated = await registry.update("user1", {
            "memory_importance_threshold": 1,
            "data_retention_days": 0,
            "max_episodic_memories": 1,
            "export_format": "markdown",
            "preferred_model_provider": "claude",
            "adaptive_model_selection": False,
        })

        assert updated.memory_importance_threshold == 1
        assert updated.export_format == "markdown"
        assert updated.preferred_model_provider == "claude"

    @pytest.mark.asyncio
    async def test_update_store_failure(self):
        """Test a failed save raises StorageError."""
        class ReadOnlyStore(InMemoryDocumentStore):
            async def put(self, collection, document):
                raise RuntimeError("read-only")

        registry = MemorySettingsRegistry(ReadOnlyStore())

        with pytest.raises(StorageError):
            await registry.update("user1", {"memory_enabled": False})

    @pytest.mark.asyncio
    async def test_clear_all_is_idempotent(self, store):
        """Test clear-all only touches one user."""
        registry = MemorySettingsRegistry(store)
        await registry.get("user1")
        await store.put(SEMANTIC, {"id": "s1", "user_id": "user1"})
        await store.put(SEMANTIC, {"id": "s2", "user_id": "user2"})

        first = await registry.clear_all("user1")
        second = await registry.clear_all("user1")

        assert first[SEMANTIC] == 1
        assert first[SETTINGS] == 1
        assert all(count == 0 for count in second.values())
        assert await store.count(SEMANTIC) == 1


class TestBackgroundQueue:
    """Tests for the background write queue."""

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self):
        """Test failed tasks are counted."""
        queue = BackgroundTaskQueue()

        async def boom():
            raise RuntimeError("write failed")

        async def ok():
            return 1

        queue.submit(boom())
        queue.submit(ok())
        await queue.drain()

        assert queue.failed == 1
        assert queue.completed == 1
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        """Test the semaphore bounds running tasks."""
        queue = BackgroundTaskQueue(BackgroundConfig(max_concurrency=2))
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        for _ in range(6):
            queue.submit(work())
        await queue.drain()

        assert peak == 2
        assert queue.completed == 6

    @pytest.mark.asyncio
    async def test_same_key_runs_in_order(self):
        """Test same-key tasks run in submission order."""
        queue = BackgroundTaskQueue()
        order = []

        async def work(label, delay):
            await asyncio.sleep(delay)
            order.append(label)

        queue.submit(work("first", 0.03), key="conv1")
        queue.submit(work("second", 0.0), key="conv1")
        queue.submit(work("other", 0.0), key="conv2")
        await queue.drain()

        assert order == ["other", "first", "second"]
