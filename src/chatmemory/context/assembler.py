"""Context assembler - merges the three memory tiers under a token budget.

Tier reads run concurrently, each under its own deadline. A tier that fails
or times out contributes nothing and is reported in ``degraded_tiers``.
Budget accounting then runs sequentially: short-term first, then semantic,
then episodic. Every tier only takes items that fit what is left, so the
memory part never exceeds ``max_tokens``; the user's prompt is counted on
top of it.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable
from dataclasses import dataclass

from src.chatmemory.llm.model_selector import ModelSelector, ModelRecommendation
from src.chatmemory.memory.episodic import EpisodicMemoryStore
from src.chatmemory.memory.models import (
    ConversationContext,
    EpisodicMemory,
    MemorySettings,
    SemanticMemory,
    ShortTermMemory,
    ShortTermMessage,
    estimate_tokens,
)
from src.chatmemory.memory.semantic import SemanticMemoryStore
from src.chatmemory.memory.settings import MemorySettingsRegistry
from src.chatmemory.memory.short_term import ShortTermMemoryStore
from src.chatmemory.context.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


@dataclass
class AssemblerConfig:
    """Budget split and deadlines for context assembly."""
    default_max_tokens: int = 8000
    tier_timeout: float = 5.0           # Seconds per tier read

    # Short-term may use this share of the budget
    short_term_ratio: float = 0.5

    # Semantic: share of what remains after short-term
    semantic_ratio: float = 0.6
    semantic_tokens_per_item: int = 200
    max_semantic_items: int = 10

    # Episodic: only considered while more than the minimum remains
    episodic_min_remaining: int = 500
    episodic_tokens_per_item: int = 300
    max_episodic_items: int = 3


class ContextAssembler:
    """Builds a ``ConversationContext`` for the next generation call."""

    def __init__(
        self,
        short_term: ShortTermMemoryStore,
        semantic: SemanticMemoryStore,
        episodic: EpisodicMemoryStore,
        settings: MemorySettingsRegistry,
        model_selector: ModelSelector | None = None,
        prompt_builder: PromptBuilder | None = None,
        config: AssemblerConfig | None = None,
    ):
        self._short_term = short_term
        self._semantic = semantic
        self._episodic = episodic
        self._settings = settings
        self._selector = model_selector or ModelSelector()
        self._builder = prompt_builder or PromptBuilder()
        self.config = config or AssemblerConfig()

    async def generate_context(
        self,
        conversation_id: str,
        user_id: str,
        current_prompt: str,
        max_tokens: int | None = None,
        mode: str | None = None,
    ) -> ConversationContext:
        """Assemble memory context for ``current_prompt``.

        Args:
            conversation_id: Conversation the prompt belongs to
            user_id: Owner of the memories
            current_prompt: The user's new message
            max_tokens: Budget for the memory part of the context
            mode: chat / image / creative / analytical; detected from the prompt if None

        Returns:
            ConversationContext. Never raises for tier failures.
        """
        max_tokens = self.config.default_max_tokens if max_tokens is None else max_tokens
        settings = await self._load_settings(user_id)
        mode = mode or self._builder.detect_mode(current_prompt)
        prompt_tokens = estimate_tokens(current_prompt)

        context = ConversationContext(
            conversation_id=conversation_id,
            user_id=user_id,
            current_prompt=current_prompt,
            total_token_count=prompt_tokens,
        )

        if not settings.memory_enabled:
            context.context_prompt = self._builder.build_prompt(current_prompt, [], [], [], mode)
            return context

        cfg = self.config
        remaining = max(0, max_tokens)

        # ---- Concurrent reads ----
        short_budget = math.floor(remaining * cfg.short_term_ratio)
        semantic_upper = min(
            math.floor(remaining * cfg.semantic_ratio / cfg.semantic_tokens_per_item),
            cfg.max_semantic_items,
        )
        episodic_upper = min(remaining // cfg.episodic_tokens_per_item, cfg.max_episodic_items)

        short_result, semantic_candidates, episodic_candidates = await asyncio.gather(
            self._read_tier(
                "short_term",
                settings.short_term_memory_enabled,
                self._short_term.get_context(conversation_id, user_id, short_budget),
                ([], 0),
                context,
            ),
            self._read_tier(
                "semantic",
                settings.semantic_memory_enabled and semantic_upper > 0,
                self._semantic.get_relevant(
                    user_id, current_prompt, limit=semantic_upper, conversation_id=conversation_id
                ),
                [],
                context,
            ),
            self._read_tier(
                "episodic",
                settings.episodic_memory_enabled and episodic_upper > 0,
                self._episodic.get_relevant(user_id, current_prompt, limit=episodic_upper),
                [],
                context,
            ),
        )

        # ---- Sequential accounting ----
        recent, short_tokens = short_result
        remaining -= short_tokens

        semantic, semantic_tokens = self._take_semantic(semantic_candidates, remaining)
        remaining -= semantic_tokens

        episodic, episodic_tokens = self._take_episodic(episodic_candidates, remaining)
        remaining -= episodic_tokens

        context.short_term_memory = ShortTermMemory(
            conversation_id=conversation_id,
            user_id=user_id,
            messages=recent,
        )
        context.relevant_semantic_memories = semantic
        context.relevant_episodic_memories = episodic
        context.message_token_count = short_tokens
        context.memory_token_count = short_tokens + semantic_tokens + episodic_tokens
        context.total_token_count = context.memory_token_count + prompt_tokens
        context.context_prompt = self._builder.build_prompt(current_prompt, semantic, episodic, recent, mode)
        context.recommended_model = self._recommend(context, settings, recent, semantic, episodic)

        logger.debug(
            "Context for %s: %d recent, %d facts, %d episodes, %d tokens (degraded: %s)",
            conversation_id, len(recent), len(semantic), len(episodic),
            context.total_token_count, context.degraded_tiers or "none",
        )
        return context

    async def _load_settings(self, user_id: str) -> MemorySettings:
        try:
            return await asyncio.wait_for(self._settings.get(user_id), timeout=self.config.tier_timeout)
        except Exception as e:
            logger.warning("Settings unavailable for %s, using defaults: %s", user_id, e)
            return MemorySettings(user_id=user_id)

    async def _read_tier(
        self,
        tier: str,
        enabled: bool,
        coro: Awaitable[Any],
        default: Any,
        context: ConversationContext,
    ) -> Any:
        if not enabled:
            # Close the unawaited coroutine
            coro.close()
            return default

        try:
            return await asyncio.wait_for(coro, timeout=self.config.tier_timeout)
        except asyncio.TimeoutError:
            logger.warning("%s tier timed out after %.1fs, continuing without it", tier, self.config.tier_timeout)
        except Exception as e:
            logger.warning("%s tier failed, continuing without it: %s", tier, e)

        context.degraded_tiers.append(tier)
        return default

    def _take_semantic(self, candidates: list[SemanticMemory], remaining: int) -> tuple[list[SemanticMemory], int]:
        if remaining <= 0:
            return [], 0

        cfg = self.config
        allocation = math.floor(remaining * cfg.semantic_ratio)
        count = min(allocation // cfg.semantic_tokens_per_item, cfg.max_semantic_items)

        taken, used = [], 0
        for memory in candidates[:count]:
            tokens = estimate_tokens(memory.content)
            if used + tokens > allocation:
                break
            taken.append(memory)
            used += tokens
        return taken, used

    def _take_episodic(self, candidates: list[EpisodicMemory], remaining: int) -> tuple[list[EpisodicMemory], int]:
        cfg = self.config
        if remaining <= cfg.episodic_min_remaining:
            return [], 0

        count = min(remaining // cfg.episodic_tokens_per_item, cfg.max_episodic_items)

        taken, used = [], 0
        for episode in candidates[:count]:
            tokens = episode.token_estimate()
            if used + tokens > remaining:
                break
            taken.append(episode)
            used += tokens
        return taken, used

    def _recommend(
        self,
        context: ConversationContext,
        settings: MemorySettings,
        recent: list[ShortTermMessage],
        semantic: list[SemanticMemory],
        episodic: list[EpisodicMemory],
    ) -> ModelRecommendation:
        if not settings.adaptive_model_selection:
            return self._selector.get_optimal_model(
                "general",
                preferred_provider=settings.preferred_model_provider,
            )

        complexity = self._builder.analyze_complexity(
            context.current_prompt,
            semantic_count=len(semantic),
            episodic_count=len(episodic),
            short_term_count=len(recent),
        )
        return self._selector.get_optimal_model(
            context.current_prompt,
            has_images=self._builder.has_image_content(recent, semantic),
            complexity=complexity,
            context_tokens=context.total_token_count,
            preferred_provider=settings.preferred_model_provider,
        )
