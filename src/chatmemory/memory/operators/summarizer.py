"""Conversation summarizer for the episodic tier.

Asks the text generation provider for a structured JSON summary. The result
is always one of two explicit variants: ``ParsedSummary`` when the model
answered in the recognized shape, ``FallbackSummary`` otherwise. Summarizing
never raises.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from src.chatmemory.llm.provider import TextGenerator
from src.chatmemory.memory.errors import SummarizationError
from src.chatmemory.memory.models import Message, Role, ContentType

logger = logging.getLogger(__name__)


SUMMARY_PROMPT = """Analyze this conversation and provide a comprehensive summary:

CONVERSATION:
{conversation}

Please provide:
1. A concise summary (2-3 sentences) of the main conversation
2. Key topics discussed (3-5 topics)
3. Main outcomes or results achieved
4. User's goals or objectives
5. Assistant's key actions or contributions

Format your response as JSON:
{{
  "summary": "...",
  "keyTopics": ["topic1", "topic2"],
  "mainOutcomes": ["outcome1", "outcome2"],
  "userGoals": ["goal1", "goal2"],
  "assistantActions": ["action1", "action2"]
}}

Respond with ONLY valid JSON, no additional text:"""


@dataclass
class SummarizerConfig:
    """Configuration for conversation summarization."""
    temperature: float = 0.3
    max_tokens: int = 1024
    timeout: float = 30.0
    max_messages: int = 100


@dataclass
class ConversationSummary:
    """Structured summary of a conversation."""
    summary: str
    key_topics: list[str] = field(default_factory=list)
    main_outcomes: list[str] = field(default_factory=list)
    user_goals: list[str] = field(default_factory=list)
    assistant_actions: list[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return False


@dataclass
class ParsedSummary(ConversationSummary):
    """Summary produced by the model in the expected JSON shape."""
    raw_response: str = ""


@dataclass
class FallbackSummary(ConversationSummary):
    """Deterministic summary built from message counts alone."""
    reason: str = ""

    @property
    def is_fallback(self) -> bool:
        return True


class ConversationSummarizer:
    """Produces a ``ConversationSummary`` for a list of messages."""

    def __init__(self, generator: TextGenerator | None = None, config: SummarizerConfig | None = None):
        self._generator = generator
        self.config = config or SummarizerConfig()

    def is_available(self) -> bool:
        return self._generator is not None

    async def summarize(
        self,
        messages: list[Message],
        conversation_type: ContentType = ContentType.TEXT,
    ) -> ConversationSummary:
        """Summarize ``messages``; falls back instead of raising."""
        if not self.is_available():
            return self.fallback(messages, conversation_type, reason="no text generator configured")

        conversation = "\n\n".join(f"{m.role.value}: {m.content}" for m in messages[-self.config.max_messages:])
        prompt = SUMMARY_PROMPT.format(conversation=conversation)

        try:
            response = await asyncio.wait_for(
                self._generator.complete(
                    prompt,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                ),
                timeout=self.config.timeout,
            )
            return self.parse_response(response)
        except asyncio.TimeoutError:
            logger.warning("Summary generation timed out after %.1fs", self.config.timeout)
            return self.fallback(messages, conversation_type, reason="timeout")
        except SummarizationError as e:
            logger.warning("Unusable summary response: %s", e.reason)
            return self.fallback(messages, conversation_type, reason=e.reason)
        except Exception as e:
            logger.warning("Summary generation failed: %s", e)
            return self.fallback(messages, conversation_type, reason=str(e))

    def parse_response(self, response: str) -> ParsedSummary:
        """Parse a model response. Raises ``SummarizationError`` on any shape mismatch."""
        if not response or not response.strip():
            raise SummarizationError("empty response")

        # Handle markdown code blocks
        json_match = re.search(r"```(?:json)?\s*(.*?)\s*```", response, re.DOTALL)
        json_str = json_match.group(1) if json_match else response.strip()

        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise SummarizationError(f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise SummarizationError("response is not a JSON object")

        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise SummarizationError("missing summary text")

        return ParsedSummary(
            summary=summary.strip(),
            key_topics=_string_list(data.get("keyTopics")),
            main_outcomes=_string_list(data.get("mainOutcomes")),
            user_goals=_string_list(data.get("userGoals")),
            assistant_actions=_string_list(data.get("assistantActions")),
            raw_response=response,
        )

    @staticmethod
    def fallback(
        messages: list[Message],
        conversation_type: ContentType = ContentType.TEXT,
        reason: str = "",
    ) -> FallbackSummary:
        user_count = sum(1 for m in messages if m.role == Role.USER)
        assistant_count = sum(1 for m in messages if m.role == Role.ASSISTANT)

        return FallbackSummary(
            summary=(
                f"{conversation_type.value} conversation with {len(messages)} messages. "
                f"User initiated {user_count} interactions, assistant provided {assistant_count} responses."
            ),
            key_topics=["image editing" if conversation_type == ContentType.IMAGE else "text conversation"],
            main_outcomes=["Conversation completed"],
            user_goals=["Information or assistance"],
            assistant_actions=["Provided responses and assistance"],
            reason=reason,
        )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]
