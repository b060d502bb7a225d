"""Deterministic stand-ins for the embedding and text generation providers."""

import asyncio
import time

from src.chatmemory.llm.provider import TextGenerator
from src.chatmemory.memory.errors import EmbeddingError
from src.chatmemory.memory.models import Message, Role
from src.chatmemory.memory.operators.encoder import EmbeddingProvider


# Each topic word is one embedding dimension
TOPICS = ["python", "coffee", "hiking", "color", "image", "piano", "budget", "travel"]


class TopicEmbedder(EmbeddingProvider):
    """Deterministic embedder: one dimension per topic word found in the text.

    Texts sharing exactly the same topics have similarity 1.0; texts with
    disjoint topics have similarity 0.0.
    """

    def __init__(self):
        self.calls = 0

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        lowered = text.lower()
        return [1.0 if topic in lowered else 0.0 for topic in TOPICS]


class FailingEmbedder(EmbeddingProvider):
    async def embed(self, text: str) -> list[float]:
        raise EmbeddingError("embedding service unavailable")


class ScriptedGenerator(TextGenerator):
    """Returns a fixed response, or raises it if it is an exception.

    ``delay`` seconds pass before answering, to keep a finalization in flight.
    """

    def __init__(self, response, delay: float = 0.0):
        self.response = response
        self.delay = delay
        self.prompts: list[str] = []

    async def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 1024) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


SUMMARY_JSON = """```json
{
  "summary": "The user planned a hiking trip and asked about coffee near the trail.",
  "keyTopics": ["hiking", "coffee"],
  "mainOutcomes": ["Route chosen"],
  "userGoals": ["Plan a weekend hike"],
  "assistantActions": ["Suggested trails"]
}
```"""


class SlowEmbedder(EmbeddingProvider):
    """Sleeps before embedding, to trigger read deadlines."""

    def __init__(self, delay: float = 1.0):
        self.delay = delay

    async def embed(self, text: str) -> list[float]:
        await asyncio.sleep(self.delay)
        return [1.0] * len(TOPICS)


def make_message(content, role=Role.USER, conversation_id="conv1", user_id="user1", **kwargs):
    return Message(
        conversation_id=conversation_id,
        user_id=user_id,
        content=content,
        role=role,
        **kwargs,
    )


def make_conversation(conversation_id="conv1", user_id="user1", base=None):
    """Seven-turn conversation ending with a satisfied user."""
    base = base or time.time() - 3600
    turns = [
        (Role.USER, "I want to plan a weekend hike near the lake"),
        (Role.ASSISTANT, "The ridge trail is a good option for a weekend hike"),
        (Role.USER, "Is there coffee near the trailhead"),
        (Role.ASSISTANT, "There is a small cafe at the trailhead"),
        (Role.USER, "Great, I will take the ridge trail"),
        (Role.ASSISTANT, "Enjoy the trail"),
        (Role.USER, "thanks, that is perfect"),
    ]
    return [
        make_message(
            content,
            role=role,
            conversation_id=conversation_id,
            user_id=user_id,
            timestamp=base + i * 60,
            model_provider="gemini",
        )
        for i, (role, content) in enumerate(turns)
    ]
