"""Prompt rendering and task analysis for assembled contexts."""

from __future__ import annotations

import re

from src.chatmemory.memory.models import (
    EpisodicMemory,
    SemanticMemory,
    ShortTermMessage,
)


SYSTEM_PROMPT = """You are a helpful multi-turn assistant.
Use the known facts, summaries of earlier conversations and the recent turns below to keep continuity.
Prefer recent preferences over older ones. If context is missing, ask a short clarifying question.
Do not reveal stored memories unless the user asks for them."""

MODE_INSTRUCTIONS = {
    "chat": "Engage in natural conversation, maintaining context and personality.",
    "image": "Focus on image generation, editing, or visual analysis tasks.",
    "creative": "Emphasize creativity, imagination, and artistic expression.",
    "analytical": "Provide detailed analysis, reasoning, and logical explanations.",
}

# Checked in order; first match wins, "chat" otherwise
MODE_PATTERNS = [
    ("image", re.compile(r"\b(image|photo|picture|draw|render|visual)", re.IGNORECASE)),
    ("creative", re.compile(r"\b(story|poem|creative|imagine|lyrics|fiction)", re.IGNORECASE)),
    ("analytical", re.compile(r"\b(analy[sz]e|analysis|compare|evaluate|assess|reason)", re.IGNORECASE)),
]

COMPLEXITY_PATTERNS = [
    re.compile(r"analyze|analysis|detailed|comprehensive|complex", re.IGNORECASE),
    re.compile(r"compare|contrast|evaluate|assess|review", re.IGNORECASE),
    re.compile(r"multiple|various|several|different|many", re.IGNORECASE),
    re.compile(r"step.by.step|explain|describe|how.to", re.IGNORECASE),
    re.compile(r"code|program|script|function|algorithm", re.IGNORECASE),
]

TAG_PATTERNS = [
    ("creative", re.compile(r"creative|art|design|writing|story|poem", re.IGNORECASE)),
    ("technical", re.compile(r"code|programming|technical|algorithm|function|debug", re.IGNORECASE)),
    ("analysis", re.compile(r"analyze|analysis|research|study|evaluate|compare", re.IGNORECASE)),
    ("help", re.compile(r"help|how.to|explain|guide|tutorial|learn", re.IGNORECASE)),
    ("image", re.compile(r"image|photo|picture|visual|generate|create", re.IGNORECASE)),
    ("personal", re.compile(r"\bmy\b|\bme\b|i\s|personal|preference|like|love|enjoy", re.IGNORECASE)),
]

IMAGE_WORDS = ("image", "photo", "picture")


class PromptBuilder:
    """Renders the context prompt and derives model-selection signals.

    Sections appear in a fixed order: mode line, known facts, conversation
    history, recent conversation, then the user's prompt.
    """

    def __init__(self, max_facts: int = 8, max_episodes: int = 2, max_turns: int = 8):
        self.max_facts = max_facts
        self.max_episodes = max_episodes
        self.max_turns = max_turns

    def detect_mode(self, prompt: str) -> str:
        for mode, pattern in MODE_PATTERNS:
            if pattern.search(prompt):
                return mode
        return "chat"

    def build_prompt(
        self,
        current_prompt: str,
        semantic: list[SemanticMemory],
        episodic: list[EpisodicMemory],
        recent: list[ShortTermMessage],
        mode: str | None = None,
    ) -> str:
        parts = []

        instructions = MODE_INSTRUCTIONS.get(mode or "")
        if instructions:
            parts.append(f"MODE: {instructions}")

        if semantic:
            facts = "\n".join(f"- {m.content}" for m in semantic[:self.max_facts])
            parts.append(f"KNOWN FACTS:\n{facts}")

        if episodic:
            summaries = "\n\n".join(
                f"Previous conversation: {e.summary}" for e in episodic[:self.max_episodes]
            )
            parts.append(f"CONVERSATION HISTORY:\n{summaries}")

        if recent:
            turns = "\n".join(m.format() for m in recent[-self.max_turns:])
            parts.append(f"RECENT CONVERSATION:\n{turns}")

        parts.append(f"USER: {current_prompt}")
        return "\n\n".join(parts)

    def analyze_complexity(
        self,
        prompt: str,
        semantic_count: int = 0,
        episodic_count: int = 0,
        short_term_count: int = 0,
    ) -> str:
        """Return "low", "medium" or "high" from prompt length, memory richness and wording."""
        score = 0

        if len(prompt) > 500:
            score += 2
        elif len(prompt) > 200:
            score += 1

        if semantic_count > 5:
            score += 1
        if episodic_count > 1:
            score += 1
        if short_term_count > 10:
            score += 1

        score += sum(1 for p in COMPLEXITY_PATTERNS if p.search(prompt))

        if score >= 5:
            return "high"
        if score >= 3:
            return "medium"
        return "low"

    @staticmethod
    def has_image_content(recent: list[ShortTermMessage], semantic: list[SemanticMemory]) -> bool:
        for message in recent:
            lowered = message.content.lower()
            if any(w in lowered for w in IMAGE_WORDS):
                return True
        return any(m.category == "creative" or "image" in m.keywords for m in semantic)

    @staticmethod
    def generate_conversation_title(prompt: str) -> str:
        title = " ".join(prompt.split()[:6])
        if len(title) > 50:
            title = title[:47] + "..."
        return title or "New Conversation"

    @staticmethod
    def extract_tags(prompt: str) -> list[str]:
        tags = [tag for tag, pattern in TAG_PATTERNS if pattern.search(prompt)]
        return tags or ["general"]
