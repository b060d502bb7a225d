"""Heuristic scorers and classifiers.

Every store receives these through its constructor, so the keyword rules
below can be swapped for a model-based implementation without touching
store logic.
"""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.chatmemory.memory.models import (
    Message,
    Role,
    ShortTermMessage,
    EpisodeCategory,
    Mood,
)


# ==================== Interfaces ====================

class ImportanceScorer(ABC):
    """Scores a message's retention priority in [0, 1]."""

    @abstractmethod
    def score(
        self,
        message: Message,
        previous: ShortTermMessage | None = None,
        now: float | None = None,
    ) -> float:
        pass


class TextClassifier(ABC):
    """Maps free text to a label."""

    @abstractmethod
    def classify(self, text: str) -> str:
        pass


class EpisodeScorer(ABC):
    """Derives satisfaction and importance for a finalized conversation."""

    @abstractmethod
    def satisfaction(self, mood: str, messages: list[Message]) -> float:
        pass

    @abstractmethod
    def importance(
        self,
        messages: list[Message],
        key_topics: list[str],
        main_outcomes: list[str],
        satisfaction: float,
        category: str,
    ) -> float:
        pass


# ==================== Message Importance ====================

@dataclass
class TurnScoringConfig:
    """Weights for short-term turn importance."""
    base: float = 0.5
    question_bonus: float = 0.2
    correction_bonus: float = 0.3
    emphasis_bonus: float = 0.2
    personal_bonus: float = 0.3
    length_bonus: float = 0.1
    long_message_chars: int = 200
    last_hour_bonus: float = 0.2
    last_day_bonus: float = 0.1
    provider_switch_bonus: float = 0.15


QUESTION_START = re.compile(r"^\s*(what|how|why|when|where)\b", re.IGNORECASE)
CORRECTION_WORDS = ("error", "wrong", "correct", "mistake", "fix")
EMPHASIS_WORDS = ("important", "remember", "key", "crucial", "critical")
PERSONAL_PHRASES = ("i like", "i prefer", "my name", "i am", "i need")


class TurnImportanceScorer(ImportanceScorer):
    """Keyword heuristics for turns entering the short-term window.

    Adds a bonus when the previous turn came from a different model
    provider, since context has to survive the switch.
    """

    def __init__(self, config: TurnScoringConfig | None = None):
        self.config = config or TurnScoringConfig()

    def score(
        self,
        message: Message,
        previous: ShortTermMessage | None = None,
        now: float | None = None,
    ) -> float:
        cfg = self.config
        content = message.content.lower()
        score = cfg.base

        if "?" in content or QUESTION_START.match(content):
            score += cfg.question_bonus

        if any(w in content for w in CORRECTION_WORDS):
            score += cfg.correction_bonus

        if any(w in content for w in EMPHASIS_WORDS):
            score += cfg.emphasis_bonus

        if any(p in content for p in PERSONAL_PHRASES):
            score += cfg.personal_bonus

        if len(content) > cfg.long_message_chars:
            score += cfg.length_bonus

        age_hours = ((now or time.time()) - message.timestamp) / 3600
        if age_hours < 1:
            score += cfg.last_hour_bonus
        elif age_hours < 24:
            score += cfg.last_day_bonus

        if (
            previous is not None
            and previous.model_provider
            and message.model_provider
            and previous.model_provider != message.model_provider
        ):
            score += cfg.provider_switch_bonus

        return min(score, 1.0)


INGEST_PATTERNS = [
    re.compile(r"my name is|i am|i work|i live", re.IGNORECASE),
    re.compile(r"i like|i prefer|i enjoy|i love", re.IGNORECASE),
    re.compile(r"remember|important|note|don't forget", re.IGNORECASE),
    re.compile(r"\?"),
]


class IngestImportanceScorer(ImportanceScorer):
    """Importance used when a message is considered for the semantic tier."""

    def score(
        self,
        message: Message,
        previous: ShortTermMessage | None = None,
        now: float | None = None,
    ) -> float:
        importance = 0.5

        if message.role == Role.USER:
            importance += 0.2

        if len(message.content) > 100:
            importance += 0.1
        if len(message.content) > 500:
            importance += 0.1

        if any(p.search(message.content) for p in INGEST_PATTERNS):
            importance += 0.15

        return min(importance, 1.0)


# ==================== Classifiers ====================

class RegexRuleClassifier(TextClassifier):
    """First matching rule wins; ``default`` otherwise."""

    def __init__(self, rules: list[tuple[str, re.Pattern]], default: str):
        self.rules = rules
        self.default = default

    def classify(self, text: str) -> str:
        for label, pattern in self.rules:
            if pattern.search(text):
                return label
        return self.default


class KeywordRuleClassifier(TextClassifier):
    """Plain substring rules over lowercased text. First match wins."""

    def __init__(self, rules: list[tuple[str, tuple[str, ...]]], default: str):
        self.rules = rules
        self.default = default

    def classify(self, text: str) -> str:
        lowered = text.lower()
        for label, keywords in self.rules:
            if any(k in lowered for k in keywords):
                return label
        return self.default


SEMANTIC_CATEGORY_RULES = [
    ("preference", re.compile(r"i (like|love|enjoy|prefer|hate|dislike)", re.IGNORECASE)),
    ("fact", re.compile(r"(my name|i am|i work|i study|i live)", re.IGNORECASE)),
    ("skill", re.compile(r"(i can|i know how|i learned|i studied)", re.IGNORECASE)),
    ("goal", re.compile(r"(i want|i need|i plan|my goal)", re.IGNORECASE)),
    ("problem", re.compile(r"(problem|issue|error|wrong|fix|help)", re.IGNORECASE)),
    ("creative", re.compile(r"(create|design|art|music|write|story)", re.IGNORECASE)),
    ("technical", re.compile(r"(code|program|software|api|database|algorithm)", re.IGNORECASE)),
    ("personal", re.compile(r"(family|friend|relationship|feeling|emotion)", re.IGNORECASE)),
]

EPISODE_CATEGORY_RULES = [
    (EpisodeCategory.CREATIVE.value, ("image", "photo", "generate", "create")),
    (EpisodeCategory.PROBLEM_SOLVING.value, ("problem", "error", "help", "fix")),
    (EpisodeCategory.INFORMATIONAL.value, ("learn", "explain", "how", "what")),
    (EpisodeCategory.TECHNICAL.value, ("code", "program", "software")),
]

MOOD_RULES = [
    (Mood.POSITIVE.value, ("thank", "great", "awesome", "perfect")),
    (Mood.NEGATIVE.value, ("frustrated", "angry", "difficult", "wrong")),
]


def semantic_category_classifier() -> TextClassifier:
    return RegexRuleClassifier(SEMANTIC_CATEGORY_RULES, default="general")


def episode_category_classifier() -> TextClassifier:
    return KeywordRuleClassifier(EPISODE_CATEGORY_RULES, default=EpisodeCategory.GENERAL.value)


def mood_classifier() -> TextClassifier:
    return KeywordRuleClassifier(MOOD_RULES, default=Mood.NEUTRAL.value)


# ==================== Episode Scoring ====================

class HeuristicEpisodeScorer(EpisodeScorer):
    """Satisfaction from mood and closing thanks; importance from richness."""

    def satisfaction(self, mood: str, messages: list[Message]) -> float:
        satisfaction = 0.5
        if mood == Mood.POSITIVE.value:
            satisfaction = 0.8
        elif mood == Mood.NEGATIVE.value:
            satisfaction = 0.2

        last = messages[-1] if messages else None
        if last is not None and last.role == Role.USER and (
            "thank" in last.content or "perfect" in last.content
        ):
            satisfaction = min(satisfaction + 0.2, 1.0)

        return satisfaction

    def importance(
        self,
        messages: list[Message],
        key_topics: list[str],
        main_outcomes: list[str],
        satisfaction: float,
        category: str,
    ) -> float:
        importance = 0.5

        if len(messages) > 20:
            importance += 0.2
        elif len(messages) > 10:
            importance += 0.1

        if len(key_topics) > 3:
            importance += 0.1
        if len(main_outcomes) > 2:
            importance += 0.1

        importance += satisfaction * 0.2

        if category == EpisodeCategory.PROBLEM_SOLVING.value:
            importance += 0.15
        elif category == EpisodeCategory.CREATIVE.value:
            importance += 0.1

        return min(importance, 1.0)
