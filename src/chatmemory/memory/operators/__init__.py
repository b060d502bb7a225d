"""Operators for the memory engine: embedding, similarity, scoring, summarization."""

from src.chatmemory.memory.operators.encoder import (
    EmbeddingProvider,
    CallbackEmbeddingProvider,
    OllamaEmbeddingProvider,
    EncoderConfig,
)
from src.chatmemory.memory.operators.similarity import cosine_similarity
from src.chatmemory.memory.operators.scoring import (
    ImportanceScorer,
    TextClassifier,
    EpisodeScorer,
    TurnImportanceScorer,
    TurnScoringConfig,
    IngestImportanceScorer,
    RegexRuleClassifier,
    KeywordRuleClassifier,
    HeuristicEpisodeScorer,
    semantic_category_classifier,
    episode_category_classifier,
    mood_classifier,
)
from src.chatmemory.memory.operators.summarizer import (
    ConversationSummarizer,
    SummarizerConfig,
    ConversationSummary,
    ParsedSummary,
    FallbackSummary,
)

__all__ = [
    # Embedding
    "EmbeddingProvider",
    "CallbackEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "EncoderConfig",
    "cosine_similarity",
    # Scoring
    "ImportanceScorer",
    "TextClassifier",
    "EpisodeScorer",
    "TurnImportanceScorer",
    "TurnScoringConfig",
    "IngestImportanceScorer",
    "RegexRuleClassifier",
    "KeywordRuleClassifier",
    "HeuristicEpisodeScorer",
    "semantic_category_classifier",
    "episode_category_classifier",
    "mood_classifier",
    # Summarization
    "ConversationSummarizer",
    "SummarizerConfig",
    "ConversationSummary",
    "ParsedSummary",
    "FallbackSummary",
]
