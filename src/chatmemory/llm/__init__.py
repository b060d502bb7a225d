"""LLM interfaces: text generation via LiteLLM and model selection."""

from src.chatmemory.llm.provider import LLMProvider, LLMConfig, LLMResponse, TextGenerator, detect_provider
from src.chatmemory.llm.model_selector import (
    ModelSelector,
    ModelProfile,
    ModelRecommendation,
    DEFAULT_MODELS,
)

__all__ = [
    "LLMProvider",
    "LLMConfig",
    "LLMResponse",
    "TextGenerator",
    "detect_provider",
    "ModelSelector",
    "ModelProfile",
    "ModelRecommendation",
    "DEFAULT_MODELS",
]
