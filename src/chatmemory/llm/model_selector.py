"""Model selector - picks a generation model from task signals.

The context assembler supplies the signals (task text, image presence,
complexity, context size); this module owns the model catalogue and the
selection policy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from typing import Any


QUALITY_POINTS = {"excellent": 3, "good": 2, "basic": 1}


@dataclass
class ModelRecommendation:
    """A model chosen for the next generation call."""
    model_id: str
    provider: str
    name: str = ""
    context_window: int = 0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ModelProfile:
    """Catalogue entry describing one model."""
    id: str
    name: str
    provider: str
    context_window: int
    input_cost_per_1k: float
    output_cost_per_1k: float
    capabilities: dict[str, str] = field(default_factory=dict)  # capability -> quality
    optimal_for: list[str] = field(default_factory=list)
    supports_images: bool = False
    supports_vision: bool = False
    supports_tools: bool = False

    @property
    def quality_score(self) -> int:
        return sum(QUALITY_POINTS.get(q, 1) for q in self.capabilities.values())

    def to_recommendation(self, reason: str = "") -> ModelRecommendation:
        return ModelRecommendation(
            model_id=self.id,
            provider=self.provider,
            name=self.name,
            context_window=self.context_window,
            reason=reason,
        )


DEFAULT_MODELS = [
    ModelProfile(
        id="gemini-2.0-flash-exp",
        name="Gemini 2.0 Flash Experimental",
        provider="gemini",
        context_window=32000,
        input_cost_per_1k=0.075,
        output_cost_per_1k=0.30,
        capabilities={"text": "excellent", "reasoning": "excellent", "code": "good"},
        optimal_for=["conversation", "reasoning", "general"],
        supports_tools=True,
    ),
    ModelProfile(
        id="gemini-2.5-flash-image-preview",
        name="Gemini 2.5 Flash Image Preview",
        provider="gemini",
        context_window=32000,
        input_cost_per_1k=0.075,
        output_cost_per_1k=0.30,
        capabilities={"text": "good", "image": "excellent", "vision": "excellent"},
        optimal_for=["image_generation", "image_editing", "visual_analysis"],
        supports_images=True,
        supports_vision=True,
    ),
    ModelProfile(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        provider="gpt",
        context_window=128000,
        input_cost_per_1k=10.0,
        output_cost_per_1k=30.0,
        capabilities={"text": "excellent", "reasoning": "excellent", "code": "excellent"},
        optimal_for=["complex_reasoning", "analysis", "coding"],
        supports_tools=True,
    ),
    ModelProfile(
        id="gpt-4-vision-preview",
        name="GPT-4 Vision Preview",
        provider="gpt",
        context_window=128000,
        input_cost_per_1k=10.0,
        output_cost_per_1k=30.0,
        capabilities={"text": "excellent", "vision": "excellent", "reasoning": "excellent"},
        optimal_for=["visual_analysis", "complex_reasoning", "detailed_analysis"],
        supports_vision=True,
        supports_tools=True,
    ),
    ModelProfile(
        id="claude-3-5-sonnet-20241022",
        name="Claude 3.5 Sonnet",
        provider="claude",
        context_window=200000,
        input_cost_per_1k=3.0,
        output_cost_per_1k=15.0,
        capabilities={"text": "excellent", "reasoning": "excellent", "code": "excellent"},
        optimal_for=["creative_writing", "analysis", "complex_reasoning"],
        supports_vision=True,
        supports_tools=True,
    ),
]

FALLBACK_MODEL_ID = "gemini-2.0-flash-exp"

# (task keywords, use-case keywords the model must list)
TASK_ROUTES = [
    (("image", "visual"), ("image", "visual")),
    (("code", "programming"), ("code", "coding")),
    (("creative", "writing"), ("creative", "writing")),
    (("analysis", "reasoning"), ("analysis", "reasoning")),
]


class ModelSelector:
    """Chooses a model for a request from a catalogue of ``ModelProfile``s."""

    def __init__(self, models: list[ModelProfile] | None = None, fallback_model_id: str = FALLBACK_MODEL_ID):
        self._models: dict[str, ModelProfile] = {m.id: m for m in (models or DEFAULT_MODELS)}
        self.fallback_model_id = fallback_model_id

    def list_models(self, provider: str | None = None) -> list[ModelProfile]:
        models = list(self._models.values())
        if provider:
            models = [m for m in models if m.provider == provider]
        return models

    def get_model(self, model_id: str) -> ModelProfile | None:
        return self._models.get(model_id)

    def get_optimal_model(
        self,
        task: str,
        has_images: bool = False,
        complexity: str = "medium",
        budget: str = "medium",
        speed: str = "balanced",
        context_tokens: int = 0,
        preferred_provider: str = "auto",
    ) -> ModelRecommendation:
        """Pick a model for ``task``.

        Args:
            task: The prompt or task description
            has_images: Whether the conversation involves images
            complexity: "low", "medium" or "high"
            budget: "low" sorts by cost, "high" keeps only excellent-quality models
            speed: "fast" prefers the gemini family when available
            context_tokens: Size of the assembled context; models too small are skipped
            preferred_provider: Provider to favour, or "auto"
        """
        lowered = task.lower()
        candidates = list(self._models.values())

        if has_images:
            candidates = [m for m in candidates if m.supports_images or m.supports_vision]

        candidates = [m for m in candidates if self._fits_task(m, lowered)]

        if not candidates:
            candidates = [
                m for m in self._models.values()
                if "general" in m.optimal_for or "conversation" in m.optimal_for
            ]

        if context_tokens:
            roomy = [m for m in candidates if m.context_window >= context_tokens]
            candidates = roomy or candidates

        if complexity == "high":
            candidates.sort(key=lambda m: m.quality_score, reverse=True)

        if budget == "low":
            candidates.sort(key=lambda m: m.input_cost_per_1k)
        elif budget == "high":
            candidates = [m for m in candidates if "excellent" in m.capabilities.values()]

        if speed == "fast":
            fast = [m for m in candidates if m.provider == "gemini"]
            candidates = fast or candidates

        if preferred_provider and preferred_provider != "auto":
            preferred = [m for m in candidates if m.provider == preferred_provider]
            candidates = preferred or candidates

        if candidates:
            return candidates[0].to_recommendation(
                reason=f"complexity={complexity}, images={has_images}, budget={budget}, speed={speed}"
            )

        return self._models[self.fallback_model_id].to_recommendation(reason="fallback")

    @staticmethod
    def _fits_task(model: ModelProfile, task: str) -> bool:
        for task_words, use_words in TASK_ROUTES:
            if any(w in task for w in task_words):
                return any(u in use for use in model.optimal_for for u in use_words)
        return any(u in use for use in model.optimal_for for u in ("general", "conversation"))

    def estimate_cost(self, prompt: str, model_id: str, output_length: int = 500) -> float:
        """Estimated USD cost of a call, using the ceil(chars / 4) token estimate."""
        model = self._models.get(model_id)
        if not model:
            return 0.0

        input_tokens = math.ceil(len(prompt) / 4)
        output_tokens = math.ceil(output_length / 4)

        return (
            input_tokens * model.input_cost_per_1k / 1000
            + output_tokens * model.output_cost_per_1k / 1000
        )

    def compare_models(self, model_ids: list[str]) -> list[tuple[str, float]]:
        """Rank models by capability quality and cost. Unknown ids score 0."""
        scored = []
        for model_id in model_ids:
            model = self._models.get(model_id)
            if not model:
                scored.append((model_id, 0.0))
                continue
            cost_score = 10 - model.input_cost_per_1k / 2
            scored.append((model_id, (model.quality_score + cost_score) / 2))

        return sorted(scored, key=lambda pair: pair[1], reverse=True)
