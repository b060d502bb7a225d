"""Text generation through LiteLLM.

Provider names match the model catalogue (``gemini``, ``gpt``, ``claude``)
so that the ``model_provider`` recorded on messages lines up with what the
model selector recommends.
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from dotenv import load_dotenv
import litellm
from litellm import acompletion

load_dotenv()

logger = logging.getLogger(__name__)


class TextGenerator(ABC):
    """Single-prompt text completion, as consumed by episodic summarization."""

    @abstractmethod
    async def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 1024) -> str:
        """Return the model's text for ``prompt``. May raise provider errors."""
        pass


@dataclass
class LLMConfig:
    """Configuration for the LiteLLM-backed generator."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1024

    # Resolved from <ENV>_API_KEY / <ENV>_BASE_URL when unset
    api_key: str | None = None
    api_base: str | None = None

    num_retries: int = 2
    timeout: float = 60.0


@dataclass
class LLMResponse:
    """One completion and its token usage."""
    content: str | None = None
    finish_reason: str = "stop"
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class ProviderRoute:
    prefixes: tuple[str, ...]
    env_prefix: str
    litellm_prefix: str = ""


# Checked in order; anything unmatched is routed as "gpt"
PROVIDER_ROUTES: dict[str, ProviderRoute] = {
    "gemini": ProviderRoute(("gemini-", "gemini/"), "GEMINI", litellm_prefix="gemini/"),
    "claude": ProviderRoute(("claude-", "anthropic/"), "ANTHROPIC"),
    "gpt": ProviderRoute(("gpt-", "o1-", "o3-", "openai/"), "OPENAI"),
    "ollama": ProviderRoute(("ollama/",), "OLLAMA"),
}

DEFAULT_PROVIDER = "gpt"


def detect_provider(model: str) -> str:
    """Catalogue provider name for a model id."""
    lowered = model.lower()
    for name, route in PROVIDER_ROUTES.items():
        if lowered.startswith(route.prefixes):
            return name
    return DEFAULT_PROVIDER


class LLMProvider(TextGenerator):
    """Chat and single-prompt completion for any model LiteLLM can reach.

    Keys come from the environment (``.env`` is loaded on import):
    GEMINI_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY, and OLLAMA_BASE_URL
    for a local server.
    """

    def __init__(self, config: LLMConfig | None = None):
        self.config = config or LLMConfig()

        # Providers reject parameters they do not know, e.g. temperature on o1
        litellm.drop_params = True

        self.provider = detect_provider(self.config.model)
        self._route = PROVIDER_ROUTES[self.provider]
        self._resolve_credentials()

    def _resolve_credentials(self) -> None:
        env = self._route.env_prefix
        if not self.config.api_key:
            self.config.api_key = os.getenv(f"{env}_API_KEY")
        if not self.config.api_base:
            self.config.api_base = os.getenv(f"{env}_BASE_URL") or os.getenv(f"{env}_API_BASE")

    def with_model(self, model_id: str) -> "LLMProvider":
        """A provider for ``model_id`` sharing this one's sampling settings.

        Credentials are re-resolved when the provider family changes.
        """
        if model_id == self.config.model:
            return self
        same_family = detect_provider(model_id) == self.provider
        config = replace(
            self.config,
            model=model_id,
            api_key=self.config.api_key if same_family else None,
            api_base=self.config.api_base if same_family else None,
        )
        return LLMProvider(config)

    @property
    def litellm_model(self) -> str:
        model = self.config.model
        prefix = self._route.litellm_prefix
        if prefix and not model.startswith(prefix):
            return f"{prefix}{model}"
        return model

    def build_params(self, messages: list[dict], temperature: float | None = None,
                     max_tokens: int | None = None) -> dict:
        params = {
            "model": self.litellm_model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
            "timeout": self.config.timeout,
            "num_retries": self.config.num_retries,
        }
        if self.config.api_base:
            params["api_base"] = self.config.api_base
        if self.config.api_key:
            params["api_key"] = self.config.api_key
        return params

    async def chat(
        self,
        messages: list[dict],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        response = await acompletion(**self.build_params(messages, temperature, max_tokens))

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
        )

    async def complete(self, prompt: str, temperature: float = 0.7, max_tokens: int = 1024) -> str:
        response = await self.chat(
            [{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        logger.debug("Completion on %s used %d tokens", self.config.model, response.total_tokens)
        return response.content or ""

    def get_provider_info(self) -> dict:
        return {
            "provider": self.provider,
            "model": self.config.model,
            "api_base": self.config.api_base or "(default)",
            "api_key_set": bool(self.config.api_key),
        }
