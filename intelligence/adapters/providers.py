"""Text-generation provider adapters with capability and cost metadata."""
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional
import os

import httpx

from core.errors import ConfigurationError, MalformedResponseError, NetworkError
from core.logging import logger
from intelligence.models import (
    CostPerToken,
    GenerationRequest,
    GenerationResponse,
    ProviderCapability,
    TokenUsage,
)


class ProviderKind(str, Enum):
    """Supported backend kinds."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


_CLOUD_LANGUAGES = ["typescript", "python", "go", "javascript"]


def _capability(model: str, max_tokens: int, cost_in: float, cost_out: float,
                strengths: list, languages: Optional[list] = None) -> ProviderCapability:
    return ProviderCapability(
        model=model,
        max_tokens=max_tokens,
        supports_streaming=True,
        cost_per_token=CostPerToken(input=cost_in, output=cost_out),
        languages=languages or list(_CLOUD_LANGUAGES),
        strengths=strengths,
    )


def estimate_tokens(text: str) -> int:
    """Rough estimation: 1 token ≈ 4 characters."""
    return math.ceil(len(text) / 4)


class BaseProvider(ABC):
    """Base class for text-generation providers."""

    kind: ProviderKind
    default_model: str
    capabilities: Dict[str, ProviderCapability] = {}

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.model = model or self.default_model
        if self.model not in self.capabilities:
            raise ConfigurationError(
                f"Unknown model '{self.model}' for provider {self.kind.value}; "
                f"known models: {', '.join(sorted(self.capabilities))}"
            )
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def name(self) -> str:
        return f"{self.kind.value}:{self.model}"

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run one completion."""
        pass

    def get_capabilities(self) -> ProviderCapability:
        return self.capabilities[self.model]

    def estimate_cost(self, prompt_tokens: float, completion_tokens: float) -> float:
        rates = self.get_capabilities().cost_per_token
        return (prompt_tokens * rates.input) + (completion_tokens * rates.output)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            response = await self._get_client().post(url, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"{self.kind.value} API error: {e}")
            raise NetworkError(f"{self.kind.value} request failed: {e}") from e
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{self.kind.value} returned non-JSON body") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{self.kind.value} returned unexpected payload")
        return data


class OpenAIProvider(BaseProvider):
    """OpenAI API provider (GPT-4, GPT-3.5, etc.)."""

    kind = ProviderKind.OPENAI
    default_model = "gpt-4"
    capabilities = {
        "gpt-4": _capability("gpt-4", 128000, 0.00003, 0.00006,
                             ["reasoning", "code-generation", "documentation"]),
        "gpt-4-turbo": _capability("gpt-4-turbo", 128000, 0.00001, 0.00003,
                                   ["reasoning", "code-generation", "speed"]),
        "gpt-3.5-turbo": _capability("gpt-3.5-turbo", 16384, 0.0000015, 0.000002,
                                     ["speed", "cost-efficiency"]),
    }

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: float = 60.0):
        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        base_url = base_url or "https://api.openai.com/v1"
        super().__init__(model, api_key, base_url, timeout)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """OpenAI chat completion."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.stop:
            payload["stop"] = request.stop

        data = await self._post(f"{self.base_url}/chat/completions", payload, headers)
        try:
            content = data["choices"][0]["message"]["content"]
            usage = data["usage"]
            prompt_tokens = int(usage["prompt_tokens"])
            completion_tokens = int(usage["completion_tokens"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"OpenAI response missing field: {e}") from e
        if not content:
            raise MalformedResponseError("No response generated")

        return GenerationResponse(
            content=content,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=int(usage.get("total_tokens", prompt_tokens + completion_tokens)),
                cost=self.estimate_cost(prompt_tokens, completion_tokens),
            ),
            model=self.model,
        )


class AnthropicProvider(BaseProvider):
    """Anthropic API provider (Claude 3 Opus, Sonnet, Haiku)."""

    kind = ProviderKind.ANTHROPIC
    default_model = "claude-3-sonnet-20240229"
    capabilities = {
        "claude-3-opus-20240229": _capability("claude-3-opus-20240229", 200000, 0.000015, 0.000075,
                                              ["reasoning", "code-generation", "analysis"]),
        "claude-3-sonnet-20240229": _capability("claude-3-sonnet-20240229", 200000, 0.000003, 0.000015,
                                                ["balanced", "cost-efficiency", "speed"]),
        "claude-3-haiku-20240307": _capability("claude-3-haiku-20240307", 200000, 0.00000025, 0.00000125,
                                               ["speed", "cost-efficiency"]),
    }

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: float = 60.0):
        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        base_url = base_url or "https://api.anthropic.com/v1"
        super().__init__(model, api_key, base_url, timeout)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Anthropic messages completion."""
        headers = {
            "x-api-key": self.api_key or "",
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json"
        }
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": request.max_tokens or 4096,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.stop:
            payload["stop_sequences"] = request.stop

        data = await self._post(f"{self.base_url}/messages", payload, headers)
        try:
            block = data["content"][0]
            usage = data["usage"]
            prompt_tokens = int(usage["input_tokens"])
            completion_tokens = int(usage["output_tokens"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Anthropic response missing field: {e}") from e
        if block.get("type", "text") != "text" or not block.get("text"):
            raise MalformedResponseError("Non-text response received")

        return GenerationResponse(
            content=block["text"],
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                cost=self.estimate_cost(prompt_tokens, completion_tokens),
            ),
            model=self.model,
        )


class OllamaProvider(BaseProvider):
    """Ollama local model provider."""

    kind = ProviderKind.OLLAMA
    default_model = "codellama"
    capabilities = {
        "codellama": _capability("codellama", 16384, 0, 0,
                                 ["code-generation", "local-inference", "privacy"],
                                 _CLOUD_LANGUAGES + ["cpp", "java"]),
        "llama3": _capability("llama3", 8192, 0, 0,
                              ["general-purpose", "local-inference", "privacy"]),
        "mistral": _capability("mistral", 8192, 0, 0,
                               ["speed", "efficiency", "local-inference"]),
    }

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None,
                 base_url: Optional[str] = None, timeout: float = 120.0):
        # Ollama doesn't need API key
        base_url = base_url or os.environ.get("OLLAMA_HOST", "http://localhost:11434")
        super().__init__(model, None, base_url, timeout)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Ollama completion; token usage is estimated, not reported."""
        options: Dict[str, Any] = {}
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.stop:
            options["stop"] = request.stop
        payload = {
            "model": self.model,
            "prompt": request.prompt,
            "stream": False,
            "options": options,
        }

        data = await self._post(f"{self.base_url}/api/generate", payload)
        content = data.get("response")
        if not isinstance(content, str) or not content:
            raise MalformedResponseError("Ollama returned no response text")

        prompt_tokens = estimate_tokens(request.prompt)
        completion_tokens = estimate_tokens(content)
        return GenerationResponse(
            content=content,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                cost=0.0,  # Local models are free
            ),
            model=self.model,
        )

    def estimate_cost(self, prompt_tokens: float, completion_tokens: float) -> float:
        return 0.0


_PROVIDERS = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.OLLAMA: OllamaProvider,
}


# Provider factory
def create_provider(provider_type: str, **kwargs) -> BaseProvider:
    """Create a provider instance by kind; unknown kinds fail fast."""
    try:
        kind = ProviderKind(str(provider_type).lower())
    except ValueError:
        raise ConfigurationError(f"Unknown provider type: {provider_type}") from None
    return _PROVIDERS[kind](**kwargs)


def recommended_provider(task: str) -> Dict[str, str]:
    """Default provider/model pairing for a kind of task."""
    recommendations = {
        "documentation": {"provider": "anthropic", "model": "claude-3-haiku-20240307"},
        "code-generation": {"provider": "openai", "model": "gpt-4"},
        "validation": {"provider": "ollama", "model": "codellama"},
    }
    return recommendations.get(task, {"provider": "openai", "model": "gpt-4-turbo"})
