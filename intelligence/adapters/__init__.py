"""Adapters layer providing response caching and provider abstraction."""

from __future__ import annotations

from .cache import (
    BaseResponseCache,
    LocalResponseCache,
    SharedResponseCache,
    build_cache,
    make_cache_key,
)
from .providers import (
    AnthropicProvider,
    BaseProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderKind,
    create_provider,
)
from .registry import ProviderRegistry
from .singleflight import SingleFlight

__all__ = [
    "BaseResponseCache",
    "LocalResponseCache",
    "SharedResponseCache",
    "build_cache",
    "make_cache_key",
    "AnthropicProvider",
    "BaseProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "ProviderKind",
    "create_provider",
    "ProviderRegistry",
    "SingleFlight",
]
