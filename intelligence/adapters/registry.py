from __future__ import annotations
"""Provider registry.

Built once at startup from configuration and passed by reference to the
components that need providers; there is no module-level instance.  Roles:

* ``primary``: default for every task,
* ``validator``: reviews (validation task), optional,
* ``local``: privacy-sensitive / free analysis (optimization task), optional.
"""

import asyncio
from typing import Dict, Optional

from core.config import IntelligenceConfig, LLMConfig
from core.errors import ConfigurationError
from core.logging import logger

from .providers import BaseProvider, create_provider

__all__ = ["ProviderRegistry"]

PRIMARY = "primary"
VALIDATOR = "validator"
LOCAL = "local"

# Task -> preferred role; anything else uses the primary provider.
_TASK_ROLES = {
    "validation": VALIDATOR,
    "optimization": LOCAL,
}


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: Dict[str, BaseProvider] = {}

    @classmethod
    def from_config(cls, config: IntelligenceConfig, timeout: Optional[float] = None) -> "ProviderRegistry":
        """Resolve every configured provider; unknown kinds or models raise."""
        registry = cls()
        timeout = timeout or config.runtime.provider_timeout
        roles = {
            PRIMARY: config.llm.primary,
            VALIDATOR: config.llm.validator,
            LOCAL: config.llm.local,
        }
        for role, llm in roles.items():
            if llm is not None:
                registry.register(role, _provider_from_config(llm, timeout))
        return registry

    def register(self, role: str, provider: BaseProvider) -> None:
        self._providers[role] = provider
        logger.info(f"Registered {role} provider {provider.name}")

    def get(self, role: str) -> Optional[BaseProvider]:
        return self._providers.get(role)

    @property
    def primary(self) -> BaseProvider:
        if PRIMARY not in self._providers:
            raise ConfigurationError("No primary provider configured")
        return self._providers[PRIMARY]

    def for_task(self, task: str) -> BaseProvider:
        role = _TASK_ROLES.get(task, PRIMARY)
        return self._providers.get(role) or self.primary

    async def aclose(self) -> None:
        results = await asyncio.gather(
            *(provider.aclose() for provider in self._providers.values()),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Error closing provider: {result}")

    def __contains__(self, role: str) -> bool:
        return role in self._providers


def _provider_from_config(llm: LLMConfig, timeout: float) -> BaseProvider:
    return create_provider(
        llm.provider,
        model=llm.model,
        api_key=llm.api_key,
        base_url=llm.base_url,
        timeout=timeout,
    )
