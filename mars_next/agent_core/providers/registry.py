"""Provider adapter registry.

Adapters are looked up by provider name; adding a vendor is a
``register`` call, not a new branch in the executor.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from mars_next.core.logging_config import get_logger

from ..errors import ProviderNotSupportedError
from ..schemas.domain import AIProvider
from .base import ProviderAdapter
from .pydantic_ai import (
    PydanticAIAdapter,
    anthropic_model_factory,
    google_model_factory,
    openai_model_factory,
)

logger = get_logger(__name__)


class ProviderRegistry:
    """Lookup table from provider name to ``ProviderAdapter``."""

    def __init__(self, adapters: Optional[Mapping[str, ProviderAdapter]] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {}
        for provider, adapter in (adapters or {}).items():
            self.register(provider, adapter)

    def register(self, provider: str, adapter: ProviderAdapter) -> None:
        self._adapters[str(provider)] = adapter
        logger.debug(f"Registered provider adapter: {provider}")

    def supports(self, provider: str) -> bool:
        return str(provider) in self._adapters

    def get(self, provider: str) -> ProviderAdapter:
        """
        Return the adapter for ``provider``.

        Raises:
            ProviderNotSupportedError: no adapter is registered for it.
        """
        try:
            return self._adapters[str(provider)]
        except KeyError:
            raise ProviderNotSupportedError(str(provider)) from None

    def supported_providers(self) -> List[str]:
        return sorted(self._adapters)


def build_default_registry(settings) -> ProviderRegistry:
    """Register the pydantic-ai adapter for every provider the service knows."""
    return ProviderRegistry(
        {
            AIProvider.openai.value: PydanticAIAdapter(AIProvider.openai, openai_model_factory(settings.openai.base_url)),
            AIProvider.anthropic.value: PydanticAIAdapter(AIProvider.anthropic, anthropic_model_factory()),
            AIProvider.google.value: PydanticAIAdapter(AIProvider.google, google_model_factory()),
            AIProvider.xai.value: PydanticAIAdapter(AIProvider.xai, openai_model_factory(settings.xai.base_url)),
            AIProvider.deepseek.value: PydanticAIAdapter(
                AIProvider.deepseek, openai_model_factory(settings.deepseek.base_url)
            ),
        }
    )
