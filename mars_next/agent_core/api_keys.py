"""API key lookup for LLM providers.

The agent core never reads environment variables itself; it asks an
``ApiKeyProvider`` for the key of a provider and treats an empty string as
"not configured". A missing key is an expected condition (an operator may only
configure some vendors), not an exceptional one.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Protocol

from mars_next.core.logging_config import get_logger

from .schemas.domain import AIProvider

logger = get_logger(__name__)

# Environment variable holding each provider's key
PROVIDER_API_KEY_ENV: Dict[AIProvider, str] = {
    AIProvider.openai: "OPENAI_API_KEY",
    AIProvider.anthropic: "ANTHROPIC_API_KEY",
    AIProvider.google: "GOOGLE_API_KEY",
    AIProvider.xai: "XAI_API_KEY",
    AIProvider.deepseek: "DEEPSEEK_API_KEY",
}


class ApiKeyProvider(Protocol):
    def get_api_key_for_provider(self, provider: str) -> str:
        """Return the key for ``provider`` or ``''`` when none is configured."""
        ...


class SettingsApiKeyProvider:
    """Reads provider keys from the application ``Settings`` loaded at startup."""

    def __init__(self, settings) -> None:
        self._settings = settings

    def get_api_key_for_provider(self, provider: str) -> str:
        return self._settings.get_api_key_for_provider(str(provider))


class StaticApiKeyProvider:
    """Fixed mapping of provider name to key; handy for tests and scripts."""

    def __init__(self, keys: Optional[Mapping[str, str]] = None) -> None:
        self._keys = {str(k): v for k, v in (keys or {}).items()}

    def get_api_key_for_provider(self, provider: str) -> str:
        return self._keys.get(str(provider), "")


def configured_providers(api_keys: ApiKeyProvider) -> List[AIProvider]:
    """Providers that currently have a non-empty key, in enum order."""
    return [provider for provider in AIProvider if api_keys.get_api_key_for_provider(provider.value)]


def has_any_api_key(api_keys: ApiKeyProvider) -> bool:
    return bool(configured_providers(api_keys))
