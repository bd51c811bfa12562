from __future__ import annotations

import logging
import threading

from covergen.config import Settings, get_settings
from covergen.errors import ProviderNotFound
from covergen.llm.providers import LLMProvider, OllamaProvider, OpenAIProvider, ProviderConfig

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps a provider id (``ollama``, ``openai``) to its implementation."""

    def __init__(self):
        self._providers: dict[str, LLMProvider] = {}
        self._lock = threading.Lock()

    def register(self, provider: LLMProvider) -> None:
        with self._lock:
            if provider.id in self._providers:
                logger.warning("Provider %s is already registered. Overwriting.", provider.id)
            self._providers[provider.id] = provider

    def unregister(self, provider_id: str) -> bool:
        with self._lock:
            return self._providers.pop(provider_id, None) is not None

    def get(self, provider_id: str) -> LLMProvider:
        with self._lock:
            provider = self._providers.get(provider_id)
            if provider is None:
                raise ProviderNotFound(provider_id, sorted(self._providers))
            return provider

    def has(self, provider_id: str) -> bool:
        with self._lock:
            return provider_id in self._providers

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._providers)

    def list_providers(self) -> list[LLMProvider]:
        with self._lock:
            return list(self._providers.values())

    def clear(self) -> None:
        with self._lock:
            self._providers.clear()


def build_default_registry(settings: Settings | None = None) -> ProviderRegistry:
    settings = settings or get_settings()
    registry = ProviderRegistry()
    registry.register(OllamaProvider(ProviderConfig(base_url=settings.ollama_base_url)))
    registry.register(
        OpenAIProvider(
            ProviderConfig(base_url=settings.openai_base_url, api_key=settings.openai_api_key)
        )
    )
    return registry
