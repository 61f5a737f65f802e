"""Provider client: dispatch a prompt to the adapter registered for a provider."""

from __future__ import annotations

import logging

from app.core.config import Settings
from app.providers.base import BaseProvider, ProviderError, ProviderName, ProviderResult

logger = logging.getLogger(__name__)


def parse_provider(value: str | ProviderName) -> ProviderName | None:
    """Map a provider identifier to the enum, or None when unknown."""
    if isinstance(value, ProviderName):
        return value
    try:
        return ProviderName(value.strip().lower())
    except ValueError:
        return None


class ProviderClient:
    """Executes prompts against named providers.

    Holds one adapter per implemented provider. Unknown or unimplemented
    providers produce a ProviderError instead of raising.
    """

    def __init__(self, adapters: dict[ProviderName, BaseProvider] | None = None):
        self._adapters: dict[ProviderName, BaseProvider] = dict(adapters or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderClient:
        from app.providers.openai import OpenAiProvider

        return cls(
            {
                ProviderName.CHATGPT: OpenAiProvider(
                    api_key=settings.openai_api_key,
                    model=settings.openai_model,
                    api_url=settings.openai_api_url,
                    timeout=settings.openai_timeout,
                ),
            }
        )

    def register(self, adapter: BaseProvider) -> None:
        self._adapters[adapter.provider] = adapter

    @property
    def implemented(self) -> list[ProviderName]:
        return sorted(self._adapters, key=lambda p: p.value)

    async def execute(self, prompt_text: str, provider: str | ProviderName) -> ProviderResult:
        name = parse_provider(provider)
        if name is None:
            return ProviderError(provider=str(provider), error=f"Unknown provider: {provider}")

        if not prompt_text or not prompt_text.strip():
            return ProviderError(provider=name.value, error="Prompt text is empty")

        adapter = self._adapters.get(name)
        if adapter is None:
            return ProviderError(provider=name.value, error=f"Provider {name.value} not yet implemented")

        return await adapter.complete(prompt_text)
