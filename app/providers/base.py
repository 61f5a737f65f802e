"""Provider client contract: one prompt in, a completion or a typed failure out."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class ProviderName(str, Enum):
    """External text-generation providers the pipeline knows about.

    Only providers with an adapter in the registry can actually be executed;
    the rest return a "not yet implemented" ProviderError.
    """

    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    PERPLEXITY = "perplexity"
    GEMINI = "gemini"
    GROK = "grok"
    DEEPSEEK = "deepseek"


@dataclass
class ResponseMetadata:
    """The only response metadata the pipeline reads."""

    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UrlCitation:
    url: str
    title: str = ""
    snippet: str | None = None


@dataclass
class Completion:
    """Successful provider answer."""

    text: str
    metadata: ResponseMetadata
    duration_ms: int
    citations: list[UrlCitation] = field(default_factory=list)
    search_queries: list[str] = field(default_factory=list)  # queries the model sent to its web search tool


@dataclass
class ProviderError:
    """Failed provider call. Returned as a value, never raised to the orchestrator."""

    provider: str
    error: str

    def __str__(self) -> str:
        return f"{self.provider}: {self.error}"


ProviderResult = Completion | ProviderError


def is_provider_error(result: ProviderResult) -> bool:
    return isinstance(result, ProviderError)


class BaseProvider(ABC):
    """Adapter for one provider. Stateless between calls; no retries."""

    provider: ProviderName

    @abstractmethod
    async def complete(self, prompt_text: str) -> ProviderResult:
        """Send *prompt_text* in exactly one outbound request."""
        ...
