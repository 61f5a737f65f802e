"""OpenAI (ChatGPT) chat-completions adapter."""

import logging
import time

import httpx

from app.providers.base import (
    BaseProvider,
    Completion,
    ProviderError,
    ProviderName,
    ProviderResult,
    ResponseMetadata,
    UrlCitation,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5-mini"
API_URL = "https://api.openai.com/v1/chat/completions"

# GPT-5 series are reasoning models that do NOT support temperature
# or max_tokens. They require max_completion_tokens instead.
_REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")

MAX_ERROR_BODY = 500


def _is_reasoning_model(model: str) -> bool:
    """Check if a model is a reasoning model (GPT-5 / o-series)."""
    return any(model.startswith(p) for p in _REASONING_MODEL_PREFIXES)


def _parse_citations(message: dict) -> list[UrlCitation]:
    """Collect ``url_citation`` annotations from a chat message, de-duplicated by URL."""
    citations: list[UrlCitation] = []
    seen: set[str] = set()
    for annotation in message.get("annotations") or []:
        if annotation.get("type") != "url_citation":
            continue
        # Chat completions nest the fields; tolerate the flat shape too
        body = annotation.get("url_citation") or annotation
        url = body.get("url")
        if not url or url in seen:
            continue
        seen.add(url)
        citations.append(
            UrlCitation(
                url=url,
                title=body.get("title") or "",
                snippet=body.get("snippet") or None,
            )
        )
    return citations


def _parse_search_queries(data: dict) -> list[str]:
    """Queries from ``web_search_call`` items, present when the endpoint returns a Responses-style ``output``."""
    queries: list[str] = []
    for item in data.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "web_search_call":
            continue
        query = (item.get("action") or {}).get("query")
        if query:
            queries.append(query)
    return queries


class OpenAiProvider(BaseProvider):
    """Send prompts to the OpenAI Chat Completions API.

    The API key is passed in explicitly; a missing key is reported as a
    ProviderError on every call rather than at construction time so a batch
    still records one failed run per prompt.
    """

    provider = ProviderName.CHATGPT

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_url: str = API_URL,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout

    def _build_payload(self, prompt_text: str) -> dict:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt_text}],
        }
        if _is_reasoning_model(self.model):
            payload["max_completion_tokens"] = 4096
        else:
            payload["temperature"] = 0.0
            payload["max_tokens"] = 2048
        return payload

    async def complete(self, prompt_text: str) -> ProviderResult:
        if not self.api_key:
            return ProviderError(provider=self.provider.value, error="OPENAI_API_KEY not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._build_payload(prompt_text)

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("OpenAI request failed for model=%s: %s", self.model, e)
            return ProviderError(
                provider=self.provider.value,
                error=f"OpenAI request failed: {type(e).__name__}: {e}",
            )
        duration_ms = int((time.perf_counter() - start) * 1000)

        if not resp.is_success:
            body = resp.text[:MAX_ERROR_BODY]
            logger.error("OpenAI API %d for model=%s: %s", resp.status_code, self.model, body)
            return ProviderError(
                provider=self.provider.value,
                error=f"OpenAI API error ({resp.status_code}): {body}",
            )

        try:
            data = resp.json()
            choice = data["choices"][0]
            message = choice.get("message") or {}
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("Malformed OpenAI response for model=%s: %s", self.model, e)
            return ProviderError(provider=self.provider.value, error=f"Malformed OpenAI response: {e}")

        usage = data.get("usage") or {}
        return Completion(
            text=message.get("content") or "",
            metadata=ResponseMetadata(
                model=data.get("model", self.model),
                tokens_used=usage.get("total_tokens"),
                finish_reason=choice.get("finish_reason"),
            ),
            duration_ms=duration_ms,
            citations=_parse_citations(message),
            search_queries=_parse_search_queries(data),
        )
