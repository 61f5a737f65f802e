"""Citation enrichment: fill missing citation snippets from the cited page's meta description.

Fetch layer uses httpx.AsyncClient; parse layer is pure (no I/O).
Enrichment is best-effort. A page that cannot be fetched or parsed leaves the
citation as it was.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

import httpx
from bs4 import BeautifulSoup

from app.providers.base import UrlCitation

logger = logging.getLogger(__name__)

_USER_AGENT = "Mozilla/5.0 (compatible; VisibilityBot/1.0)"
_SEMAPHORE_LIMIT = 5  # max concurrent fetches


def parse_meta_description(html: str) -> str | None:
    """Return ``og:description``, else ``<meta name="description">``, stripped; None if neither."""
    soup = BeautifulSoup(html, "lxml")
    for attrs in ({"property": "og:description"}, {"name": "description"}):
        tag = soup.find("meta", attrs=attrs)
        if tag is None:
            continue
        content = (tag.get("content") or "").strip()
        if content:
            return content
    return None


async def fetch_meta_description(
    client: httpx.AsyncClient,
    url: str,
    semaphore: asyncio.Semaphore,
    timeout: float,
) -> str | None:
    """Meta description of *url*, or None when the page cannot be fetched or parsed.

    Never raises: malformed URLs (``httpx.InvalidURL``, bad ports) and parser
    errors count as "no description".
    """
    async with semaphore:
        try:
            resp = await client.get(url, timeout=timeout, follow_redirects=True)
            if resp.status_code != 200:
                return None
            return parse_meta_description(resp.text)
        except (httpx.HTTPError, Exception) as exc:
            logger.debug("Citation fetch failed for %s: %s", url, exc)
            return None


async def enrich_citations(citations: list[UrlCitation], timeout: float = 5.0) -> list[UrlCitation]:
    """Fill ``snippet`` for citations that have none. Order is preserved."""
    missing = [c for c in citations if not c.snippet]
    if not missing:
        return list(citations)

    semaphore = asyncio.Semaphore(_SEMAPHORE_LIMIT)
    async with httpx.AsyncClient(headers={"User-Agent": _USER_AGENT}) as client:
        descriptions = await asyncio.gather(
            *(fetch_meta_description(client, c.url, semaphore, timeout) for c in missing)
        )

    found = {c.url: d for c, d in zip(missing, descriptions) if d}
    logger.debug("Enriched %d/%d citations", len(found), len(missing))
    return [replace(c, snippet=found[c.url]) if c.url in found and not c.snippet else c for c in citations]
