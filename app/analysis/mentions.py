"""Literal domain and brand matching in provider responses.

Decides whether a target domain appears in a free-text answer, estimates
where it appears, and cuts a context snippet around the match. Pure and
total: the same inputs always produce the same result and nothing raises.

Matching is plain case-insensitive substring search. It is NOT word-boundary
aware, so ``example.com`` matches inside ``myexample.comsite``. Callers rely
on that behaviour staying exactly as is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# Characters of context kept on each side of the match
SNIPPET_RADIUS = 100

# Sentence-like segment separators used for the position estimate
_SEGMENT_SPLIT = re.compile(r"[.\n]")


@dataclass(frozen=True)
class MentionResult:
    """Outcome of scanning one response for one target."""

    mentioned: bool = False
    position: int | None = None
    snippet: str | None = None
    matched_variant: str | None = None
    offset: int | None = None  # index of the match in the response


NOT_MENTIONED = MentionResult()


def domain_variants(domain_name: str) -> list[str]:
    """Lower-cased candidates in match order: as given, ``www.``-prefixed, ``www.``-stripped.

    For a domain without ``www.`` the first and third entries are equal.
    """
    lowered = domain_name.lower()
    return [lowered, f"www.{lowered}", lowered.replace("www.", "", 1)]


def estimate_position(response_text: str, index: int) -> int:
    """Approximate ordinal of a mention: non-blank ``.``/newline segments before it, plus one.

    This is a proxy for list rank in enumerated answers ("the mention comes
    after N sentence-like pieces"). It is not a citation index and is not
    meant to be semantically accurate.
    """
    before = response_text[:index]
    segments = [s for s in _SEGMENT_SPLIT.split(before) if s.strip()]
    return len(segments) + 1


def extract_snippet(response_text: str, index: int, match_length: int) -> str:
    start = max(0, index - SNIPPET_RADIUS)
    end = min(len(response_text), index + match_length + SNIPPET_RADIUS)
    return response_text[start:end]


def find_first_variant(response_text: str, variants: list[str]) -> tuple[str, int] | None:
    """Return ``(variant, index)`` for the first variant present in the response, else None.

    First match wins in variant order, not earliest offset.
    """
    lowered = response_text.lower()
    for variant in variants:
        if not variant:
            continue
        index = lowered.find(variant)
        if index != -1:
            return variant, index
    return None


def analyze_mentions(response_text: str, domain_name: str) -> MentionResult:
    """Check a provider response for a mention of *domain_name*.

    >>> analyze_mentions("Intro.\\nexample.com is listed.", "example.com").position
    2
    """
    if not response_text or not domain_name:
        return NOT_MENTIONED

    match = find_first_variant(response_text, domain_variants(domain_name))
    if match is None:
        return NOT_MENTIONED

    variant, index = match
    return MentionResult(
        mentioned=True,
        position=estimate_position(response_text, index),
        snippet=extract_snippet(response_text, index, len(variant)),
        matched_variant=variant,
        offset=index,
    )


def analyze_brand_mentions(response_text: str, brand_names: list[str]) -> dict[str, MentionResult]:
    """Run the same literal matcher for each tracked brand name.

    Brand names are matched as given (lower-cased), without ``www.`` variants.
    Duplicate names (case-insensitive) are scanned once, keeping the first spelling.
    """
    results: dict[str, MentionResult] = {}
    seen: set[str] = set()
    for name in brand_names:
        cleaned = (name or "").strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())

        match = find_first_variant(response_text or "", [cleaned.lower()])
        if match is None:
            results[cleaned] = NOT_MENTIONED
            continue
        variant, index = match
        results[cleaned] = MentionResult(
            mentioned=True,
            position=estimate_position(response_text, index),
            snippet=extract_snippet(response_text, index, len(variant)),
            matched_variant=variant,
            offset=index,
        )
    return results
