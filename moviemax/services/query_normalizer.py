"""Rewrite free-text titles into progressively looser search queries."""

from __future__ import annotations

from ..utils import (
    strip_punctuation,
    strip_quality_tokens,
    strip_year_markers,
)

MIN_VARIANT_LENGTH = 2
MIN_FALLBACK_TOKEN_LENGTH = 3
MAX_FALLBACK_TOKENS = 3


def query_variants(raw: str) -> list[str]:
    """Return de-duplicated query variants, most specific first.

    Callers try the variants in order and stop at the first one that matches.
    """

    trimmed = (raw or "").strip()
    without_year = strip_year_markers(trimmed)
    without_quality = strip_quality_tokens(without_year)
    alphanumeric = strip_punctuation(without_quality)

    variants: list[str] = []
    for candidate in (trimmed, without_year, without_quality, alphanumeric):
        if len(candidate) < MIN_VARIANT_LENGTH:
            continue
        if candidate not in variants:
            variants.append(candidate)
    return variants


def fallback_tokens(raw: str) -> list[str]:
    """Return up to three distinct words of at least three characters."""

    tokens: list[str] = []
    for token in (raw or "").split():
        if len(token) < MIN_FALLBACK_TOKEN_LENGTH:
            continue
        if token.lower() in {existing.lower() for existing in tokens}:
            continue
        tokens.append(token)
        if len(tokens) >= MAX_FALLBACK_TOKENS:
            break
    return tokens
