"""Tests for query variant generation."""

from __future__ import annotations

from moviemax.services.query_normalizer import fallback_tokens, query_variants


def test_variants_progressively_loosen() -> None:
    assert query_variants("Iron Man (2008) 1080p!") == [
        "Iron Man (2008) 1080p!",
        "Iron Man 1080p!",
        "Iron Man !",
        "Iron Man",
    ]


def test_variants_are_deduplicated() -> None:
    assert query_variants("  Heat ") == ["Heat"]


def test_variants_skip_short_candidates() -> None:
    assert query_variants("a") == []
    assert query_variants("") == []


def test_fallback_tokens_caps_at_three_long_words() -> None:
    assert fallback_tokens("The Dark Knight Rises Again") == ["The", "Dark", "Knight"]


def test_fallback_tokens_skip_short_and_repeated_words() -> None:
    assert fallback_tokens("an of it") == []
    assert fallback_tokens("Heat heat HEAT Ronin") == ["Heat", "Ronin"]


def test_normalized_input_is_its_own_only_variant() -> None:
    assert query_variants("iron man") == ["iron man"]
