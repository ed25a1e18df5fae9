"""Tests for text helpers shared across services."""

from __future__ import annotations

import pytest

from moviemax.utils import (
    clean_base_name,
    extract_json_payload,
    extract_title_list,
    normalize_key,
    slugify,
    strip_year_markers,
    truncate_title,
)


def test_clean_base_name_strips_release_noise() -> None:
    assert clean_base_name("Iron Man (2008) [Dual Audio] 1080p BluRay") == "Iron Man"


def test_clean_base_name_replaces_punctuation() -> None:
    assert clean_base_name("Spider-Man: No Way Home 720p") == "Spider Man No Way Home"


def test_clean_base_name_is_deterministic_and_may_be_empty() -> None:
    title = "Heat (1995) WEB-DL"

    assert clean_base_name(title) == clean_base_name(title) == "Heat"
    assert clean_base_name("(2020) [HD]") == ""


def test_year_markers_of_any_century_are_stripped() -> None:
    assert strip_year_markers("Workers Leaving the Factory ( 1895 )") == "Workers Leaving the Factory"
    assert clean_base_name("Heat (1995)") == clean_base_name("Heat (2101)") == "Heat"
    assert strip_year_markers("Blade Runner (82)") == "Blade Runner (82)"


def test_normalize_key_lowercases_and_collapses() -> None:
    assert normalize_key("  Iron   MAN ") == "iron man"
    assert normalize_key(None) == ""


def test_slugify_uses_underscores() -> None:
    assert slugify("The Matrix: Reloaded") == "the_matrix_reloaded"


def test_truncate_title_appends_ellipsis() -> None:
    assert truncate_title("x" * 60) == "x" * 55 + "..."
    assert truncate_title("  Short  ") == "Short"


def test_extract_json_payload_reads_fenced_block() -> None:
    content = "Here you go:\n```json\n[\"Heat\", \"Ronin\"]\n```"

    assert extract_json_payload(content) == ["Heat", "Ronin"]


def test_extract_json_payload_rejects_plain_text() -> None:
    with pytest.raises(ValueError):
        extract_json_payload("no json here")


def test_extract_title_list_handles_object_lists() -> None:
    content = '{"movies": [{"title": "Heat"}, {"name": "Ronin"}, {"year": 1998}]}'

    assert extract_title_list(content) == ["Heat", "Ronin"]


def test_extract_title_list_falls_back_to_lines() -> None:
    content = "1. Heat\n2. Ronin\n- heat\n\"Collateral\", Thief"

    assert extract_title_list(content) == ["Heat", "Ronin", "Collateral", "Thief"]


def test_extract_title_list_of_empty_text_is_empty() -> None:
    assert extract_title_list("") == []


def test_extract_title_list_ignores_bracketed_fragments_in_prose() -> None:
    content = "1. Iron Man [2008]\n2. The Avengers\n3. Heat"

    assert extract_title_list(content) == ["Iron Man [2008]", "The Avengers", "Heat"]


def test_extract_title_list_of_json_without_titles_is_empty() -> None:
    assert extract_title_list('{"error": "quota"}') == []
    assert extract_title_list("```json\n[]\n```") == []
