"""Utility helpers for the MovieMax service."""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
BARE_JSON_RE = re.compile(r"(\[.*\]|\{.*\})", re.DOTALL)
LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]+|\d+[.)]|#\d+)\s*")
YEAR_MARKER_RE = re.compile(r"\(\s*\d{4}\s*\)")
BRACKET_TAG_RE = re.compile(r"\[[^\]]*\]")
QUALITY_TOKEN_RE = re.compile(
    r"\b(?:480p|720p|1080p|2160p|4k|fhd|uhd|hd|sd|bluray|brrip|hdrip|web-dl|webrip|dual\s+audio)\b",
    re.IGNORECASE,
)
NON_ALNUM_RE = re.compile(r"[^0-9a-zA-Z]+")
WHITESPACE_RE = re.compile(r"\s+")

TITLE_LIST_KEYS = ("titles", "movies", "recommendations", "items", "results")
TITLE_OBJECT_KEYS = ("title", "name", "movie")
DISPLAY_TITLE_LIMIT = 55


def slugify(value: str) -> str:
    """Return a filesystem-friendly key."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "_", value.lower())
    return value.strip("_")


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_RE.sub(" ", value).strip()


def strip_year_markers(value: str) -> str:
    return collapse_whitespace(YEAR_MARKER_RE.sub(" ", value))


def strip_quality_tokens(value: str) -> str:
    return collapse_whitespace(QUALITY_TOKEN_RE.sub(" ", value))


def strip_punctuation(value: str) -> str:
    return collapse_whitespace(NON_ALNUM_RE.sub(" ", value))


def clean_base_name(title: str) -> str:
    """Derive the canonical base name of a release title.

    Year markers, bracketed tags, quality tokens and punctuation are removed
    and whitespace is collapsed. The result is deterministic for a given title
    and may be empty when nothing recognisable is left.
    """

    value = YEAR_MARKER_RE.sub(" ", title or "")
    value = BRACKET_TAG_RE.sub(" ", value)
    value = QUALITY_TOKEN_RE.sub(" ", value)
    return strip_punctuation(value)


def normalize_key(value: str | None) -> str:
    """Return the normalised lookup key used for poster caching."""

    return collapse_whitespace((value or "").lower())


def truncate_title(title: str, limit: int = DISPLAY_TITLE_LIMIT) -> str:
    title = title.strip()
    if len(title) > limit:
        return title[:limit] + "..."
    return title


def extract_json_payload(content: str) -> Any:
    """Extract and parse the first JSON array or object from model output."""

    text = (content or "").strip()
    match = JSON_BLOCK_RE.search(text)
    if match:
        text = match.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    match = BARE_JSON_RE.search(text)
    if not match:
        raise ValueError("No JSON payload found in response")
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def extract_title_list(content: str) -> list[str]:
    """Flatten a free-form model response into a list of titles.

    Arrays of strings, arrays of objects and objects holding a named list are
    read structurally. Anything else, including prose that merely contains a
    bracketed fragment such as a year, is split on newlines and commas with
    list markers removed.
    """

    try:
        parsed = extract_json_payload(content)
    except ValueError:
        parsed = None

    titles: list[str] = []
    if parsed is not None:
        titles = _titles_from_json(parsed)
        if titles:
            return _dedupe(titles)

    text = (content or "").strip()
    match = JSON_BLOCK_RE.search(text)
    if match:
        text = match.group(1)
    if parsed is not None and text.strip().startswith(("[", "{")):
        return []
    text = text.strip().strip("[]")
    for line in re.split(r"[\n,]", text):
        cleaned = LIST_MARKER_RE.sub("", line).strip().strip("\"'").strip()
        if cleaned:
            titles.append(cleaned)
    return _dedupe(titles)


def _titles_from_json(parsed: Any) -> list[str]:
    if isinstance(parsed, str):
        return [parsed.strip()] if parsed.strip() else []
    if isinstance(parsed, dict):
        for key in TITLE_LIST_KEYS:
            candidate = parsed.get(key)
            if isinstance(candidate, list):
                return _titles_from_json(candidate)
        for value in parsed.values():
            if isinstance(value, list):
                return _titles_from_json(value)
        return []
    if isinstance(parsed, list):
        titles: list[str] = []
        for entry in parsed:
            if isinstance(entry, str):
                if entry.strip():
                    titles.append(entry.strip())
            elif isinstance(entry, dict):
                for key in TITLE_OBJECT_KEYS:
                    value = entry.get(key)
                    if isinstance(value, str) and value.strip():
                        titles.append(value.strip())
                        break
        return titles
    return []


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        key = value.casefold()
        if key in seen:
            continue
        seen.add(key)
        unique.append(value)
    return unique
