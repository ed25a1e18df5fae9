"""Integration helpers for the Gemini generateContent API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..utils import extract_title_list

logger = logging.getLogger(__name__)

HISTORY_PROMPT_LIMIT = 20

RECOMMENDATION_PROMPT_TEMPLATE = """
User watched these movies:
{history}

Recommend {count} movie titles based on this history.
Return ONLY a JSON array of movie name strings, no extra text.
Example: ["iron man", "the avengers"]
"""


@dataclass(slots=True)
class AiResponse:
    """Outcome of a recommendation request.

    ``error`` is set when the request could not be completed; an empty
    ``titles`` list without an error means the model had nothing to offer.
    """

    titles: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class GeminiClient:
    """Client responsible for asking Gemini for movie suggestions."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._missing_key_reported = False

    @property
    def enabled(self) -> bool:
        return bool(self._settings.gemini_api_key)

    async def recommend(
        self, history_titles: Sequence[str], max_count: int = 60
    ) -> AiResponse:
        """Return free-text titles suggested from the most recent history."""

        api_key = self._settings.gemini_api_key
        if not api_key:
            if not self._missing_key_reported:
                logger.warning("GEMINI_API_KEY is not configured; AI picks disabled")
                self._missing_key_reported = True
            return AiResponse(error="Missing GEMINI_API_KEY")

        titles = [title.strip() for title in history_titles if title and title.strip()]
        if not titles:
            return AiResponse()

        prompt = self._build_prompt(titles[:HISTORY_PROMPT_LIMIT], max_count)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.6,
                "maxOutputTokens": 800,
                "responseMimeType": "application/json",
            },
        }

        try:
            response = await self._client.post(
                f"/models/{self._settings.gemini_model}:generateContent",
                params={"key": api_key},
                json=payload,
            )
        except httpx.HTTPError as exc:
            logger.warning("Gemini request failed: %s", exc)
            return AiResponse(error=str(exc) or exc.__class__.__name__)

        if response.status_code >= 400:
            snippet = response.text[:200].replace("\n", " ").strip()
            logger.warning("Gemini returned HTTP %s: %s", response.status_code, snippet)
            return AiResponse(error=f"HTTP {response.status_code}: {snippet}")

        try:
            data = response.json()
        except json.JSONDecodeError:
            logger.warning("Gemini returned a non-JSON body")
            return AiResponse(error="Malformed response from AI service")

        text = self._extract_text(data)
        if text is None:
            return AiResponse(error="Malformed response from AI service")

        suggestions = extract_title_list(text)
        logger.info("Gemini suggested %s titles", len(suggestions))
        return AiResponse(titles=suggestions)

    @staticmethod
    def _build_prompt(titles: Sequence[str], count: int) -> str:
        history = "\n".join(f"- {title}" for title in titles)
        return RECOMMENDATION_PROMPT_TEMPLATE.format(history=history, count=count).strip()

    @staticmethod
    def _extract_text(data: Any) -> str | None:
        if not isinstance(data, dict):
            return None
        candidates = data.get("candidates")
        if not isinstance(candidates, list):
            return None
        if not candidates:
            return ""
        candidate = candidates[0]
        if not isinstance(candidate, dict):
            return None
        content = candidate.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list) or not parts:
            return ""
        texts = [
            part.get("text")
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        return "".join(texts)
