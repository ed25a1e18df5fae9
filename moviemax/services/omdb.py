"""Poster lookups against the OMDb API."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


class OMDbClient:
    """Client resolving poster URLs by title, fuzzy search first."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._missing_key_reported = False

    @property
    def enabled(self) -> bool:
        return bool(self._settings.omdb_api_key)

    async def search_poster(self, title: str) -> str | None:
        """Return the first usable poster for ``title`` or ``None``."""

        title = (title or "").strip()
        if not title:
            return None
        api_key = self._settings.omdb_api_key
        if not api_key:
            if not self._missing_key_reported:
                logger.warning("OMDB_API_KEY is not configured; remote posters disabled")
                self._missing_key_reported = True
            return None

        search = await self._get({"apikey": api_key, "s": title, "type": "movie"})
        if search is not None:
            for entry in search.get("Search") or []:
                if not isinstance(entry, dict):
                    continue
                poster = self._usable_poster(entry.get("Poster"))
                if poster:
                    return poster

        exact = await self._get({"apikey": api_key, "t": title, "type": "movie"})
        if exact is None:
            return None
        return self._usable_poster(exact.get("Poster"))

    async def _get(self, params: dict[str, str]) -> dict[str, Any] | None:
        try:
            response = await self._client.get("/", params=params)
        except httpx.HTTPError as exc:
            logger.warning("OMDb lookup for %s failed: %s", params.get("s") or params.get("t"), exc)
            return None
        if response.status_code >= 400:
            logger.debug("OMDb returned HTTP %s: %s", response.status_code, response.text)
            return None
        try:
            payload = response.json()
        except json.JSONDecodeError:
            logger.debug("OMDb returned a non-JSON body")
            return None
        if not isinstance(payload, dict) or payload.get("Response") != "True":
            return None
        return payload

    @staticmethod
    def _usable_poster(value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        poster = value.strip()
        if not poster or poster == NOT_AVAILABLE:
            return None
        return poster
