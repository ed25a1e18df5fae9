"""JSON state files persisted between runs.

Every file is independently optional: a missing or unreadable file loads as
its empty default, and a failed write is logged and otherwise ignored so the
in-memory state stays authoritative for the session.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import TypeAdapter, ValidationError

from ..config import Settings
from ..models import AiCache, HistoryEntry

logger = logging.getLogger(__name__)

_HISTORY_ADAPTER = TypeAdapter(list[HistoryEntry])
_POSTER_CACHE_ADAPTER = TypeAdapter(dict[str, str])


class StateFiles:
    """Load and save the history, poster cache, AI cache and catalog version."""

    def __init__(self, settings: Settings):
        self._history_path = settings.history_path
        self._poster_cache_path = settings.poster_cache_path
        self._ai_cache_path = settings.ai_cache_path
        self._version_path = settings.catalog_version_path

    def load_history(self) -> list[HistoryEntry]:
        raw = self._read_json(self._history_path)
        if raw is None:
            return []
        try:
            return _HISTORY_ADAPTER.validate_python(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed history file: %s", exc)
            return []

    def save_history(self, entries: Iterable[HistoryEntry]) -> None:
        payload = [entry.model_dump(by_alias=True) for entry in entries]
        self._write_json(self._history_path, payload)

    def load_poster_cache(self) -> dict[str, str]:
        raw = self._read_json(self._poster_cache_path)
        if raw is None:
            return {}
        try:
            return _POSTER_CACHE_ADAPTER.validate_python(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed poster cache: %s", exc)
            return {}

    def save_poster_cache(self, cache: Mapping[str, str]) -> None:
        filtered = {key: value for key, value in cache.items() if value.strip()}
        if not filtered:
            self._remove(self._poster_cache_path)
            return
        self._write_json(self._poster_cache_path, filtered)

    def load_ai_cache(self) -> AiCache | None:
        raw = self._read_json(self._ai_cache_path)
        if raw is None:
            return None
        try:
            cache = AiCache.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed AI cache: %s", exc)
            return None
        if cache.is_empty():
            return None
        return cache

    def save_ai_cache(self, cache: AiCache | None) -> None:
        if cache is None or cache.is_empty():
            self._remove(self._ai_cache_path)
            return
        self._write_json(self._ai_cache_path, cache.model_dump(by_alias=True))

    def load_catalog_version(self) -> str | None:
        try:
            text = self._version_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unable to read %s: %s", self._version_path, exc)
            return None
        return text.strip() or None

    def save_catalog_version(self, version: str) -> None:
        try:
            self._version_path.parent.mkdir(parents=True, exist_ok=True)
            self._version_path.write_text(version.strip(), encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to write %s: %s", self._version_path, exc)

    @staticmethod
    def _read_json(path: Path) -> Any:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unable to read %s: %s", path, exc)
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt state file %s: %s", path, exc)
            return None

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        temp = path.with_name(f"{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(temp, path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Unable to write %s: %s", path, exc)
            try:
                temp.unlink(missing_ok=True)
            except OSError:
                pass

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Unable to remove %s: %s", path, exc)
