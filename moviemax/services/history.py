"""Watch-history index with debounced persistence."""

from __future__ import annotations

import logging
import time
from typing import Callable

from ..models import HistoryEntry, TrackSelection
from ..utils import clean_base_name
from .state_files import StateFiles
from .tasks import TrailingDebounce

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class HistoryStore:
    """Own the in-memory history index keyed by playback link.

    Reads always come from memory. Writes to disk are coalesced: a burst of
    updates produces a single save once ``save_delay`` seconds pass quietly.
    """

    def __init__(
        self,
        state_files: StateFiles | None = None,
        *,
        limit: int = HISTORY_LIMIT,
        save_delay: float = 1.5,
        clock: Callable[[], float] = time.time,
    ):
        self._state_files = state_files
        self._limit = limit
        self._clock = clock
        self._entries: dict[str, HistoryEntry] = {}
        # Touch order breaks ties between entries played within the same second.
        self._touched: dict[str, int] = {}
        self._counter = 0
        self._saver = TrailingDebounce(self._persist, save_delay, name="history save")

    def load(self) -> None:
        if self._state_files is None:
            return
        self._entries = {entry.link: entry for entry in self._state_files.load_history()}
        self._touched = {}
        self._counter = 0
        logger.info("Loaded %s history entries", len(self._entries))

    def get(self, link: str) -> HistoryEntry | None:
        return self._entries.get(link)

    def list(self) -> list[HistoryEntry]:
        """Return entries by recency, newest first, capped to the limit."""

        entries = sorted(
            self._entries.values(),
            key=lambda entry: (entry.last_played_ts, self._touched.get(entry.link, 0)),
            reverse=True,
        )
        return entries[: self._limit]

    def __len__(self) -> int:
        return len(self.list())

    def _now(self) -> int:
        return int(self._clock())

    def _upsert(self, link: str, title: str, **updates: object) -> HistoryEntry | None:
        if not link or not link.strip():
            return None
        title = (title or "").strip()
        entry = self._entries.get(link)
        if entry is None:
            entry = HistoryEntry(
                link=link,
                name=title or link,
                position=0,
                duration=0,
                last_played_ts=self._now(),
            )

        changes: dict[str, object] = {"last_played_ts": self._now(), **updates}
        if title:
            changes["name"] = title
        base_name = changes.pop("base_name", None)
        if not (entry.base_name or "").strip():
            guessed = (str(base_name).strip() if base_name else "") or clean_base_name(
                title or entry.name
            )
            if guessed:
                changes["base_name"] = guessed

        updated = entry.model_copy(update=changes)
        self._entries[link] = updated
        self._counter += 1
        self._touched[link] = self._counter
        self._evict()
        self._schedule_save()
        return updated

    def record_playback(
        self,
        link: str,
        title: str,
        poster: str | None = None,
        base_name: str | None = None,
    ) -> HistoryEntry | None:
        updates: dict[str, object] = {"base_name": base_name}
        if poster and poster.strip():
            updates["poster_link"] = poster.strip()
        return self._upsert(link, title, **updates)

    def record_progress(
        self, link: str, title: str, position_ms: int, duration_ms: int
    ) -> HistoryEntry | None:
        return self._upsert(
            link,
            title,
            position=max(0, int(position_ms) // 1000),
            duration=max(0, int(duration_ms) // 1000),
        )

    def record_track_selection(
        self, link: str, title: str, selection: TrackSelection
    ) -> HistoryEntry | None:
        return self._upsert(link, title, **selection.model_dump())

    def set_local_poster(self, link: str, path: str | None) -> None:
        entry = self._entries.get(link)
        if entry is None or entry.local_poster_path == path:
            return
        self._entries[link] = entry.model_copy(update={"local_poster_path": path})
        self._schedule_save()

    def remove(self, link: str) -> bool:
        if self._entries.pop(link, None) is None:
            return False
        self._touched.pop(link, None)
        self._schedule_save()
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._touched.clear()
        self._schedule_save()

    def _evict(self) -> None:
        if len(self._entries) <= self._limit:
            return
        keep = {entry.link for entry in self.list()}
        for link in list(self._entries):
            if link not in keep:
                del self._entries[link]
                self._touched.pop(link, None)

    def _schedule_save(self) -> None:
        try:
            self._saver.trigger()
        except RuntimeError:
            # Called outside an event loop; write synchronously instead.
            self._persist()

    def _persist(self) -> None:
        if self._state_files is not None:
            self._state_files.save_history(self.list())

    @property
    def save_pending(self) -> bool:
        return self._saver.pending

    async def flush(self) -> None:
        await self._saver.flush()
