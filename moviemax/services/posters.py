"""Resolve display posters through the catalog, caches and OMDb."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Mapping, Protocol
from urllib.parse import urlparse

import httpx

from ..utils import normalize_key, slugify
from .mirrors import is_link_servable
from .state_files import StateFiles
from .tasks import SingleFlight, TrailingDebounce

logger = logging.getLogger(__name__)


class PosterCatalog(Protocol):
    async def find_poster(self, base_name: str) -> str | None: ...


class PosterSearch(Protocol):
    async def search_poster(self, title: str) -> str | None: ...


class PosterCache:
    """In-memory poster cache with debounced persistence.

    An empty string is a negative entry ("looked up, nothing found"). Negative
    entries live only in memory; the persisted file keeps positive hits.
    """

    def __init__(
        self,
        state_files: StateFiles | None = None,
        *,
        save_delay: float = 1.5,
        initial: Mapping[str, str] | None = None,
    ):
        self._entries: dict[str, str] = {}
        self._state_files = state_files
        self._saver: TrailingDebounce | None = None
        if state_files is not None:
            self._saver = TrailingDebounce(self._persist, save_delay, name="poster cache save")
        for key, value in (initial or {}).items():
            normalized = normalize_key(key)
            if normalized:
                self._entries[normalized] = value or ""

    def load(self) -> None:
        if self._state_files is None:
            return
        for key, value in self._state_files.load_poster_cache().items():
            normalized = normalize_key(key)
            if normalized:
                self._entries[normalized] = value

    def __contains__(self, base_name: object) -> bool:
        return isinstance(base_name, str) and normalize_key(base_name) in self._entries

    def get(self, base_name: str) -> str | None:
        """Return the cached value; ``""`` is a negative hit, ``None`` a miss."""

        return self._entries.get(normalize_key(base_name))

    def put(self, base_name: str, poster: str | None) -> None:
        key = normalize_key(base_name)
        if not key:
            return
        value = (poster or "").strip()
        if self._entries.get(key) == value:
            return
        self._entries[key] = value
        self._schedule_save()

    def forget(self, base_name: str) -> None:
        if self._entries.pop(normalize_key(base_name), None) is not None:
            self._schedule_save()

    def snapshot(self) -> dict[str, str]:
        return dict(self._entries)

    def _schedule_save(self) -> None:
        if self._saver is None:
            return
        try:
            self._saver.trigger()
        except RuntimeError:
            # No running loop; persist straight away.
            self._persist()

    def _persist(self) -> None:
        if self._state_files is not None:
            self._state_files.save_poster_cache(self._entries)

    async def flush(self) -> None:
        if self._saver is not None:
            await self._saver.flush()


class PosterResolver:
    """Pick and fetch posters for titles.

    Lookup order is the attached poster, the in-memory cache, the catalog and
    finally OMDb. A locally downloaded image outranks every remote source.
    """

    def __init__(
        self,
        cache: PosterCache,
        catalog: PosterCatalog,
        search: PosterSearch | None,
        *,
        trusted_hosts: Iterable[str],
        poster_dir: Path | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._cache = cache
        self._catalog = catalog
        self._search = search
        self._trusted_hosts = tuple(host.lower() for host in trusted_hosts)
        self._poster_dir = poster_dir
        self._http = http_client
        self._mirrors: frozenset[str] = frozenset()
        self._fetches: SingleFlight[str | None] = SingleFlight()

    @property
    def cache(self) -> PosterCache:
        return self._cache

    @property
    def mirrors(self) -> frozenset[str]:
        return self._mirrors

    def set_mirrors(self, mirrors: Iterable[str]) -> None:
        self._mirrors = frozenset(mirrors)

    def in_flight(self, base_name: str) -> bool:
        return self._fetches.in_flight(normalize_key(base_name))

    def is_external_poster(self, url: str | None) -> bool:
        """Return whether the poster lives on a trusted remote image host."""

        if not url:
            return False
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        return any(host == trusted or host.endswith(f".{trusted}") for trusted in self._trusted_hosts)

    def is_poster_server_available(self, url: str | None) -> bool:
        return bool(url) and is_link_servable(url or "", self._mirrors)

    def is_usable(self, url: str | None) -> bool:
        if not url or not url.strip():
            return False
        if url.startswith("file://"):
            return True
        return self.is_external_poster(url) or self.is_poster_server_available(url)

    def should_replace_poster(self, current: str | None, base_name: str) -> bool:
        """Decide whether a new lookup is worth it for the current poster."""

        if not current or not current.strip():
            return True
        if self.is_external_poster(current):
            return False
        if not self.is_poster_server_available(current):
            cached = self._cache.get(base_name)
            return not cached
        return False

    def local_poster_path(self, base_name: str) -> str | None:
        path = self._poster_file(base_name)
        if path is None or not path.is_file():
            return None
        return str(path.resolve())

    def choose_poster(self, current: str | None, base_name: str) -> str | None:
        """Return the best poster available without touching the network."""

        local = self.local_poster_path(base_name)
        if local:
            return local
        if self.is_usable(current):
            return current
        cached = self._cache.get(base_name)
        if cached:
            return cached
        return None

    async def resolve(self, base_name: str, current: str | None = None) -> str | None:
        """Run the full lookup chain and remember the outcome."""

        local = self.local_poster_path(base_name)
        if local:
            return local
        if self.is_usable(current):
            return current

        key = normalize_key(base_name)
        if not key:
            return None

        cached = self._cache.get(base_name)
        if cached:
            return cached

        catalog_poster = await self._catalog.find_poster(base_name)
        if self.is_usable(catalog_poster):
            self._cache.put(base_name, catalog_poster)
            return catalog_poster
        if cached == "":
            logger.debug("Negative poster cache hit for %s", key)
            return None
        if self._search is None:
            return None

        return await self._fetches.run(key, lambda: self._fetch_remote(base_name))

    async def _fetch_remote(self, base_name: str) -> str | None:
        try:
            poster = await self._search.search_poster(base_name) if self._search else None
        except Exception as exc:
            logger.warning("Poster search failed for %s: %s", base_name, exc)
            return None
        if poster:
            self._cache.put(base_name, poster)
        elif getattr(self._search, "enabled", True):
            self._cache.put(base_name, "")
        return poster

    def refresh(self, base_name: str) -> None:
        """Drop any cached answer so the next lookup starts over."""

        self._cache.forget(base_name)

    def _poster_file(self, base_name: str) -> Path | None:
        if self._poster_dir is None:
            return None
        safe = slugify(normalize_key(base_name))
        if not safe:
            return None
        return self._poster_dir / f"{safe}.jpg"

    async def download_to_file(self, url: str, base_name: str) -> str | None:
        """Store a poster image on disk so it survives mirror outages."""

        if not url or not base_name:
            return None
        if url.startswith("file://"):
            return url
        target = self._poster_file(base_name)
        if target is None or self._http is None:
            return None
        temp = target.with_name(f"{target.name}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with self._http.stream("GET", url) as response:
                if not response.is_success:
                    return None
                with temp.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)
            if temp.stat().st_size <= 0:
                return None
            os.replace(temp, target)
            return str(target.resolve())
        except (httpx.HTTPError, OSError) as exc:
            logger.warning("Poster download failed for %s: %s", base_name, exc)
            return None
        finally:
            try:
                temp.unlink(missing_ok=True)
            except OSError:
                pass

    async def close(self) -> None:
        await self._fetches.cancel_all()
        await self._cache.flush()
