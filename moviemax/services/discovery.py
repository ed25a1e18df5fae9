"""High level orchestration for search, recommendations and history."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from ..config import Settings
from ..database import CatalogDatabase
from ..models import AiCache, HistoryEntry, MatchCandidate, TrackSelection
from ..utils import normalize_key
from .catalog_index import CatalogIndex
from .downloader import CatalogDownloader
from .gemini import GeminiClient
from .history import HistoryStore
from .matcher import MovieMatcher
from .mirrors import MirrorResolver
from .posters import PosterResolver
from .reconciler import ReconcileResult, RecommendationReconciler
from .state_files import StateFiles
from .tasks import LatestTask

logger = logging.getLogger(__name__)

NO_YEAR = "No Year"
MIN_QUERY_LENGTH = 2
PROGRESS_INTERVAL_SECONDS = 0.3

STATUS_NEED_MIRROR = "Connect at least one server to search."
STATUS_DB_NOT_READY = "Database is not ready yet."
STATUS_QUERY_TOO_SHORT = "Type at least 2 characters to search."

ViewListener = Callable[["DiscoveryView"], None]


@dataclass(slots=True)
class HistoryRow:
    """History entry rendered for display."""

    title: str
    info: str
    link: str
    poster: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"title": self.title, "info": self.info, "link": self.link, "poster": self.poster}


@dataclass(slots=True)
class DiscoveryView:
    """Snapshot of everything an interface layer needs to render."""

    server_status: str = "Connecting to servers..."
    action_status: str = ""
    recommendation_status: str = ""
    available_mirrors: frozenset[str] = frozenset()
    can_search: bool = False
    db_ready: bool = False
    db_version: str | None = None
    results: list[MatchCandidate] = field(default_factory=list)
    recommendations: list[MatchCandidate] = field(default_factory=list)
    recommendations_refreshing: bool = False
    history: list[HistoryRow] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "serverStatus": self.server_status,
            "actionStatus": self.action_status,
            "recommendationStatus": self.recommendation_status,
            "availableServers": sorted(self.available_mirrors),
            "canSearch": self.can_search,
            "dbReady": self.db_ready,
            "dbVersion": self.db_version,
            "results": [item.model_dump(by_alias=True) for item in self.results],
            "recommendations": [
                item.model_dump(by_alias=True) for item in self.recommendations
            ],
            "recommendationsRefreshing": self.recommendations_refreshing,
            "history": [row.to_payload() for row in self.history],
        }


@dataclass(slots=True)
class PlaybackSession:
    """Where to resume a link and which tracks were last chosen."""

    link: str
    title: str
    start_ms: int
    tracks: TrackSelection


def format_clock(seconds: int) -> str:
    if seconds <= 0:
        return "00:00"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def humanize_age(ts_seconds: int, *, now: float | None = None) -> str:
    if ts_seconds <= 0:
        return ""
    current = time.time() if now is None else now
    delta = int(current - ts_seconds)
    if delta < 60:
        return "just now"
    if delta < 3_600:
        return f"{delta // 60} min ago"
    if delta < 86_400:
        hours = delta // 3_600
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    days = delta // 86_400
    return "1 day ago" if days == 1 else f"{days} days ago"


class ProgressReporter:
    """Turn byte counts into throttled status text."""

    def __init__(
        self,
        prefix: str,
        publish: Callable[[str], None],
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._prefix = prefix
        self._publish = publish
        self._clock = clock
        self._last_pct = -1
        self._last_time = float("-inf")

    def __call__(self, received: int, total: int) -> None:
        now = self._clock()
        if total > 0:
            pct = max(0, min(100, received * 100 // total))
            if pct == self._last_pct and now - self._last_time < PROGRESS_INTERVAL_SECONDS:
                return
            self._last_pct = pct
            self._last_time = now
            self._publish(f"{self._prefix} {pct}%")
            return
        if now - self._last_time < PROGRESS_INTERVAL_SECONDS:
            return
        self._last_time = now
        self._publish(f"{self._prefix} {received / (1024 * 1024):.1f}MB")


class DiscoveryService:
    """Single owner of mutable state: mirrors, catalog, history and caches."""

    def __init__(
        self,
        settings: Settings,
        *,
        state_files: StateFiles,
        database: CatalogDatabase,
        mirrors: MirrorResolver,
        recommender: GeminiClient,
        posters: PosterResolver,
        downloader: CatalogDownloader,
        history: HistoryStore | None = None,
    ):
        self._settings = settings
        self._state_files = state_files
        self._database = database
        self._index = CatalogIndex(database)
        self._matcher = MovieMatcher(self._index, limit=settings.result_limit)
        self._reconciler = RecommendationReconciler(
            self._matcher,
            state_files=state_files,
            limit=settings.result_limit,
            max_suggestions=settings.ai_max_suggestions,
        )
        self._mirrors = mirrors
        self._recommender = recommender
        self._posters = posters
        self._downloader = downloader
        self._history = history or HistoryStore(
            state_files,
            limit=settings.history_limit,
            save_delay=settings.history_save_delay,
        )
        self._view = DiscoveryView()
        self._listeners: list[ViewListener] = []
        self._ai_refresh: LatestTask[ReconcileResult] = LatestTask(name="AI refresh")
        self._background: set[asyncio.Task[Any]] = set()
        self._catalog_lock = asyncio.Lock()

    @property
    def history(self) -> HistoryStore:
        return self._history

    @property
    def matcher(self) -> MovieMatcher:
        return self._matcher

    @property
    def reconciler(self) -> RecommendationReconciler:
        return self._reconciler

    def snapshot(self) -> DiscoveryView:
        return replace(self._view)

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Register a callback fired on every view change; returns an unsubscribe."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _update(self, **changes: Any) -> None:
        self._view = replace(self._view, **changes)
        view = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:  # pragma: no cover - listener safety net
                logger.exception("View listener failed")

    def _set_status(self, message: str) -> None:
        self._update(action_status=message)

    async def start(self) -> None:
        """Load persisted state and kick off catalog and mirror checks."""

        self._history.load()
        self._posters.cache.load()
        self._refresh_history_view()
        self._update(
            db_ready=self._database.is_ready(),
            db_version=self._state_files.load_catalog_version(),
        )
        cached = self._state_files.load_ai_cache()
        if cached is not None:
            self._update(recommendations=cached.candidates())
        self._spawn(self.ensure_catalog(), name="catalog check")
        self._spawn(self.refresh_mirrors(), name="mirror probe")

    async def stop(self) -> None:
        await self._ai_refresh.cancel()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # pragma: no cover - shutdown safety net
                logger.exception("Background task failed during shutdown")
        await self._history.flush()
        await self._posters.close()
        await self._database.dispose()

    def _spawn(self, coro: Any, *, name: str) -> asyncio.Task[Any]:
        async def _runner() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background %s failed: %s", name, exc)

        task = asyncio.create_task(_runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def ensure_catalog(self) -> bool:
        """Download the catalog when missing or outdated."""

        async with self._catalog_lock:
            remote = await self._downloader.fetch_remote_version(
                str(self._settings.catalog_version_url)
            )
            if not self._database.is_ready():
                return await self._download_catalog(
                    remote, "Downloading database...", "Database ready.", "DB download failed"
                )

            self._set_status("Checking for updates...")
            local = self._state_files.load_catalog_version()
            if remote and remote != local:
                return await self._download_catalog(
                    remote, "Updating database...", "Database updated.", "DB update failed"
                )
            self._update(db_ready=True, db_version=local)
            self._set_status("Database ready.")
            return True

    async def _download_catalog(
        self, remote_version: str | None, prefix: str, done: str, failed: str
    ) -> bool:
        self._set_status(prefix)
        reporter = ProgressReporter(prefix, self._set_status)
        result = await self._downloader.download(
            str(self._settings.catalog_db_url), reporter
        )
        if not result.ok:
            self._set_status(f"{failed}: {result.error or 'Unknown error'}")
            return False
        if remote_version:
            self._state_files.save_catalog_version(remote_version)
        await self._index.invalidate()
        self._update(
            db_ready=True, db_version=self._state_files.load_catalog_version()
        )
        self._set_status(done)
        return True

    async def refresh_mirrors(self) -> frozenset[str]:
        """Probe mirrors one by one, publishing partial results."""

        before = self._mirrors.available

        def _on_probe(available: frozenset[str], done: int, total: int) -> None:
            self._posters.set_mirrors(available)
            self._update(
                available_mirrors=available,
                can_search=bool(available),
                server_status=f"Connected Servers: {len(available)}/{total}",
            )

        available = await self._mirrors.refresh(_on_probe)
        self._posters.set_mirrors(available)
        self._update(
            available_mirrors=available,
            can_search=bool(available),
            server_status=self._mirrors.status_text(),
        )
        if available != before:
            self._spawn(self.refresh_posters(), name="poster refresh")
        return available

    async def search(self, query: str, year: str | None = None) -> list[MatchCandidate]:
        if not self._mirrors.available:
            self._set_status(STATUS_NEED_MIRROR)
            return []
        if not self._database.is_ready():
            self._set_status(STATUS_DB_NOT_READY)
            return []
        query = (query or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            self._set_status(STATUS_QUERY_TOO_SHORT)
            return []
        year_filter = year if year and year != NO_YEAR else None

        self._set_status("Searching...")
        results = await self._matcher.match(self._mirrors.available, query, year_filter)
        self._update(results=results)
        self._set_status(
            f"Found {len(results)} results." if results else "No results found."
        )
        return results

    def recommendations(self) -> tuple[list[MatchCandidate], bool]:
        """Return the served recommendations and whether they are stale."""

        cache = self._state_files.load_ai_cache()
        if cache is None:
            return list(self._view.recommendations), True
        stale = cache.is_stale(self._settings.ai_cache_ttl_seconds)
        return list(self._view.recommendations or cache.candidates()), stale

    def refresh_recommendations(self, *, force: bool = False) -> asyncio.Task[ReconcileResult] | None:
        """Start a background refresh when the cache is stale or ``force`` is set.

        A new request supersedes a pending one. Returns the task, or ``None``
        when the cached recommendations are still fresh.
        """

        cache = self._state_files.load_ai_cache()
        if cache is not None and not self._view.recommendations:
            # Cached picks stay visible while a refresh runs, stale or not.
            self._update(recommendations=cache.candidates())
        if not force and cache is not None and not cache.is_stale(
            self._settings.ai_cache_ttl_seconds
        ):
            logger.debug("AI cache is fresh; skipping refresh")
            return None
        self._update(recommendations_refreshing=True)
        return self._ai_refresh.submit(self._run_recommendations())

    async def _run_recommendations(self) -> ReconcileResult:
        try:
            result = await self._reconciler.recommend(
                self._recommender,
                self._mirrors.available,
                self._history.list(),
                catalog_ready=self._database.is_ready(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Recommendation refresh failed: %s", exc)
            result = ReconcileResult(status=f"AI failed: {exc}")

        items = result.items
        if items:
            items = await self._attach_posters(items)
            self._state_files.save_ai_cache(AiCache.build(items))
        else:
            items = list(self._view.recommendations)
        self._update(
            recommendations=items,
            recommendation_status=result.status,
            recommendations_refreshing=False,
        )
        return result

    async def _attach_posters(self, items: list[MatchCandidate]) -> list[MatchCandidate]:
        async def _resolve(candidate: MatchCandidate) -> MatchCandidate:
            if not self._posters.should_replace_poster(candidate.poster_link, candidate.base_name):
                return candidate
            poster = await self._posters.resolve(candidate.base_name, candidate.poster_link)
            if not poster or poster == candidate.poster_link:
                return candidate
            return candidate.model_copy(update={"poster_link": poster})

        resolved = await asyncio.gather(
            *(_resolve(candidate) for candidate in items), return_exceptions=True
        )
        updated: list[MatchCandidate] = []
        for candidate, outcome in zip(items, resolved):
            if isinstance(outcome, BaseException):
                logger.warning("Poster lookup failed for %s: %s", candidate.base_name, outcome)
                updated.append(candidate)
            else:
                updated.append(outcome)
        return updated

    async def refresh_posters(self) -> None:
        """Re-evaluate attached posters after the reachable mirror set changed."""

        current = list(self._view.recommendations)
        if current:
            updated = await self._attach_posters(current)
            if updated != current:
                self._update(recommendations=updated)
        self._refresh_history_view()

    async def retry_poster(self, base_name: str) -> str | None:
        """Forget what is cached for ``base_name`` and look its poster up again."""

        key = normalize_key(base_name)
        if not key:
            return None
        self._posters.refresh(base_name)
        poster = await self._posters.resolve(base_name)
        if poster:
            current = list(self._view.recommendations)
            updated = [
                item.model_copy(update={"poster_link": poster})
                if normalize_key(item.base_name) == key
                else item
                for item in current
            ]
            if updated != current:
                self._update(recommendations=updated)
        self._refresh_history_view()
        return poster

    def open(
        self,
        link: str,
        title: str,
        *,
        poster: str | None = None,
        base_name: str | None = None,
    ) -> PlaybackSession | None:
        """Record a playback start and return where to resume."""

        if not link or not link.strip():
            return None
        safe_title = (title or "").strip() or link
        existing = self._history.get(link)
        start_ms = existing.resume_position_ms() if existing else 0
        tracks = existing.track_selection() if existing else TrackSelection()
        entry = self._history.record_playback(link, safe_title, poster, base_name)
        self._refresh_history_view()
        if entry is not None and entry.poster_link and not entry.local_poster_path:
            self._spawn(self._cache_poster_locally(entry), name="poster download")
        return PlaybackSession(link=link, title=safe_title, start_ms=start_ms, tracks=tracks)

    async def _cache_poster_locally(self, entry: HistoryEntry) -> None:
        if not entry.poster_link or not self._posters.is_usable(entry.poster_link):
            return
        path = await self._posters.download_to_file(
            entry.poster_link, entry.resolved_base_name()
        )
        if path:
            self._history.set_local_poster(entry.link, path)
            self._refresh_history_view()

    def update_progress(self, link: str, title: str, position_ms: int, duration_ms: int) -> None:
        if self._history.record_progress(link, title, position_ms, duration_ms):
            self._refresh_history_view()

    def update_tracks(self, link: str, title: str, selection: TrackSelection) -> None:
        if self._history.record_track_selection(link, title, selection):
            self._refresh_history_view()

    def remove_history(self, link: str) -> bool:
        removed = self._history.remove(link)
        if removed:
            self._refresh_history_view()
            self._set_status("History item removed.")
        return removed

    def clear_history(self) -> None:
        self._history.clear()
        self._refresh_history_view()
        self._set_status("History cleared.")

    def _refresh_history_view(self) -> None:
        self._update(history=[self._render_history(entry) for entry in self._history.list()])

    def _render_history(self, entry: HistoryEntry) -> HistoryRow:
        if entry.duration > 0:
            info = f"{format_clock(entry.position)} / {format_clock(entry.duration)}"
        else:
            info = "Player"
        age = humanize_age(entry.last_played_ts)
        if age:
            info = f"{info} | {age}"
        poster = entry.local_poster_path or self._posters.choose_poster(
            entry.poster_link, entry.resolved_base_name()
        )
        return HistoryRow(title=entry.name, info=info, link=entry.link, poster=poster)
