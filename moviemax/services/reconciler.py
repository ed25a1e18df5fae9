"""Map free-text AI suggestions onto servable catalog entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Protocol, Sequence

from ..models import AiCache, HistoryEntry, MatchCandidate
from ..utils import normalize_key, truncate_title
from .gemini import AiResponse
from .query_normalizer import fallback_tokens, query_variants
from .state_files import StateFiles

logger = logging.getLogger(__name__)

RESULT_LIMIT = 20
MAX_AI_SUGGESTIONS = 50
HISTORY_PROMPT_LIMIT = 20

SOURCE_AI = "ai"
SOURCE_HISTORY_MATCHES = "history-matches"
SOURCE_HISTORY = "history"
SOURCE_NONE = "none"

STATUS_NO_HISTORY = "Watch some movies to get AI suggestions."
STATUS_NO_SUGGESTIONS = "No AI suggestions found."
STATUS_NO_MIRRORS = "Connect at least one server to get AI suggestions."
STATUS_DB_NOT_READY = "Database is not ready yet."


class Matcher(Protocol):
    async def match(
        self, available_mirrors: Iterable[str], query: str, year: str | None = None
    ) -> list[MatchCandidate]: ...


class Recommender(Protocol):
    async def recommend(
        self, history_titles: Sequence[str], max_count: int = 60
    ) -> AiResponse: ...


@dataclass(slots=True)
class ReconcileResult:
    """Accepted recommendations plus a human readable status line."""

    items: list[MatchCandidate] = field(default_factory=list)
    status: str = ""
    source: str = SOURCE_NONE


@dataclass(slots=True)
class _Ranked:
    candidate: MatchCandidate
    used_query: str

    def sort_key(self) -> tuple[bool, bool, int, int]:
        candidate = self.candidate
        return (
            candidate.has_poster,
            self.used_query.lower() in candidate.title.lower(),
            candidate.score,
            candidate.year or 0,
        )


class _Accumulator:
    """Ordered result set de-duplicated by link and by base name."""

    def __init__(self, limit: int, *, excluded_links: Iterable[str] = (), excluded_names: Iterable[str] = ()):
        self.limit = limit
        self.items: list[MatchCandidate] = []
        self._links: set[str] = set(excluded_links)
        self._names: set[str] = {normalize_key(name) for name in excluded_names if name}

    @property
    def full(self) -> bool:
        return len(self.items) >= self.limit

    def accepts(self, candidate: MatchCandidate) -> bool:
        return (
            candidate.link not in self._links
            and normalize_key(candidate.base_name) not in self._names
        )

    def add(self, candidate: MatchCandidate) -> bool:
        if self.full or not self.accepts(candidate):
            return False
        self.items.append(candidate)
        self._links.add(candidate.link)
        self._names.add(normalize_key(candidate.base_name))
        return True


Strategy = Callable[[Sequence[str], frozenset[str], Sequence[HistoryEntry]], Awaitable[list[MatchCandidate]]]


class RecommendationReconciler:
    """Turn AI suggestions into a ranked, de-duplicated list of catalog entries.

    Fallback tiers are tried in order until one produces results: AI titles,
    catalog matches for the user's own history, then the raw history itself.
    """

    def __init__(
        self,
        matcher: Matcher,
        *,
        state_files: StateFiles | None = None,
        limit: int = RESULT_LIMIT,
        max_suggestions: int = MAX_AI_SUGGESTIONS,
    ):
        self._matcher = matcher
        self._state_files = state_files
        self._limit = limit
        self._max_suggestions = max_suggestions
        self._strategies: list[tuple[str, Strategy]] = [
            (SOURCE_AI, self._from_ai_titles),
            (SOURCE_HISTORY_MATCHES, self._from_history_matches),
            (SOURCE_HISTORY, self._from_raw_history),
        ]

    async def recommend(
        self,
        recommender: Recommender,
        available_mirrors: Iterable[str],
        history: Sequence[HistoryEntry],
        *,
        catalog_ready: bool = True,
    ) -> ReconcileResult:
        """Ask the recommender for titles and reconcile them against the catalog."""

        mirrors = frozenset(available_mirrors)
        if not mirrors:
            return ReconcileResult(status=STATUS_NO_MIRRORS)
        if not catalog_ready:
            return ReconcileResult(status=STATUS_DB_NOT_READY)
        if not history:
            return ReconcileResult(status=STATUS_NO_HISTORY)

        history_titles = [entry.name for entry in history[:HISTORY_PROMPT_LIMIT]]
        try:
            response = await recommender.recommend(history_titles, 60)
        except Exception as exc:
            logger.warning("AI recommender raised: %s", exc)
            response = AiResponse(error=str(exc) or exc.__class__.__name__)

        return await self.reconcile(
            response.titles, mirrors, history, ai_error=response.error
        )

    async def reconcile(
        self,
        ai_titles: Sequence[str],
        available_mirrors: Iterable[str],
        history: Sequence[HistoryEntry],
        *,
        ai_error: str | None = None,
    ) -> ReconcileResult:
        mirrors = frozenset(available_mirrors)
        titles = [title for title in ai_titles if title and title.strip()]
        items: list[MatchCandidate] = []
        source = SOURCE_NONE
        for name, strategy in self._strategies:
            items = await strategy(titles, mirrors, history)
            if items:
                source = name
                break

        if not items:
            if ai_error:
                status = f"AI failed: {ai_error}. {STATUS_NO_SUGGESTIONS}"
            elif not history:
                status = STATUS_NO_HISTORY
            else:
                status = STATUS_NO_SUGGESTIONS
            return ReconcileResult(status=status)

        if ai_error:
            status = f"AI failed: {ai_error}"
        elif source == SOURCE_AI:
            status = f"AI picks: {len(items)} titles."
        else:
            status = f"Showing {len(items)} picks from your history."

        if self._state_files is not None:
            self._state_files.save_ai_cache(AiCache.build(items))
        logger.info("Reconciled %s recommendations from %s", len(items), source)
        return ReconcileResult(items=items, status=status, source=source)

    async def match_title(
        self, raw_title: str, mirrors: frozenset[str]
    ) -> tuple[list[MatchCandidate], str | None]:
        """Try query variants, then single words, until something matches."""

        for query in [*query_variants(raw_title), *fallback_tokens(raw_title)]:
            candidates = await self._matcher.match(mirrors, query, None)
            if candidates:
                return candidates, query
        return [], None

    async def _ranked_matches(self, raw_title: str, mirrors: frozenset[str]) -> list[_Ranked]:
        candidates, used_query = await self.match_title(raw_title, mirrors)
        if used_query is None:
            return []
        ranked = [_Ranked(candidate, used_query) for candidate in candidates]
        ranked.sort(key=_Ranked.sort_key, reverse=True)
        return ranked

    async def _collect(
        self,
        raw_titles: Sequence[str],
        mirrors: frozenset[str],
        accumulator: _Accumulator,
    ) -> list[MatchCandidate]:
        overflow: list[_Ranked] = []
        for raw_title in raw_titles[: self._max_suggestions]:
            if accumulator.full:
                break
            ranked = await self._ranked_matches(raw_title, mirrors)
            if not ranked:
                logger.debug("No catalog match for suggestion %r", raw_title)
                continue
            for entry in ranked:
                if accumulator.add(entry.candidate):
                    break
            overflow.extend(ranked)

        if not accumulator.full and overflow:
            overflow.sort(key=_Ranked.sort_key, reverse=True)
            for entry in overflow:
                if accumulator.full:
                    break
                accumulator.add(entry.candidate)
        return accumulator.items

    async def _from_ai_titles(
        self,
        ai_titles: Sequence[str],
        mirrors: frozenset[str],
        history: Sequence[HistoryEntry],
    ) -> list[MatchCandidate]:
        if not ai_titles:
            return []
        return await self._collect(ai_titles, mirrors, _Accumulator(self._limit))

    async def _from_history_matches(
        self,
        ai_titles: Sequence[str],
        mirrors: frozenset[str],
        history: Sequence[HistoryEntry],
    ) -> list[MatchCandidate]:
        if not history:
            return []
        recent = history[:HISTORY_PROMPT_LIMIT]
        seeds: list[str] = []
        for entry in recent:
            seed = entry.resolved_base_name() or entry.name
            if seed and seed not in seeds:
                seeds.append(seed)
        accumulator = _Accumulator(
            self._limit,
            excluded_links=[entry.link for entry in history],
            excluded_names=[entry.resolved_base_name() for entry in history],
        )
        return await self._collect(seeds, mirrors, accumulator)

    async def _from_raw_history(
        self,
        ai_titles: Sequence[str],
        mirrors: frozenset[str],
        history: Sequence[HistoryEntry],
    ) -> list[MatchCandidate]:
        items: list[MatchCandidate] = []
        seen: set[str] = set()
        for entry in history:
            if entry.link in seen:
                continue
            seen.add(entry.link)
            items.append(
                MatchCandidate(
                    title=truncate_title(entry.name),
                    link=entry.link,
                    score=0,
                    poster_link=entry.poster_link,
                    base_name=entry.resolved_base_name() or entry.name,
                )
            )
            if len(items) >= self._limit:
                break
        return items
