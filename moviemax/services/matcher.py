"""Score catalog rows against a search query."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..models import MatchCandidate
from .catalog_index import CatalogIndex, IndexedRow, tokenize
from .mirrors import is_link_servable

PHRASE_MATCH_BONUS = 1000
MAX_MATCHES = 20


def score_row(query_tokens: Sequence[str], normalized_query: str, row: IndexedRow) -> int:
    """Count equal token pairs and add the phrase bonus for substring hits.

    Token order is ignored; the substring bonus always outranks token overlap.
    """

    score = 0
    for query_token in query_tokens:
        for row_token in row.tokens:
            if query_token == row_token:
                score += 1
    if normalized_query in row.normalized_name:
        score += PHRASE_MATCH_BONUS
    return score


class MovieMatcher:
    """Return the best servable catalog matches for a query."""

    def __init__(self, index: CatalogIndex, *, limit: int = MAX_MATCHES):
        self._index = index
        self._limit = limit

    async def match(
        self,
        available_mirrors: Iterable[str],
        query: str,
        year: str | None = None,
    ) -> list[MatchCandidate]:
        if not query or not query.strip():
            return []
        if not self._index.is_ready():
            return []

        normalized_query = query.strip().lower()
        query_tokens = tokenize(normalized_query)
        if not query_tokens:
            return []

        mirrors = tuple(available_mirrors)
        matched: list[MatchCandidate] = []
        for indexed in await self._index.rows(year):
            score = score_row(query_tokens, normalized_query, indexed)
            if score <= 0:
                continue
            if not is_link_servable(indexed.row.link, mirrors):
                continue
            matched.append(MatchCandidate.from_row(indexed.row, score))

        matched.sort(key=lambda candidate: candidate.score, reverse=True)
        return matched[: self._limit]
