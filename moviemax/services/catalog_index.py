"""Tokenised, read-only view over the catalog database."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..database import CatalogDatabase
from ..models import CatalogRow

logger = logging.getLogger(__name__)


def tokenize(value: str) -> list[str]:
    """Lowercase and split on whitespace."""

    return value.lower().split()


@dataclass(frozen=True, slots=True)
class IndexedRow:
    """Catalog row with its normalised name and tokens precomputed."""

    row: CatalogRow
    normalized_name: str
    tokens: tuple[str, ...]

    @classmethod
    def from_row(cls, row: CatalogRow) -> "IndexedRow":
        normalized = row.name.strip().lower()
        return cls(row=row, normalized_name=normalized, tokens=tuple(normalized.split()))


class CatalogIndex:
    """Serve tokenised catalog rows, caching the unfiltered set in memory."""

    def __init__(self, database: CatalogDatabase):
        self._database = database
        self._all_rows: list[IndexedRow] | None = None
        self._lock = asyncio.Lock()

    def is_ready(self) -> bool:
        return self._database.is_ready()

    async def rows(self, year: str | None = None) -> list[IndexedRow]:
        if not self.is_ready():
            return []
        if year is not None:
            # Year filtering is pushed down to the storage layer.
            return [IndexedRow.from_row(row) for row in await self._database.rows(year)]
        if self._all_rows is None:
            async with self._lock:
                if self._all_rows is None:
                    loaded = await self._database.rows()
                    if not loaded:
                        return []
                    self._all_rows = [IndexedRow.from_row(row) for row in loaded]
                    logger.info("Indexed %s catalog rows", len(self._all_rows))
        return self._all_rows

    async def invalidate(self) -> None:
        """Forget cached rows after the catalog file was replaced."""

        async with self._lock:
            self._all_rows = None
        await self._database.reload()
