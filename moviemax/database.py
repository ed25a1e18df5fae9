"""Database utilities for the MovieMax catalog."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import MetaData, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .models import CatalogRow

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


def _parse_year(value: object) -> int | None:
    if isinstance(value, int):
        return value
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class CatalogDatabase:
    """Thin wrapper around the read-only SQLite catalog file.

    The engine is created lazily and only once the file exists, so querying a
    missing catalog never creates an empty database on disk.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._engine: AsyncEngine | None = None

    @property
    def path(self) -> Path:
        return self._path

    def is_ready(self) -> bool:
        return self._path.is_file()

    def _get_engine(self) -> AsyncEngine | None:
        if not self.is_ready():
            return None
        if self._engine is None:
            self._engine = create_async_engine(
                f"sqlite+aiosqlite:///{self._path}", future=True
            )
        return self._engine

    async def rows(self, year: str | None = None) -> list[CatalogRow]:
        """Return catalog rows, optionally filtered by exact year equality."""

        from .db_models import Movie

        engine = self._get_engine()
        if engine is None:
            return []

        stmt = select(
            Movie.name, Movie.full_name, Movie.year, Movie.link, Movie.poster_link
        )
        if year is not None:
            stmt = stmt.where(Movie.year == str(year))

        try:
            async with engine.connect() as connection:
                result = await connection.execute(stmt)
                records = result.all()
        except SQLAlchemyError as exc:
            logger.warning("Catalog query failed for %s: %s", self._path, exc)
            return []

        rows: list[CatalogRow] = []
        for name, full_name, year_value, link, poster in records:
            if not name or not link or not str(link).strip():
                continue
            rows.append(
                CatalogRow(
                    name=str(name),
                    full_name=str(full_name) if full_name is not None else None,
                    year=_parse_year(year_value),
                    link=str(link),
                    poster_link=str(poster) if poster is not None else None,
                )
            )
        return rows

    async def find_poster(self, base_name: str) -> str | None:
        """Return a non-blank poster for the exact (case-insensitive) name."""

        from .db_models import Movie

        name = (base_name or "").strip()
        if not name:
            return None
        engine = self._get_engine()
        if engine is None:
            return None

        stmt = (
            select(Movie.poster_link)
            .where(
                func.lower(Movie.name) == name.lower(),
                Movie.poster_link.is_not(None),
                Movie.poster_link != "",
            )
            .limit(1)
        )
        try:
            async with engine.connect() as connection:
                result = await connection.execute(stmt)
                poster = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.warning("Catalog poster lookup failed for %s: %s", name, exc)
            return None
        if poster is None or not str(poster).strip():
            return None
        return str(poster)

    async def reload(self) -> None:
        """Drop the engine so the next query opens the freshly committed file."""

        await self.dispose()

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
