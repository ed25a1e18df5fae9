"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterable

import pytest
from sqlalchemy import create_engine, text


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``moviemax``
# sits at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

CatalogRowTuple = tuple[str, "str | None", "str | None", str, "str | None"]


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def make_catalog(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory writing ``(name, full_name, year, link, poster)`` rows to SQLite."""

    def _factory(rows: Iterable[CatalogRowTuple], name: str = "movie_database.db") -> Path:
        path = tmp_path / name
        engine = create_engine(f"sqlite:///{path}")
        try:
            with engine.begin() as connection:
                connection.execute(
                    text(
                        """
                        CREATE TABLE Movies (
                            name TEXT,
                            full_name TEXT,
                            year TEXT,
                            link TEXT,
                            poster_link TEXT
                        )
                        """
                    )
                )
                for row in rows:
                    connection.execute(
                        text(
                            "INSERT INTO Movies (name, full_name, year, link, poster_link) "
                            "VALUES (:name, :full_name, :year, :link, :poster)"
                        ),
                        dict(zip(("name", "full_name", "year", "link", "poster"), row)),
                    )
        finally:
            engine.dispose()
        return path

    return _factory
