from __future__ import annotations

import asyncio

from moviemax.database import CatalogDatabase


def test_missing_catalog_is_not_ready_and_not_created(tmp_path) -> None:
    path = tmp_path / "movie_database.db"
    database = CatalogDatabase(path)

    assert database.is_ready() is False
    assert asyncio.run(database.rows()) == []
    assert asyncio.run(database.find_poster("Heat")) is None
    assert not path.exists()


def test_rows_skip_blank_entries_and_filter_by_year(make_catalog) -> None:
    path = make_catalog(
        [
            ("Heat", "Heat (1995) 1080p", "1995", "http://10.0.0.1/heat.mkv", "http://img/heat.jpg"),
            ("Ronin", None, "1998", "http://10.0.0.1/ronin.mkv", None),
            ("", None, "1998", "http://10.0.0.1/blank.mkv", None),
            ("No Link", None, "1998", "", None),
        ]
    )
    database = CatalogDatabase(path)

    async def scenario():
        try:
            return await database.rows(), await database.rows("1998")
        finally:
            await database.dispose()

    all_rows, filtered = asyncio.run(scenario())

    assert [row.name for row in all_rows] == ["Heat", "Ronin"]
    assert all_rows[0].year == 1995
    assert all_rows[0].display_title() == "Heat (1995) 1080p"
    assert [row.name for row in filtered] == ["Ronin"]


def test_find_poster_is_case_insensitive_and_skips_blanks(make_catalog) -> None:
    path = make_catalog(
        [
            ("Heat", None, "1995", "http://10.0.0.1/heat-a.mkv", ""),
            ("heat", None, "1995", "http://10.0.0.1/heat-b.mkv", "http://img/heat.jpg"),
            ("Ronin", None, "1998", "http://10.0.0.1/ronin.mkv", None),
        ]
    )
    database = CatalogDatabase(path)

    async def scenario():
        try:
            return await database.find_poster("HEAT"), await database.find_poster("Ronin")
        finally:
            await database.dispose()

    heat, ronin = asyncio.run(scenario())

    assert heat == "http://img/heat.jpg"
    assert ronin is None
