"""Tests for catalog download, extraction and validation."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import httpx
import pytest

from moviemax.services.downloader import SQLITE_MAGIC, CatalogDownloader, is_valid_sqlite

DB_BYTES = SQLITE_MAGIC + b"\x00" * 64


def _zip_bytes(name: str, payload: bytes) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        bundle.writestr("readme.txt", b"hello")
        bundle.writestr(name, payload)
    return buffer.getvalue()


@pytest.mark.anyio("asyncio")
async def test_zip_download_is_extracted_and_committed(tmp_path: Path) -> None:
    archive = _zip_bytes("test/movie_database.db", DB_BYTES)
    progress: list[tuple[int, int]] = []
    target = tmp_path / "movie_database.db"

    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=archive))
    async with httpx.AsyncClient(transport=transport) as client:
        downloader = CatalogDownloader(client, target, retry_delay=0)
        result = await downloader.download(
            "https://example.test/movie_database.zip",
            lambda received, total: progress.append((received, total)),
        )

    assert result.ok is True
    assert result.attempts == 1
    assert target.read_bytes() == DB_BYTES
    assert progress[-1] == (len(archive), len(archive))
    assert sorted(path.name for path in tmp_path.iterdir()) == ["movie_database.db"]


@pytest.mark.anyio("asyncio")
async def test_invalid_file_keeps_previous_catalog(tmp_path: Path) -> None:
    target = tmp_path / "movie_database.db"
    target.write_bytes(DB_BYTES)
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, content=b"<html>not a database</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        downloader = CatalogDownloader(client, target, max_attempts=3, retry_delay=0)
        result = await downloader.download("https://example.test/movie_database.db")

    assert result.ok is False
    assert result.error == "Downloaded DB is not valid"
    assert calls == 3
    assert target.read_bytes() == DB_BYTES
    assert sorted(path.name for path in tmp_path.iterdir()) == ["movie_database.db"]


@pytest.mark.anyio("asyncio")
async def test_zip_without_database_fails(tmp_path: Path) -> None:
    archive = _zip_bytes("notes.txt", b"nothing here")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=archive))
    async with httpx.AsyncClient(transport=transport) as client:
        downloader = CatalogDownloader(client, tmp_path / "movie_database.db", max_attempts=1)
        result = await downloader.download("https://example.test/movie_database.zip")

    assert result.ok is False
    assert result.error == "DB file not found in zip"


@pytest.mark.anyio("asyncio")
async def test_retry_recovers_from_transient_failure(tmp_path: Path) -> None:
    responses = [httpx.Response(502), httpx.Response(200, content=DB_BYTES)]
    transport = httpx.MockTransport(lambda request: responses.pop(0))
    async with httpx.AsyncClient(transport=transport) as client:
        downloader = CatalogDownloader(client, tmp_path / "movie_database.db", retry_delay=0)
        result = await downloader.download("https://example.test/movie_database.db")

    assert result.ok is True
    assert result.attempts == 2


@pytest.mark.anyio("asyncio")
async def test_remote_version_is_trimmed(tmp_path: Path) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text=" 42\n"))
    async with httpx.AsyncClient(transport=transport) as client:
        downloader = CatalogDownloader(client, tmp_path / "movie_database.db")
        assert await downloader.fetch_remote_version("https://example.test/db_version.txt") == "42"


def test_sqlite_magic_check(tmp_path: Path) -> None:
    good = tmp_path / "good.db"
    good.write_bytes(DB_BYTES)
    bad = tmp_path / "bad.db"
    bad.write_bytes(b"nope")

    assert is_valid_sqlite(good) is True
    assert is_valid_sqlite(bad) is False
    assert is_valid_sqlite(tmp_path / "missing.db") is False


@pytest.mark.anyio("asyncio")
async def test_malformed_content_length_reports_unknown_total(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-length": "lots"},
            stream=httpx.ByteStream(DB_BYTES),
        )

    progress: list[tuple[int, int]] = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        downloader = CatalogDownloader(client, tmp_path / "movie_database.db", retry_delay=0)
        result = await downloader.download(
            "https://example.test/movie_database.db",
            on_progress=lambda received, total: progress.append((received, total)),
        )

    assert result.ok is True
    assert progress and all(total == -1 for _, total in progress)
