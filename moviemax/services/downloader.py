"""Download, validate and commit the catalog database."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

SQLITE_MAGIC = b"SQLite format 3\x00"

ProgressCallback = Callable[[int, int], None]


class CatalogDownloadError(RuntimeError):
    """Raised internally when a single download attempt fails."""


def _content_length(headers: httpx.Headers) -> int:
    try:
        return int(headers.get("content-length") or -1)
    except ValueError:
        return -1


@dataclass(slots=True)
class DownloadResult:
    ok: bool
    error: str | None = None
    attempts: int = 0


def is_valid_sqlite(path: Path) -> bool:
    """Check the SQLite magic header."""

    try:
        with path.open("rb") as handle:
            header = handle.read(len(SQLITE_MAGIC))
    except OSError:
        return False
    return header == SQLITE_MAGIC


def extract_database(archive: Path, target: Path) -> None:
    """Extract the catalog database from a zip archive into ``target``."""

    try:
        with zipfile.ZipFile(archive) as bundle:
            for info in bundle.infolist():
                name = info.filename.lower()
                if info.is_dir():
                    continue
                if name.endswith(".db") or "movie_database" in name:
                    with bundle.open(info) as source, target.open("wb") as sink:
                        shutil.copyfileobj(source, sink)
                    return
    except zipfile.BadZipFile as exc:
        raise CatalogDownloadError("Downloaded archive is corrupt") from exc
    raise CatalogDownloadError("DB file not found in zip")


class CatalogDownloader:
    """Stream the catalog to a temp file and commit it atomically."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        target: Path,
        *,
        max_attempts: int = 3,
        retry_delay: float = 1.5,
    ):
        self._client = http_client
        self._target = Path(target)
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = max(0.0, retry_delay)

    @property
    def target(self) -> Path:
        return self._target

    async def fetch_remote_version(self, url: str) -> str | None:
        """Return the published catalog version, or ``None`` when unavailable."""

        try:
            response = await self._client.get(url, timeout=httpx.Timeout(8.0, connect=5.0))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Unable to fetch catalog version from %s: %s", url, exc)
            return None
        version = response.text.strip()
        return version or None

    async def download(
        self, url: str, on_progress: ProgressCallback | None = None
    ) -> DownloadResult:
        """Download ``url`` with bounded retries and increasing back-off."""

        temp_db = self._target.with_name(f"{self._target.name}.tmp")
        temp_zip = self._target.with_name(f"{self._target.name}.tmp.zip")
        is_zip = url.lower().endswith(".zip")
        last_error: str | None = None

        for attempt in range(1, self._max_attempts + 1):
            self._cleanup(temp_db, temp_zip)
            try:
                self._target.parent.mkdir(parents=True, exist_ok=True)
                await self._stream(url, temp_zip if is_zip else temp_db, on_progress)
                if is_zip:
                    extract_database(temp_zip, temp_db)
                if not is_valid_sqlite(temp_db):
                    raise CatalogDownloadError("Downloaded DB is not valid")
                os.replace(temp_db, self._target)
                self._cleanup(temp_zip)
                logger.info("Catalog committed to %s", self._target)
                return DownloadResult(ok=True, attempts=attempt)
            except (httpx.HTTPError, CatalogDownloadError, OSError) as exc:
                last_error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Catalog download attempt %s/%s failed: %s",
                    attempt,
                    self._max_attempts,
                    last_error,
                )
                self._cleanup(temp_db, temp_zip)
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay * attempt)

        return DownloadResult(ok=False, error=last_error or "Download failed", attempts=self._max_attempts)

    async def _stream(
        self, url: str, destination: Path, on_progress: ProgressCallback | None
    ) -> None:
        timeout = httpx.Timeout(90.0, connect=15.0)
        async with self._client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            if not response.is_success:
                raise CatalogDownloadError(f"HTTP {response.status_code}")
            total = _content_length(response.headers)
            received = 0
            with destination.open("wb") as handle:
                async for chunk in response.aiter_bytes():
                    handle.write(chunk)
                    received += len(chunk)
                    if on_progress is not None:
                        on_progress(received, total)

    @staticmethod
    def _cleanup(*paths: Path) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                pass
