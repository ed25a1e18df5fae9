"""Track which file mirrors are currently reachable."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

import httpx

logger = logging.getLogger(__name__)

MirrorListener = Callable[[frozenset[str], int, int], None]


def is_link_servable(link: str, mirrors: Iterable[str]) -> bool:
    """Return whether any reachable mirror identifier appears in ``link``."""

    if not link:
        return False
    return any(mirror and mirror in link for mirror in mirrors)


class MirrorResolver:
    """Probe known mirrors and expose the reachable subset."""

    def __init__(
        self,
        mirrors: Iterable[str],
        http_client: httpx.AsyncClient,
        *,
        timeout: float = 2.0,
    ):
        self._mirrors: tuple[str, ...] = tuple(mirrors)
        self._client = http_client
        self._timeout = httpx.Timeout(timeout)
        self._available: frozenset[str] = frozenset()

    @property
    def available(self) -> frozenset[str]:
        return self._available

    def status_text(self) -> str:
        return f"Connected Servers: {len(self._available)}/{len(self._mirrors)}"

    @staticmethod
    def _probe_url(mirror: str) -> str:
        if mirror.startswith("http"):
            return mirror
        return f"http://{mirror}"

    async def probe(self, mirror: str) -> bool:
        """Send a short HEAD request; any failure counts as unreachable."""

        try:
            response = await self._client.head(
                self._probe_url(mirror), timeout=self._timeout
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("Mirror %s unreachable: %s", mirror, exc)
            return False
        return response.is_success

    async def refresh(self, listener: MirrorListener | None = None) -> frozenset[str]:
        """Probe every mirror in order, publishing partial results as they land."""

        available: list[str] = []
        total = len(self._mirrors)
        for index, mirror in enumerate(self._mirrors, start=1):
            if await self.probe(mirror):
                available.append(mirror)
            self._available = frozenset(available)
            if listener is not None:
                listener(self._available, index, total)
        logger.info("Mirror probe finished: %s", self.status_text())
        return self._available
