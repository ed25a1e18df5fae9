"""Tests for mirror probing."""

from __future__ import annotations

import httpx
import pytest

from moviemax.services.mirrors import MirrorResolver, is_link_servable


def test_link_servable_by_substring() -> None:
    mirrors = ["10.0.0.1", "server1.example.com/"]

    assert is_link_servable("http://10.0.0.1/movies/heat.mkv", mirrors) is True
    assert is_link_servable("http://server1.example.com/heat.mkv", mirrors) is True
    assert is_link_servable("http://10.0.0.2/heat.mkv", mirrors) is False
    assert is_link_servable("http://10.0.0.1/heat.mkv", []) is False


@pytest.mark.anyio("asyncio")
async def test_refresh_publishes_partial_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "10.0.0.2":
            raise httpx.ConnectTimeout("timeout", request=request)
        assert request.method == "HEAD"
        return httpx.Response(200)

    updates: list[tuple[frozenset[str], int, int]] = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        resolver = MirrorResolver(["10.0.0.1", "10.0.0.2", "10.0.0.3/NAS1"], client)
        assert resolver.status_text() == "Connected Servers: 0/3"
        available = await resolver.refresh(
            lambda current, done, total: updates.append((current, done, total))
        )

    assert available == frozenset({"10.0.0.1", "10.0.0.3/NAS1"})
    assert updates == [
        (frozenset({"10.0.0.1"}), 1, 3),
        (frozenset({"10.0.0.1"}), 2, 3),
        (frozenset({"10.0.0.1", "10.0.0.3/NAS1"}), 3, 3),
    ]
    assert resolver.status_text() == "Connected Servers: 2/3"
    assert resolver.available == available


@pytest.mark.anyio("asyncio")
async def test_error_status_counts_as_unreachable() -> None:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503))
    ) as client:
        resolver = MirrorResolver(["10.0.0.1"], client)
        assert await resolver.refresh() == frozenset()


@pytest.mark.anyio("asyncio")
async def test_malformed_mirror_counts_as_unreachable() -> None:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200))
    ) as client:
        resolver = MirrorResolver(["bad host:port", "10.0.0.1"], client)

        assert await resolver.probe("bad host:port") is False
        assert await resolver.refresh() == frozenset({"10.0.0.1"})
