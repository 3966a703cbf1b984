"""Tests for the aiohttp request executor against a local server."""

import pytest
from aiohttp import web
from aiohttp.test_utils import RawTestServer

from pathbuster.core.config import ScanConfig
from pathbuster.core.http import DEFAULT_USER_AGENT, HttpClient


async def echo(request):
    return web.Response(
        status=404 if "missing" in request.raw_path else 200,
        text=f"{request.method} {request.raw_path} {request.headers.get('User-Agent')} {request.headers.get('X-Test', '')}",
    )


@pytest.mark.asyncio
async def test_traversal_reaches_server_unchanged() -> None:
    async with RawTestServer(echo) as server:
        base = str(server.make_url("/")).rstrip("/")
        async with HttpClient(ScanConfig(timeout=5)) as client:
            response = await client.send("GET", base + "/app/../..%2fadmin/./x")

    assert response.ok
    assert response.status == 200
    assert "/app/../..%2fadmin/./x" in response.body
    assert DEFAULT_USER_AGENT in response.body
    assert response.size == len(response.body.encode())


@pytest.mark.asyncio
async def test_method_and_headers() -> None:
    config = ScanConfig(timeout=5, user_agent="pb-test")
    async with RawTestServer(echo) as server:
        url = str(server.make_url("/missing"))
        async with HttpClient(config) as client:
            response = await client.send("POST", url, headers={"X-Test": "yes"})

    assert response.status == 404
    assert response.body.startswith("POST /missing pb-test yes")


@pytest.mark.asyncio
async def test_connection_failure_is_status_zero() -> None:
    async with HttpClient(ScanConfig(timeout=2)) as client:
        response = await client.send("GET", "http://127.0.0.1:1/")
        stats = client.get_stats()

    assert not response.ok
    assert response.status == 0
    assert response.error
    assert stats == {"requests": 1, "errors": 1}
