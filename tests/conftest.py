"""
Shared fixtures for the digester tests.

Every test gets its own SQLite file under tmp_path; HTTP traffic goes
through httpx.MockTransport so nothing touches the network.
"""

from __future__ import annotations

from typing import Callable

import httpx
import pytest_asyncio

from newsletter_digester.extract.http_fetcher import HttpFetcher
from newsletter_digester.storage.db import Storage
from newsletter_digester.storage.types import Source


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = Storage(tmp_path / "digester.db")
    await store.connect()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def rss_source(storage) -> Source:
    return await storage.create_source(Source(id=None, url="https://feeds.example.com/rss", title="Example Feed"))


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


def mock_fetcher(routes: dict[str, httpx.Response | str]) -> HttpFetcher:
    """Fetcher answering from a url -> response (or body text) table; other urls get 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        found = routes.get(str(request.url))
        if found is None:
            return httpx.Response(404, text="not found")
        if isinstance(found, str):
            return httpx.Response(200, text=found)
        return found

    return HttpFetcher(client=mock_client(handler))


def chat_response(content: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        },
    )
