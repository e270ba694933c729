# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures.

Upstream websites and the image API are served by ``httpx.MockTransport``
through ``SiteRouter``; rendering goes through ``FakeRenderer``.  No test
launches a browser or touches the network.
"""

try:
    import pageshot  # noqa: F401
except ImportError:
    raise ImportError("pageshot is not installed. Run: pip install -e '.[dev]'") from None

from collections.abc import Callable

import httpx
import pytest

from pageshot.cache import CacheStore
from pageshot.config import CaptureConfig
from pageshot.context import Capabilities
from pageshot.deadline import Deadline
from pageshot.images import InMemoryImageStore
from pageshot.store import InMemoryKeyValueStore

PNG = b"\x89PNG\r\n\x1a\n" + b"rendered"
ROOT = "example.dev"


class SiteRouter:
    """Callable for ``httpx.MockTransport``: exact (method, url) routing, 404 otherwise."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: list[tuple[str, str]] = []

    def add(self, method: str, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method.upper(), url)] = handler

    def respond(self, method: str, url: str, status: int = 200, *, content: bytes = b"", headers=None) -> None:
        self.add(method, url, lambda req: httpx.Response(status, content=content, headers=headers or {}))

    def html(self, url: str, body: str, *, status: int = 200, head_status: int = 200) -> None:
        """Serve *body* as an HTML page on GET and answer HEAD with *head_status*."""
        self.respond(
            "GET",
            url,
            status,
            content=body.encode(),
            headers={"content-type": "text/html; charset=utf-8"},
        )
        self.respond("HEAD", url, head_status)

    def image(self, url: str, content: bytes = b"JPEGDATA", content_type: str = "image/jpeg") -> None:
        self.respond("GET", url, 200, content=content, headers={"content-type": content_type})

    def count(self, method: str, url: str | None = None) -> int:
        return sum(1 for m, u in self.calls if m == method and (url is None or u == url))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, str(request.url)))
        handler = self.routes.get((request.method, str(request.url)))
        if handler is None:
            return httpx.Response(404, content=b"not found", headers={"content-type": "text/plain"})
        return handler(request)


class FakeRenderer:
    """``Renderer`` returning fixed bytes, or raising ``error`` when set."""

    def __init__(self, png: bytes = PNG) -> None:
        self.png = png
        self.error: BaseException | None = None
        self.calls: list[str] = []

    async def render(self, url: str, deadline: Deadline) -> bytes:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.png


@pytest.fixture
def config() -> CaptureConfig:
    return CaptureConfig(root_domain=ROOT, images_account_id="acct", api_token="token")


@pytest.fixture
def router() -> SiteRouter:
    return SiteRouter()


@pytest.fixture
async def http(router):
    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        yield client


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def cache(kv) -> CacheStore:
    return CacheStore(kv)


@pytest.fixture
def images() -> InMemoryImageStore:
    return InMemoryImageStore(account_hash="hash")


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def caps(config, http, renderer, cache, images) -> Capabilities:
    return Capabilities(config=config, http=http, renderer=renderer, cache=cache, images=images)
