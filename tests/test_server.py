# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP surface tests: capture routing, image/failure responses, landing marker."""

from __future__ import annotations

import json

import httpx
import pytest

from pageshot.errors import CaptureTimeoutError
from pageshot.server import _parse_server_args, config_from_args, create_app, is_capture_request

PAGE = "https://app.example.dev/post"
PLAIN = "<title>plain</title>"


@pytest.fixture
async def client(caps):
    transport = httpx.ASGITransport(app=create_app(caps))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


class TestIsCaptureRequest:
    @pytest.mark.parametrize("path", ["/screenshot", "/screenshot/x", "/api/screenshot", "/api/screenshot.png"])
    def test_capture_paths(self, path):
        assert is_capture_request(path, None)

    def test_url_param_on_any_path(self):
        assert is_capture_request("/", "example.dev")
        assert is_capture_request("/blog/post", "https://example.dev/")

    @pytest.mark.parametrize("param", [None, "", "   "])
    def test_landing(self, param):
        assert not is_capture_request("/", param)
        assert not is_capture_request("/about", param)


class TestCaptureSuccess:
    async def test_render_miss(self, client, router, kv):
        router.html(PAGE, PLAIN)
        resp = await client.get("/screenshot", params={"url": PAGE})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.headers["cache-control"] == "no-store, no-cache, must-revalidate"
        assert resp.headers["x-capture-worker"] == "1"
        assert resp.headers["x-capture-cache"] == "miss"
        assert "x-capture-landing" not in resp.headers
        # background population ran after the body was sent
        assert json.loads(kv.snapshot()["url|" + PAGE]) == {"id": "img-1"}

    async def test_cache_hit_on_second_request(self, client, router):
        router.html(PAGE, PLAIN)
        await client.get("/", params={"url": PAGE})
        resp = await client.get("/", params={"url": PAGE})
        assert resp.headers["x-capture-cache"] == "hit"
        assert resp.headers["x-capture-source"] == "original"
        assert resp.headers["x-images-id"] == "img-1"

    async def test_meta_image(self, client, router):
        og = "https://cdn.example.com/og.jpg"
        router.html("https://news.example.com/", f'<meta property="og:image" content="{og}">')
        router.image(og, b"JPEG", "image/jpeg")
        resp = await client.get("/api/screenshot", params={"url": "news.example.com"})
        assert resp.status_code == 200
        assert resp.content == b"JPEG"
        assert resp.headers["content-type"] == "image/jpeg"
        assert resp.headers["x-capture-cache"] == "meta"
        assert resp.headers["x-capture-meta"] == "og"

    @pytest.mark.parametrize("flag", ["1", "true", "YES"])
    async def test_force_flag(self, client, router, flag):
        router.html(PAGE, PLAIN)
        resp = await client.get("/screenshot", params={"url": PAGE, "force": flag})
        assert resp.headers["x-capture-cache"] == "refresh"

    async def test_force_flag_other_value_ignored(self, client, router):
        router.html(PAGE, PLAIN)
        resp = await client.get("/screenshot", params={"url": PAGE, "force": "on"})
        assert resp.headers["x-capture-cache"] == "miss"

    async def test_preview(self, client, router, kv):
        router.html(PAGE, PLAIN)
        resp = await client.get("/screenshot", params={"url": PAGE, "preview": "1"})
        assert resp.status_code == 200
        assert resp.headers["x-capture-cache"] == "preview"
        assert resp.headers["x-preview"] == "1"
        assert kv.snapshot() == {}


class TestCaptureFailure:
    async def test_missing_url(self, client):
        resp = await client.get("/screenshot")
        assert resp.status_code == 400
        assert resp.headers["content-type"] == "application/json; charset=utf-8"
        assert resp.headers["x-capture-fail"] == "bad-request"
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["ok"] is False

    async def test_invalid_url(self, client):
        resp = await client.get("/screenshot", params={"url": "javascript:alert(1)"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid-url"

    async def test_social_not_found(self, client, router):
        router.html("https://news.example.com/", PLAIN)
        resp = await client.get("/", params={"url": "https://news.example.com/"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "social-not-found"
        assert resp.headers["x-capture-cache"] == "meta-miss"

    async def test_unaddressable_og_host_is_not_found(self, client, router):
        router.html("https://news.example.com/", '<meta property="og:image" content="https://☃☃--.com/cover.jpg">')
        resp = await client.get("/", params={"url": "https://news.example.com/"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "social-not-found"

    async def test_preflight_blocked(self, client, router):
        router.html(PAGE, PLAIN, head_status=403)
        resp = await client.get("/screenshot", params={"url": PAGE})
        assert resp.status_code == 403
        assert resp.json()["code"] == "preflight-blocked"
        assert resp.headers["x-capture-cache"] == "miss-preflight"

    async def test_render_timeout(self, client, router, renderer):
        router.html(PAGE, PLAIN)
        renderer.error = CaptureTimeoutError("Rendering timed out", extra={"timeout": {"timed_out_at": "navigate"}})
        resp = await client.get("/screenshot", params={"url": PAGE})
        assert resp.status_code == 504
        body = resp.json()
        assert body["code"] == "capture-timeout"
        assert body["timeout"] == {"timed_out_at": "navigate"}
        assert resp.headers["x-capture-cache"] == "miss-fail"

    async def test_preview_timeout_code(self, client, router, renderer):
        router.html(PAGE, PLAIN)
        renderer.error = TimeoutError()
        resp = await client.get("/screenshot", params={"url": PAGE, "preview": "true"})
        assert resp.status_code == 504
        assert resp.json()["code"] == "preview-timeout"
        assert resp.headers["x-capture-cache"] == "preview-fail"

    async def test_preview_denied(self, client):
        resp = await client.get("/screenshot", params={"url": "https://news.example.com/", "preview": "1"})
        assert resp.status_code == 403
        assert resp.json()["code"] == "preview-not-allowed"
        assert resp.headers["x-capture-cache"] == "preview-deny"


class TestLanding:
    async def test_not_found_marked(self, client):
        resp = await client.get("/about")
        assert resp.status_code == 404
        assert resp.headers["x-capture-landing"] == "1"

    async def test_empty_url_param_is_landing(self, client):
        resp = await client.get("/", params={"url": ""})
        assert resp.headers["x-capture-landing"] == "1"

    async def test_static_dir(self, caps, tmp_path):
        (tmp_path / "index.html").write_text("<h1>home</h1>")
        app = create_app(caps, static_dir=str(tmp_path))
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            resp = await c.get("/")
        assert resp.status_code == 200
        assert "home" in resp.text
        assert resp.headers["x-capture-landing"] == "1"


class TestServerArgs:
    def test_defaults(self, monkeypatch):
        for name in ("PAGESHOT_HOST", "PAGESHOT_PORT", "PAGESHOT_DB_PATH", "PAGESHOT_STATIC_DIR", "PAGESHOT_MAX_CONTEXTS"):
            monkeypatch.delenv(name, raising=False)
        args = _parse_server_args([])
        assert args.host == "127.0.0.1"
        assert args.port == 8000
        assert args.db_path == ""
        assert args.max_contexts == 4
        assert args.refresh_interval is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_HOST", "0.0.0.0")
        monkeypatch.setenv("PAGESHOT_PORT", "9000")
        monkeypatch.setenv("PAGESHOT_MAX_CONTEXTS", "0")
        args = _parse_server_args(["--port", "8001"])
        assert args.host == "0.0.0.0"
        assert args.port == 9000
        assert args.max_contexts == 1

    def test_bad_env_port_ignored(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_PORT", "http")
        assert _parse_server_args(["--port", "8001"]).port == 8001

    def test_config_from_args(self, monkeypatch):
        monkeypatch.delenv("PAGESHOT_ROOT_DOMAIN", raising=False)
        monkeypatch.delenv("PAGESHOT_REFRESH_INTERVAL", raising=False)
        args = _parse_server_args(["--root-domain", "Example.DEV", "--refresh-interval", "600"])
        config = config_from_args(args)
        assert config.root_domain == "example.dev"
        assert config.refresh_interval == 600.0
