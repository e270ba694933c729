# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageShot HTTP server.

Routes:

- ``GET /health``  — liveness
- ``GET /ready``   — browser pool readiness (503 when the browser is down)
- capture          — ``/screenshot*``, ``/api/screenshot*``, or any path
                     with a non-empty ``url`` query parameter
- everything else  — static responder, tagged ``x-capture-landing: 1``

Deferred cache work started during a capture is attached to the response
as a Starlette background task, so it completes after the body is sent.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import AsyncExitStack, asynccontextmanager, suppress

import httpx
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route, request_response
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send

from .browser_pool import BrowserPool
from .cache import CacheStore
from .config import CaptureConfig, is_truthy
from .context import Capabilities
from .images import CloudflareImagesClient
from .landing import LandingHeaderMiddleware, not_found_app
from .logging_config import bind_request
from .problem_details import from_exception
from .refresher import BackgroundRefresher, RefreshScheduler
from .renderer import PlaywrightRenderer
from .resolver import CaptureResolver
from .store import InMemoryKeyValueStore, SqliteKeyValueStore
from .target import CacheKeyPolicy
from .tasks import DeferredTasks

logger = logging.getLogger(__name__)

CAPTURE_PATH_PREFIXES = ("/screenshot", "/api/screenshot")
_DEFAULT_MAX_CONTEXTS = 4


def is_capture_request(path: str, url_param: str | None) -> bool:
    if path.startswith(CAPTURE_PATH_PREFIXES):
        return True
    return bool(url_param and url_param.strip())


# ── Health check endpoints ───────────────────────────────────────────


async def _health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def _readiness_check(request: Request) -> JSONResponse:
    pool: BrowserPool | None = getattr(request.app.state, "pool", None)
    if pool is None:
        return JSONResponse({"status": "ready"})
    h = pool.health()
    ready = h.browser_connected
    return JSONResponse(
        {
            "status": "ready" if ready else "not_ready",
            "pool": {
                "active": h.active,
                "max_contexts": h.max_contexts,
                "browser_connected": h.browser_connected,
            },
        },
        status_code=200 if ready else 503,
    )


# ── Capture endpoint ─────────────────────────────────────────────────


async def _capture(request: Request) -> Response:
    resolver: CaptureResolver = request.app.state.resolver
    params = request.query_params
    force = is_truthy(params.get("force"))
    preview = is_truthy(params.get("preview"))
    bind_request(target=params.get("url", ""), force=force, preview=preview)

    tasks = DeferredTasks()
    try:
        image = await resolver.capture(params.get("url"), force=force, preview=preview, tasks=tasks)
    except Exception as exc:
        problem = from_exception(exc, preview=preview)
        if problem.status >= 500:
            logger.warning("Capture failed: %s (%s)", problem.code, problem.message)
        else:
            logger.info("Capture rejected: %s (%s)", problem.code, problem.message)
        response: Response = problem.to_response()
    else:
        logger.info("Capture served: cache=%s source=%s", image.cache, image.source)
        response = Response(image.content, media_type=image.content_type, headers=image.response_headers())

    if tasks.pending:
        response.background = BackgroundTask(tasks.drain)
    return response


class CaptureGateway:
    """Dispatch capture requests to the resolver, everything else to static."""

    def __init__(self, static_app: ASGIApp) -> None:
        self._capture = request_response(_capture)
        self._static = LandingHeaderMiddleware(static_app)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            request = Request(scope)
            if is_capture_request(request.url.path, request.query_params.get("url")):
                await self._capture(scope, receive, send)
                return
        await self._static(scope, receive, send)


# ── Application factory ──────────────────────────────────────────────


async def build_capabilities(
    stack: AsyncExitStack,
    *,
    config: CaptureConfig,
    db_path: str,
    max_contexts: int,
) -> tuple[Capabilities, BrowserPool]:
    """Create the production collaborators; everything is closed by *stack*."""
    http = await stack.enter_async_context(
        httpx.AsyncClient(headers={"user-agent": config.user_agent}, timeout=config.store_timeout_ms / 1000)
    )

    if db_path:
        kv = await SqliteKeyValueStore.create(db_path)
        logger.info("SQLite key-value store: %s", db_path)
    else:
        kv = InMemoryKeyValueStore()
        logger.info("In-memory key-value store (no --db-path)")
    stack.push_async_callback(kv.close)
    cache = CacheStore(kv, keys=CacheKeyPolicy(config.url_key_prefix), timeout=config.store_timeout_ms / 1000)

    images = None
    if config.images_enabled:
        images = CloudflareImagesClient(
            http,
            account_id=config.images_account_id,
            api_token=config.api_token,
            api_base=config.images_api_base,
            timeout=config.store_timeout_ms / 1000,
        )
        logger.info("Cloudflare Images enabled")
    else:
        logger.warning("Image store not configured: rendered captures will not be cached")

    pool = BrowserPool(max_contexts=max_contexts, config=config)
    await stack.enter_async_context(pool)

    caps = Capabilities(
        config=config,
        http=http,
        renderer=PlaywrightRenderer(pool, config),
        cache=cache,
        images=images,
    )
    return caps, pool


def create_app(
    caps: Capabilities | None = None,
    *,
    config: CaptureConfig | None = None,
    db_path: str = "",
    static_dir: str = "",
    max_contexts: int = _DEFAULT_MAX_CONTEXTS,
) -> Starlette:
    """Build the Starlette app.

    With *caps* the collaborators are used as given (tests, embedding);
    without, the lifespan builds the HTTP client, stores, image client,
    and browser pool, and runs the refresh scheduler.
    """
    config = config or (caps.config if caps is not None else CaptureConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: Starlette):
        if caps is not None:
            yield
            return
        async with AsyncExitStack() as stack:
            built, app.state.pool = await build_capabilities(
                stack, config=config, db_path=db_path, max_contexts=max_contexts
            )
            app.state.caps = built
            app.state.resolver = CaptureResolver(built)
            scheduler = RefreshScheduler(BackgroundRefresher(built), interval=config.refresh_interval)
            scheduler.start()
            stack.push_async_callback(scheduler.stop)
            logger.info("PageShot ready (root_domain=%s)", config.root_domain)
            yield
        logger.info("PageShot shutdown complete")

    static_app: ASGIApp = StaticFiles(directory=static_dir, html=True) if static_dir else not_found_app

    app = Starlette(
        routes=[
            Route("/health", _health_check, methods=["GET"]),
            Route("/ready", _readiness_check, methods=["GET"]),
            Mount("", app=CaptureGateway(static_app)),
        ],
        lifespan=lifespan,
    )
    app.state.pool = None
    if caps is not None:
        app.state.caps = caps
        app.state.resolver = CaptureResolver(caps)
    return app


# ── Entry point ──────────────────────────────────────────────────────


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI args and env vars for server configuration.

    Returns:
        argparse.Namespace with attributes: host, port, db_path, static_dir,
        refresh_interval, max_contexts, root_domain.
    """
    parser = argparse.ArgumentParser(description="PageShot preview-image server")
    parser.add_argument("--host", default="127.0.0.1", help="HTTP server host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="HTTP server port (default: 8000)")
    parser.add_argument("--db-path", default="", help="SQLite key-value database (default: in-memory)")
    parser.add_argument("--static-dir", default="", help="Directory served for non-capture paths")
    parser.add_argument(
        "--refresh-interval",
        type=float,
        default=None,
        help="Seconds between background refresh sweeps (0 disables)",
    )
    parser.add_argument(
        "--max-contexts",
        type=int,
        default=_DEFAULT_MAX_CONTEXTS,
        help=f"Concurrent browser contexts (default: {_DEFAULT_MAX_CONTEXTS})",
    )
    parser.add_argument("--root-domain", default="", help="Domain eligible for rendering")
    args, _ = parser.parse_known_args(argv)

    # Env var overrides
    env_host = os.environ.get("PAGESHOT_HOST", "").strip()
    if env_host:
        args.host = env_host

    env_port = os.environ.get("PAGESHOT_PORT", "").strip()
    if env_port:
        with suppress(ValueError):
            args.port = int(env_port)

    env_db = os.environ.get("PAGESHOT_DB_PATH", "").strip()
    if env_db and not args.db_path:
        args.db_path = env_db

    env_static = os.environ.get("PAGESHOT_STATIC_DIR", "").strip()
    if env_static and not args.static_dir:
        args.static_dir = env_static

    env_ctx = os.environ.get("PAGESHOT_MAX_CONTEXTS", "").strip()
    if env_ctx:
        with suppress(ValueError):
            args.max_contexts = max(1, int(env_ctx))

    return args


def config_from_args(args: argparse.Namespace) -> CaptureConfig:
    return CaptureConfig.from_env(
        root_domain=(args.root_domain or "").strip().lower() or None,
        refresh_interval=args.refresh_interval,
    )


async def _serve(app: Starlette, host: str, port: int) -> None:
    import uvicorn

    config = uvicorn.Config(app, host=host, port=port, log_level="info", log_config=None)
    server = uvicorn.Server(config)
    await server.serve()


def main(argv: list[str] | None = None) -> None:
    """Entry point for the PageShot server."""
    args = _parse_server_args(argv if argv is not None else sys.argv[1:])

    # Configure structlog BEFORE any log output
    from .logging_config import configure as configure_logging

    configure_logging(json_output=True, level=os.environ.get("PAGESHOT_LOG_LEVEL", "INFO"))

    app = create_app(
        config=config_from_args(args),
        db_path=args.db_path,
        static_dir=args.static_dir,
        max_contexts=args.max_contexts,
    )
    logger.info("Starting PageShot on %s:%d", args.host, args.port)
    asyncio.run(_serve(app, args.host, args.port))


if __name__ == "__main__":
    main()
