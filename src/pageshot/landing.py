# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Landing marker middleware — tags non-capture responses.

Standalone leaf module with zero dependency on server.py.

- **Pure ASGI**: no BaseHTTPMiddleware.
- **Deduplication**: an existing ``x-capture-landing`` header is kept.
"""

from __future__ import annotations

from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

LANDING_HEADER: tuple[bytes, bytes] = (b"x-capture-landing", b"1")


class LandingHeaderMiddleware:
    """Inject ``x-capture-landing: 1`` on every ``http.response.start`` message."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        _injected = False

        async def _send_with_marker(message) -> None:
            nonlocal _injected
            if message["type"] == "http.response.start" and not _injected:
                _injected = True
                headers = list(message.get("headers", []))
                if not any(h[0].lower() == LANDING_HEADER[0] for h in headers):
                    headers.append(LANDING_HEADER)
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, _send_with_marker)


async def not_found_app(scope: Scope, receive: Receive, send: Send) -> None:
    """Static responder used when no asset directory is configured."""
    response = PlainTextResponse("Not Found", status_code=404)
    await response(scope, receive, send)
