# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Renderer adapter — the fixed screenshot policy over a browser.

Navigation is ``domcontentloaded`` under the navigation budget, followed by
a short settle wait, then a viewport PNG.  Navigation errors are logged and
ignored: a half-loaded page still yields a screenshot.  Analytics and
beacon traffic is aborted for page stability.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .browser_pool import BrowserPool
from .config import CaptureConfig
from .deadline import Deadline
from .errors import CaptureFailedError, CaptureTimeoutError

logger = logging.getLogger(__name__)

_BLOCKED_RESOURCE_TYPES = frozenset({"ping", "beacon"})


@runtime_checkable
class Renderer(Protocol):
    async def render(self, url: str, deadline: Deadline) -> bytes: ...


def should_abort(url: str, resource_type: str, blocked_hosts: tuple[str, ...]) -> bool:
    """True for ping/beacon requests and any URL mentioning a denylisted host."""
    if resource_type in _BLOCKED_RESOURCE_TYPES:
        return True
    lowered = url.lower()
    return any(host in lowered for host in blocked_hosts)


def is_timeout_error(exc: BaseException) -> bool:
    """Classify a render failure as a timeout."""
    if isinstance(exc, (TimeoutError, PlaywrightTimeoutError)):
        return True
    return "timeout" in str(exc).lower()


class PlaywrightRenderer:
    """``Renderer`` backed by a shared ``BrowserPool``."""

    def __init__(self, pool: BrowserPool, config: CaptureConfig) -> None:
        self._pool = pool
        self._config = config

    async def _route(self, route: Route) -> None:
        request = route.request
        if should_abort(request.url, request.resource_type, self._config.blocked_hosts):
            await route.abort()
        else:
            await route.continue_()

    async def render(self, url: str, deadline: Deadline) -> bytes:
        """Screenshot *url*; raises CaptureTimeoutError / CaptureFailedError."""
        cfg = self._config
        try:
            deadline.stage("acquire")
            async with self._pool.context(acquire_timeout=deadline.budget_s(cfg.overall_deadline_ms)) as ctx:
                page = await ctx.new_page()
                await page.route("**/*", self._route)

                deadline.stage("navigate")
                try:
                    await page.goto(url, wait_until="domcontentloaded", timeout=deadline.budget(cfg.goto_timeout_ms))
                except PlaywrightError as exc:
                    logger.info("Navigation incomplete for %s: %s", url, exc.message.splitlines()[0] if exc.message else exc)

                settle = deadline.settle_ms(cfg.idle_settle_ms, cfg.idle_timeout_ms)
                if settle > 0:
                    deadline.stage("settle")
                    await asyncio.sleep(settle / 1000)

                deadline.stage("screenshot")
                return await page.screenshot(
                    type="png", full_page=False, timeout=deadline.budget(cfg.overall_deadline_ms)
                )
        except (CaptureTimeoutError, CaptureFailedError):
            raise
        except Exception as exc:
            if is_timeout_error(exc):
                raise CaptureTimeoutError(
                    "Rendering timed out", extra={"timeout": deadline.timeout_report()}
                ) from exc
            logger.warning("Render failed for %s: %s", url, exc)
            raise CaptureFailedError(f"Rendering failed: {type(exc).__name__}") from exc
