# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowserPool — shared Playwright Browser with per-capture BrowserContext isolation.

A single Chromium process hosts up to ``max_contexts`` concurrent captures.
Each capture gets a fresh BrowserContext that is closed when it finishes,
so no cookies or storage leak between targets.  Capacity is gated by
``asyncio.Semaphore`` (CPython FIFO-guaranteed).

Lifecycle follows the ``AsyncContextManager`` pattern::

    async with BrowserPool(config=CaptureConfig()) as pool:
        async with pool.context() as ctx:
            page = await ctx.new_page()

Dependencies: config.py only — no server.py imports.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from types import TracebackType

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from .config import CaptureConfig

logger = logging.getLogger(__name__)

_DEFAULT_MAX_CONTEXTS = 4
_ACQUIRE_TIMEOUT = 30.0
_AUTO_INSTALL_TIMEOUT = 300

_chromium_install_attempted = False


@dataclass(frozen=True, slots=True)
class PoolHealth:
    """Immutable snapshot of pool state for monitoring."""

    active: int
    max_contexts: int
    browser_connected: bool


def chromium_launch_args(config: CaptureConfig) -> list[str]:
    """Return hardened Chromium launch arguments."""
    lang = config.accept_language.split(",", 1)[0].strip() or "en-US"
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={lang}",
        "--disable-extensions",
        "--disable-plugins",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--hide-scrollbars",
        "--mute-audio",
        "--force-webrtc-ip-handling-policy=disable_non_proxied_udp",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


class BrowserPool:
    """One Chromium process, one fresh BrowserContext per capture."""

    def __init__(
        self,
        *,
        max_contexts: int = _DEFAULT_MAX_CONTEXTS,
        config: CaptureConfig | None = None,
    ) -> None:
        self._max_contexts = max_contexts
        self._config = config or CaptureConfig()

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._semaphore = asyncio.Semaphore(max_contexts)
        self._start_lock = asyncio.Lock()
        self._active = 0

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> BrowserPool:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def start(self) -> None:
        """Launch Chromium (idempotent; relaunches after a browser crash)."""
        async with self._start_lock:
            if self._browser is not None and self._browser.is_connected():
                return
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            args = chromium_launch_args(self._config)
            try:
                self._browser = await self._playwright.chromium.launch(headless=self._config.headless, args=args)
            except Exception as exc:
                if "executable doesn't exist" in str(exc).lower() and await _auto_install_chromium():
                    self._browser = await self._playwright.chromium.launch(headless=self._config.headless, args=args)
                else:
                    await self._playwright.stop()
                    self._playwright = None
                    raise
            logger.info("BrowserPool started (max_contexts=%d)", self._max_contexts)

    # ── Resource management ──────────────────────────────────────────

    @asynccontextmanager
    async def context(self, *, acquire_timeout: float | None = None) -> AsyncIterator[BrowserContext]:
        """Yield a fresh BrowserContext with the capture viewport and identity.

        Blocks if the pool is at capacity, for at most *acquire_timeout*
        seconds (never longer than _ACQUIRE_TIMEOUT); raises TimeoutError
        when no slot frees up.  The context is closed on every exit path.
        """
        wait = _ACQUIRE_TIMEOUT if acquire_timeout is None else min(_ACQUIRE_TIMEOUT, acquire_timeout)
        async with asyncio.timeout(wait):
            await self._semaphore.acquire()
        self._active += 1
        ctx: BrowserContext | None = None
        try:
            await self.start()
            cfg = self._config
            ctx = await self._browser.new_context(
                user_agent=cfg.user_agent,
                viewport={"width": cfg.viewport_width, "height": cfg.viewport_height},
                device_scale_factor=cfg.device_scale_factor,
                extra_http_headers={"Accept-Language": cfg.accept_language},
                service_workers="block",
            )
            yield ctx
        finally:
            if ctx is not None:
                with suppress(Exception):
                    await ctx.close()
            self._active -= 1
            self._semaphore.release()

    # ── Monitoring ───────────────────────────────────────────────────

    def health(self) -> PoolHealth:
        """Return a snapshot of pool health."""
        browser_ok = self._browser is not None and self._browser.is_connected()
        return PoolHealth(active=self._active, max_contexts=self._max_contexts, browser_connected=browser_ok)

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close browser and playwright."""
        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        logger.info("BrowserPool shut down")
