# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Background refresher — paginated re-render of cached targets.

Each sweep processes one page of ``url|`` keys starting after the stored
cursor, re-renders every eligible target, repoints its cache record at the
new image, and deletes the superseded image.  Items are independent: one
failure never stops the batch.

``RefreshScheduler`` fires ``run_once`` on a fixed interval inside the
server process; ``pageshot refresh`` runs a single sweep for external cron.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field

from .cache import CacheRecord
from .context import Capabilities
from .deadline import Deadline
from .preflight import preflight
from .target import is_render_eligible

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome counters for one sweep."""

    listed: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0
    pruned: int = 0
    cursor_action: str = "none"  # none, advanced, reset
    errors: list[str] = field(default_factory=list)


class BackgroundRefresher:
    """Re-render one page of cached targets per ``run_once()``."""

    def __init__(self, caps: Capabilities) -> None:
        self._caps = caps
        self._config = caps.config

    async def run_once(self) -> SweepReport:
        """One sweep step.  Never raises; listing errors are logged."""
        report = SweepReport()
        cache, images, renderer = self._caps.cache, self._caps.images, self._caps.renderer
        if cache is None or images is None or renderer is None:
            logger.info("Refresh sweep skipped: cache, image store, or renderer not configured")
            return report

        kv = cache.kv
        cfg = self._config
        try:
            cursor = await kv.get(cfg.cron_cursor_key)
            listing = await kv.list(prefix=cfg.url_key_prefix, limit=cfg.cron_batch_size, cursor=cursor or None)
        except Exception as exc:
            logger.warning("Refresh sweep listing failed: %s", exc, exc_info=True)
            report.errors.append(f"list: {exc}")
            return report

        report.listed = len(listing.keys)
        for key in listing.keys:
            await self._refresh_key(key, report)

        try:
            if listing.list_complete:
                await kv.delete(cfg.cron_cursor_key)
                report.cursor_action = "reset"
            elif listing.cursor:
                await kv.put(cfg.cron_cursor_key, listing.cursor)
                report.cursor_action = "advanced"
        except Exception as exc:
            logger.warning("Refresh cursor update failed: %s", exc)
            report.errors.append(f"cursor: {exc}")

        logger.info(
            "Refresh sweep: listed=%d refreshed=%d skipped=%d failed=%d pruned=%d cursor=%s",
            report.listed,
            report.refreshed,
            report.skipped,
            report.failed,
            report.pruned,
            report.cursor_action,
        )
        return report

    async def _refresh_key(self, key: str, report: SweepReport) -> None:
        cache, images, renderer = self._caps.cache, self._caps.images, self._caps.renderer
        cfg = self._config

        url = cache.keys.target_from_primary(key)
        if not url or not is_render_eligible(url, cfg.root_domain):
            report.skipped += 1
            return

        deadline = Deadline.start(cfg.overall_deadline_ms, floor_ms=cfg.min_budget_ms)
        try:
            check = await preflight(self._caps.http, url, deadline.budget(cfg.preflight_timeout_ms), cfg)
            if not check.ok:
                logger.info("Refresh skipped %s: preflight %s", url, check.code)
                report.skipped += 1
                return

            png = await renderer.render(url, deadline)
            previous_id = await self._previous_image_id(url)

            uploaded = await images.upload(png)
            await cache.write(url, CacheRecord(id=uploaded.id))
            report.refreshed += 1

            if previous_id and previous_id != uploaded.id:
                try:
                    if await images.delete(previous_id):
                        report.pruned += 1
                except Exception as exc:
                    logger.warning("Refresh could not delete superseded image %s: %s", previous_id, exc)
        except Exception as exc:
            logger.warning("Refresh failed for %s: %s", url, exc)
            report.failed += 1
            report.errors.append(f"{url}: {type(exc).__name__}")
        finally:
            deadline.finalize()

    async def _previous_image_id(self, url: str) -> str | None:
        """Image id from the primary record, else the legacy record."""
        cache = self._caps.cache
        for key in cache.keys.read_keys(url):
            try:
                record = await cache.read(key)
            except Exception as exc:
                logger.debug("Refresh could not read %s: %s", key, exc)
                continue
            if record is not None and record.image_id:
                return record.image_id
        return None


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class RefreshScheduler:
    """Periodic ``run_once`` inside the server process.

    Restarts itself if the loop crashes; stops on ``stop()``.
    """

    def __init__(self, refresher: BackgroundRefresher, *, interval: float) -> None:
        self._refresher = refresher
        self._interval = interval
        self._task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._interval <= 0:
            logger.info("Refresh scheduler disabled (interval=%s)", self._interval)
            return
        self._shutdown_event.clear()
        self._start_task()
        logger.info("Refresh scheduler started (interval=%.0fs)", self._interval)

    def _start_task(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="pageshot-refresh")
        self._task.add_done_callback(self._handle_crash)

    def _handle_crash(self, task: asyncio.Task) -> None:
        """Restart the loop if it crashed unexpectedly (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._shutdown_event.is_set():
            logger.error("Refresh scheduler crashed, restarting: %s", exc, exc_info=exc)
            self._start_task()

    async def _loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                async with asyncio.timeout(self._interval):
                    await self._shutdown_event.wait()
                    return  # shutdown requested
            except TimeoutError:
                pass  # interval elapsed

            await self._refresher.run_once()

    async def stop(self) -> None:
        self._shutdown_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None
