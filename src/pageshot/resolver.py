# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capture resolution chain.

Tier order for a normal request:

1. social meta image (any domain, never cached)
2. cached screenshot: original asset by id, then public variant URL
3. preflight + fresh render (root domain only), cached in the background

``force`` deletes the cached record and skips straight to tier 3.
``preview`` renders the root-domain page directly with no cache and no
meta lookup.

A cache record whose references answer with something other than an
image is deleted under every key form (deferred) and the request falls
through to a render.  An image store that cannot be reached is only a
miss: the record stays, and a successful render supersedes it.  A record
that only carried a variant URL gets its derived id written back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

from . import CapturedImage
from .cache import CacheLookup, CacheRecord
from .context import Capabilities
from .deadline import Deadline
from .errors import (
    AccessDeniedError,
    CacheCorruptError,
    CaptureFailedError,
    CaptureTimeoutError,
    MissingTargetError,
    PageShotError,
    SocialImageNotFoundError,
)
from .images import FetchedImage, fetch_public_image, variant_ref
from .preflight import preflight
from .renderer import is_timeout_error
from .social_meta import fetch_social_image
from .target import is_render_eligible, normalize
from .tasks import DeferredTasks
from .writer import CacheWriter

logger = logging.getLogger(__name__)


class CaptureResolver:
    """Resolve a requested URL to a preview image."""

    def __init__(self, caps: Capabilities) -> None:
        self._caps = caps
        self._config = caps.config
        self._writer = CacheWriter(caps)

    def _deadline(self) -> Deadline:
        return Deadline.start(self._config.overall_deadline_ms, floor_ms=self._config.min_budget_ms)

    async def capture(
        self,
        raw_url: str | None,
        *,
        force: bool = False,
        preview: bool = False,
        tasks: DeferredTasks,
    ) -> CapturedImage:
        """Run the chain; raises a ``PageShotError`` subclass on failure."""
        if raw_url is None or not raw_url.strip():
            raise MissingTargetError("Missing required query parameter: url")
        url = normalize(raw_url)
        deadline = self._deadline()

        try:
            if preview:
                return await self._preview(url, deadline)
            return await self._resolve(url, deadline, force=force, tasks=tasks)
        finally:
            deadline.finalize()
            logger.debug("Capture stages for %s: %s", url, deadline.elapsed_per_stage())

    # ── Normal chain ─────────────────────────────────────────────────

    async def _resolve(self, url: str, deadline: Deadline, *, force: bool, tasks: DeferredTasks) -> CapturedImage:
        meta = await fetch_social_image(self._caps.http, url, deadline, self._config)
        if meta is not None:
            return meta

        if not is_render_eligible(url, self._config.root_domain):
            raise SocialImageNotFoundError("No social image found for this URL.", cache_tag="meta-miss")

        cache = self._caps.cache
        stale_id: str | None = None
        invalidation: asyncio.Task | None = None
        if force:
            if cache is not None:
                deadline.stage("invalidate")
                await cache.invalidate(url, timeout=deadline.budget_s(self._config.store_timeout_ms))
        elif cache is not None:
            deadline.stage("cache_lookup")
            hit = await cache.lookup(url, timeout=deadline.budget_s(self._config.store_timeout_ms))
            if hit is not None:
                try:
                    image = await self._serve_cached(url, hit, deadline, tasks)
                except CacheCorruptError as exc:
                    logger.info("%s; invalidating", exc)
                    invalidation = tasks.defer(cache.invalidate(url), name=f"pageshot-invalidate:{url}")
                    image = None
                if image is not None:
                    return image
                # a legacy hostname record may still back other URLs
                if hit.key == cache.keys.primary(url):
                    stale_id = hit.record.image_id

        tier = "refresh" if force else "miss"
        png = await self._render_checked(url, deadline, tier=tier)
        if self._writer.enabled:
            tasks.defer(self._populate(url, png, stale_id, invalidation), name=f"pageshot-populate:{url}")
        return CapturedImage(content=png, content_type="image/png", cache=tier)

    async def _populate(self, url: str, png: bytes, stale_id: str | None, after: asyncio.Task | None) -> None:
        # the new record must land after the deletes
        if after is not None:
            await asyncio.wait([after])
        await self._writer.populate(url, png, supersedes=stale_id)

    async def _serve_cached(
        self,
        url: str,
        hit: CacheLookup,
        deadline: Deadline,
        tasks: DeferredTasks,
    ) -> CapturedImage | None:
        """Serve a cached record.

        Returns None when the image store could not be reached (a plain
        miss, the record stays).  Raises ``CacheCorruptError`` when every
        stored reference answered with something other than an image.
        """
        record = hit.record
        cache = self._caps.cache
        images = self._caps.images
        reachable = True

        image_id = record.image_id
        if image_id and images is not None:
            deadline.stage("cache_original")
            timeout = deadline.budget_s(self._config.store_timeout_ms)
            try:
                fetched = await self._fetch(images.fetch_original(image_id, timeout=timeout), timeout)
            except Exception as exc:
                logger.info("Cached original %s unreachable: %s", image_id, exc)
                fetched, reachable = None, False
            if fetched is not None:
                if not record.id and cache is not None:
                    tasks.defer(cache.write(url, CacheRecord(id=image_id)), name=f"pageshot-backfill:{url}")
                return CapturedImage(
                    content=fetched.content,
                    content_type=fetched.content_type,
                    cache="hit",
                    source="original",
                    headers={"x-images-ct": fetched.content_type, "x-images-id": image_id},
                )

        if record.url:
            deadline.stage("cache_variant")
            timeout = deadline.budget_s(self._config.store_timeout_ms)
            if images is not None:
                pending = images.fetch_variant(record.url, timeout=timeout)
            else:
                pending = fetch_public_image(self._caps.http, record.url, timeout=timeout)
            try:
                fetched = await self._fetch(pending, timeout)
            except Exception as exc:
                logger.info("Cached variant %s unreachable: %s", record.url, exc)
                fetched, reachable = None, False
            if fetched is not None:
                return CapturedImage(
                    content=fetched.content,
                    content_type=fetched.content_type,
                    cache="hit",
                    source="variant",
                    headers={"x-images-ref": variant_ref(record.url)},
                )

        if not reachable:
            logger.info("Cache record for %s (key=%s) kept; image store unreachable", url, hit.key)
            return None
        raise CacheCorruptError(f"Cache record for {url} (key={hit.key}) no longer resolves")

    @staticmethod
    async def _fetch(pending: Awaitable[FetchedImage | None], timeout: float) -> FetchedImage | None:
        async with asyncio.timeout(timeout):
            return await pending

    # ── Preview ──────────────────────────────────────────────────────

    async def _preview(self, url: str, deadline: Deadline) -> CapturedImage:
        if not is_render_eligible(url, self._config.root_domain):
            raise AccessDeniedError("Preview is only available for the configured root domain.", cache_tag="preview-deny")
        png = await self._render_checked(url, deadline, tier="preview")
        return CapturedImage(
            content=png,
            content_type="image/png",
            cache="preview",
            source="preview",
            headers={"x-preview": "1"},
        )

    # ── Render tier ──────────────────────────────────────────────────

    async def _render_checked(self, url: str, deadline: Deadline, *, tier: str) -> bytes:
        """Preflight then render; failures carry ``<tier>-preflight`` / ``<tier>-fail`` tags."""
        deadline.stage("preflight")
        check = await preflight(self._caps.http, url, deadline.budget(self._config.preflight_timeout_ms), self._config)
        if not check.ok:
            raise check.to_error(cache_tag=f"{tier}-preflight")

        renderer = self._caps.renderer
        if renderer is None:
            raise CaptureFailedError("Renderer unavailable", cache_tag=f"{tier}-fail")
        try:
            return await renderer.render(url, deadline)
        except PageShotError as exc:
            exc.cache_tag = f"{tier}-fail"
            raise
        except Exception as exc:
            tag = f"{tier}-fail"
            if is_timeout_error(exc):
                raise CaptureTimeoutError("Rendering timed out", cache_tag=tag) from exc
            raise CaptureFailedError(f"Rendering failed: {type(exc).__name__}", cache_tag=tag) from exc
