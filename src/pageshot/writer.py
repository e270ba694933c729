# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Best-effort cache population after a fresh render."""

from __future__ import annotations

import logging

from .cache import CacheRecord
from .context import Capabilities

logger = logging.getLogger(__name__)


class CacheWriter:
    """Upload a screenshot and point every key form at it.

    Never raises: the caller already has its image, a failed write only
    means the next request renders again.
    """

    def __init__(self, caps: Capabilities) -> None:
        self._caps = caps

    @property
    def enabled(self) -> bool:
        return self._caps.images is not None and self._caps.cache is not None

    async def populate(self, url: str, png: bytes, *, supersedes: str | None = None) -> str | None:
        """Returns the new image id, or None when nothing was written.

        *supersedes* is the image id of a record that could not be served;
        it is deleted once the new record is in place.
        """
        images, cache = self._caps.images, self._caps.cache
        if images is None or cache is None:
            return None
        try:
            uploaded = await images.upload(png)
        except Exception as exc:
            logger.warning("Cache upload failed for %s: %s", url, exc)
            return None
        try:
            await cache.write(url, CacheRecord(id=uploaded.id))
        except Exception as exc:
            logger.warning("Cache record write failed for %s (id=%s): %s", url, uploaded.id, exc)
            return None
        logger.info("Cached capture for %s as %s", url, uploaded.id)
        if supersedes and supersedes != uploaded.id:
            try:
                await images.delete(supersedes)
            except Exception as exc:
                logger.warning("Could not delete superseded image %s: %s", supersedes, exc)
        return uploaded.id
