# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cache records and the dual-key cache facade.

A record is JSON ``{"id"?: str, "url"?: str}`` stored under every key form
``CacheKeyPolicy`` yields for a target.  Older deployments stored the bare
variant URL as plain text; such values decode as ``{"url": <text>}``.

``CacheStore`` never raises on reads: a store error is logged and treated
as a miss.  Writes and deletes touch all key forms and are not atomic
together.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass

from .images import extract_image_id_from_variant_url
from .store import KeyValueStore
from .target import CacheKeyPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheRecord:
    """Pointer from a target to its stored screenshot."""

    id: str | None = None
    url: str | None = None

    @property
    def image_id(self) -> str | None:
        """Explicit id, else one derived from the variant URL."""
        return self.id or extract_image_id_from_variant_url(self.url)

    @property
    def empty(self) -> bool:
        return not self.id and not self.url

    def encode(self) -> str:
        payload = {}
        if self.id:
            payload["id"] = self.id
        if self.url:
            payload["url"] = self.url
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str | None) -> CacheRecord | None:
        """Parse a stored value; None for absent or blank values."""
        if raw is None or not raw.strip():
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return cls(url=raw.strip())
        if not isinstance(data, dict):
            return cls(url=raw.strip()) if isinstance(data, str) else None
        image_id = data.get("id")
        url = data.get("url")
        return cls(
            id=image_id if isinstance(image_id, str) and image_id else None,
            url=url if isinstance(url, str) and url else None,
        )


@dataclass(frozen=True, slots=True)
class CacheLookup:
    """A record plus the key it was read from."""

    key: str
    record: CacheRecord


class CacheStore:
    """Read/write cache records across primary and legacy key forms."""

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        keys: CacheKeyPolicy | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.kv = kv
        self.keys = keys or CacheKeyPolicy()
        self._timeout = timeout

    def _limit(self, timeout: float | None) -> float:
        return self._timeout if timeout is None else min(self._timeout, timeout)

    async def lookup(self, url: str, *, timeout: float | None = None) -> CacheLookup | None:
        """First decodable record in read-key order (primary, then legacy).

        *timeout* bounds the whole lookup, not each key read.
        """
        when = asyncio.get_running_loop().time() + self._limit(timeout)
        for key in self.keys.read_keys(url):
            try:
                async with asyncio.timeout_at(when):
                    raw = await self.kv.get(key)
            except Exception as exc:
                logger.warning("Cache read failed for %s: %s", key, exc)
                continue
            record = CacheRecord.decode(raw)
            if record is not None and not record.empty:
                return CacheLookup(key=key, record=record)
        return None

    async def read(self, key: str) -> CacheRecord | None:
        """Decode a single key (errors propagate)."""
        async with asyncio.timeout(self._timeout):
            raw = await self.kv.get(key)
        return CacheRecord.decode(raw)

    async def write(self, url: str, record: CacheRecord) -> None:
        """Write *record* under every key form (errors propagate)."""
        value = record.encode()
        for key in self.keys.write_keys(url):
            async with asyncio.timeout(self._timeout):
                await self.kv.put(key, value)

    async def invalidate(self, url: str, *, timeout: float | None = None) -> None:
        """Delete every key form; failures are logged per key and skipped."""
        limit = self._limit(timeout)
        for key in self.keys.write_keys(url):
            try:
                async with asyncio.timeout(limit):
                    await self.kv.delete(key)
            except Exception as exc:
                logger.warning("Cache delete failed for %s: %s", key, exc)

    async def close(self) -> None:
        with suppress(Exception):
            await self.kv.close()
