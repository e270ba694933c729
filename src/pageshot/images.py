# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Image store — where rendered screenshots live.

``CloudflareImagesClient`` speaks the Cloudflare Images v1 REST API over a
shared ``httpx.AsyncClient`` with a bearer token:

- upload:   ``POST   {base}/accounts/{account}/images/v1`` (multipart)
- original: ``GET    {base}/accounts/{account}/images/v1/{id}/blob``
- delete:   ``DELETE {base}/accounts/{account}/images/v1/{id}``

Variant URLs (``https://imagedelivery.net/<hash>/<id>/<variant>``) are
public and fetched without credentials.

Fetch methods return ``None`` when the response is not a usable image
(non-2xx or non-``image/*``); transport errors propagate as
``httpx.HTTPError`` for the caller to classify.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

VARIANT_HOST = "imagedelivery.net"


@dataclass(frozen=True, slots=True)
class FetchedImage:
    content: bytes
    content_type: str


@dataclass(frozen=True, slots=True)
class UploadedImage:
    id: str
    variants: list[str] = field(default_factory=list)


class ImageUploadError(Exception):
    """Image store rejected an upload."""


def extract_image_id_from_variant_url(url: str | None) -> str | None:
    """``imagedelivery.net/<hash>/<id>/<variant>`` -> ``<id>``; None otherwise."""
    if not url:
        return None
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return None
    if host != VARIANT_HOST and not host.endswith("." + VARIANT_HOST):
        return None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 2:
        return None
    return segments[1]


def variant_ref(url: str) -> str:
    """Last two path segments of a variant URL (``<id>/<variant>``)."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return ""
    return "/".join([s for s in path.split("/") if s][-2:])


def _as_image(resp: httpx.Response) -> FetchedImage | None:
    content_type = resp.headers.get("content-type", "").lower()
    if not resp.is_success or not content_type.startswith("image/"):
        return None
    return FetchedImage(content=resp.content, content_type=content_type)


async def fetch_public_image(client: httpx.AsyncClient, url: str, *, timeout: float) -> FetchedImage | None:
    """Unauthenticated GET of a public variant URL."""
    resp = await client.get(url, follow_redirects=True, timeout=timeout)
    return _as_image(resp)


@runtime_checkable
class ImageStore(Protocol):
    async def upload(self, content: bytes, *, filename: str = "capture.png") -> UploadedImage: ...

    async def fetch_original(self, image_id: str, *, timeout: float) -> FetchedImage | None: ...

    async def fetch_variant(self, url: str, *, timeout: float) -> FetchedImage | None: ...

    async def delete(self, image_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Cloudflare Images
# ---------------------------------------------------------------------------


class _UploadResult(BaseModel):
    id: str
    variants: list[str] = Field(default_factory=list)


class _UploadResponse(BaseModel):
    """Envelope returned by ``POST /images/v1``."""

    success: bool = False
    result: _UploadResult | None = None
    errors: list[dict] = Field(default_factory=list)


class CloudflareImagesClient:
    """``ImageStore`` backed by Cloudflare Images."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        account_id: str,
        api_token: str,
        api_base: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 5.0,
    ) -> None:
        self._client = client
        self._base = f"{api_base.rstrip('/')}/accounts/{account_id}/images/v1"
        self._headers = {"authorization": f"Bearer {api_token}"}
        self._timeout = timeout

    async def upload(self, content: bytes, *, filename: str = "capture.png") -> UploadedImage:
        resp = await self._client.post(
            self._base,
            headers=self._headers,
            files={"file": (filename, content, "image/png")},
            data={"requireSignedURLs": "false"},
            timeout=self._timeout,
        )
        try:
            payload = _UploadResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            raise ImageUploadError(f"Malformed upload response (HTTP {resp.status_code})") from exc
        if not resp.is_success or not payload.success or payload.result is None:
            raise ImageUploadError(f"Upload rejected (HTTP {resp.status_code}): {payload.errors}")
        return UploadedImage(id=payload.result.id, variants=list(payload.result.variants))

    async def fetch_original(self, image_id: str, *, timeout: float) -> FetchedImage | None:
        resp = await self._client.get(f"{self._base}/{image_id}/blob", headers=self._headers, timeout=timeout)
        return _as_image(resp)

    async def fetch_variant(self, url: str, *, timeout: float) -> FetchedImage | None:
        return await fetch_public_image(self._client, url, timeout=timeout)

    async def delete(self, image_id: str) -> bool:
        resp = await self._client.delete(f"{self._base}/{image_id}", headers=self._headers, timeout=self._timeout)
        if not resp.is_success:
            logger.warning("Image delete failed: id=%s status=%d", image_id, resp.status_code)
        return resp.is_success


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryImageStore:
    """Dict-backed ``ImageStore`` for tests and local runs without Cloudflare."""

    def __init__(self, *, account_hash: str = "local") -> None:
        self._account_hash = account_hash
        self.images: dict[str, FetchedImage] = {}
        self.deleted: list[str] = []
        self.fail_uploads = False
        self._seq = 0

    def variant_url(self, image_id: str, variant: str = "public") -> str:
        return f"https://{VARIANT_HOST}/{self._account_hash}/{image_id}/{variant}"

    def put(self, image_id: str, content: bytes, content_type: str = "image/png") -> None:
        self.images[image_id] = FetchedImage(content=content, content_type=content_type)

    async def upload(self, content: bytes, *, filename: str = "capture.png") -> UploadedImage:
        if self.fail_uploads:
            raise ImageUploadError("Upload rejected (in-memory failure)")
        self._seq += 1
        image_id = f"img-{self._seq}"
        self.put(image_id, content)
        return UploadedImage(id=image_id, variants=[self.variant_url(image_id)])

    async def fetch_original(self, image_id: str, *, timeout: float) -> FetchedImage | None:
        return self.images.get(image_id)

    async def fetch_variant(self, url: str, *, timeout: float) -> FetchedImage | None:
        image_id = extract_image_id_from_variant_url(url)
        return self.images.get(image_id) if image_id else None

    async def delete(self, image_id: str) -> bool:
        self.deleted.append(image_id)
        return self.images.pop(image_id, None) is not None
