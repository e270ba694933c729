# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageShot exception hierarchy.

All PageShot-specific errors inherit from PageShotError, allowing callers
to catch the base class for any capture failure or specific subclasses
for targeted handling.  Every error carries the ``x-capture-cache`` tag
describing where in the resolution chain it happened.
"""

from __future__ import annotations

from typing import Any


class PageShotError(Exception):
    """Base exception for all PageShot errors."""

    def __init__(self, message: str, *, cache_tag: str = "", extra: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.cache_tag = cache_tag
        self.extra = dict(extra) if extra else {}


class MissingTargetError(PageShotError):
    """Capture path was requested without a ``url`` query."""


class InvalidURLError(PageShotError):
    """Target is unparseable or uses a scheme other than http/https."""


class AccessDeniedError(PageShotError):
    """Target domain is not eligible for browser rendering."""


class SocialImageNotFoundError(PageShotError):
    """No social meta image was found and the domain may not be rendered."""


class PreflightError(PageShotError):
    """Preflight check classified the target as unreachable or blocked."""

    def __init__(self, message: str, *, outcome: str, cache_tag: str = "") -> None:
        super().__init__(message, cache_tag=cache_tag)
        self.outcome = outcome


class CaptureTimeoutError(PageShotError):
    """Rendering ran out of budget."""


class CaptureFailedError(PageShotError):
    """Rendering failed for a reason other than a timeout."""


class CacheCorruptError(PageShotError):
    """A cache record no longer resolves to a valid image (internal only)."""
