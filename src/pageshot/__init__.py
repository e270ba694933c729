# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageShot: preview images for web pages.

Resolves a preview image for a URL through ordered tiers:
- social meta image: proxy of the page's og:image / twitter:image / image_src
- cache: previously rendered screenshot stored in the image store
- render: fresh Chromium screenshot (trusted root domain only)
"""

from __future__ import annotations

from dataclasses import dataclass, field

NO_STORE = "no-store, no-cache, must-revalidate"


@dataclass
class CapturedImage:
    """A successfully resolved preview image."""

    content: bytes
    content_type: str = "image/png"
    cache: str = "miss"  # hit, miss, refresh, meta, preview
    source: str | None = None  # original, variant, meta, preview
    headers: dict[str, str] = field(default_factory=dict)  # tier diagnostics

    def response_headers(self) -> dict[str, str]:
        """Headers for the HTTP response (content-type is set separately)."""
        out = {
            "cache-control": NO_STORE,
            "x-capture-worker": "1",
            "x-capture-cache": self.cache,
        }
        if self.source:
            out["x-capture-source"] = self.source
        out.update(self.headers)
        return out
