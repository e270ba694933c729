# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Capabilities — leaf module with minimal dependencies.

The explicit bundle of collaborators every component receives instead of
reaching for process globals.  Tests substitute in-memory fakes.
"""

from __future__ import annotations

import dataclasses

import httpx

from .cache import CacheStore
from .config import CaptureConfig
from .images import ImageStore
from .renderer import Renderer


@dataclasses.dataclass(frozen=True, slots=True, kw_only=True)
class Capabilities:
    """Injected collaborators for resolver, writer, and refresher.

    ``renderer``, ``cache``, and ``images`` are optional; tiers that need a
    missing collaborator are skipped (or fail as ``capture-failed`` for
    the render tier).
    """

    config: CaptureConfig
    http: httpx.AsyncClient = dataclasses.field(repr=False)
    renderer: Renderer | None = None
    cache: CacheStore | None = None
    images: ImageStore | None = None
