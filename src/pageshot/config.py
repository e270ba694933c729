# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Immutable capture configuration.

Built once at process start (``CaptureConfig.from_env()``) and passed to
every component through ``Capabilities``.  Never mutated afterwards.

Leaf module — no pageshot imports.
"""

from __future__ import annotations

import os
from contextlib import suppress
from dataclasses import dataclass, field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT_LANGUAGE = "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7"

# Analytics / tracking hosts aborted during rendering (page stability only).
DEFAULT_BLOCKED_HOSTS: tuple[str, ...] = (
    "googletagmanager.com",
    "google-analytics.com",
    "doubleclick.net",
    "googlesyndication.com",
    "facebook.net",
    "facebook.com",
    "hotjar.com",
    "hotjar.io",
    "segment.io",
    "amplitude.com",
    "mixpanel.com",
    "clarity.ms",
    "yandex.ru",
    "yandex.com",
    "cloudflareinsights.com",
)

URL_KEY_PREFIX = "url|"
CRON_CURSOR_KEY = "cron|cursor:url"

_TRUE_VALUES = ("1", "true", "yes")


def is_truthy(value: str | None) -> bool:
    """True for 1/true/yes (case-insensitive, surrounding whitespace ignored)."""
    return (value or "").strip().lower() in _TRUE_VALUES


def env_flag(name: str) -> bool:
    """Return True when env var *name* is truthy."""
    return is_truthy(os.environ.get(name))


@dataclass(frozen=True, slots=True)
class CaptureConfig:
    """Fixed operational constants for capture, caching, and refresh."""

    root_domain: str = "huny.dev"

    # Deadline budgets (ms)
    overall_deadline_ms: int = 25000
    min_budget_ms: int = 1000
    preflight_timeout_ms: int = 4000
    preflight_get_min_ms: int = 1000
    preflight_get_max_ms: int = 2500
    og_html_timeout_ms: int = 4000
    og_image_timeout_ms: int = 7000
    goto_timeout_ms: int = 20000
    idle_timeout_ms: int = 3000
    idle_settle_ms: int = 800
    store_timeout_ms: int = 5000

    # Rendering
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    viewport_width: int = 1200
    viewport_height: int = 630
    device_scale_factor: float = 2
    headless: bool = True
    blocked_hosts: tuple[str, ...] = DEFAULT_BLOCKED_HOSTS

    # Image store
    images_account_id: str = ""
    api_token: str = field(default="", repr=False)
    images_api_base: str = "https://api.cloudflare.com/client/v4"

    # Cache keys + background refresh
    url_key_prefix: str = URL_KEY_PREFIX
    cron_cursor_key: str = CRON_CURSOR_KEY
    cron_batch_size: int = 10
    refresh_interval: float = 0.0  # seconds; 0 disables the in-process timer

    @property
    def images_enabled(self) -> bool:
        return bool(self.images_account_id and self.api_token)

    @classmethod
    def from_env(cls, **overrides) -> CaptureConfig:
        """Build a config from ``PAGESHOT_*`` environment variables.

        Keyword *overrides* win over the environment.
        """
        values: dict = {}
        root = os.environ.get("PAGESHOT_ROOT_DOMAIN", "").strip().lower()
        if root:
            values["root_domain"] = root
        account = os.environ.get("PAGESHOT_IMAGES_ACCOUNT_ID", "").strip()
        if account:
            values["images_account_id"] = account
        token = os.environ.get("PAGESHOT_API_TOKEN", "").strip()
        if token:
            values["api_token"] = token
        api_base = os.environ.get("PAGESHOT_IMAGES_API_BASE", "").strip()
        if api_base:
            values["images_api_base"] = api_base.rstrip("/")
        interval = os.environ.get("PAGESHOT_REFRESH_INTERVAL", "").strip()
        if interval:
            with suppress(ValueError):
                values["refresh_interval"] = max(0.0, float(interval))
        if env_flag("PAGESHOT_HEADFUL"):
            values["headless"] = False
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
