# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Target URL normalization, render eligibility, and cache key derivation.

Pure Python module — no network access.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from .config import URL_KEY_PREFIX
from .errors import InvalidURLError

ALLOWED_URL_SCHEMES = frozenset({"http", "https"})

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
# "ftp:", "mailto:", "javascript:" ... but not "host:8080"
_FOREIGN_SCHEME_RE = re.compile(r"^([a-z][a-z0-9+.-]*):(?!\d)", re.IGNORECASE)
# Characters that never appear in a valid hostname.
_BAD_HOST_CHARS = re.compile(r"[\s<>\"{}|\\^`!]")


def normalize(raw: str | None) -> str:
    """Normalize a requested target into an absolute http(s) URL.

    Trims whitespace and defaults the scheme to https.  The result has a
    lower-cased scheme and host, and a bare origin gets a trailing ``/``.

    Raises:
        InvalidURLError: empty, unparseable, non-http(s), or hostless input.
    """
    s = (raw or "").strip()
    if not s:
        raise InvalidURLError("Invalid URL or unsupported protocol (use http/https).")
    if not _SCHEME_RE.match(s):
        if _FOREIGN_SCHEME_RE.match(s):
            raise InvalidURLError("Invalid URL or unsupported protocol (use http/https).")
        s = "https://" + s

    try:
        parts = urlsplit(s)
        hostname = parts.hostname or ""
        port = parts.port
    except ValueError as exc:
        raise InvalidURLError("Invalid URL or unsupported protocol (use http/https).") from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_URL_SCHEMES:
        raise InvalidURLError("Invalid URL or unsupported protocol (use http/https).")
    if not hostname or _BAD_HOST_CHARS.search(hostname):
        raise InvalidURLError("Invalid URL or unsupported protocol (use http/https).")

    netloc = hostname.lower()
    if ":" in netloc:
        netloc = f"[{netloc}]"
    if port is not None and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        netloc = f"{netloc}:{port}"
    userinfo = parts.netloc.rpartition("@")[0]
    if userinfo:
        netloc = f"{userinfo}@{netloc}"

    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def hostname_of(url: str) -> str:
    """Lower-cased hostname of *url*, or ``""`` when it has none."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def is_render_eligible(url: str, root_domain: str) -> bool:
    """True iff *url* is on *root_domain* or one of its subdomains.

    The suffix match is dot-anchored: ``root.dev.evil.com`` and
    ``evilroot.dev`` are not eligible for ``root.dev``.
    """
    if not _SCHEME_RE.match(url or ""):
        url = "https://" + (url or "").strip()
    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
    except ValueError:
        return False
    if parts.scheme.lower() not in ALLOWED_URL_SCHEMES or not hostname:
        return False
    root = root_domain.strip().lower().strip(".")
    if not root:
        return False
    return hostname == root or hostname.endswith("." + root)


@dataclass(frozen=True, slots=True)
class CacheKeyPolicy:
    """Derives the cache-store key forms for a normalized target.

    Two key forms address the same logical record:

    - primary: ``url|<normalized URL>``
    - legacy: bare lower-cased hostname

    Reads try primary first; writes and deletes touch every form.
    """

    prefix: str = URL_KEY_PREFIX

    def primary(self, url: str) -> str:
        return f"{self.prefix}{url}"

    def legacy(self, url: str) -> str | None:
        return hostname_of(url) or None

    def read_keys(self, url: str) -> list[str]:
        keys = [self.primary(url)]
        legacy = self.legacy(url)
        if legacy:
            keys.append(legacy)
        return keys

    def write_keys(self, url: str) -> list[str]:
        return self.read_keys(url)

    def target_from_primary(self, key: str) -> str | None:
        """Reverse ``primary()``; None for keys outside the primary namespace."""
        if not key.startswith(self.prefix):
            return None
        return key[len(self.prefix) :] or None
