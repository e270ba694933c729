# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Social meta image discovery: tag scan, candidate scoring, image proxy.

The scan is a tolerant regex pass over ``<meta>`` and ``<link>`` tags, not
a DOM parse: broken markup, unclosed tags, and stray scripts never cause a
failure, and nothing in the page is executed.

Scoring (higher wins):

- base weight by source: og 100, twitter 90, link image_src 80, itemprop 70
  (+2 for ``secure_url`` keys)
- +1 for https, extension bonus (jpg/jpeg/png/webp +4, gif -2, svg -6)
- ``og:image:type`` svg -6, ``twitter:card`` summary_large_image +6
- declared size bonus against the 600x315 OG baseline (max +20)

Repeated mentions of the same absolute URL accumulate weight.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

import httpx

from . import CapturedImage
from .config import CaptureConfig
from .deadline import Deadline

logger = logging.getLogger(__name__)

_META_TAG_RE = re.compile(r"<meta\s+[^>]*>", re.IGNORECASE)
_LINK_TAG_RE = re.compile(r"<link\s+[^>]*>", re.IGNORECASE)
_ATTR_RE_CACHE: dict[str, re.Pattern[str]] = {}
_EXT_RE = re.compile(r"\.([a-z0-9]+)$", re.IGNORECASE)
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

OG_URL_KEYS = frozenset({"og:image", "og:image:url", "og:image:secure_url"})
TWITTER_URL_KEYS = frozenset(
    {"twitter:image", "twitter:image:src", "twitter:image:url", "twitter:image:secure_url"}
)
ITEM_KEYS = frozenset({"image", "thumbnailurl", "thumbnail"})

OG_WEIGHT = 100
TWITTER_WEIGHT = 90
LINK_WEIGHT = 80
ITEM_WEIGHT = 70
SECURE_BONUS = 2
HTTPS_BONUS = 1
SVG_TYPE_PENALTY = 6
LARGE_CARD_BONUS = 6

BASELINE_AREA = 600 * 315
MAX_AREA_BONUS = 20

_EXT_SCORES = {"svg": -6, "gif": -2, "jpg": 4, "jpeg": 4, "png": 4, "webp": 4}

_HTML_ACCEPT = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.1"
_IMAGE_ACCEPT = "image/avif,image/webp,image/*,*/*;q=0.1"

# Anything a third-party page can provoke out of a fetch; all of it means "no image".
_FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL, UnicodeError, TimeoutError)


@dataclass
class ImageCandidate:
    """A social image URL under consideration."""

    url: str
    source: str  # og, twitter, link, itemprop
    weight: int = 0
    width: int = 0
    height: int = 0

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def _attr(tag: str, name: str) -> str | None:
    pattern = _ATTR_RE_CACHE.get(name)
    if pattern is None:
        pattern = re.compile(rf"\b{name}\s*=\s*['\"]([^'\"]+)['\"]", re.IGNORECASE)
        _ATTR_RE_CACHE[name] = pattern
    m = pattern.search(tag)
    return m.group(1) if m else None


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def _parse_int(value: str | None) -> int | None:
    m = _LEADING_INT_RE.match(value or "")
    return int(m.group(1)) if m else None


def extension_score(url: str) -> int:
    """Score by path suffix: svg -6, gif -2, jpg/jpeg/png/webp +4, else 0."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return 0
    m = _EXT_RE.search(path)
    if not m:
        return 0
    return _EXT_SCORES.get(m.group(1).lower(), 0)


def area_score(width: int, height: int) -> int:
    """Bonus for declared size relative to the 600x315 baseline."""
    if width <= 0 or height <= 0:
        return 0
    area = width * height
    if area <= BASELINE_AREA:
        return 1
    return min(MAX_AREA_BONUS, math.floor(math.log2(area / BASELINE_AREA) * 5))


def _absolute(url: str | None, base_url: str) -> str | None:
    if not url:
        return None
    try:
        resolved = urljoin(base_url, url.strip())
        scheme = urlsplit(resolved).scheme.lower()
        if scheme not in ("http", "https"):
            return None
        # .host runs IDNA decoding; a URL httpx cannot address is not a candidate
        if not httpx.URL(resolved).host:
            return None
    except (httpx.InvalidURL, UnicodeError, ValueError):
        return None
    return resolved


# ---------------------------------------------------------------------------
# Candidate extraction
# ---------------------------------------------------------------------------


class _CandidateSet:
    """Insertion-ordered candidates keyed by absolute URL."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url
        self._by_url: dict[str, ImageCandidate] = {}

    def mention(self, raw_url: str | None, source: str, base_weight: int) -> ImageCandidate | None:
        url = _absolute(raw_url, self._base_url)
        if url is None:
            return None
        cand = self._by_url.get(url)
        if cand is None:
            cand = ImageCandidate(url=url, source=source)
            self._by_url[url] = cand
        https = HTTPS_BONUS if url.lower().startswith("https:") else 0
        cand.weight += base_weight + https + extension_score(url)
        return cand

    def finish(self) -> list[ImageCandidate]:
        out = list(self._by_url.values())
        for cand in out:
            cand.weight += area_score(cand.width, cand.height)
        return out


def extract_candidates(html: str, base_url: str) -> list[ImageCandidate]:
    """Scan *html* for social image declarations, scored, in first-seen order."""
    cands = _CandidateSet(base_url)
    last_og: ImageCandidate | None = None
    last_twitter: ImageCandidate | None = None

    for tag in _META_TAG_RE.findall(html or ""):
        key = _norm(_attr(tag, "property")) or _norm(_attr(tag, "name")) or _norm(_attr(tag, "itemprop"))
        if not key:
            continue
        content = _attr(tag, "content")

        if key in OG_URL_KEYS:
            bonus = SECURE_BONUS if "secure" in key else 0
            cand = cands.mention(content, "og", OG_WEIGHT + bonus)
            if cand is not None:
                last_og = cand
        elif key in ("og:image:width", "og:image:height"):
            value = _parse_int(content)
            if last_og is not None and value is not None:
                if key.endswith("width"):
                    last_og.width = value
                else:
                    last_og.height = value
        elif key == "og:image:type":
            if last_og is not None and "svg" in _norm(content):
                last_og.weight -= SVG_TYPE_PENALTY
        elif key in TWITTER_URL_KEYS:
            bonus = SECURE_BONUS if "secure" in key else 0
            cand = cands.mention(content, "twitter", TWITTER_WEIGHT + bonus)
            if cand is not None:
                last_twitter = cand
        elif key == "twitter:card":
            if last_twitter is not None and "summary_large_image" in _norm(content):
                last_twitter.weight += LARGE_CARD_BONUS
        elif key in ITEM_KEYS:
            cands.mention(content, "itemprop", ITEM_WEIGHT)

    for tag in _LINK_TAG_RE.findall(html or ""):
        rel = _norm(_attr(tag, "rel"))
        if "image_src" in rel:
            cands.mention(_attr(tag, "href"), "link", LINK_WEIGHT)

    return cands.finish()


def select_best(html: str, base_url: str) -> ImageCandidate | None:
    """Highest weight wins; ties go to the larger declared area, then first seen."""
    candidates = extract_candidates(html, base_url)
    if not candidates:
        return None
    # sorted() is stable, so equal keys keep first-seen order
    return sorted(candidates, key=lambda c: (-c.weight, -c.area))[0]


# ---------------------------------------------------------------------------
# Fetch + proxy
# ---------------------------------------------------------------------------


def _is_html(content_type: str) -> bool:
    ct = content_type.lower()
    return "text/html" in ct or "application/xhtml+xml" in ct


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


async def fetch_social_image(
    client: httpx.AsyncClient,
    url: str,
    deadline: Deadline,
    config: CaptureConfig,
) -> CapturedImage | None:
    """Find the page's best social image and fetch it.

    Returns None on any failure (page fetch, non-HTML page, no candidates,
    image fetch, non-image response): the caller moves to the next tier.
    """
    deadline.stage("meta_html")
    budget = deadline.budget_s(config.og_html_timeout_ms)
    try:
        async with asyncio.timeout(budget):
            page = await client.get(
                url,
                headers={
                    "accept": _HTML_ACCEPT,
                    "accept-language": config.accept_language,
                    "user-agent": config.user_agent,
                },
                follow_redirects=True,
                timeout=budget,
            )
    except _FETCH_ERRORS as exc:
        logger.debug("Meta HTML fetch failed for %s: %s", url, exc)
        return None

    if not _is_html(page.headers.get("content-type", "")):
        return None

    best = select_best(page.text, str(page.url) if page.url else url)
    if best is None:
        logger.debug("No social image candidates on %s", url)
        return None

    deadline.stage("meta_image")
    budget = deadline.budget_s(config.og_image_timeout_ms)
    try:
        async with asyncio.timeout(budget):
            img = await client.get(
                best.url,
                headers={"accept": _IMAGE_ACCEPT},
                follow_redirects=True,
                timeout=budget,
            )
    except _FETCH_ERRORS as exc:
        logger.debug("Meta image fetch failed for %s: %s", best.url, exc)
        return None

    content_type = img.headers.get("content-type", "").lower()
    if not img.is_success or not content_type.startswith("image/"):
        logger.debug("Meta image rejected: %s status=%d type=%s", best.url, img.status_code, content_type)
        return None

    headers = {"x-capture-meta": best.source, "x-social-origin": _origin(best.url)}
    if best.width and best.height:
        headers["x-capture-meta-size"] = f"{best.width}x{best.height}"
    logger.info("Social image selected: source=%s weight=%d url=%s", best.source, best.weight, best.url)
    return CapturedImage(
        content=img.content,
        content_type=content_type,
        cache="meta",
        source="meta",
        headers=headers,
    )
