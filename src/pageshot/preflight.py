# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Preflight reachability check run before an expensive render.

HEAD first, short GET fallback.  Pure function of (url, budget): no
caching, no persisted state.  Transport errors never propagate; they
are classified as a timeout outcome.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum

import httpx

from .config import CaptureConfig
from .errors import PreflightError

logger = logging.getLogger(__name__)

_BLOCKED_STATUSES = frozenset({401, 403, 451})
_HEAD_UNSUPPORTED = frozenset({405, 501})


class PreflightOutcome(StrEnum):
    OK = "ok"
    BLOCKED = "blocked"
    UPSTREAM_ERROR = "upstream-error"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


# outcome -> (http status, machine code, message template)
_OUTCOME_METADATA: dict[PreflightOutcome, tuple[int, str, str]] = {
    PreflightOutcome.BLOCKED: (403, "preflight-blocked", "Blocked ({status})"),
    PreflightOutcome.REJECTED: (403, "preflight-rejected", "Rejected ({status})"),
    PreflightOutcome.UPSTREAM_ERROR: (504, "preflight-upstream", "Upstream error ({status})"),
    PreflightOutcome.TIMEOUT: (504, "preflight-timeout", "Preflight timeout or network error"),
}


@dataclass(frozen=True, slots=True)
class PreflightResult:
    """Classified preflight result."""

    outcome: PreflightOutcome
    upstream_status: int | None = None
    method: str = "HEAD"

    @property
    def ok(self) -> bool:
        return self.outcome is PreflightOutcome.OK

    @property
    def status(self) -> int:
        """HTTP status to answer the caller with (200 when ok)."""
        if self.ok:
            return 200
        return _OUTCOME_METADATA[self.outcome][0]

    @property
    def code(self) -> str:
        if self.ok:
            return "ok"
        return _OUTCOME_METADATA[self.outcome][1]

    @property
    def message(self) -> str:
        if self.ok:
            return "ok"
        return _OUTCOME_METADATA[self.outcome][2].format(status=self.upstream_status)

    def to_error(self, *, cache_tag: str = "") -> PreflightError:
        """Exception carrying this result for the caller-facing response."""
        return PreflightError(self.message, outcome=self.outcome.value, cache_tag=cache_tag)


def _request_headers(config: CaptureConfig) -> dict[str, str]:
    return {
        "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "accept-language": config.accept_language,
        "user-agent": config.user_agent,
    }


def classify_get(status: int) -> PreflightOutcome:
    """Classify the GET fallback status."""
    if 200 <= status < 400:
        return PreflightOutcome.OK
    if status in _BLOCKED_STATUSES:
        return PreflightOutcome.BLOCKED
    if status >= 500:
        return PreflightOutcome.UPSTREAM_ERROR
    return PreflightOutcome.REJECTED


def classify_head(status: int) -> PreflightOutcome | None:
    """Classify the HEAD status; None means fall through to GET."""
    if status in _HEAD_UNSUPPORTED:
        return None
    if 200 <= status < 400:
        return PreflightOutcome.OK
    if status in _BLOCKED_STATUSES:
        return PreflightOutcome.BLOCKED
    if status >= 500:
        return PreflightOutcome.UPSTREAM_ERROR
    return None


async def preflight(
    client: httpx.AsyncClient,
    url: str,
    budget_ms: int,
    config: CaptureConfig,
) -> PreflightResult:
    """Check *url* with HEAD, falling back to a short GET.

    The GET sub-budget is clamped to
    ``[preflight_get_min_ms, preflight_get_max_ms]`` independently of
    *budget_ms*'s own ceiling.
    """
    headers = _request_headers(config)
    try:
        async with asyncio.timeout(budget_ms / 1000):
            head = await client.head(url, headers=headers, follow_redirects=True, timeout=budget_ms / 1000)
        outcome = classify_head(head.status_code)
        if outcome is not None:
            logger.debug("Preflight HEAD %s -> %d (%s)", url, head.status_code, outcome.value)
            return PreflightResult(outcome=outcome, upstream_status=head.status_code, method="HEAD")

        get_budget_ms = max(config.preflight_get_min_ms, min(config.preflight_get_max_ms, budget_ms))
        async with asyncio.timeout(get_budget_ms / 1000):
            async with client.stream(
                "GET",
                url,
                headers=headers,
                follow_redirects=True,
                timeout=get_budget_ms / 1000,
            ) as resp:
                # Status only; the body is never read.
                status = resp.status_code
        outcome = classify_get(status)
        logger.debug("Preflight GET %s -> %d (%s)", url, status, outcome.value)
        return PreflightResult(outcome=outcome, upstream_status=status, method="GET")
    except Exception as exc:
        logger.info("Preflight transport failure for %s: %s", url, type(exc).__name__)
        return PreflightResult(outcome=PreflightOutcome.TIMEOUT)
