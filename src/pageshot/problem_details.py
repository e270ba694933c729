# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Failure responses for the capture surface.

Maps internal exceptions to a structured ``ProblemDetail`` that renders as
the JSON failure body::

    {"ok": false, "code": "<code>", "message": "<text>", ...extra}

with ``x-capture-fail: <code>`` and ``x-capture-cache: <tag>`` headers.
The module is a near-leaf dependency (stdlib + errors.py + starlette lazy)
so it can be imported safely from any layer.

Key public API:

- ``ProblemType``   — StrEnum of failure codes.
- ``ProblemDetail`` — frozen dataclass (→ dict / Starlette response / CLI text).
- ``sanitize_detail()`` — scrub secrets & paths from error messages.
- ``from_exception()`` — build a ``ProblemDetail`` from any exception.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

MAX_DETAIL_LENGTH = 200

# ── ProblemType taxonomy ─────────────────────────────────────────────


class ProblemType(StrEnum):
    """Failure codes returned in the ``code`` field and ``x-capture-fail`` header."""

    # Request validation
    BAD_REQUEST = "bad-request"
    INVALID_URL = "invalid-url"
    PREVIEW_NOT_ALLOWED = "preview-not-allowed"

    # Preflight
    PREFLIGHT_BLOCKED = "preflight-blocked"
    PREFLIGHT_REJECTED = "preflight-rejected"
    PREFLIGHT_UPSTREAM = "preflight-upstream"
    PREFLIGHT_TIMEOUT = "preflight-timeout"

    # Resolution
    SOCIAL_NOT_FOUND = "social-not-found"
    CAPTURE_TIMEOUT = "capture-timeout"
    CAPTURE_FAILED = "capture-failed"
    PREVIEW_TIMEOUT = "preview-timeout"
    PREVIEW_FAILED = "preview-failed"

    @property
    def status(self) -> int:
        return _TYPE_STATUS[self]


_TYPE_STATUS: dict[ProblemType, int] = {
    ProblemType.BAD_REQUEST: 400,
    ProblemType.INVALID_URL: 400,
    ProblemType.PREVIEW_NOT_ALLOWED: 403,
    ProblemType.PREFLIGHT_BLOCKED: 403,
    ProblemType.PREFLIGHT_REJECTED: 403,
    ProblemType.PREFLIGHT_UPSTREAM: 504,
    ProblemType.PREFLIGHT_TIMEOUT: 504,
    ProblemType.SOCIAL_NOT_FOUND: 404,
    ProblemType.CAPTURE_TIMEOUT: 504,
    ProblemType.CAPTURE_FAILED: 500,
    ProblemType.PREVIEW_TIMEOUT: 504,
    ProblemType.PREVIEW_FAILED: 500,
}

_PREFLIGHT_TYPES: dict[str, ProblemType] = {
    "blocked": ProblemType.PREFLIGHT_BLOCKED,
    "rejected": ProblemType.PREFLIGHT_REJECTED,
    "upstream-error": ProblemType.PREFLIGHT_UPSTREAM,
    "timeout": ProblemType.PREFLIGHT_TIMEOUT,
}

_CLI_HINTS: dict[ProblemType, str] = {
    ProblemType.INVALID_URL: "Provide a valid http:// or https:// URL.",
    ProblemType.SOCIAL_NOT_FOUND: "The page declares no og:image / twitter:image.",
    ProblemType.PREVIEW_NOT_ALLOWED: "Preview rendering is limited to the configured root domain.",
    ProblemType.PREFLIGHT_TIMEOUT: "Check that the site is reachable, then retry.",
}

# ── Secret sanitization patterns ─────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(
            r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+",
            re.IGNORECASE,
        ),
        "<redacted>",
    ),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]{8,}"), "Basic <redacted>"),
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
    (re.compile(r"/accounts/[0-9a-f]{16,}"), "/accounts/<redacted>"),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|proc|sys|usr|Library"
    r"|Applications|private|snap|mnt|media|nix)/[\w./-]+"
    r"|[A-Z]:\\[\w.\\-]+)"
)


def sanitize_detail(text: str) -> str:
    """Scrub secrets and filesystem paths from *text*.

    Applies ``_SECRET_PATTERNS`` and ``_PATH_PATTERN``, then truncates
    to ``MAX_DETAIL_LENGTH`` characters.
    """
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


# ── ProblemDetail dataclass ──────────────────────────────────────────

# Body fields that extras must never shadow.
_STANDARD_FIELDS = frozenset({"ok", "code", "message"})


@dataclass(frozen=True, slots=True)
class ProblemDetail:
    """Immutable structured failure."""

    code: str = ProblemType.CAPTURE_FAILED.value
    status: int = 500
    message: str = ""
    cache_tag: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Failure body; extras merged at top level without shadowing."""
        d: dict[str, Any] = {"ok": False, "code": self.code, "message": self.message}
        for k, v in self.extra.items():
            if k not in _STANDARD_FIELDS:
                d[k] = v
        return d

    def headers(self) -> dict[str, str]:
        h = {
            "cache-control": "no-store",
            "x-capture-worker": "1",
            "x-capture-fail": self.code,
        }
        if self.cache_tag:
            h["x-capture-cache"] = self.cache_tag
        return h

    def to_response(self):
        """Starlette ``JSONResponse`` with the failure headers."""
        from starlette.responses import JSONResponse

        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status,
            media_type="application/json; charset=utf-8",
            headers=self.headers(),
        )

    def to_cli_text(self) -> str:
        """Human-friendly CLI error message.

        Format::

            Error (<code>): <message>
            Hint: <hint>
        """
        lines = [f"Error ({self.code}): {self.message}"]
        hint = _CLI_HINTS.get(ProblemType(self.code), "") if self.code in _TYPE_STATUS else ""
        if hint:
            lines.append(f"Hint: {hint}")
        return "\n".join(lines)


def from_type(problem_type: ProblemType, message: str, *, cache_tag: str = "", extra: dict | None = None) -> ProblemDetail:
    return ProblemDetail(
        code=problem_type.value,
        status=problem_type.status,
        message=sanitize_detail(message),
        cache_tag=cache_tag,
        extra=dict(extra) if extra else {},
    )


# ── Exception → ProblemType mapping ──────────────────────────────────


def _exception_type_map() -> dict[type, ProblemType]:
    """Lazy-build mapping from exception classes to ProblemType."""
    from .errors import (
        AccessDeniedError,
        CaptureFailedError,
        CaptureTimeoutError,
        InvalidURLError,
        MissingTargetError,
        SocialImageNotFoundError,
    )

    return {
        MissingTargetError: ProblemType.BAD_REQUEST,
        InvalidURLError: ProblemType.INVALID_URL,
        AccessDeniedError: ProblemType.PREVIEW_NOT_ALLOWED,
        SocialImageNotFoundError: ProblemType.SOCIAL_NOT_FOUND,
        CaptureTimeoutError: ProblemType.CAPTURE_TIMEOUT,
        CaptureFailedError: ProblemType.CAPTURE_FAILED,
    }


def from_exception(exc: Exception, *, preview: bool = False) -> ProblemDetail:
    """Build a ProblemDetail from an exception.

    Render failures map to ``preview-*`` codes when *preview* is set.
    Exceptions outside the PageShot hierarchy become ``capture-failed``
    with a sanitized message.
    """
    from .errors import PageShotError, PreflightError

    if isinstance(exc, PreflightError):
        problem_type = _PREFLIGHT_TYPES.get(exc.outcome, ProblemType.PREFLIGHT_TIMEOUT)
        return from_type(problem_type, str(exc), cache_tag=exc.cache_tag, extra=exc.extra)

    problem_type = _exception_type_map().get(type(exc))
    if problem_type is not None:
        if preview and problem_type is ProblemType.CAPTURE_TIMEOUT:
            problem_type = ProblemType.PREVIEW_TIMEOUT
        elif preview and problem_type is ProblemType.CAPTURE_FAILED:
            problem_type = ProblemType.PREVIEW_FAILED
        return from_type(problem_type, str(exc), cache_tag=exc.cache_tag, extra=exc.extra)

    if isinstance(exc, PageShotError):
        return from_type(ProblemType.CAPTURE_FAILED, str(exc), cache_tag=exc.cache_tag, extra=exc.extra)

    fallback = ProblemType.PREVIEW_FAILED if preview else ProblemType.CAPTURE_FAILED
    return from_type(fallback, f"{type(exc).__name__}: {exc}")
