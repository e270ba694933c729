# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pageshot.problem_details — failure codes, sanitization, rendering."""

from __future__ import annotations

import json

import pytest

from pageshot.errors import (
    AccessDeniedError,
    CacheCorruptError,
    CaptureFailedError,
    CaptureTimeoutError,
    InvalidURLError,
    MissingTargetError,
    PreflightError,
    SocialImageNotFoundError,
)
from pageshot.problem_details import (
    MAX_DETAIL_LENGTH,
    ProblemDetail,
    ProblemType,
    from_exception,
    from_type,
    sanitize_detail,
)

# ---------------------------------------------------------------------------
# ProblemType
# ---------------------------------------------------------------------------


class TestProblemType:
    def test_all_codes_have_status(self):
        for t in ProblemType:
            assert t.status in (400, 403, 404, 500, 504)

    @pytest.mark.parametrize(
        ("t", "status"),
        [
            (ProblemType.BAD_REQUEST, 400),
            (ProblemType.PREVIEW_NOT_ALLOWED, 403),
            (ProblemType.SOCIAL_NOT_FOUND, 404),
            (ProblemType.CAPTURE_FAILED, 500),
            (ProblemType.PREFLIGHT_UPSTREAM, 504),
        ],
    )
    def test_status(self, t, status):
        assert t.status == status

    def test_str_value(self):
        assert str(ProblemType.CAPTURE_TIMEOUT) == "capture-timeout"


# ---------------------------------------------------------------------------
# sanitize_detail
# ---------------------------------------------------------------------------


class TestSanitize:
    def test_bearer(self):
        assert "abc123" not in sanitize_detail("auth failed: Bearer abc123")

    def test_token_assignment(self):
        out = sanitize_detail("PAGESHOT_API_TOKEN=supersecret rejected")
        assert "supersecret" not in out

    def test_userinfo(self):
        assert sanitize_detail("https://user:pw@example.dev/") == "https://<redacted>@example.dev/"

    def test_account_id(self):
        out = sanitize_detail("POST /accounts/0123456789abcdef0123/images/v1 failed")
        assert "0123456789abcdef0123" not in out

    def test_paths(self):
        assert sanitize_detail("cannot open /home/me/.cache/kv.db") == "cannot open <path>"

    def test_truncates(self):
        out = sanitize_detail("x" * 500)
        assert len(out) == MAX_DETAIL_LENGTH + 3
        assert out.endswith("...")

    def test_plain_text_unchanged(self):
        assert sanitize_detail("Rendering timed out") == "Rendering timed out"


# ---------------------------------------------------------------------------
# ProblemDetail rendering
# ---------------------------------------------------------------------------


class TestProblemDetail:
    def test_to_dict_merges_extra(self):
        p = from_type(ProblemType.CAPTURE_TIMEOUT, "slow", extra={"timeout": {"total_ms": 25000}})
        assert p.to_dict() == {"ok": False, "code": "capture-timeout", "message": "slow", "timeout": {"total_ms": 25000}}

    def test_extra_cannot_shadow(self):
        p = ProblemDetail(code="capture-failed", message="m", extra={"ok": True, "code": "x"})
        assert p.to_dict()["ok"] is False
        assert p.to_dict()["code"] == "capture-failed"

    def test_headers(self):
        p = from_type(ProblemType.PREFLIGHT_BLOCKED, "no", cache_tag="miss-preflight")
        assert p.headers() == {
            "cache-control": "no-store",
            "x-capture-worker": "1",
            "x-capture-fail": "preflight-blocked",
            "x-capture-cache": "miss-preflight",
        }

    def test_headers_without_tag(self):
        assert "x-capture-cache" not in from_type(ProblemType.BAD_REQUEST, "m").headers()

    def test_to_response(self):
        resp = from_type(ProblemType.SOCIAL_NOT_FOUND, "none", cache_tag="meta-miss").to_response()
        assert resp.status_code == 404
        assert resp.headers["content-type"] == "application/json; charset=utf-8"
        assert resp.headers["x-capture-fail"] == "social-not-found"
        assert json.loads(resp.body) == {"ok": False, "code": "social-not-found", "message": "none"}

    def test_cli_text_with_hint(self):
        text = from_type(ProblemType.INVALID_URL, "bad").to_cli_text()
        assert text.startswith("Error (invalid-url): bad")
        assert "Hint:" in text

    def test_cli_text_without_hint(self):
        assert from_type(ProblemType.CAPTURE_FAILED, "boom").to_cli_text() == "Error (capture-failed): boom"


# ---------------------------------------------------------------------------
# from_exception
# ---------------------------------------------------------------------------


class TestFromException:
    @pytest.mark.parametrize(
        ("exc", "code", "status"),
        [
            (MissingTargetError("m"), "bad-request", 400),
            (InvalidURLError("m"), "invalid-url", 400),
            (AccessDeniedError("m", cache_tag="preview-deny"), "preview-not-allowed", 403),
            (SocialImageNotFoundError("m", cache_tag="meta-miss"), "social-not-found", 404),
            (CaptureTimeoutError("m", cache_tag="miss-fail"), "capture-timeout", 504),
            (CaptureFailedError("m", cache_tag="miss-fail"), "capture-failed", 500),
        ],
    )
    def test_mapping(self, exc, code, status):
        p = from_exception(exc)
        assert (p.code, p.status) == (code, status)
        assert p.cache_tag == exc.cache_tag

    @pytest.mark.parametrize(
        ("outcome", "code", "status"),
        [
            ("blocked", "preflight-blocked", 403),
            ("rejected", "preflight-rejected", 403),
            ("upstream-error", "preflight-upstream", 504),
            ("timeout", "preflight-timeout", 504),
        ],
    )
    def test_preflight(self, outcome, code, status):
        p = from_exception(PreflightError("m", outcome=outcome, cache_tag="refresh-preflight"))
        assert (p.code, p.status, p.cache_tag) == (code, status, "refresh-preflight")

    def test_preview_render_codes(self):
        assert from_exception(CaptureTimeoutError("m"), preview=True).code == "preview-timeout"
        assert from_exception(CaptureFailedError("m"), preview=True).code == "preview-failed"

    def test_preview_does_not_change_other_codes(self):
        assert from_exception(AccessDeniedError("m"), preview=True).code == "preview-not-allowed"

    def test_timeout_extra_carried(self):
        exc = CaptureTimeoutError("m", extra={"timeout": {"timed_out_at": "screenshot"}})
        assert from_exception(exc).to_dict()["timeout"] == {"timed_out_at": "screenshot"}

    def test_other_pageshot_error(self):
        assert from_exception(CacheCorruptError("m")).code == "capture-failed"

    def test_unknown_exception_sanitized(self):
        p = from_exception(RuntimeError("failed reading /var/lib/pageshot/kv.db"))
        assert p.code == "capture-failed"
        assert p.status == 500
        assert "/var/lib" not in p.message
        assert p.message.startswith("RuntimeError:")
