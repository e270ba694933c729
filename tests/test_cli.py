# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pageshot.cli — argument parsing, dispatch, and error output.

Commands are exercised with their async work patched out; no browser is
launched.
"""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from pageshot import CapturedImage, cli
from pageshot.errors import InvalidURLError, PreflightError


@pytest.fixture(autouse=True)
def _reset_logging():
    """cli.main() reconfigures the root logger; restore it afterwards."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()


class TestParser:
    def test_capture_args(self):
        args = cli.build_parser().parse_args(["capture", "example.dev", "-o", "out.png", "--force"])
        assert args.command == "capture"
        assert args.url == "example.dev"
        assert args.output == "out.png"
        assert args.force is True
        assert args.preview is False
        assert args.db_path == ""

    def test_refresh_args(self):
        args = cli.build_parser().parse_args(["refresh", "--sweeps", "3", "--db-path", "/tmp/kv.db"])
        assert args.sweeps == 3
        assert args.db_path == "/tmp/kv.db"
        assert args.max_contexts == 2

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestCapture:
    def test_writes_file_and_summary(self, tmp_path, capsys):
        out = tmp_path / "nested" / "shot.png"
        image = CapturedImage(content=b"PNGBYTES", cache="miss")
        with patch("pageshot.cli._capture", AsyncMock(return_value=image)):
            cli.main(["capture", "example.dev", "-o", str(out)])
        assert out.read_bytes() == b"PNGBYTES"
        summary = json.loads(capsys.readouterr().out)
        assert summary["bytes"] == 8
        assert summary["x-capture-cache"] == "miss"
        assert summary["content_type"] == "image/png"

    def test_error_prints_problem_text(self, capsys):
        with patch("pageshot.cli._capture", AsyncMock(side_effect=InvalidURLError("Invalid URL"))):
            with pytest.raises(SystemExit) as excinfo:
                cli.main(["capture", "ftp://x"])
        assert excinfo.value.code == 1
        err = capsys.readouterr().err
        assert "Error (invalid-url): Invalid URL" in err
        assert "Hint:" in err

    def test_preflight_error_code(self, capsys):
        err = PreflightError("blocked", outcome="blocked", cache_tag="miss-preflight")
        with patch("pageshot.cli._capture", AsyncMock(side_effect=err)):
            with pytest.raises(SystemExit):
                cli.main(["capture", "example.dev"])
        assert "preflight-blocked" in capsys.readouterr().err

    def test_unknown_args_rejected(self):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["capture", "example.dev", "--bogus"])
        assert excinfo.value.code == 2


class TestRefresh:
    def test_prints_reports(self, capsys):
        reports = [{"listed": 10, "cursor_action": "advanced"}, {"listed": 3, "cursor_action": "reset"}]
        with patch("pageshot.cli._refresh", AsyncMock(return_value=reports)):
            cli.main(["refresh", "--sweeps", "5"])
        assert json.loads(capsys.readouterr().out) == reports


class TestServe:
    def test_forwards_extra_args(self):
        with patch("pageshot.server.main") as server_main:
            cli.main(["serve", "--port", "9001", "--db-path", "kv.db"])
        server_main.assert_called_once_with(argv=["--port", "9001", "--db-path", "kv.db"])
