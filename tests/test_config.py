# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pageshot.config — flags and environment loading."""

from __future__ import annotations

import dataclasses

import pytest

from pageshot.config import CaptureConfig, env_flag, is_truthy

_ENV = (
    "PAGESHOT_ROOT_DOMAIN",
    "PAGESHOT_IMAGES_ACCOUNT_ID",
    "PAGESHOT_API_TOKEN",
    "PAGESHOT_IMAGES_API_BASE",
    "PAGESHOT_REFRESH_INTERVAL",
    "PAGESHOT_HEADFUL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


class TestTruthy:
    @pytest.mark.parametrize("value", ["1", "true", "TRUE", "Yes", " yes "])
    def test_true(self, value):
        assert is_truthy(value)

    @pytest.mark.parametrize("value", [None, "", "0", "false", "on", "y"])
    def test_false(self, value):
        assert not is_truthy(value)

    def test_env_flag(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_HEADFUL", "true")
        assert env_flag("PAGESHOT_HEADFUL")
        assert not env_flag("PAGESHOT_UNSET_FLAG")


class TestCaptureConfig:
    def test_defaults(self):
        c = CaptureConfig()
        assert c.overall_deadline_ms == 25000
        assert (c.viewport_width, c.viewport_height, c.device_scale_factor) == (1200, 630, 2)
        assert c.cron_batch_size == 10
        assert c.url_key_prefix == "url|"
        assert c.cron_cursor_key == "cron|cursor:url"
        assert not c.images_enabled

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            CaptureConfig().root_domain = "x"

    def test_token_not_in_repr(self):
        assert "s3cret" not in repr(CaptureConfig(api_token="s3cret"))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_ROOT_DOMAIN", " Example.DEV ")
        monkeypatch.setenv("PAGESHOT_IMAGES_ACCOUNT_ID", "acct")
        monkeypatch.setenv("PAGESHOT_API_TOKEN", "tok")
        monkeypatch.setenv("PAGESHOT_IMAGES_API_BASE", "https://api.test/v4/")
        monkeypatch.setenv("PAGESHOT_REFRESH_INTERVAL", "300")
        monkeypatch.setenv("PAGESHOT_HEADFUL", "1")
        c = CaptureConfig.from_env()
        assert c.root_domain == "example.dev"
        assert c.images_enabled
        assert c.images_api_base == "https://api.test/v4"
        assert c.refresh_interval == 300.0
        assert c.headless is False

    def test_bad_interval_ignored(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_REFRESH_INTERVAL", "soon")
        assert CaptureConfig.from_env().refresh_interval == 0.0

    def test_negative_interval_clamped(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_REFRESH_INTERVAL", "-5")
        assert CaptureConfig.from_env().refresh_interval == 0.0

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("PAGESHOT_ROOT_DOMAIN", "env.dev")
        assert CaptureConfig.from_env(root_domain="arg.dev").root_domain == "arg.dev"
        assert CaptureConfig.from_env(root_domain=None).root_domain == "env.dev"
