"""Tests for engine resolution and the stealth-engine availability flag."""

from __future__ import annotations

import pytest

from crawlworker.config import camoufox_available
from crawlworker.policy.engine import resolve_engine


class TestResolveEngine:
    def test_camoufox_unavailable_falls_back_to_playwright(self) -> None:
        resolved = resolve_engine("camoufox", False)
        assert resolved.requested == "camoufox"
        assert resolved.selected == "playwright"
        assert resolved.fallback_reason == "camoufox_unavailable"

    def test_camoufox_kept_when_available(self) -> None:
        resolved = resolve_engine("camoufox", True)
        assert resolved.selected == "camoufox"
        assert resolved.fallback_reason is None

    @pytest.mark.parametrize("available", [True, False])
    def test_playwright_is_never_substituted(self, available: bool) -> None:
        resolved = resolve_engine("playwright", available)
        assert resolved.selected == "playwright"
        assert resolved.fallback_reason is None

    def test_http_engine_is_never_substituted(self) -> None:
        assert resolve_engine("http:fast", False).selected == "http:fast"


class TestCamoufoxAvailable:
    def test_all_flags_off(self) -> None:
        env = {
            "CAMOUFOX_AVAILABLE": "0",
            "STEALTHDOCK_CAMOUFOX_AVAILABLE": "0",
            "STEALTHDOCK_CAMOUFOX_ENABLED": "0",
        }
        assert camoufox_available(env) is False

    @pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
    def test_any_truthy_flag_enables(self, value: str) -> None:
        assert camoufox_available({"STEALTHDOCK_CAMOUFOX_ENABLED": value}) is True

    def test_empty_environment(self) -> None:
        assert camoufox_available({}) is False
