"""Tests for the failure classifier."""

from __future__ import annotations

import httpx
import pytest

from crawlworker.policy.failures import classify_failure
from crawlworker.scraper.fetcher import BlockedStatusError


class TestClassifyFailure:
    @pytest.mark.parametrize("status", [401, 403, 429])
    def test_blocked_status_codes(self, status: int) -> None:
        failure = classify_failure(RuntimeError("anything"), status)
        assert failure.type == "blocked"
        assert failure.retryable is True

    def test_status_beats_text(self) -> None:
        failure = classify_failure(RuntimeError("Max depth exceeded"), 403)
        assert failure.type == "blocked"

    def test_blocked_status_error_message(self) -> None:
        failure = classify_failure(BlockedStatusError(429), 429)
        assert failure.type == "blocked"
        assert failure.reason == "Blocked with status 429"

    def test_captcha_text_is_blocked(self) -> None:
        assert classify_failure(RuntimeError("CAPTCHA challenge"), None).type == "blocked"

    def test_budget(self) -> None:
        failure = classify_failure(RuntimeError("Run budget exhausted"), None)
        assert (failure.type, failure.retryable) == ("budget", False)

    def test_policy(self) -> None:
        failure = classify_failure(RuntimeError("Disallowed by robots.txt"), None)
        assert (failure.type, failure.retryable) == ("policy", False)

    def test_parse(self) -> None:
        failure = classify_failure(ValueError("could not parse document"), None)
        assert (failure.type, failure.retryable) == ("parse", False)

    def test_network_text(self) -> None:
        failure = classify_failure(RuntimeError("Socket hang up"), 200)
        assert (failure.type, failure.retryable) == ("network", True)

    def test_transport_error_without_keywords_is_network(self) -> None:
        failure = classify_failure(httpx.ConnectError("[Errno -2] Name or service not known"), None)
        assert (failure.type, failure.retryable) == ("network", True)

    def test_empty_message_uses_exception_name(self) -> None:
        failure = classify_failure(httpx.ReadTimeout(""), None)
        assert failure.reason == "ReadTimeout"
        assert failure.type == "network"

    def test_default_is_infra(self) -> None:
        failure = classify_failure(RuntimeError("boom"), 500)
        assert (failure.type, failure.retryable, failure.reason) == ("infra", False, "boom")

    def test_accepts_plain_strings(self) -> None:
        assert classify_failure("network unreachable").type == "network"
