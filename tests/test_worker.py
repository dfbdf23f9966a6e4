"""Tests for the crawl loop.

Mocking strategy:
- ``FakeClient`` replaces the orchestrator API. It serves scripted lease
  batches and records every queue, dataset and event call.
- ``crawlworker.worker.loop.fetch_page`` is patched so no page is fetched;
  extraction and link discovery run for real on the fixture HTML.
- ``respectRobots`` is off unless a test is about robots, in which case
  ``respx`` serves the robots.txt.
- Sleeping is a no-op and the clock is injectable.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from unittest.mock import patch

import httpx
import pytest
import respx

from crawlworker.config import Settings
from crawlworker.policy.stop import StopReason
from crawlworker.runtime.client import BootstrapPayload, ConcurrencyPolicy, LeaseItem
from crawlworker.runtime.input import InputValidationError
from crawlworker.scraper.models import FetchedPage
from crawlworker.scraper.proxy import ProxySettings
from crawlworker.worker import CrawlWorker, run_worker

_PAGE_HTML = """\
<html lang="en">
<head><title>Home</title><meta name="description" content="Landing page"></head>
<body>
  <nav>Menu</nav>
  <main><h1>Welcome</h1><p>Hello crawler.</p></main>
  <a href="/docs">Docs</a>
  <a href="/blog?page=2">Next</a>
  <a href="https://elsewhere.org/">Away</a>
</body>
</html>
"""


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

class FakeClient:
    """In-memory orchestrator that records calls in order."""

    def __init__(
        self,
        run_input: Dict[str, Any],
        batches: Optional[List[List[LeaseItem]]] = None,
        concurrency: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.run_input = run_input
        self.batches = list(batches or [])
        self.concurrency = concurrency
        self.lease_limits: List[int] = []
        self.enqueued: List[Dict[str, Any]] = []
        self.records: List[Dict[str, Any]] = []
        self.acks: List[Dict[str, Any]] = []
        self.fails: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []

    def bootstrap(self) -> BootstrapPayload:
        return BootstrapPayload(
            run_id="run-1",
            input=self.run_input,
            concurrency=ConcurrencyPolicy.from_payload(self.concurrency),
        )

    def lease(self, worker_id: str, limit: int, lease_seconds: int = 60) -> List[LeaseItem]:
        self.lease_limits.append(limit)
        return self.batches.pop(0) if self.batches else []

    def enqueue(self, items: List[Dict[str, Any]]) -> None:
        self.enqueued.extend(items)

    def push_dataset(self, records: List[Dict[str, Any]]) -> None:
        self.records.extend(records)

    def ack(self, request_id, status_code, latency_ms, metadata) -> None:
        self.acks.append({"request_id": request_id, "status_code": status_code, "metadata": metadata})

    def fail(self, request_id, error_type, error_reason, retryable, status_code, latency_ms) -> None:
        self.fails.append(
            {
                "request_id": request_id,
                "error_type": error_type,
                "error_reason": error_reason,
                "retryable": retryable,
                "status_code": status_code,
            }
        )

    def event(self, event_type, payload, request_id=None, stage=None, message=None, level="info") -> None:
        self.events.append(
            {"event_type": event_type, "payload": payload, "request_id": request_id, "level": level}
        )

    def close(self) -> None:
        pass

    def event_types(self) -> List[str]:
        return [event["event_type"] for event in self.events]


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        runtime_api_base_url="http://orchestrator.test",
        run_id="run-1",
        run_token="token",
        worker_name="test-worker",
        idle_sleep_seconds=0,
        user_agent="test-agent/1.0",
        camoufox_available=False,
        proxy=ProxySettings(),
    )


def _input(**overrides) -> Dict[str, Any]:
    data = {"startUrls": ["https://example.com"], "crawlerType": "http:fast", "respectRobots": False}
    data.update(overrides)
    return data


def _item(request_id: str, url: str = "https://example.com/", depth: float = 0) -> LeaseItem:
    return LeaseItem(request_id=request_id, url=url, metadata={"depth": depth})


def _page(url: str, status: int = 200, html: str = _PAGE_HTML, **kwargs) -> FetchedPage:
    return FetchedPage(status_code=status, final_url=url, html=html, fetch_engine="http:fast", **kwargs)


def _fetch_ok(url, engine, options, http) -> FetchedPage:
    return _page(url)


def _worker(client: FakeClient, settings: Settings, **kwargs) -> CrawlWorker:
    return CrawlWorker(client, settings, sleep=lambda seconds: None, **kwargs)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestHappyPath:
    def test_single_page_run(self, settings) -> None:
        client = FakeClient(_input(), [[_item("req-1")]])
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok) as mock_fetch:
            summary = _worker(client, settings).run()

        mock_fetch.assert_called_once()
        assert summary.stop_reason is StopReason.QUEUE_DRAINED
        assert summary.processed_pages == 1
        assert summary.emitted_results == 1

        assert [a["request_id"] for a in client.acks] == ["req-1"]
        assert client.acks[0]["metadata"]["discovered_count"] == 2
        assert client.fails == []

        assert client.event_types() == ["runtime.started", "request.succeeded", "runtime.finished"]
        finished = client.events[-1]["payload"]
        assert finished["stop_reason"] == "queue_drained"
        assert finished["processed_pages"] == 1

    def test_discovered_links_are_enqueued_with_depth_and_priority(self, settings) -> None:
        client = FakeClient(_input(), [[_item("req-1", depth=1)]])
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok):
            _worker(client, settings).run()

        assert client.enqueued == [
            {
                "url": "https://example.com/docs",
                "discovered_from_request_id": "req-1",
                "priority": 50,
                "metadata": {"depth": 2, "discovered_by": "req-1"},
            },
            {
                "url": "https://example.com/blog?page=2",
                "discovered_from_request_id": "req-1",
                "priority": 80,
                "metadata": {"depth": 2, "discovered_by": "req-1"},
            },
        ]

    def test_dataset_record(self, settings) -> None:
        client = FakeClient(_input(), [[_item("req-1")]])
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok):
            _worker(client, settings).run()

        (record,) = client.records
        assert record["url"] == "https://example.com/"
        assert record["final_url"] == "https://example.com/"
        assert record["status_code"] == 200
        assert record["title"] == "Home"
        assert record["description"] == "Landing page"
        assert record["language"] == "en"
        assert "Hello crawler." in record["content_text"]
        assert "Menu" not in record["content_text"]
        assert "# Welcome" in record["content_markdown"]
        assert record["metadata"]["depth"] == 0
        assert record["metadata"]["selected_engine"] == "http:fast"
        assert record["metadata"]["extractor"] == "website-content-crawler"
        assert "html" not in record["metadata"]
        assert record["fetched_at"].endswith("+00:00")

    def test_save_toggles(self, settings) -> None:
        client = FakeClient(
            _input(saveHtml=True, saveText=False, saveMarkdown=False), [[_item("req-1")]]
        )
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok):
            _worker(client, settings).run()

        (record,) = client.records
        assert record["content_text"] is None
        assert record["content_markdown"] is None
        assert "<h1>Welcome</h1>" in record["metadata"]["html"]


# ---------------------------------------------------------------------------
# Stop conditions
# ---------------------------------------------------------------------------

class TestStopConditions:
    def test_page_budget_fails_rest_of_batch_without_fetching(self, settings) -> None:
        batch = [_item("req-1"), _item("req-2", "https://example.com/b")]
        client = FakeClient(_input(maxPages=1), [batch])
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok) as mock_fetch:
            summary = _worker(client, settings).run()

        assert mock_fetch.call_count == 1
        assert summary.stop_reason is StopReason.MAX_PAGES_REACHED
        assert client.fails == [
            {
                "request_id": "req-2",
                "error_type": "budget",
                "error_reason": "Run stop criteria reached (max_pages_reached)",
                "retryable": False,
                "status_code": None,
            }
        ]

    def test_idle_budget_of_one(self, settings) -> None:
        client = FakeClient(_input(maxIdleCycles=1))
        summary = _worker(client, settings).run()
        assert summary.stop_reason is StopReason.MAX_IDLE_CYCLES_REACHED
        assert len(client.lease_limits) == 1

    def test_queue_drained_after_two_idle_leases(self, settings) -> None:
        client = FakeClient(_input())
        summary = _worker(client, settings).run()
        assert summary.stop_reason is StopReason.QUEUE_DRAINED
        assert len(client.lease_limits) == 2

    def test_runtime_budget_stops_before_leasing(self, settings) -> None:
        ticks = iter([0.0, 5000.0])
        client = FakeClient(_input(maxRuntimeSeconds=60), [[_item("req-1")]])
        worker = _worker(client, settings, clock=lambda: next(ticks))
        summary = worker.run()

        assert summary.stop_reason is StopReason.MAX_RUNTIME_REACHED
        assert client.lease_limits == []

    def test_lease_resets_idle_counter(self, settings) -> None:
        client = FakeClient(_input(), [[], [_item("req-1")], [], []])
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok):
            summary = _worker(client, settings).run()

        assert summary.stop_reason is StopReason.QUEUE_DRAINED
        assert len(client.lease_limits) == 4


# ---------------------------------------------------------------------------
# Per-item policy and failures
# ---------------------------------------------------------------------------

class TestItemFailures:
    def test_depth_limit(self, settings) -> None:
        client = FakeClient(_input(maxDepth=2), [[_item("req-deep", depth=3)]])
        with patch("crawlworker.worker.loop.fetch_page") as mock_fetch:
            _worker(client, settings).run()

        mock_fetch.assert_not_called()
        assert client.fails[0]["error_type"] == "policy"
        assert client.fails[0]["error_reason"] == "Max depth exceeded (2)"
        assert client.fails[0]["retryable"] is False

    def test_fractional_depth_is_compared_as_given(self, settings) -> None:
        client = FakeClient(_input(maxDepth=1), [[_item("req-frac", depth=1.5)]])
        with patch("crawlworker.worker.loop.fetch_page") as mock_fetch:
            _worker(client, settings).run()

        mock_fetch.assert_not_called()
        assert client.fails[0]["error_reason"] == "Max depth exceeded (1)"

    def test_blocked_status(self, settings) -> None:
        client = FakeClient(_input(), [[_item("req-1")]])
        with patch(
            "crawlworker.worker.loop.fetch_page",
            side_effect=lambda url, *args: _page(url, status=403, html="denied"),
        ):
            summary = _worker(client, settings).run()

        assert client.acks == []
        assert client.records == []
        assert client.fails == [
            {
                "request_id": "req-1",
                "error_type": "blocked",
                "error_reason": "Blocked with status 403",
                "retryable": True,
                "status_code": 403,
            }
        ]
        assert summary.processed_pages == 0
        failed = [e for e in client.events if e["event_type"] == "request.failed"]
        assert failed[0]["level"] == "warning"

    def test_network_error(self, settings) -> None:
        client = FakeClient(_input(), [[_item("req-1")]])
        with patch(
            "crawlworker.worker.loop.fetch_page",
            side_effect=httpx.ConnectError("Connection refused"),
        ):
            _worker(client, settings).run()

        assert client.fails[0]["error_type"] == "network"
        assert client.fails[0]["retryable"] is True
        assert client.fails[0]["status_code"] is None

    def test_unexpected_error_is_infra(self, settings) -> None:
        client = FakeClient(_input(), [[_item("req-1")]])
        with patch("crawlworker.worker.loop.fetch_page", side_effect=RuntimeError("boom")):
            _worker(client, settings).run()

        assert client.fails[0]["error_type"] == "infra"
        failed = [e for e in client.events if e["event_type"] == "request.failed"]
        assert failed[0]["level"] == "error"

    def test_robots_disallow(self, settings) -> None:
        client = FakeClient(
            _input(respectRobots=True), [[_item("req-1", "https://example.com/private/x")]]
        )
        with respx.mock:
            respx.get("https://example.com/robots.txt").mock(
                return_value=httpx.Response(200, text="User-agent: *\nDisallow: /private/\n")
            )
            with patch("crawlworker.worker.loop.fetch_page") as mock_fetch:
                _worker(client, settings).run()

        mock_fetch.assert_not_called()
        assert client.fails[0]["error_type"] == "policy"
        assert client.fails[0]["error_reason"] == "Blocked by robots.txt"
        assert client.fails[0]["status_code"] == 403

    def test_unencodable_host_fails_item_not_run(self, settings) -> None:
        bad_url = "https://" + "a" * 70 + ".example.com/page"
        batch = [_item("bad", bad_url), _item("good", "https://example.com/ok")]
        client = FakeClient(_input(respectRobots=True), [batch])

        def fetch(url, engine, options, http):
            if url == bad_url:
                raise httpx.InvalidURL("Invalid IDNA hostname")
            return _page(url)

        with respx.mock:
            respx.get("https://example.com/robots.txt").mock(
                return_value=httpx.Response(200, text="User-agent: *\nAllow: /\n")
            )
            with patch("crawlworker.worker.loop.fetch_page", side_effect=fetch):
                exit_code = run_worker(settings, client)

        assert exit_code == 0
        assert [f["request_id"] for f in client.fails] == ["bad"]
        assert [a["request_id"] for a in client.acks] == ["good"]
        assert "runtime.crashed" not in client.event_types()


# ---------------------------------------------------------------------------
# Engine, fallback and concurrency
# ---------------------------------------------------------------------------

class TestEngineAndConcurrency:
    def test_camoufox_unavailable_emits_fallback_first(self, settings) -> None:
        client = FakeClient(_input(crawlerType="camoufox"))
        _worker(client, settings).run()

        assert client.event_types()[:2] == ["engine.fallback", "runtime.started"]
        fallback = client.events[0]
        assert fallback["payload"] == {
            "requested": "camoufox",
            "selected": "playwright",
            "reason": "camoufox_unavailable",
        }
        assert client.events[-1]["payload"]["selected_engine"] == "playwright"

    def test_per_request_http_fallback_is_reported(self, settings) -> None:
        client = FakeClient(_input(crawlerType="playwright"), [[_item("req-1")]])
        with patch(
            "crawlworker.worker.loop.fetch_page",
            side_effect=lambda url, *args: _page(url, fallback_reason="Timeout 45000ms exceeded"),
        ):
            _worker(client, settings).run()

        fallbacks = [e for e in client.events if e["event_type"] == "engine.fallback"]
        assert len(fallbacks) == 1
        assert fallbacks[0]["request_id"] == "req-1"
        assert fallbacks[0]["payload"]["selected"] == "http:fast"
        assert client.acks[0]["metadata"]["fetch_engine"] == "http:fast"

    def test_proxy_event_when_proxy_enabled(self, settings) -> None:
        settings.proxy = ProxySettings(enabled=True, proxy_url="http://user:pw@proxy:8080", provider="acme")
        client = FakeClient(_input())
        _worker(client, settings).run()

        (applied,) = [e for e in client.events if e["event_type"] == "proxy.client.applied"]
        assert applied["payload"]["provider"] == "acme"
        assert "pw" not in repr(applied["payload"])

    def test_adaptive_concurrency_grows_and_shrinks(self, settings) -> None:
        batches = [[_item("a")], [_item("b")], [_item("c")]]
        client = FakeClient(
            _input(),
            batches,
            concurrency={"min_concurrency": 1, "max_concurrency": 2, "autoscale_mode": "adaptive"},
        )
        outcomes = iter([_fetch_ok, _fetch_ok, None])

        def fetch(url, engine, options, http):
            handler = next(outcomes)
            if handler is None:
                raise RuntimeError("boom")
            return handler(url, engine, options, http)

        with patch("crawlworker.worker.loop.fetch_page", side_effect=fetch):
            summary = _worker(client, settings).run()

        assert client.lease_limits[:3] == [1, 2, 2]
        assert summary.final_concurrency == 1

    def test_fixed_concurrency_never_changes(self, settings) -> None:
        client = FakeClient(
            _input(),
            [[_item("a")], [_item("b")]],
            concurrency={"min_concurrency": 3, "max_concurrency": 8, "autoscale_mode": "fixed"},
        )
        with patch("crawlworker.worker.loop.fetch_page", side_effect=_fetch_ok):
            _worker(client, settings).run()

        assert set(client.lease_limits) == {3}


# ---------------------------------------------------------------------------
# Input errors and process exit status
# ---------------------------------------------------------------------------

class TestRunWorker:
    def test_invalid_input_is_reported_and_raised(self, settings) -> None:
        client = FakeClient({"startUrls": ["not a url"]})
        with pytest.raises(InputValidationError, match="Invalid input: "):
            _worker(client, settings).run()

        assert client.event_types() == ["runtime.input_invalid"]
        assert client.events[0]["level"] == "error"

    def test_run_worker_exit_codes(self, settings) -> None:
        assert run_worker(settings, FakeClient(_input())) == 0

        bad = FakeClient({"startUrls": []})
        assert run_worker(settings, bad) == 1
        assert bad.event_types() == ["runtime.input_invalid", "runtime.crashed"]

    def test_crash_event_failure_does_not_mask_exit_code(self, settings) -> None:
        client = FakeClient({"startUrls": []})

        def broken_event(*args, **kwargs):
            raise httpx.ConnectError("orchestrator down")

        client.event = broken_event
        assert run_worker(settings, client) == 1
