"""Crawl loop orchestration.

``CrawlWorker.run`` owns one run from bootstrap to finish:

    BOOTSTRAPPING → RUNNING (stop check → lease → process batch) → FINISHED

Items in a leased batch are processed one at a time; "concurrency" only
sizes the next lease. Each item goes through

    stop check → depth check → robots check → fetch → extract + discover → commit

and ends either acknowledged or failed with a classified, retryable-or-not
reason. Retry scheduling belongs to the queue, never to the worker.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from crawlworker.config import Settings
from crawlworker.config import settings as default_settings
from crawlworker.policy.engine import EngineResolution, resolve_engine
from crawlworker.policy.failures import classify_failure, error_message
from crawlworker.policy.scope import ScopeMatcher, build_scope_matcher
from crawlworker.policy.stop import (
    StopPolicyState,
    StopReason,
    evaluate_stop_reason,
    queue_drained_threshold,
)
from crawlworker.runtime.client import ConcurrencyPolicy, LeaseItem, RuntimeClient
from crawlworker.runtime.input import InputValidationError, RunConfig, parse_run_input
from crawlworker.scraper.extractor import extract_content
from crawlworker.scraper.fetcher import ensure_not_blocked, fetch_page
from crawlworker.scraper.links import discover_links
from crawlworker.scraper.models import (
    DiscoveredLink,
    ExtractedContent,
    ExtractionOptions,
    FetchedPage,
    FetchOptions,
)
from crawlworker.scraper.proxy import HttpSession, proxy_event_payload
from crawlworker.scraper.robots import RobotsCache

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass
class RunSummary:
    stop_reason: StopReason
    processed_pages: int
    emitted_results: int
    final_concurrency: int


class CrawlWorker:
    """Runs a single crawl run against the orchestrator's queue.

    The robots cache and the outbound HTTP session are per-run fields: they
    are created when the run starts and released when it ends.
    """

    def __init__(
        self,
        client: RuntimeClient,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.settings = settings or default_settings
        self._clock = clock
        self._sleep = sleep

        self.state = WorkerState.BOOTSTRAPPING
        self.config: Optional[RunConfig] = None
        self.concurrency = ConcurrencyPolicy()
        self.engine: Optional[EngineResolution] = None
        self.scope: Optional[ScopeMatcher] = None
        self.http: Optional[HttpSession] = None
        self.robots: Optional[RobotsCache] = None
        self.worker_id = ""

        self.processed_pages = 0
        self.emitted_results = 0
        self.idle_cycles = 0
        self.current_concurrency = 1
        self.started_at = 0.0
        self._drained_threshold = 2
        self._fetch_options: Optional[FetchOptions] = None
        self._extraction_options: Optional[ExtractionOptions] = None

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self) -> RunSummary:
        """Bootstrap, crawl until a stop condition holds, and report the finish."""
        logger.info("Bootstrapping runtime...")
        payload = self.client.bootstrap()
        logger.info("Runtime bootstrap complete for run %s", payload.run_id)

        config = self._parse_input(payload.input)
        self._start_run(config, payload.concurrency)
        try:
            self._emit_start_events()
            self.state = WorkerState.RUNNING
            stop_reason = self._crawl()
            self.state = WorkerState.FINISHED
            self.client.event(
                "runtime.finished",
                {
                    "processed_pages": self.processed_pages,
                    "emitted_results": self.emitted_results,
                    "max_pages": config.max_pages,
                    "max_results": config.max_results,
                    "max_runtime_seconds": config.max_runtime_seconds,
                    "max_idle_cycles": config.max_idle_cycles,
                    "stop_reason": stop_reason.value,
                    "selected_engine": self.engine.selected,
                },
                stage="runtime",
            )
        finally:
            self._end_run()

        logger.info(
            "Run finished (%s): processed=%d emitted=%d",
            stop_reason.value,
            self.processed_pages,
            self.emitted_results,
        )
        return RunSummary(
            stop_reason=stop_reason,
            processed_pages=self.processed_pages,
            emitted_results=self.emitted_results,
            final_concurrency=self.current_concurrency,
        )

    def _parse_input(self, raw: Dict[str, Any]) -> RunConfig:
        try:
            return parse_run_input(raw)
        except InputValidationError as exc:
            message = str(exc)
            self.client.event(
                "runtime.input_invalid",
                {"error": message},
                stage="runtime",
                message=message,
                level="error",
            )
            raise InputValidationError(f"Invalid input: {message}") from exc

    def _start_run(self, config: RunConfig, concurrency: ConcurrencyPolicy) -> None:
        settings = self.settings
        self.config = config
        self.concurrency = concurrency
        self.current_concurrency = concurrency.min_concurrency
        self.engine = resolve_engine(config.crawler_type, settings.camoufox_available)
        self.scope = build_scope_matcher(config.start_urls, config.scope_mode, config.allowed_domains)
        self._drained_threshold = queue_drained_threshold(config.max_idle_cycles)
        self.worker_id = f"{settings.worker_name}-{int(time.time() * 1000)}"

        self.http = HttpSession(settings.proxy, settings.user_agent, settings.request_timeout)
        self.robots = RobotsCache(self.http, settings.user_agent, enabled=config.respect_robots)

        self._fetch_options = FetchOptions(
            user_agent=settings.user_agent,
            request_timeout=settings.request_timeout,
            navigation_timeout=settings.navigation_timeout_for(settings.proxy.enabled),
            wait_for_dynamic_content_seconds=config.wait_for_dynamic_content_seconds,
            wait_for_selector=config.wait_for_selector,
            wait_for_selector_timeout=settings.wait_for_selector_timeout,
            click_selectors=list(config.click_selectors),
            click_timeout=settings.click_timeout,
        )
        self._extraction_options = ExtractionOptions(
            remove_cookie_warnings=config.remove_cookie_warnings,
            remove_navigation_elements=config.remove_navigation_elements,
            remove_css_selectors=list(config.remove_css_selectors),
            keep_css_selectors=list(config.keep_css_selectors),
            html_transformer=config.html_transformer,
            include_image_links=config.include_image_links,
            include_audio_links=config.include_audio_links,
            include_video_links=config.include_video_links,
            is_in_scope=self.scope,
        )

        self.processed_pages = 0
        self.emitted_results = 0
        self.idle_cycles = 0
        self.started_at = self._clock()

    def _end_run(self) -> None:
        if self.http is not None:
            self.http.close()
        self.http = None
        self.robots = None

    def _emit_start_events(self) -> None:
        engine = self.engine
        if engine.fallback_reason:
            logger.warning("Engine %s unavailable; using %s", engine.requested, engine.selected)
            self.client.event(
                "engine.fallback",
                {
                    "requested": engine.requested,
                    "selected": engine.selected,
                    "reason": engine.fallback_reason,
                },
                stage="runtime",
                message="Camoufox unavailable; fallback to Playwright",
                level="warning",
            )

        self.client.event(
            "runtime.started",
            {
                "worker_id": self.worker_id,
                "requested_engine": engine.requested,
                "selected_engine": engine.selected,
                "scope_mode": self.config.scope_mode,
                "respect_robots": self.config.respect_robots,
            },
            stage="runtime",
        )
        if self.settings.proxy.enabled:
            self.client.event(
                "proxy.client.applied",
                proxy_event_payload(self.settings.proxy),
                stage="proxy",
            )

    # ------------------------------------------------------------------
    # Lease loop
    # ------------------------------------------------------------------

    def stop_reason(self) -> Optional[StopReason]:
        config = self.config
        return evaluate_stop_reason(
            StopPolicyState(
                started_at=self.started_at,
                now=self._clock(),
                max_runtime_seconds=config.max_runtime_seconds,
                processed_pages=self.processed_pages,
                max_pages=config.max_pages,
                emitted_results=self.emitted_results,
                max_results=config.max_results,
                idle_cycles=self.idle_cycles,
                max_idle_cycles=config.max_idle_cycles,
                queue_drained_idle_threshold=self._drained_threshold,
            )
        )

    def _crawl(self) -> StopReason:
        while True:
            reason = self.stop_reason()
            if reason is not None:
                return reason

            items = self.client.lease(
                self.worker_id, self.current_concurrency, self.settings.lease_seconds
            )
            if not items:
                self.idle_cycles += 1
                logger.info(
                    "No requests leased (idle=%d, processed=%d, emitted=%d, concurrency=%d)",
                    self.idle_cycles,
                    self.processed_pages,
                    self.emitted_results,
                    self.current_concurrency,
                )
                self._sleep(self.settings.idle_sleep_seconds)
                continue

            logger.info(
                "Leased %d request(s) at concurrency %d (processed=%d, emitted=%d)",
                len(items),
                self.current_concurrency,
                self.processed_pages,
                self.emitted_results,
            )
            self.idle_cycles = 0
            for item in items:
                self.process_item(item)

    # ------------------------------------------------------------------
    # Per-item pipeline
    # ------------------------------------------------------------------

    def process_item(self, item: LeaseItem) -> None:
        """Take one leased item to a terminal ack or fail."""
        config = self.config

        reason = self.stop_reason()
        if reason is not None:
            self.client.fail(
                item.request_id, "budget", f"Run stop criteria reached ({reason.value})", False, None, 0
            )
            return

        depth = item.depth
        if depth > config.max_depth:
            self.client.fail(
                item.request_id, "policy", f"Max depth exceeded ({config.max_depth})", False, None, 0
            )
            return

        if not self.robots.is_allowed(item.url):
            self.client.fail(item.request_id, "policy", "Blocked by robots.txt", False, 403, 0)
            return

        started = self._clock()
        status_code: Optional[int] = None
        try:
            fetched = fetch_page(item.url, self.engine.selected, self._fetch_options, self.http)
            status_code = fetched.status_code
            if fetched.fallback_reason:
                self._emit_fetch_fallback(item, fetched)
            ensure_not_blocked(fetched)

            extracted = extract_content(
                fetched.html, item.url, fetched.final_url, self._extraction_options
            )
            for outcome in extracted.skipped_selectors:
                logger.debug("Selector %r skipped for %s: %s", outcome.selector, item.url, outcome.reason)
            discovered = discover_links(
                fetched.html,
                fetched.final_url,
                config.include_globs,
                config.exclude_globs,
                self.scope,
            )

            self.client.enqueue(self._child_items(item, depth, discovered))
            self.client.push_dataset([self.build_record(item, depth, fetched, extracted, discovered)])
            self.client.ack(
                item.request_id,
                fetched.status_code,
                self._latency_ms(started),
                {
                    "selected_engine": self.engine.selected,
                    "fetch_engine": fetched.fetch_engine,
                    "depth": depth,
                    "discovered_count": len(discovered),
                },
            )
        except Exception as exc:
            self._record_failure(item, exc, status_code, started)
            return

        self.processed_pages += 1
        self.emitted_results += 1
        self._adjust_concurrency(success=True)
        self.client.event(
            "request.succeeded",
            {
                "url": item.url,
                "status_code": fetched.status_code,
                "depth": depth,
                "emitted_results": self.emitted_results,
                "concurrency": self.current_concurrency,
            },
            request_id=item.request_id,
            stage="request",
        )
        logger.info(
            "Request succeeded url=%s status=%s depth=%s emitted=%d concurrency=%d",
            item.url,
            fetched.status_code,
            depth,
            self.emitted_results,
            self.current_concurrency,
        )

    def _record_failure(
        self,
        item: LeaseItem,
        error: Exception,
        status_code: Optional[int],
        started: float,
    ) -> None:
        classified = classify_failure(error, status_code)
        self.client.fail(
            item.request_id,
            classified.type,
            classified.reason,
            classified.retryable,
            status_code,
            self._latency_ms(started),
        )
        self._adjust_concurrency(success=False)
        self.client.event(
            "request.failed",
            {
                "url": item.url,
                "error_type": classified.type,
                "reason": classified.reason,
                "concurrency": self.current_concurrency,
            },
            request_id=item.request_id,
            stage="request",
            message=classified.reason,
            level="error" if classified.type == "infra" else "warning",
        )
        logger.warning(
            "Request failed url=%s type=%s retryable=%s status=%s reason=%s",
            item.url,
            classified.type,
            classified.retryable,
            status_code if status_code is not None else "none",
            classified.reason,
        )

    def _emit_fetch_fallback(self, item: LeaseItem, fetched: FetchedPage) -> None:
        self.client.event(
            "engine.fallback",
            {
                "requested": self.engine.selected,
                "selected": fetched.fetch_engine,
                "reason": "playwright_navigation_timeout_or_proxy_error",
            },
            request_id=item.request_id,
            stage="request",
            message=fetched.fallback_reason,
            level="warning",
        )

    def _adjust_concurrency(self, success: bool) -> None:
        if not self.concurrency.adaptive:
            return
        if success:
            self.current_concurrency = min(self.concurrency.max_concurrency, self.current_concurrency + 1)
        else:
            self.current_concurrency = max(self.concurrency.min_concurrency, self.current_concurrency - 1)

    def _latency_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    # ------------------------------------------------------------------
    # Commit payloads
    # ------------------------------------------------------------------

    @staticmethod
    def _child_items(item: LeaseItem, depth: float, links: List[DiscoveredLink]) -> List[Dict[str, Any]]:
        return [
            {
                "url": link.url,
                "discovered_from_request_id": item.request_id,
                "priority": link.priority,
                "metadata": {"depth": depth + 1, "discovered_by": item.request_id},
            }
            for link in links
        ]

    def build_record(
        self,
        item: LeaseItem,
        depth: float,
        fetched: FetchedPage,
        extracted: ExtractedContent,
        discovered: List[DiscoveredLink],
    ) -> Dict[str, Any]:
        """The dataset record for one page, honouring the save toggles."""
        config = self.config
        metadata = {
            **extracted.metadata,
            "depth": depth,
            "selected_engine": self.engine.selected,
            "fetch_engine": fetched.fetch_engine,
            "discovered_count": len(discovered),
        }
        if config.save_html:
            metadata["html"] = extracted.cleaned_html
        return {
            "url": item.url,
            "final_url": fetched.final_url,
            "status_code": fetched.status_code,
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "title": extracted.title,
            "description": extracted.description,
            "content_text": extracted.content_text if config.save_text else None,
            "content_markdown": extracted.content_markdown if config.save_markdown else None,
            "links": extracted.links,
            "language": extracted.language,
            "metadata": metadata,
        }


def run_worker(
    settings: Optional[Settings] = None,
    client: Optional[RuntimeClient] = None,
) -> int:
    """Run one crawl and return the process exit status.

    Any exception escaping the run is logged and reported as a
    ``runtime.crashed`` event on a best-effort basis (a failure to report
    never hides the original error), and the exit status is 1.
    """
    settings = settings or default_settings
    owns_client = client is None
    if client is None:
        client = RuntimeClient.from_settings(settings)
    try:
        CrawlWorker(client, settings).run()
        return 0
    except Exception as exc:
        reason = error_message(exc)
        logger.exception("Run crashed: %s", reason)
        try:
            client.event(
                "runtime.crashed",
                {"error": reason},
                stage="runtime",
                message=reason,
                level="error",
            )
        except Exception as event_exc:
            logger.warning("Could not report crash event: %s", event_exc)
        return 1
    finally:
        if owns_client:
            client.close()
