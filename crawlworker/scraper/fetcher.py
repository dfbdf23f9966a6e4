"""Page fetching with engine fallback.

``fetch_page`` drives either the lightweight HTTP engine or a headless
browser. A browser attempt that dies on a navigation timeout or a proxy /
tunnel / connection-reset error is retried once over plain HTTP for the same
URL; any other browser error propagates to the caller for classification.

Playwright is imported lazily so callers that only use the HTTP engine (and
most of the test suite) do not need a browser install.
"""

from __future__ import annotations

import logging
from typing import Optional

from crawlworker.policy.engine import HTTP_ENGINE
from crawlworker.policy.failures import BLOCKED_STATUS_CODES, error_message
from crawlworker.scraper.models import ClickOutcome, FetchedPage, FetchOptions
from crawlworker.scraper.proxy import HttpSession, browser_proxy_config

logger = logging.getLogger(__name__)

BROWSER_ENGINE_TAG = "playwright"

_HTML_ACCEPT = "text/html,application/xhtml+xml"

_FALLBACK_MARKERS = (
    "timeout",
    "net::err_proxy_connection_failed",
    "net::err_tunnel_connection_failed",
    "net::err_connection_reset",
    "net::err_connection_timed_out",
)


class BlockedStatusError(Exception):
    """The target answered with a status that means we are being blocked."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Blocked with status {status_code}")
        self.status_code = status_code


def ensure_not_blocked(page: FetchedPage) -> FetchedPage:
    """Raise :class:`BlockedStatusError` for 401/403/429 responses."""
    if page.status_code in BLOCKED_STATUS_CODES:
        raise BlockedStatusError(page.status_code)
    return page


def fetch_with_http(url: str, http: HttpSession) -> FetchedPage:
    """Plain GET (redirects followed) through the run's :class:`HttpSession`."""
    response = http.get(url, headers={"accept": _HTML_ACCEPT})
    return FetchedPage(
        status_code=response.status_code,
        final_url=str(response.url) or url,
        html=response.text,
        fetch_engine=HTTP_ENGINE,
    )


def _run_clicks(page, options: FetchOptions) -> list[ClickOutcome]:
    """Try each click selector once; a failing click is recorded and skipped."""
    outcomes: list[ClickOutcome] = []
    for selector in options.click_selectors:
        try:
            page.locator(selector).first.click(timeout=options.click_timeout * 1000)
        except Exception as exc:  # any Playwright error just skips this click
            logger.debug("Click on %r skipped: %s", selector, exc)
            outcomes.append(ClickOutcome(selector, clicked=False, reason=error_message(exc)))
            continue
        outcomes.append(ClickOutcome(selector, clicked=True))
    return outcomes


def fetch_with_browser(url: str, options: FetchOptions, http: HttpSession) -> FetchedPage:
    """Render *url* in headless Chromium and return the resulting DOM."""
    from playwright.sync_api import sync_playwright  # noqa: PLC0415

    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=True, proxy=browser_proxy_config(http.proxy))
        try:
            context = browser.new_context(user_agent=options.user_agent)
            page = context.new_page()
            response = page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=options.navigation_timeout * 1000,
            )

            if options.wait_for_dynamic_content_seconds > 0:
                page.wait_for_timeout(options.wait_for_dynamic_content_seconds * 1000)

            if options.wait_for_selector:
                page.wait_for_selector(
                    options.wait_for_selector,
                    timeout=options.wait_for_selector_timeout * 1000,
                )

            clicks = _run_clicks(page, options)
            html = page.content()
            return FetchedPage(
                status_code=response.status if response is not None else 200,
                final_url=page.url or url,
                html=html,
                fetch_engine=BROWSER_ENGINE_TAG,
                clicks=clicks,
            )
        finally:
            browser.close()


def should_fallback_to_http(error: BaseException) -> bool:
    """Return ``True`` for browser errors worth one plain-HTTP retry."""
    from playwright.sync_api import TimeoutError as PlaywrightTimeoutError  # noqa: PLC0415

    if isinstance(error, PlaywrightTimeoutError):
        return True
    message = error_message(error).lower()
    return any(marker in message for marker in _FALLBACK_MARKERS)


def fetch_page(
    url: str,
    engine: str,
    options: FetchOptions,
    http: HttpSession,
) -> FetchedPage:
    """Fetch *url* with the resolved *engine*, falling back to HTTP once if needed."""
    if engine == HTTP_ENGINE:
        return fetch_with_http(url, http)

    try:
        return fetch_with_browser(url, options, http)
    except Exception as exc:
        if not should_fallback_to_http(exc):
            raise
        reason: Optional[str] = error_message(exc)
        logger.warning("Browser fetch of %s failed (%s); falling back to HTTP", url, reason)
        fallback = fetch_with_http(url, http)
        fallback.fallback_reason = reason
        return fallback
