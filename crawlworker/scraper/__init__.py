"""Scraper package: fetch, content extraction and link discovery."""

from crawlworker.scraper.extractor import extract_content
from crawlworker.scraper.fetcher import BlockedStatusError, ensure_not_blocked, fetch_page
from crawlworker.scraper.links import discover_links
from crawlworker.scraper.models import (
    DiscoveredLink,
    ExtractedContent,
    ExtractionOptions,
    FetchedPage,
    FetchOptions,
    MediaLinks,
)
from crawlworker.scraper.proxy import HttpSession, ProxySettings, read_proxy_settings
from crawlworker.scraper.robots import RobotsCache

__all__ = [
    "extract_content",
    "fetch_page",
    "ensure_not_blocked",
    "BlockedStatusError",
    "discover_links",
    "DiscoveredLink",
    "ExtractedContent",
    "ExtractionOptions",
    "FetchedPage",
    "FetchOptions",
    "MediaLinks",
    "HttpSession",
    "ProxySettings",
    "read_proxy_settings",
    "RobotsCache",
]
