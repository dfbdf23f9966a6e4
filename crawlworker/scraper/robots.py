"""Per-run robots.txt cache.

One robots.txt lookup per origin per run. A robots file that cannot be
fetched (network error, HTTP error status, unencodable host) is treated as "allow everything"
and that decision is cached too, so a dead origin is not retried for every
URL.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional
from urllib.parse import urlsplit
from urllib.robotparser import RobotFileParser

import httpx

from crawlworker.scraper.proxy import HttpSession

logger = logging.getLogger(__name__)


def origin_of(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


class RobotsCache:
    """Answers ``is_allowed(url)`` for one run, caching parsers per origin."""

    def __init__(self, http: HttpSession, user_agent: str, enabled: bool = True) -> None:
        self.http = http
        self.user_agent = user_agent
        self.enabled = enabled
        self._parsers: Dict[str, Optional[RobotFileParser]] = {}

    def __len__(self) -> int:
        return len(self._parsers)

    def _load(self, origin: str) -> Optional[RobotFileParser]:
        if origin in self._parsers:
            return self._parsers[origin]

        robots_url = f"{origin}/robots.txt"
        parser: Optional[RobotFileParser] = None
        try:
            response = self.http.get(robots_url)
            if response.status_code < 400:
                parser = RobotFileParser(robots_url)
                parser.parse(response.text.splitlines())
            else:
                logger.debug("robots.txt at %s returned %s; allowing", robots_url, response.status_code)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            # Includes hosts that fail IDNA encoding (UnicodeError is a ValueError).
            logger.warning("Could not fetch %s (%s); allowing", robots_url, exc)

        self._parsers[origin] = parser
        return parser

    def is_allowed(self, url: str) -> bool:
        if not self.enabled:
            return True
        origin = origin_of(url)
        if origin is None:
            return True
        parser = self._load(origin)
        if parser is None:
            return True
        return parser.can_fetch(self.user_agent, url)
