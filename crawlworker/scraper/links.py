"""Follow-on link discovery with pagination-aware priorities.

Every anchor on the page is resolved, filtered through the run's scope and
include/exclude globs, deduplicated, and scored:

    95  ``rel="next"`` anchors (visited first)
    80  anchor text mentioning "next"/"older", or a ``page=<n>`` query param
    50  everything else
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Callable, List, Optional, Sequence

from bs4 import BeautifulSoup

from crawlworker.scraper.models import MAX_LINKS, DiscoveredLink
from crawlworker.scraper.urls import resolve_link

PRIORITY_REL_NEXT = 95
PRIORITY_PAGINATION = 80
PRIORITY_DEFAULT = 50

_PAGE_PARAM_RE = re.compile(r"[?&]page=\d+", re.IGNORECASE)
_PAGINATION_WORDS = ("next", "older")


@lru_cache(maxsize=256)
def glob_to_pattern(glob: str) -> Optional[re.Pattern[str]]:
    """Translate a URL glob into an anchored, case-insensitive regex.

    ``*`` matches any run of characters and ``?`` exactly one; everything
    else is literal. Returns ``None`` for a glob that cannot be compiled.
    """
    parts = []
    for char in glob:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    try:
        return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)
    except re.error:
        return None


def matches_any(url: str, globs: Sequence[str]) -> bool:
    for glob in globs:
        pattern = glob_to_pattern(glob)
        if pattern is not None and pattern.fullmatch(url):
            return True
    return False


def _is_pagination_anchor(text: str, href: str) -> bool:
    lower = text.lower()
    return any(word in lower for word in _PAGINATION_WORDS) or bool(_PAGE_PARAM_RE.search(href))


def discover_links(
    html: str,
    base_url: str,
    include_globs: Sequence[str] = (),
    exclude_globs: Sequence[str] = (),
    is_in_scope: Callable[[str], bool] = lambda url: True,
) -> List[DiscoveredLink]:
    """Return prioritised, in-scope links found in *html*, in discovery order."""
    soup = BeautifulSoup(html or "", "html.parser")
    seen: set[str] = set()
    links: List[DiscoveredLink] = []

    def push(href: str, priority: int) -> None:
        url = resolve_link(base_url, href)
        if url is None or url in seen:
            return
        if not is_in_scope(url):
            return
        if exclude_globs and matches_any(url, exclude_globs):
            return
        if include_globs and not matches_any(url, include_globs):
            return
        seen.add(url)
        links.append(DiscoveredLink(url=url, priority=priority))

    for anchor in soup.select("a[rel~='next'][href]"):
        push(anchor["href"], PRIORITY_REL_NEXT)

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if _is_pagination_anchor(anchor.get_text(), href):
            push(href, PRIORITY_PAGINATION)
        else:
            push(href, PRIORITY_DEFAULT)

    return links[:MAX_LINKS]
