"""URL helpers shared by the extractor and the link discoverer."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

_NON_NAVIGABLE_PREFIXES = ("javascript:", "mailto:", "tel:", "data:", "#")


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.netloc)


def normalize_url(url: str) -> str:
    """Lowercase scheme and host, drop the fragment, give an empty path ``/``."""
    parts = urlsplit(url)
    netloc = parts.netloc
    if "@" in netloc:
        userinfo, _, host = netloc.rpartition("@")
        netloc = f"{userinfo}@{host.lower()}"
    else:
        netloc = netloc.lower()
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, ""))


def resolve_link(base_url: str, href: str) -> Optional[str]:
    """Resolve *href* against *base_url* into a normalised absolute http(s) URL.

    Returns ``None`` for empty, script, mail, phone, data and fragment-only
    targets, for anything that does not resolve to http(s), and for hrefs
    that cannot be parsed.
    """
    value = (href or "").strip()
    if not value or value.lower().startswith(_NON_NAVIGABLE_PREFIXES):
        return None
    try:
        resolved, _fragment = urldefrag(urljoin(base_url, value))
        if not is_http_url(resolved):
            return None
        return normalize_url(resolved)
    except ValueError:
        return None
