"""Crawl-scope matching.

A :class:`ScopeMatcher` is built once per run from the start URLs, the scope
mode and (for ``customAllowlist``) an explicit allowlist, and is then used as
a pure predicate over absolute URLs by the extractor and the link discoverer.

Modes:

    anyDomain             every http(s) URL is in scope
    sameHostname          hostname equals a start URL hostname
    sameDomainSubdomains  hostname equals a start hostname, or sits under the
                          registrable domain (eTLD+1) of a start hostname
    customAllowlist       hostname equals, or is a subdomain of, an allowlist entry
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

import tldextract

SCOPE_MODES = ("anyDomain", "sameHostname", "sameDomainSubdomains", "customAllowlist")
DEFAULT_SCOPE_MODE = "sameDomainSubdomains"

# Bundled public-suffix snapshot only: scope decisions must never hit the network.
_extract = tldextract.TLDExtract(suffix_list_urls=(), include_psl_private_domains=True)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def is_hostname_or_subdomain(hostname: str, candidate: str) -> bool:
    """Return ``True`` if *candidate* equals *hostname* or is a subdomain of it.

    The match is on a dot boundary, so ``evilexample.com`` is not a subdomain
    of ``example.com``.
    """
    return candidate == hostname or candidate.endswith("." + hostname)


def http_hostname(url: str) -> Optional[str]:
    """Lowercased hostname of an http(s) URL, or ``None`` for anything else."""
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not hostname:
        return None
    return hostname.lower()


def normalize_host(value: str) -> Optional[str]:
    """Reduce an allowlist entry (bare host or URL) to a lowercase hostname."""
    trimmed = value.strip()
    if not trimmed:
        return None
    if not _SCHEME_RE.match(trimmed):
        trimmed = "http://" + trimmed
    try:
        hostname = urlsplit(trimmed).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def registrable_domain(hostname: str) -> Optional[str]:
    """Public-suffix aware ``domain.tld`` of *hostname* (``None`` for IPs, bare suffixes)."""
    parts = _extract(hostname)
    if not parts.domain or not parts.suffix:
        return None
    return f"{parts.domain}.{parts.suffix}".lower()


@dataclass(frozen=True)
class ScopeMatcher:
    """Immutable in-scope predicate. Call it with an absolute URL."""

    mode: str
    hostnames: frozenset[str] = frozenset()
    domains: frozenset[str] = frozenset()

    def __call__(self, url: str) -> bool:
        if self.mode == "anyDomain":
            return True
        hostname = http_hostname(url)
        if not hostname:
            return False
        if hostname in self.hostnames:
            return True
        return any(is_hostname_or_subdomain(domain, hostname) for domain in self.domains)


def build_scope_matcher(
    start_urls: Iterable[str],
    scope_mode: str = DEFAULT_SCOPE_MODE,
    allowed_domains: Iterable[str] = (),
) -> ScopeMatcher:
    """Build the run's :class:`ScopeMatcher`.

    Raises:
        ValueError: For an unknown *scope_mode*, or for ``customAllowlist``
            without a single usable allowlist entry.
    """
    if scope_mode not in SCOPE_MODES:
        raise ValueError(f"Unknown scope mode: {scope_mode!r}")

    if scope_mode == "anyDomain":
        return ScopeMatcher(scope_mode)

    if scope_mode == "customAllowlist":
        allowlist = {host for host in map(normalize_host, allowed_domains) if host}
        if not allowlist:
            raise ValueError("customAllowlist scope requires at least one allowed domain")
        return ScopeMatcher(scope_mode, domains=frozenset(allowlist))

    hostnames: set[str] = set()
    domains: set[str] = set()
    for url in start_urls:
        hostname = http_hostname(url)
        if not hostname:
            continue
        hostnames.add(hostname)
        domain = registrable_domain(hostname)
        if domain:
            domains.add(domain)

    if scope_mode == "sameHostname":
        return ScopeMatcher(scope_mode, hostnames=frozenset(hostnames))
    return ScopeMatcher(scope_mode, frozenset(hostnames), frozenset(domains))
