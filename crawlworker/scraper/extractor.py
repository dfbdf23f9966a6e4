"""Content extraction: turns fetched HTML into :class:`ExtractedContent`.

The pipeline runs in a fixed order over one mutable BeautifulSoup tree:

    1. capture title / meta description / document language
    2. drop cookie banners and page chrome (each optional)
    3. apply user removal selectors
    4. apply user keep selectors (body becomes only the kept fragments)
    5. collect outbound links
    6. collect media links (images / audio / video, each optional)
    7. strip script, style and other non-content elements
    8-10. cleaned HTML, flattened text and Markdown

User-supplied selectors never abort extraction: a selector that fails to
parse is skipped and reported as a :class:`SelectorOutcome`.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterator, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Doctype, Tag
from markdownify import ATX, markdownify
from soupsieve import SelectorSyntaxError

from crawlworker.scraper.models import (
    MAX_LINKS,
    MAX_MEDIA_LINKS,
    ExtractedContent,
    ExtractionOptions,
    MediaLinks,
    SelectorOutcome,
)
from crawlworker.scraper.urls import resolve_link

logger = logging.getLogger(__name__)

EXTRACTOR_TAG = "website-content-crawler"
HTML_TRANSFORMERS = ("none", "readable", "markdown")

_COOKIE_SELECTOR = ", ".join(
    [
        "[id*='cookie']",
        "[class*='cookie']",
        "[data-testid*='cookie']",
        "[aria-label*='cookie' i]",
        "[id*='consent']",
        "[class*='consent']",
    ]
)
_NAVIGATION_TAGS = ["header", "footer", "nav", "aside"]
_NON_CONTENT_TAGS = ["script", "style", "noscript", "iframe", "svg", "canvas"]
_HEAD_ONLY_TAGS = frozenset({"head", "title", "meta", "link", "base"})

_SELECTOR_ERRORS = (SelectorSyntaxError, NotImplementedError, ValueError)

# (selector, attribute) pairs scanned per media type, in discovery order.
_MEDIA_SOURCES: Dict[str, tuple[tuple[str, str], ...]] = {
    "images": (
        ("img[src], picture source[src], source[type^='image/'][src]", "src"),
        ("meta[property='og:image'][content], meta[name='twitter:image'][content]", "content"),
        ("link[rel~='image_src'][href]", "href"),
    ),
    "audio": (
        ("audio[src], audio source[src], source[type^='audio/'][src]", "src"),
        ("meta[property='og:audio'][content]", "content"),
    ),
    "video": (
        ("video[src], video source[src], source[type^='video/'][src]", "src"),
        ("meta[property='og:video'][content]", "content"),
    ),
}
_SRCSET_SELECTOR = "img[srcset], source[srcset]"

# Suffix sniffing only; the target's real content type is never checked.
_MEDIA_FILE_PATTERNS = {
    "images": re.compile(r"\.(?:avif|bmp|gif|ico|jpe?g|png|svg|tiff?|webp)(?:[?#]|$)", re.IGNORECASE),
    "audio": re.compile(r"\.(?:aac|flac|m4a|mp3|oga|ogg|opus|wav|weba)(?:[?#]|$)", re.IGNORECASE),
    "video": re.compile(r"\.(?:m3u8|m4v|mov|mp4|mpeg|mpg|ogv|webm)(?:[?#]|$)", re.IGNORECASE),
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _compact(text: str) -> str:
    return " ".join(text.split())


def _body(soup: BeautifulSoup) -> Tag:
    """The ``<body>`` element, or the whole document before :func:`_ensure_body` ran."""
    return soup.body or soup


def _ensure_body(soup: BeautifulSoup) -> Tag:
    """Wrap the document content in a ``<body>`` when the markup has none.

    ``html.parser`` builds no implied body, so head content would otherwise
    leak into the text, markdown and cleaned HTML. Head-only elements stay
    where they are for the media scan.
    """
    if soup.body is not None:
        return soup.body
    container = soup.html or soup
    body = soup.new_tag("body")
    for node in list(container.contents):
        if isinstance(node, Doctype):
            continue
        if isinstance(node, Tag) and node.name in _HEAD_ONLY_TAGS:
            continue
        body.append(node.extract())
    container.append(body)
    return body


def _extract_title(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("title")
    if tag is None:
        return None
    return _compact(tag.get_text()) or None


def _extract_description(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("meta", attrs={"name": "description"})
    if tag is None:
        return None
    return (tag.get("content") or "").strip() or None


def _extract_language(soup: BeautifulSoup) -> Optional[str]:
    tag = soup.find("html")
    if tag is None:
        return None
    return (tag.get("lang") or "").strip() or None


def _remove_cookie_elements(soup: BeautifulSoup) -> None:
    for element in soup.select(_COOKIE_SELECTOR):
        # A consent class on <body>/<html> marks page state, not a banner.
        if element.name in ("html", "body"):
            continue
        element.extract()


def _remove_tags(soup: BeautifulSoup, names: List[str]) -> None:
    for element in soup.find_all(names):
        element.extract()


def _apply_remove_selectors(soup: BeautifulSoup, selectors: List[str]) -> List[SelectorOutcome]:
    outcomes: List[SelectorOutcome] = []
    for selector in selectors:
        try:
            matches = soup.select(selector)
        except _SELECTOR_ERRORS as exc:
            logger.warning("Skipping invalid removal selector %r: %s", selector, exc)
            outcomes.append(SelectorOutcome(selector, "remove", applied=False, reason=str(exc)))
            continue
        for element in matches:
            element.extract()
        outcomes.append(SelectorOutcome(selector, "remove", applied=True, matched=len(matches)))
    return outcomes


def _apply_keep_selectors(soup: BeautifulSoup, selectors: List[str]) -> List[SelectorOutcome]:
    """Replace the body with the markup of every match, selector order first."""
    outcomes: List[SelectorOutcome] = []
    fragments: List[str] = []
    for selector in selectors:
        try:
            matches = soup.select(selector)
        except _SELECTOR_ERRORS as exc:
            logger.warning("Skipping invalid keep selector %r: %s", selector, exc)
            outcomes.append(SelectorOutcome(selector, "keep", applied=False, reason=str(exc)))
            continue
        fragments.extend(str(element) for element in matches)
        outcomes.append(SelectorOutcome(selector, "keep", applied=True, matched=len(matches)))

    if not fragments:
        return outcomes

    body = _body(soup)
    body.clear()
    isolated = BeautifulSoup("\n".join(fragments), "html.parser")
    for node in list(isolated.contents):
        body.append(node.extract())
    return outcomes


def _absolute_href(base_url: str, href: str) -> str:
    try:
        return urljoin(base_url, href)
    except ValueError:
        return href


def _collect_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    links: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href:
            continue
        links.append(_absolute_href(base_url, href))
        if len(links) >= MAX_LINKS:
            break
    return links


def _read_attr(soup: BeautifulSoup, selector: str, attr: str) -> Iterator[str]:
    for element in soup.select(selector):
        value = element.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        value = (value or "").strip()
        if value:
            yield value


def parse_srcset(value: str) -> List[str]:
    """Candidate URLs of a ``srcset`` attribute, descriptors dropped."""
    candidates = []
    for entry in value.split(","):
        parts = entry.strip().split()
        if parts:
            candidates.append(parts[0])
    return candidates


def _media_candidates(soup: BeautifulSoup, kind: str) -> Iterator[str]:
    for selector, attr in _MEDIA_SOURCES[kind]:
        yield from _read_attr(soup, selector, attr)
    if kind == "images":
        for srcset in _read_attr(soup, _SRCSET_SELECTOR, "srcset"):
            yield from parse_srcset(srcset)


def _collect_media(
    soup: BeautifulSoup,
    base_url: str,
    kind: str,
    options: ExtractionOptions,
) -> List[str]:
    found: Dict[str, None] = {}

    def push(raw: str) -> None:
        url = resolve_link(base_url, raw)
        if url and url not in found and options.is_in_scope(url):
            found[url] = None

    for raw in _media_candidates(soup, kind):
        push(raw)

    pattern = _MEDIA_FILE_PATTERNS[kind]
    for href in _read_attr(soup, "a[href]", "href"):
        url = resolve_link(base_url, href)
        if url and pattern.search(url):
            push(url)

    return list(found)[:MAX_MEDIA_LINKS]


def collect_media_links(soup: BeautifulSoup, base_url: str, options: ExtractionOptions) -> MediaLinks:
    """Scan the tree for media URLs of every enabled type."""
    media = MediaLinks()
    if options.include_image_links:
        media.images = _collect_media(soup, base_url, "images", options)
    if options.include_audio_links:
        media.audio = _collect_media(soup, base_url, "audio", options)
    if options.include_video_links:
        media.video = _collect_media(soup, base_url, "video", options)
    return media


def _markdown_source(soup: BeautifulSoup, transformer: str) -> str:
    if transformer == "readable":
        for name in ("main", "article"):
            element = soup.find(name)
            if element is not None:
                inner = element.decode_contents()
                if inner.strip():
                    return inner
    return _body(soup).decode_contents()


def compute_markdown(soup: BeautifulSoup, transformer: str) -> Optional[str]:
    """Markdown for the cleaned tree according to *transformer* (``None`` for ``none``)."""
    if transformer == "none":
        return None
    html = _markdown_source(soup, transformer)
    if not html.strip():
        return None
    markdown = markdownify(html, heading_style=ATX, bullets="-").strip()
    return markdown or None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_content(
    html: str,
    source_url: str,
    final_url: str,
    options: Optional[ExtractionOptions] = None,
) -> ExtractedContent:
    """Run the extraction pipeline over *html*.

    Relative URLs (links and media) are resolved against *final_url*, the
    address the page was actually served from after redirects.
    """
    options = options or ExtractionOptions()
    soup = BeautifulSoup(html or "", "html.parser")

    title = _extract_title(soup)
    description = _extract_description(soup)
    language = _extract_language(soup)
    _ensure_body(soup)

    if options.remove_cookie_warnings:
        _remove_cookie_elements(soup)
    if options.remove_navigation_elements:
        _remove_tags(soup, _NAVIGATION_TAGS)

    outcomes = _apply_remove_selectors(soup, options.remove_css_selectors)
    outcomes += _apply_keep_selectors(soup, options.keep_css_selectors)

    links = _collect_links(soup, final_url)
    media_links = collect_media_links(soup, final_url, options)

    _remove_tags(soup, _NON_CONTENT_TAGS)

    body = _body(soup)
    cleaned_html = body.decode_contents()
    content_text = _compact(body.get_text(" ")) or None
    content_markdown = compute_markdown(soup, options.html_transformer)

    return ExtractedContent(
        title=title,
        description=description,
        language=language,
        content_text=content_text,
        content_markdown=content_markdown,
        links=links,
        cleaned_html=cleaned_html,
        media_links=media_links,
        metadata={
            "source_url": source_url,
            "final_url": final_url,
            "extractor": EXTRACTOR_TAG,
            "extracted_links": len(links),
            "html_transformer": options.html_transformer,
            "media_links": media_links.to_dict(),
        },
        selector_outcomes=outcomes,
    )
