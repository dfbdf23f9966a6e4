"""Data models for the fetch → extract → discover pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

MAX_LINKS = 1000
MAX_MEDIA_LINKS = 1000


@dataclass
class FetchOptions:
    """Everything a fetch needs, resolved from settings and the run input."""

    user_agent: str
    request_timeout: float = 30.0
    navigation_timeout: float = 45.0
    wait_for_dynamic_content_seconds: float = 0.0
    wait_for_selector: str = ""
    wait_for_selector_timeout: float = 15.0
    click_selectors: List[str] = field(default_factory=list)
    click_timeout: float = 5.0


@dataclass
class ClickOutcome:
    """Result of one best-effort click action in the browser."""

    selector: str
    clicked: bool
    reason: Optional[str] = None


@dataclass
class FetchedPage:
    """A fetched page, whichever engine produced it."""

    status_code: int
    final_url: str
    html: str
    fetch_engine: str
    fallback_reason: Optional[str] = None
    clicks: List[ClickOutcome] = field(default_factory=list)


@dataclass
class SelectorOutcome:
    """Result of applying one user-supplied CSS selector during extraction."""

    selector: str
    stage: str
    applied: bool
    matched: int = 0
    reason: Optional[str] = None


@dataclass
class ExtractionOptions:
    remove_cookie_warnings: bool = True
    remove_navigation_elements: bool = True
    remove_css_selectors: List[str] = field(default_factory=list)
    keep_css_selectors: List[str] = field(default_factory=list)
    html_transformer: str = "markdown"
    include_image_links: bool = False
    include_audio_links: bool = False
    include_video_links: bool = False
    is_in_scope: Callable[[str], bool] = lambda url: True


@dataclass
class MediaLinks:
    """Deduplicated, ordered media URLs found on a page (each list capped)."""

    images: List[str] = field(default_factory=list)
    audio: List[str] = field(default_factory=list)
    video: List[str] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "images": len(self.images),
            "audio": len(self.audio),
            "video": len(self.video),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "images": list(self.images),
            "audio": list(self.audio),
            "video": list(self.video),
            "counts": self.counts,
        }


@dataclass
class ExtractedContent:
    """Structured content pulled out of one page."""

    title: Optional[str]
    description: Optional[str]
    language: Optional[str]
    content_text: Optional[str]
    content_markdown: Optional[str]
    links: List[str]
    cleaned_html: str
    media_links: MediaLinks
    metadata: Dict[str, Any] = field(default_factory=dict)
    selector_outcomes: List[SelectorOutcome] = field(default_factory=list)

    @property
    def skipped_selectors(self) -> List[SelectorOutcome]:
        return [outcome for outcome in self.selector_outcomes if not outcome.applied]


@dataclass(frozen=True)
class DiscoveredLink:
    url: str
    priority: int
