"""Run input validation and defaulting.

The orchestrator hands every run a free-form JSON object; :func:`parse_run_input`
turns it into an immutable :class:`RunConfig` or raises
:class:`InputValidationError` with a readable message. Keys are camelCase on
the wire and snake_case on the model.
"""

from __future__ import annotations

from typing import Any, List, Literal
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from crawlworker.policy.scope import normalize_host


class InputValidationError(ValueError):
    """The run input is not a valid crawler configuration."""


def _normalize_start_url(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        raise ValueError(f"Invalid URL in startUrls: {url}") from None
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Invalid URL in startUrls: {url}")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, parts.fragment)
    )


class RunConfig(BaseModel):
    """Validated crawler input. Read-only for the rest of the run."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True, strict=True)

    start_urls: List[str] = Field(alias="startUrls", min_length=1)
    crawler_type: Literal["camoufox", "playwright", "http:fast"] = Field("camoufox", alias="crawlerType")

    scope_mode: Literal["anyDomain", "sameHostname", "sameDomainSubdomains", "customAllowlist"] = Field(
        "sameDomainSubdomains", alias="scopeMode"
    )
    allowed_domains: List[str] = Field(default_factory=list, alias="allowedDomains")
    include_globs: List[str] = Field(default_factory=list, alias="includeGlobs")
    exclude_globs: List[str] = Field(default_factory=list, alias="excludeGlobs")

    max_depth: int = Field(20, alias="maxDepth", ge=0, le=100)
    max_pages: int = Field(500, alias="maxPages", ge=1, le=100_000)
    max_results: int = Field(50_000, alias="maxResults", ge=1, le=1_000_000)
    max_runtime_seconds: int = Field(3600, alias="maxRuntimeSeconds", ge=1, le=86_400)
    max_idle_cycles: int = Field(5, alias="maxIdleCycles", ge=1, le=1000)
    respect_robots: bool = Field(True, alias="respectRobots")

    wait_for_dynamic_content_seconds: float = Field(2, alias="waitForDynamicContentSeconds", ge=0, le=60)
    wait_for_selector: str = Field("", alias="waitForSelector")
    click_selectors: List[str] = Field(default_factory=list, alias="clickSelectors")

    remove_cookie_warnings: bool = Field(True, alias="removeCookieWarnings")
    remove_navigation_elements: bool = Field(True, alias="removeNavigationElements")
    html_transformer: Literal["none", "readable", "markdown"] = Field("markdown", alias="htmlTransformer")
    remove_css_selectors: List[str] = Field(default_factory=list, alias="removeCssSelectors")
    keep_css_selectors: List[str] = Field(default_factory=list, alias="keepCssSelectors")

    save_html: bool = Field(False, alias="saveHtml")
    save_markdown: bool = Field(True, alias="saveMarkdown")
    save_text: bool = Field(True, alias="saveText")

    include_image_links: bool = Field(False, alias="includeImageLinks")
    include_audio_links: bool = Field(False, alias="includeAudioLinks")
    include_video_links: bool = Field(False, alias="includeVideoLinks")

    @model_validator(mode="before")
    @classmethod
    def _drop_unset(cls, data: Any) -> Any:
        # null (and "" for non-text fields) means "use the default"
        if not isinstance(data, dict):
            return data
        return {
            key: value
            for key, value in data.items()
            if value is not None and not (value == "" and key not in ("waitForSelector", "wait_for_selector"))
        }

    @field_validator(
        "start_urls",
        "allowed_domains",
        "include_globs",
        "exclude_globs",
        "click_selectors",
        "remove_css_selectors",
        "keep_css_selectors",
        mode="after",
    )
    @classmethod
    def _strip_entries(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item.strip()]

    @field_validator("start_urls", mode="after")
    @classmethod
    def _validate_start_urls(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("startUrls must contain at least one URL")
        return [_normalize_start_url(url) for url in value]

    @field_validator("allowed_domains", mode="after")
    @classmethod
    def _normalize_allowed_domains(cls, value: List[str]) -> List[str]:
        hosts: List[str] = []
        for entry in value:
            host = normalize_host(entry)
            if host and host not in hosts:
                hosts.append(host)
        return hosts

    @field_validator("wait_for_selector", mode="after")
    @classmethod
    def _strip_selector(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def _check_allowlist(self) -> "RunConfig":
        if self.scope_mode == "customAllowlist" and not self.allowed_domains:
            raise ValueError("allowedDomains must list at least one domain when scopeMode is customAllowlist")
        return self


def _format_errors(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        if error.get("type") == "extra_forbidden":
            message = "Unknown input field"
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


def parse_run_input(raw: Any) -> RunConfig:
    """Validate *raw* run input and apply defaults.

    Raises:
        InputValidationError: If *raw* is not an object or any field is invalid.
    """
    if not isinstance(raw, dict):
        raise InputValidationError("Input payload must be a JSON object")
    try:
        return RunConfig.model_validate(raw)
    except ValidationError as exc:
        raise InputValidationError(_format_errors(exc)) from exc
