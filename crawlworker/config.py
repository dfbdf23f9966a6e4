"""Centralised settings for the crawl worker.

All ambient configuration (orchestrator endpoint, credentials, timeouts,
proxy environment, stealth-engine availability) is resolved here once.
Values can be overridden via environment variables or a `.env` file in the
project root (loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from crawlworker.scraper.proxy import ProxySettings, read_proxy_settings

# Load .env from the project root (one level up from the package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)

DEFAULT_USER_AGENT = "StealthDockWebsiteContentCrawler/1.0 (+https://stealthdock.local)"

_TRUTHY = {"1", "true", "yes", "on"}


def _is_enabled(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower() in _TRUTHY


def camoufox_available(env: Mapping[str, str] | None = None) -> bool:
    """Return ``True`` when any of the stealth-engine availability flags is set."""
    env = os.environ if env is None else env
    return any(
        _is_enabled(env.get(key))
        for key in (
            "CAMOUFOX_AVAILABLE",
            "STEALTHDOCK_CAMOUFOX_AVAILABLE",
            "STEALTHDOCK_CAMOUFOX_ENABLED",
        )
    )


def _first_env(*keys: str, default: str = "") -> str:
    for key in keys:
        value = os.environ.get(key)
        if value:
            return value
    return default


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Orchestrator API
    # ------------------------------------------------------------------
    runtime_api_base_url: str = field(
        default_factory=lambda: _first_env(
            "STEALTHDOCK_INTERNAL_API_BASE_URL",
            "INTERNAL_API_BASE_URL",
            default="http://host.docker.internal:8000",
        )
    )
    run_id: str = field(
        default_factory=lambda: _first_env("STEALTHDOCK_RUN_ID", "RUN_ID")
    )
    run_token: str = field(
        default_factory=lambda: _first_env("STEALTHDOCK_RUN_TOKEN", "RUN_TOKEN")
    )
    runtime_api_timeout: float = field(
        default_factory=lambda: float(os.environ.get("RUNTIME_API_TIMEOUT", "30.0"))
    )

    # ------------------------------------------------------------------
    # Worker identity / lease loop
    # ------------------------------------------------------------------
    worker_name: str = field(
        default_factory=lambda: os.environ.get("HOSTNAME") or "worker"
    )
    lease_seconds: int = field(
        default_factory=lambda: int(os.environ.get("LEASE_SECONDS", "60"))
    )
    idle_sleep_seconds: float = field(
        default_factory=lambda: float(os.environ.get("IDLE_SLEEP_SECONDS", "0.5"))
    )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    user_agent: str = field(
        default_factory=lambda: os.environ.get("CRAWLER_USER_AGENT", DEFAULT_USER_AGENT)
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30.0"))
    )
    navigation_timeout: float = field(
        default_factory=lambda: float(os.environ.get("NAVIGATION_TIMEOUT", "45.0"))
    )
    proxy_navigation_timeout: float = field(
        default_factory=lambda: float(os.environ.get("PROXY_NAVIGATION_TIMEOUT", "90.0"))
    )
    wait_for_selector_timeout: float = field(
        default_factory=lambda: float(os.environ.get("WAIT_FOR_SELECTOR_TIMEOUT", "15.0"))
    )
    click_timeout: float = field(
        default_factory=lambda: float(os.environ.get("CLICK_TIMEOUT", "5.0"))
    )

    # ------------------------------------------------------------------
    # Engine / proxy environment (read once, passed around explicitly)
    # ------------------------------------------------------------------
    camoufox_available: bool = field(default_factory=camoufox_available)
    proxy: ProxySettings = field(default_factory=lambda: read_proxy_settings(os.environ))

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper()
    )

    def navigation_timeout_for(self, proxied: bool) -> float:
        """Navigation timeout in seconds; proxied navigations get the longer budget."""
        return self.proxy_navigation_timeout if proxied else self.navigation_timeout


# Module-level singleton; import this everywhere:
#   from crawlworker.config import settings
settings = Settings()
