"""Proxy settings and the proxy-aware outbound HTTP session.

Proxy configuration comes from the environment (read once into a
:class:`ProxySettings`) and decides, per fetch path, whether traffic is
routed through the proxy:

    all_outbound   HTTP fetches and the browser
    http_only      HTTP fetches only
    browser_only   the browser only
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote, urlsplit

import httpx

logger = logging.getLogger(__name__)

APPLY_SCOPES = ("all_outbound", "http_only", "browser_only")

_PROXY_URL_KEYS = (
    "STEALTHDOCK_PROXY_URL",
    "HTTPS_PROXY",
    "HTTP_PROXY",
    "ALL_PROXY",
    "https_proxy",
    "http_proxy",
    "all_proxy",
)


@dataclass(frozen=True)
class ProxySettings:
    enabled: bool = False
    apply_scope: str = "all_outbound"
    proxy_url: Optional[str] = None
    provider: Optional[str] = None
    endpoint: Optional[str] = None
    profile_id: Optional[str] = None
    rotation_mode: Optional[str] = None


def normalize_proxy_url(raw: Optional[str]) -> Optional[str]:
    """Return a proxy URL with a scheme (``http://`` assumed), or ``None``."""
    value = (raw or "").strip()
    if not value:
        return None
    if "://" not in value:
        value = "http://" + value
    try:
        parts = urlsplit(value)
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if not parts.hostname:
        return None
    return value


def _optional(env: Mapping[str, str], key: str) -> Optional[str]:
    return (env.get(key) or "").strip() or None


def read_proxy_settings(env: Mapping[str, str]) -> ProxySettings:
    """Resolve :class:`ProxySettings` from an environment mapping."""
    proxy_url = None
    for key in _PROXY_URL_KEYS:
        proxy_url = normalize_proxy_url(env.get(key))
        if proxy_url:
            break

    apply_scope = (env.get("STEALTHDOCK_PROXY_APPLY_SCOPE") or "").strip()
    if apply_scope not in APPLY_SCOPES:
        apply_scope = "all_outbound"

    return ProxySettings(
        enabled=proxy_url is not None,
        apply_scope=apply_scope,
        proxy_url=proxy_url,
        provider=_optional(env, "STEALTHDOCK_PROXY_PROVIDER"),
        endpoint=_optional(env, "STEALTHDOCK_PROXY_ENDPOINT"),
        profile_id=_optional(env, "STEALTHDOCK_PROXY_PROFILE_ID"),
        rotation_mode=_optional(env, "STEALTHDOCK_PROXY_ROTATION_MODE"),
    )


def should_proxy_http(settings: ProxySettings) -> bool:
    return settings.enabled and settings.apply_scope in ("all_outbound", "http_only")


def should_proxy_browser(settings: ProxySettings) -> bool:
    return settings.enabled and settings.apply_scope in ("all_outbound", "browser_only")


def split_proxy_url(proxy_url: str) -> Dict[str, str]:
    """Split a proxy URL into Playwright's ``server``/``username``/``password`` form."""
    parts = urlsplit(proxy_url)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    server = f"{parts.scheme}://{host}"
    if parts.port:
        server += f":{parts.port}"
    config = {"server": server}
    if parts.username:
        config["username"] = unquote(parts.username)
    if parts.password:
        config["password"] = unquote(parts.password)
    return config


def browser_proxy_config(settings: ProxySettings) -> Optional[Dict[str, str]]:
    """Proxy config for the browser launch, or ``None`` when the browser goes direct."""
    if not should_proxy_browser(settings) or not settings.proxy_url:
        return None
    return split_proxy_url(settings.proxy_url)


def proxy_event_payload(settings: ProxySettings) -> Dict[str, Any]:
    """Credential-free description of the proxy setup for run events."""
    return {
        "enabled": settings.enabled,
        "apply_scope": settings.apply_scope,
        "provider": settings.provider,
        "endpoint": settings.endpoint,
        "profile_id": settings.profile_id,
        "rotation_mode": settings.rotation_mode,
    }


class HttpSession:
    """Outbound HTTP for page fetches and robots.txt.

    Holds at most one direct client and one proxy-routed client, both created
    lazily and reused for the run. The proxy client is recreated (the old one
    closed first) only when the effective proxy URL changes. Neither client
    reads proxy variables from the environment on its own.
    """

    def __init__(
        self,
        proxy: ProxySettings,
        user_agent: str,
        timeout: float = 30.0,
    ) -> None:
        self.proxy = proxy
        self.user_agent = user_agent
        self.timeout = timeout
        self._direct: Optional[httpx.Client] = None
        self._proxied: Optional[httpx.Client] = None
        self._proxied_url: Optional[str] = None

    def _direct_client(self) -> httpx.Client:
        if self._direct is None:
            self._direct = httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                trust_env=False,
            )
        return self._direct

    def _proxy_client(self) -> httpx.Client:
        proxy_url = self.proxy.proxy_url
        if not proxy_url:
            raise RuntimeError("Proxy URL missing")
        if self._proxied is not None and self._proxied_url == proxy_url:
            return self._proxied
        if self._proxied is not None:
            logger.info("Proxy URL changed; recreating proxied HTTP client")
            self._proxied.close()
        self._proxied = httpx.Client(
            proxy=proxy_url,
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=20,
            verify=False,
            trust_env=False,
        )
        self._proxied_url = proxy_url
        return self._proxied

    def client(self) -> httpx.Client:
        """The client the current proxy settings route HTTP fetches through."""
        if should_proxy_http(self.proxy):
            return self._proxy_client()
        return self._direct_client()

    def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        merged = {"user-agent": self.user_agent}
        if headers:
            merged.update(headers)
        return self.client().get(url, headers=merged)

    def close(self) -> None:
        for client in (self._direct, self._proxied):
            if client is not None:
                client.close()
        self._direct = None
        self._proxied = None
        self._proxied_url = None
