"""Fetch-engine resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

Engine = Literal["camoufox", "playwright", "http:fast"]

ENGINES: tuple[str, ...] = ("camoufox", "playwright", "http:fast")
STEALTH_ENGINE = "camoufox"
BROWSER_ENGINE = "playwright"
HTTP_ENGINE = "http:fast"

CAMOUFOX_UNAVAILABLE = "camoufox_unavailable"


@dataclass(frozen=True)
class EngineResolution:
    requested: str
    selected: str
    fallback_reason: Optional[str] = None


def resolve_engine(requested: str, stealth_available: bool) -> EngineResolution:
    """Pick the engine to fetch with.

    The requested engine is kept as-is unless it is the stealth engine and
    that engine is not available, in which case the standard browser engine
    is substituted and the substitution reason reported.
    """
    if requested == STEALTH_ENGINE and not stealth_available:
        return EngineResolution(
            requested=requested,
            selected=BROWSER_ENGINE,
            fallback_reason=CAMOUFOX_UNAVAILABLE,
        )
    return EngineResolution(requested=requested, selected=requested)
