"""Failure taxonomy for per-request outcomes.

The class and retryable flag are reported to the queue, which owns retry
scheduling; nothing in the worker retries on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

import httpx

FailureType = Literal["network", "parse", "blocked", "policy", "budget", "infra"]

BLOCKED_STATUS_CODES = frozenset({401, 403, 429})

# (type, retryable, needles), checked in order after the status-code rule.
_TEXT_RULES: tuple[tuple[str, bool, tuple[str, ...]], ...] = (
    ("blocked", True, ("captcha", "blocked")),
    ("budget", False, ("budget", "max results", "max pages")),
    ("policy", False, ("robots", "policy", "depth")),
    ("parse", False, ("parse", "extract", "invalid input")),
    ("network", True, ("timeout", "network", "fetch", "socket")),
)


@dataclass(frozen=True)
class FailureClass:
    type: FailureType
    retryable: bool
    reason: str


def error_message(error: Union[BaseException, str]) -> str:
    """Human-readable message for *error*; the class name when it has none."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


def classify_failure(
    error: Union[BaseException, str],
    status_code: Optional[int] = None,
) -> FailureClass:
    """Map an error (and the HTTP status observed, if any) to a :class:`FailureClass`.

    Blocked status codes win over text matching; text matching is a
    case-insensitive substring search over the error message.
    """
    message = error_message(error)
    if status_code in BLOCKED_STATUS_CODES:
        return FailureClass("blocked", True, message)

    lower = message.lower()
    for failure_type, retryable, needles in _TEXT_RULES:
        if any(needle in lower for needle in needles):
            return FailureClass(failure_type, retryable, message)  # type: ignore[arg-type]

    if isinstance(error, (httpx.TransportError, OSError)):
        return FailureClass("network", True, message)
    return FailureClass("infra", False, message)
