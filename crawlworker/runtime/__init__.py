"""Orchestrator-facing pieces: the internal API client and run input parsing."""

from crawlworker.runtime.client import (
    BootstrapPayload,
    ConcurrencyPolicy,
    LeaseItem,
    RuntimeApiError,
    RuntimeClient,
)
from crawlworker.runtime.input import InputValidationError, RunConfig, parse_run_input

__all__ = [
    "BootstrapPayload",
    "ConcurrencyPolicy",
    "LeaseItem",
    "RuntimeApiError",
    "RuntimeClient",
    "InputValidationError",
    "RunConfig",
    "parse_run_input",
]
