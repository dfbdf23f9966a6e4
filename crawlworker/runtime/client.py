"""JSON-over-HTTP client for the run orchestrator's internal API.

Every call is a bearer-authenticated ``POST`` under
``{base}/v2/internal/runs/{run_id}``. The client never goes through the proxy
environment variables: the orchestrator is always reached directly.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)


class RuntimeApiError(RuntimeError):
    """The orchestrator API rejected a call or could not be addressed."""


@dataclass
class LeaseItem:
    request_id: str
    url: str
    attempt: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    canonical_url: Optional[str] = None
    max_attempts: Optional[int] = None

    @property
    def depth(self) -> Union[int, float]:
        """Crawl depth from the item metadata (0 when missing or not a finite number).

        Integral values come back as ``int``; fractional depths are kept as given.
        """
        value = self.metadata.get("depth")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return 0
        return int(value) if float(value).is_integer() else value

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LeaseItem":
        return cls(
            request_id=str(payload["request_id"]),
            url=str(payload["url"]),
            attempt=int(payload.get("attempt") or 0),
            metadata=dict(payload.get("metadata") or {}),
            canonical_url=payload.get("canonical_url"),
            max_attempts=payload.get("max_attempts"),
        )


@dataclass
class ConcurrencyPolicy:
    min_concurrency: int = 1
    max_concurrency: int = 1
    autoscale_mode: str = "fixed"

    @property
    def adaptive(self) -> bool:
        return self.autoscale_mode == "adaptive"

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ConcurrencyPolicy":
        payload = payload or {}
        minimum = max(1, _as_int(payload.get("min_concurrency"), 1))
        maximum = max(minimum, _as_int(payload.get("max_concurrency"), minimum))
        return cls(
            min_concurrency=minimum,
            max_concurrency=maximum,
            autoscale_mode=str(payload.get("autoscale_mode") or "fixed"),
        )


def _as_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if value != value or value in (float("inf"), float("-inf")):
        return fallback
    return int(value)


@dataclass
class BootstrapPayload:
    run_id: str
    input: Dict[str, Any]
    concurrency: ConcurrencyPolicy
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BootstrapPayload":
        run = payload.get("run") or {}
        return cls(
            run_id=str(run.get("id") or ""),
            input=run.get("input") or {},
            concurrency=ConcurrencyPolicy.from_payload(run.get("concurrency")),
            raw=payload,
        )


class RuntimeClient:
    """Thin wrapper around the orchestrator's queue, dataset and event endpoints."""

    def __init__(
        self,
        base_url: str,
        run_id: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.run_id = run_id
        self._client = httpx.Client(
            timeout=timeout,
            trust_env=False,
            transport=transport,
            headers={"authorization": f"Bearer {token}"},
        )

    @classmethod
    def from_settings(cls, settings) -> "RuntimeClient":
        return cls(
            base_url=settings.runtime_api_base_url,
            run_id=settings.run_id,
            token=settings.run_token,
            timeout=settings.runtime_api_timeout,
        )

    def __enter__(self) -> "RuntimeClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def endpoint(self, path: str) -> str:
        if not self.run_id:
            raise RuntimeApiError("RUN_ID is required")
        return f"{self.base_url}/v2/internal/runs/{self.run_id}{path}"

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        response = self._client.post(self.endpoint(path), json=body)
        if response.is_error:
            raise RuntimeApiError(
                f"Internal API {path} failed: {response.status_code} {response.text}"
            )
        if not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def bootstrap(self) -> BootstrapPayload:
        return BootstrapPayload.from_payload(self._post("/bootstrap", {}))

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def lease(self, worker_id: str, limit: int, lease_seconds: int = 60) -> List[LeaseItem]:
        payload = self._post(
            "/queue/lease",
            {"worker_id": worker_id, "limit": limit, "lease_seconds": lease_seconds},
        )
        return [LeaseItem.from_payload(item) for item in payload.get("items") or []]

    def enqueue(self, items: List[Dict[str, Any]]) -> None:
        if not items:
            return
        self._post("/queue/enqueue", {"items": items})

    def ack(
        self,
        request_id: str,
        status_code: int,
        latency_ms: int,
        metadata: Dict[str, Any],
    ) -> None:
        self._post(
            "/queue/ack",
            {
                "request_id": request_id,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "metadata": metadata,
            },
        )

    def fail(
        self,
        request_id: str,
        error_type: str,
        error_reason: str,
        retryable: bool,
        status_code: Optional[int],
        latency_ms: int,
    ) -> None:
        self._post(
            "/queue/fail",
            {
                "request_id": request_id,
                "error_type": error_type,
                "error_reason": error_reason,
                "retryable": retryable,
                "status_code": status_code,
                "latency_ms": latency_ms,
            },
        )

    # ------------------------------------------------------------------
    # Dataset / events
    # ------------------------------------------------------------------

    def push_dataset(self, records: List[Dict[str, Any]]) -> None:
        if not records:
            return
        self._post("/dataset/push", {"records": records})

    def event(
        self,
        event_type: str,
        payload: Dict[str, Any],
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        message: Optional[str] = None,
        level: str = "info",
    ) -> None:
        self._post(
            "/events",
            {
                "event_type": event_type,
                "request_id": request_id or None,
                "stage": stage or None,
                "payload": payload,
                "message": message or None,
                "level": level,
            },
        )
