"""Run stop policy: a pure function of elapsed time and run counters.

Conditions are checked in a fixed priority order and the first one that
holds wins:

    time budget → page budget → result budget → idle-cycle budget → queue drained
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

QUEUE_DRAINED_IDLE_CYCLES = 2


class StopReason(str, Enum):
    MAX_RUNTIME_REACHED = "max_runtime_reached"
    MAX_PAGES_REACHED = "max_pages_reached"
    MAX_RESULTS_REACHED = "max_results_reached"
    MAX_IDLE_CYCLES_REACHED = "max_idle_cycles_reached"
    QUEUE_DRAINED = "queue_drained"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StopPolicyState:
    """Snapshot of the run counters, times in seconds."""

    started_at: float
    now: float
    max_runtime_seconds: float
    processed_pages: int
    max_pages: int
    emitted_results: int
    max_results: int
    idle_cycles: int
    max_idle_cycles: int
    queue_drained_idle_threshold: int = QUEUE_DRAINED_IDLE_CYCLES


def queue_drained_threshold(max_idle_cycles: int) -> int:
    """Idle cycles after which the queue is considered drained."""
    return min(QUEUE_DRAINED_IDLE_CYCLES, max_idle_cycles)


def evaluate_stop_reason(state: StopPolicyState) -> Optional[StopReason]:
    """Return the first triggered :class:`StopReason`, or ``None`` to keep going."""
    elapsed = max(0.0, state.now - state.started_at)
    if elapsed >= state.max_runtime_seconds:
        return StopReason.MAX_RUNTIME_REACHED
    if state.processed_pages >= state.max_pages:
        return StopReason.MAX_PAGES_REACHED
    if state.emitted_results >= state.max_results:
        return StopReason.MAX_RESULTS_REACHED
    if state.idle_cycles >= state.max_idle_cycles:
        return StopReason.MAX_IDLE_CYCLES_REACHED
    if state.idle_cycles >= state.queue_drained_idle_threshold:
        return StopReason.QUEUE_DRAINED
    return None
