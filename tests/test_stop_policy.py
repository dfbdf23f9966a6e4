"""Tests for the run stop policy (priority order and thresholds)."""

from __future__ import annotations

import dataclasses

from crawlworker.policy.stop import (
    StopPolicyState,
    StopReason,
    evaluate_stop_reason,
    queue_drained_threshold,
)

_BASE = StopPolicyState(
    started_at=1.0,
    now=1.5,
    max_runtime_seconds=10,
    processed_pages=0,
    max_pages=100,
    emitted_results=0,
    max_results=100,
    idle_cycles=0,
    max_idle_cycles=5,
    queue_drained_idle_threshold=2,
)


def _state(**overrides) -> StopPolicyState:
    return dataclasses.replace(_BASE, **overrides)


class TestEvaluateStopReason:
    def test_continues_when_nothing_is_exhausted(self) -> None:
        assert evaluate_stop_reason(_BASE) is None

    def test_runtime_budget(self) -> None:
        assert evaluate_stop_reason(_state(now=12.0)) is StopReason.MAX_RUNTIME_REACHED

    def test_runtime_budget_is_inclusive(self) -> None:
        assert evaluate_stop_reason(_state(now=11.0)) is StopReason.MAX_RUNTIME_REACHED

    def test_clock_going_backwards_counts_as_zero_elapsed(self) -> None:
        assert evaluate_stop_reason(_state(now=0.0)) is None

    def test_page_budget(self) -> None:
        assert evaluate_stop_reason(_state(processed_pages=100)) is StopReason.MAX_PAGES_REACHED

    def test_result_budget(self) -> None:
        assert evaluate_stop_reason(_state(emitted_results=100)) is StopReason.MAX_RESULTS_REACHED

    def test_idle_budget_precedes_queue_drained_at_equal_counts(self) -> None:
        reason = evaluate_stop_reason(
            _state(idle_cycles=1, max_idle_cycles=1, queue_drained_idle_threshold=2)
        )
        assert reason is StopReason.MAX_IDLE_CYCLES_REACHED

    def test_queue_drained_before_idle_budget(self) -> None:
        reason = evaluate_stop_reason(
            _state(idle_cycles=2, max_idle_cycles=5, queue_drained_idle_threshold=2)
        )
        assert reason is StopReason.QUEUE_DRAINED

    def test_runtime_wins_over_everything_else(self) -> None:
        reason = evaluate_stop_reason(
            _state(now=100.0, processed_pages=100, emitted_results=100, idle_cycles=5)
        )
        assert reason is StopReason.MAX_RUNTIME_REACHED

    def test_pages_win_over_results_and_idle(self) -> None:
        reason = evaluate_stop_reason(_state(processed_pages=100, emitted_results=100, idle_cycles=5))
        assert reason is StopReason.MAX_PAGES_REACHED

    def test_reason_serialises_as_its_value(self) -> None:
        assert str(StopReason.QUEUE_DRAINED) == "queue_drained"
        assert StopReason.MAX_PAGES_REACHED == "max_pages_reached"


class TestQueueDrainedThreshold:
    def test_capped_at_two(self) -> None:
        assert queue_drained_threshold(5) == 2

    def test_follows_a_lower_idle_budget(self) -> None:
        assert queue_drained_threshold(1) == 1
