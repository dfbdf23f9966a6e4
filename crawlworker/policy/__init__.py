"""Pure decision components: scope, stop policy, engine choice, failure taxonomy."""

from crawlworker.policy.engine import EngineResolution, resolve_engine
from crawlworker.policy.failures import FailureClass, classify_failure
from crawlworker.policy.scope import ScopeMatcher, build_scope_matcher
from crawlworker.policy.stop import StopPolicyState, StopReason, evaluate_stop_reason

__all__ = [
    "EngineResolution",
    "resolve_engine",
    "FailureClass",
    "classify_failure",
    "ScopeMatcher",
    "build_scope_matcher",
    "StopPolicyState",
    "StopReason",
    "evaluate_stop_reason",
]
