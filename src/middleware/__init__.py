"""中间件模块"""
from .auth_gate import AuthGate, AuthGateMiddleware, GateAction, GateDecision
from .error_handler import (
    CircuitBreaker,
    CircuitState,
    ErrorAggregator,
    global_error_aggregator,
    with_retry,
)
from .rate_limiter import (
    RateLimiter,
    RateLimitConfig,
    RateLimiterRegistry,
    global_rate_limiter_registry,
)
from .session_store import SessionStore

__all__ = [
    "AuthGate",
    "AuthGateMiddleware",
    "GateAction",
    "GateDecision",
    "SessionStore",
    "with_retry",
    "CircuitBreaker",
    "CircuitState",
    "ErrorAggregator",
    "global_error_aggregator",
    "RateLimiter",
    "RateLimitConfig",
    "RateLimiterRegistry",
    "global_rate_limiter_registry",
]
