"""
Rate limiting package for the Admission service.

Holds the sliding-window limiter, its subject/config types and the HTTP
guard that surfaces decisions as headers and 429 responses.
"""

from .models import (
    API_CALL,
    IP,
    LOGIN,
    NAMED_CONFIGS,
    REGISTER,
    FailurePolicy,
    RateLimitConfig,
    RateLimitDecision,
    RateLimitKey,
    SubjectType,
)
from .sliding_window import SlidingWindowRateLimiter
from .middleware import RateLimitGuard

__all__ = [
    "API_CALL",
    "IP",
    "LOGIN",
    "NAMED_CONFIGS",
    "REGISTER",
    "FailurePolicy",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitKey",
    "SubjectType",
    "SlidingWindowRateLimiter",
    "RateLimitGuard",
]
