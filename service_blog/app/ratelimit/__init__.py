"""
Rate limiting package for the Blog service.

Holds the fixed-window limiter that enforces per-client request budgets
for sign-in submissions and the JSON API.
"""

from .fixed_window import (
    FixedWindowRateLimiter,
    NoOpRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    client_identity,
    make_key,
)

__all__ = [
    "FixedWindowRateLimiter",
    "NoOpRateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "client_identity",
    "make_key",
]
