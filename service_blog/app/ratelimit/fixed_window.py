"""
Fixed-window rate limiter for the Blog service.

Each (scope, identity) pair gets one counter per window of ``window_ms``
milliseconds. A request straddling a window boundary can see up to twice
the limit across the two windows; that is the accepted cost of the scheme.
"""

import math
import time
from typing import Callable, Mapping, Optional

from pydantic import BaseModel

from shared.errors import StoreUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..adapters.counter_store import CounterStore

LOOPBACK_IDENTITY = "127.0.0.1"


class RateLimitPolicy(BaseModel):
    """A named quota pool."""
    scope: str
    limit: int
    window_ms: int


class RateLimitResult(BaseModel):
    """Outcome of one rate limit check."""
    allowed: bool
    remaining: int
    limit: int
    count: int = 0
    key: Optional[str] = None
    retry_after_seconds: int = 0
    failed_open: bool = False


def client_identity(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """Normalize the client address used as the rate limit identity."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return client_host or LOOPBACK_IDENTITY


def window_index(now_ms: float, window_ms: int) -> int:
    return math.floor(now_ms / window_ms)


def make_key(scope: str, identity: str, index: int) -> str:
    """Generate rate limit key."""
    return f"{scope}_rate_limit:{identity}:{index}"


class FixedWindowRateLimiter:
    """Fixed-window counters on a shared counter store.

    Store failures never reach the caller: the request is allowed, remaining
    is reported as 0 and a warning is logged.
    """

    def __init__(self, store: CounterStore, auth_policy: RateLimitPolicy, api_policy: RateLimitPolicy,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.auth_policy = auth_policy
        self.api_policy = api_policy
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("blog.rate_limiter")

    def _record(self, scope: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_rate_limit_decision(scope, outcome)

    async def check(self, scope: str, identity: str, limit: int, window_ms: int) -> RateLimitResult:
        """Count one request against ``scope``/``identity`` and decide."""
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")

        now_ms = self._clock() * 1000
        index = window_index(now_ms, window_ms)
        key = make_key(scope, identity, index)

        try:
            count = await self.store.incr_with_expiry(key, math.ceil(window_ms / 1000))
        except StoreUnavailableError as e:
            self.logger.warning(
                "Rate limit check failed, allowing request",
                scope=scope,
                key=key,
                error=e.message
            )
            self._record(scope, "failed_open")
            return RateLimitResult(
                allowed=True,
                remaining=0,
                limit=limit,
                key=key,
                failed_open=True
            )

        allowed = count <= limit
        window_end_ms = (index + 1) * window_ms
        result = RateLimitResult(
            allowed=allowed,
            remaining=max(0, limit - count),
            limit=limit,
            count=count,
            key=key,
            retry_after_seconds=0 if allowed else max(1, math.ceil((window_end_ms - now_ms) / 1000))
        )

        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                scope=scope,
                identity=identity,
                count=count,
                limit=limit
            )
        self._record(scope, "allowed" if allowed else "denied")
        return result

    async def check_policy(self, policy: RateLimitPolicy, identity: str) -> RateLimitResult:
        return await self.check(policy.scope, identity, policy.limit, policy.window_ms)

    async def check_auth(self, identity: str) -> RateLimitResult:
        """Tight quota for sign-in submissions."""
        return await self.check_policy(self.auth_policy, identity)

    async def check_api(self, identity: str) -> RateLimitResult:
        """Looser quota for the JSON API."""
        return await self.check_policy(self.api_policy, identity)

    async def check_rate_limit(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """Ad-hoc check under the ``custom`` scope for arbitrary keys."""
        return await self.check("custom", key, limit, window_ms)


class NoOpRateLimiter(FixedWindowRateLimiter):
    """Always allows and never touches a store. Wired in under ``env=test``."""

    def __init__(self, auth_policy: RateLimitPolicy, api_policy: RateLimitPolicy,
                 metrics: Optional[MetricsCollector] = None):
        self.store = None
        self.auth_policy = auth_policy
        self.api_policy = api_policy
        self.metrics = metrics
        self._clock = time.time
        self.logger = get_logger("blog.rate_limiter")

    async def check(self, scope: str, identity: str, limit: int, window_ms: int) -> RateLimitResult:
        return RateLimitResult(allowed=True, remaining=limit, limit=limit)
