"""
Sliding-window rate limiter for the Admission service.
"""

import asyncio
import time
import uuid
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from shared.errors import StoreUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.redis_store import RedisStore
from .models import (
    DEFAULT_FAILURE_POLICIES,
    HEADER_PREFIXES,
    FailurePolicy,
    RateLimitConfig,
    RateLimitDecision,
    RateLimitKey,
    SubjectType,
)

# Prune, count and conditionally admit in one server-side step.
# ARGV: now_ms, window_start_ms, limit, window_seconds, member
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', ARGV[2])
local count = redis.call('ZCARD', key)

if count < limit then
    redis.call('ZADD', key, ARGV[1], ARGV[5])
    redis.call('EXPIRE', key, ARGV[4])
    return {1, limit - count - 1}
end

return {0, 0}
"""


class SlidingWindowRateLimiter:
    """Distributed sliding-window rate limiter backed by a Redis sorted set.

    Each admitted event is one sorted-set member scored with its admission
    time in milliseconds. Members are unique per event so that calls landing
    in the same millisecond are all counted.

    A check that is cancelled after dispatch may still be applied by the
    server. Callers must not assume a cancelled check left the window
    unchanged.
    """

    def __init__(
        self,
        store: RedisStore,
        failure_policies: Optional[Mapping[SubjectType, FailurePolicy]] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.failure_policies: Dict[SubjectType, FailurePolicy] = dict(DEFAULT_FAILURE_POLICIES)
        if failure_policies:
            self.failure_policies.update(failure_policies)
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("admission.rate_limiter")

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _record(self, key: RateLimitKey, decision: RateLimitDecision):
        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                subject_type=key.subject_type.value,
                outcome="allowed" if decision.allowed else "rejected",
            )

    def _apply_failure_policy(self, key: RateLimitKey, config: RateLimitConfig,
                              error: StoreUnavailable) -> RateLimitDecision:
        policy = self.failure_policies[key.subject_type]
        self.logger.warning(
            "Rate limit store failure",
            key=key.store_key,
            policy=policy.value,
            error_code=error.code,
            error=error.message,
        )
        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_store_failures_total",
                subject_type=key.subject_type.value,
                policy=policy.value,
            )

        if policy is FailurePolicy.OPEN:
            return RateLimitDecision(
                allowed=True,
                remaining=config.limit,
                limit=config.limit,
                window_seconds=config.window_seconds,
                degraded=True,
                error=error.message,
            )
        return RateLimitDecision(
            allowed=False,
            remaining=0,
            limit=config.limit,
            window_seconds=config.window_seconds,
            degraded=True,
            error=error.message,
        )

    async def check(self, key: RateLimitKey, config: RateLimitConfig) -> RateLimitDecision:
        """Admit or reject one event for ``key``.

        Only admitted events are recorded, so a rejection never changes the
        stored count.
        """
        if config.limit == 0:
            decision = RateLimitDecision(False, 0, 0, config.window_seconds)
            self._record(key, decision)
            return decision

        now_ms = self._now_ms()
        window_start_ms = now_ms - config.window_seconds * 1000
        member = f"{now_ms}:{uuid.uuid4().hex}"

        try:
            result = await self.store.eval(
                SLIDING_WINDOW_SCRIPT,
                [key.store_key],
                [now_ms, window_start_ms, config.limit, config.window_seconds, member],
            )
        except StoreUnavailable as e:
            decision = self._apply_failure_policy(key, config, e)
            self._record(key, decision)
            return decision

        allowed = int(result[0]) == 1
        decision = RateLimitDecision(
            allowed=allowed,
            remaining=max(0, int(result[1])),
            limit=config.limit,
            window_seconds=config.window_seconds,
        )
        self._record(key, decision)

        if not allowed:
            self.logger.info(
                "Rate limit exceeded",
                key=key.store_key,
                limit=config.limit,
                window_seconds=config.window_seconds,
            )
        return decision

    async def check_many(self, checks: Iterable[Tuple[RateLimitKey, RateLimitConfig]]) -> List[RateLimitDecision]:
        """Check several independent keys concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.check(key, config) for key, config in checks)))

    async def peek(self, key: RateLimitKey, config: RateLimitConfig) -> Tuple[int, int]:
        """Return ``(count, remaining)`` for the current window without admitting.

        Not atomic with concurrent checks. Store failures propagate.
        """
        window_start_ms = self._now_ms() - config.window_seconds * 1000
        count = await self.store.zcount(key.store_key, f"({window_start_ms}", "+inf")
        return count, max(0, config.limit - count)

    async def reset(self, key: RateLimitKey) -> None:
        """Delete every recorded event for ``key``."""
        await self.store.delete(key.store_key)
        self.logger.info("Rate limit reset", key=key.store_key)

    @staticmethod
    def headers_prefix(subject_type: SubjectType) -> str:
        return HEADER_PREFIXES[subject_type]
