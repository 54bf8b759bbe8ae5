"""
Unit tests for the sliding-window rate limiter.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from shared.errors import ConfigurationError, StoreTimeout, StoreUnavailable
from service_admission.app.ratelimit.models import (
    API_CALL,
    IP,
    LOGIN,
    REGISTER,
    FailurePolicy,
    RateLimitConfig,
    RateLimitDecision,
    RateLimitKey,
    SubjectType,
)
from service_admission.app.ratelimit.sliding_window import SlidingWindowRateLimiter


class TestRateLimitKey:
    """Subject keys map onto fixed store key templates."""

    @pytest.mark.parametrize("key, expected", [
        (RateLimitKey.for_user(42), "rate_limit:user:42"),
        (RateLimitKey.for_api_key("pk_live_abc"), "rate_limit:api_key:pk_live_abc"),
        (RateLimitKey.for_ip("10.0.0.1"), "rate_limit:ip:10.0.0.1"),
        (RateLimitKey.for_service(7), "rate_limit:service:7"),
        (RateLimitKey.for_user_service(42, 7), "rate_limit:user_api:42:7"),
    ])
    def test_store_keys(self, key, expected):
        assert key.store_key == expected

    @pytest.mark.parametrize("factory, value", [
        (RateLimitKey.for_user, -1),
        (RateLimitKey.for_user, "42"),
        (RateLimitKey.for_user, True),
        (RateLimitKey.for_service, 1.5),
        (RateLimitKey.for_api_key, ""),
        (RateLimitKey.for_ip, "   "),
        (RateLimitKey.for_ip, None),
    ])
    def test_invalid_subject_ids_rejected(self, factory, value):
        with pytest.raises(ConfigurationError):
            factory(value)

    def test_parse_untyped_input(self):
        assert RateLimitKey.parse("user", "42") == RateLimitKey.for_user(42)
        assert RateLimitKey.parse("user_api", "42:7") == RateLimitKey.for_user_service(42, 7)
        assert RateLimitKey.parse("ip", "10.0.0.1") == RateLimitKey.for_ip("10.0.0.1")

    @pytest.mark.parametrize("subject_type, subject_id", [
        ("tenant", "1"),
        ("user", "abc"),
        ("user_api", "42"),
        ("service", "-3"),
    ])
    def test_parse_rejects_bad_input(self, subject_type, subject_id):
        with pytest.raises(ConfigurationError):
            RateLimitKey.parse(subject_type, subject_id)


class TestRateLimitConfig:
    """Limit/window validation and named configs."""

    def test_named_configs(self):
        assert (LOGIN.limit, LOGIN.window_seconds) == (5, 60)
        assert (API_CALL.limit, API_CALL.window_seconds) == (100, 60)
        assert (REGISTER.limit, REGISTER.window_seconds) == (3, 3600)
        assert (IP.limit, IP.window_seconds) == (200, 60)

    @pytest.mark.parametrize("limit, window", [(-1, 60), (5, 0), (5, 1.5), (True, 60), (5, -60)])
    def test_invalid_configs_rejected(self, limit, window):
        with pytest.raises(ConfigurationError):
            RateLimitConfig(limit, window)

    def test_zero_limit_is_valid(self):
        assert RateLimitConfig(0, 60).limit == 0


class TestSlidingWindowRateLimiter:
    """Admission behaviour against an in-memory Redis."""

    @pytest.fixture
    def limiter(self, store, metrics, clock):
        return SlidingWindowRateLimiter(store, metrics=metrics, clock=clock)

    @pytest.fixture
    def key(self):
        return RateLimitKey.for_user(1)

    @pytest.mark.asyncio
    async def test_same_second_calls_count_down(self, limiter, key):
        config = RateLimitConfig(5, 60)

        decisions = [await limiter.check(key, config) for _ in range(5)]

        assert [d.allowed for d in decisions] == [True] * 5
        assert [d.remaining for d in decisions] == [4, 3, 2, 1, 0]

    @pytest.mark.asyncio
    async def test_rejection_does_not_change_count(self, limiter, key):
        config = RateLimitConfig(5, 60)
        for _ in range(5):
            await limiter.check(key, config)

        rejected = await limiter.check(key, config)

        assert rejected.allowed is False
        assert rejected.remaining == 0
        assert await limiter.peek(key, config) == (5, 0)

    @pytest.mark.asyncio
    async def test_window_expiry_behaves_like_fresh_key(self, limiter, key, clock):
        config = RateLimitConfig(2, 60)
        await limiter.check(key, config)
        await limiter.check(key, config)
        assert (await limiter.check(key, config)).allowed is False

        clock.advance(61)

        decision = await limiter.check(key, config)
        assert decision.allowed is True
        assert decision.remaining == 1

    @pytest.mark.asyncio
    async def test_window_slides_rather_than_resets(self, limiter, key, clock):
        config = RateLimitConfig(5, 60)
        for _ in range(3):
            await limiter.check(key, config)
        clock.advance(30)
        for _ in range(2):
            await limiter.check(key, config)
        assert (await limiter.check(key, config)).allowed is False

        clock.advance(31)

        decision = await limiter.check(key, config)
        assert decision.allowed is True
        assert decision.remaining == 2

    @pytest.mark.asyncio
    async def test_key_expires_after_window(self, limiter, key, fake_redis):
        await limiter.check(key, RateLimitConfig(5, 60))
        assert 0 < await fake_redis.ttl(key.store_key) <= 60

    @pytest.mark.asyncio
    async def test_zero_limit_rejects_without_store_call(self, key):
        store = AsyncMock()
        limiter = SlidingWindowRateLimiter(store)

        decision = await limiter.check(key, RateLimitConfig(0, 60))

        assert decision.allowed is False
        assert decision.remaining == 0
        store.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_exceed_limit(self, limiter, key):
        config = RateLimitConfig(5, 60)

        decisions = await asyncio.gather(*(limiter.check(key, config) for _ in range(12)))

        assert sum(d.allowed for d in decisions) == 5
        assert sorted(d.remaining for d in decisions if d.allowed) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, limiter):
        config = RateLimitConfig(1, 60)
        assert (await limiter.check(RateLimitKey.for_user(1), config)).allowed
        assert (await limiter.check(RateLimitKey.for_user(2), config)).allowed
        assert not (await limiter.check(RateLimitKey.for_user(1), config)).allowed

    @pytest.mark.asyncio
    async def test_check_many_preserves_order(self, limiter):
        config = RateLimitConfig(1, 60)
        await limiter.check(RateLimitKey.for_ip("10.0.0.2"), config)

        decisions = await limiter.check_many([
            (RateLimitKey.for_ip("10.0.0.1"), config),
            (RateLimitKey.for_ip("10.0.0.2"), config),
        ])

        assert [d.allowed for d in decisions] == [True, False]

    @pytest.mark.asyncio
    async def test_reset_clears_window(self, limiter, key):
        config = RateLimitConfig(1, 60)
        await limiter.check(key, config)

        await limiter.reset(key)

        assert await limiter.peek(key, config) == (0, 1)
        assert (await limiter.check(key, config)).allowed is True

    @pytest.mark.asyncio
    async def test_peek_ignores_entries_outside_window(self, limiter, key, clock):
        config = RateLimitConfig(5, 60)
        await limiter.check(key, config)
        clock.advance(60)

        assert await limiter.peek(key, config) == (0, 5)

    @pytest.mark.asyncio
    async def test_decisions_are_counted(self, limiter, key, metrics):
        config = RateLimitConfig(1, 60)
        await limiter.check(key, config)
        await limiter.check(key, config)

        assert metrics.get_sample("rate_limit_decisions_total", subject_type="user", outcome="allowed") == 1.0
        assert metrics.get_sample("rate_limit_decisions_total", subject_type="user", outcome="rejected") == 1.0


class TestFailurePolicy:
    """Store failures resolve through the subject's configured policy."""

    @pytest.fixture
    def broken_store(self):
        store = AsyncMock()
        store.eval.side_effect = StoreTimeout()
        store.zcount.side_effect = StoreUnavailable()
        return store

    @pytest.mark.asyncio
    async def test_user_fails_open_by_default(self, broken_store, metrics):
        limiter = SlidingWindowRateLimiter(broken_store, metrics=metrics)

        decision = await limiter.check(RateLimitKey.for_user(1), API_CALL)

        assert decision.allowed is True
        assert decision.remaining == API_CALL.limit
        assert decision.degraded is True
        assert metrics.get_sample("rate_limit_store_failures_total", subject_type="user", policy="open") == 1.0

    @pytest.mark.asyncio
    async def test_ip_fails_closed_by_default(self, broken_store, metrics):
        limiter = SlidingWindowRateLimiter(broken_store, metrics=metrics)

        decision = await limiter.check(RateLimitKey.for_ip("10.0.0.1"), LOGIN)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert decision.degraded is True
        assert metrics.get_sample("rate_limit_store_failures_total", subject_type="ip", policy="closed") == 1.0

    @pytest.mark.asyncio
    async def test_policy_override(self, broken_store):
        limiter = SlidingWindowRateLimiter(broken_store, {SubjectType.API_KEY: FailurePolicy.CLOSED})

        decision = await limiter.check(RateLimitKey.for_api_key("pk_1"), API_CALL)

        assert decision.allowed is False
        assert limiter.failure_policies[SubjectType.USER] is FailurePolicy.OPEN

    @pytest.mark.asyncio
    async def test_peek_propagates_store_failure(self, broken_store):
        limiter = SlidingWindowRateLimiter(broken_store)

        with pytest.raises(StoreUnavailable):
            await limiter.peek(RateLimitKey.for_user(1), API_CALL)


class TestRateLimitDecision:
    """Header rendering and retry-after."""

    def test_headers_use_subject_prefix(self):
        decision = RateLimitDecision(True, 99, 100, 60)

        assert decision.headers("X-User-RateLimit") == {
            "X-User-RateLimit-Limit": "100",
            "X-User-RateLimit-Remaining": "99",
            "X-User-RateLimit-Window": "60s",
        }
        assert decision.retry_after == 0

    def test_degraded_decision_carries_error_header(self):
        decision = RateLimitDecision(True, 100, 100, 60, degraded=True, error="Shared store timed out")

        assert decision.headers()["X-RateLimit-Error"] == "Shared store timed out"

    def test_rejection_retry_after_is_window(self):
        assert RateLimitDecision(False, 0, 3, 3600).retry_after == 3600

    @pytest.mark.parametrize("subject_type, prefix", [
        (SubjectType.IP, "X-RateLimit"),
        (SubjectType.USER, "X-User-RateLimit"),
        (SubjectType.API_KEY, "X-APIKey-RateLimit"),
    ])
    def test_header_prefixes(self, subject_type, prefix):
        assert SlidingWindowRateLimiter.headers_prefix(subject_type) == prefix
