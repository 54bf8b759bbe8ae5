"""
HTTP admission guard built on the sliding-window limiter.
"""

from typing import List, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.errors import ConfigurationError, RateLimitError
from shared.logging import get_logger, set_subject_context

from .models import API_CALL, IP, RateLimitConfig, RateLimitDecision, RateLimitKey
from .sliding_window import SlidingWindowRateLimiter


class RateLimitGuard:
    """Resolves request subjects and turns limiter decisions into HTTP responses."""

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        ip_config: RateLimitConfig = IP,
        user_config: RateLimitConfig = API_CALL,
        api_key_config: RateLimitConfig = API_CALL,
    ):
        self.rate_limiter = rate_limiter
        self.ip_config = ip_config
        self.user_config = user_config
        self.api_key_config = api_key_config
        self.logger = get_logger("admission.rate_limit_guard")

    @staticmethod
    def client_ip(request: Request) -> str:
        """Extract the originating client address."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop

        real_ip = (request.headers.get("X-Real-IP") or "").strip()
        if real_ip:
            return real_ip

        return request.client.host if request.client else "unknown"

    def subjects(self, request: Request) -> List[Tuple[RateLimitKey, RateLimitConfig]]:
        """Every (key, config) pair that applies to ``request``, IP first.

        User and API key subjects come from ``request.state``, populated by
        the authentication layer in front of this guard.
        """
        subjects = [(RateLimitKey.for_ip(self.client_ip(request)), self.ip_config)]

        user_id = getattr(request.state, "user_id", None)
        if user_id is not None:
            try:
                subjects.append((RateLimitKey.for_user(int(user_id)), self.user_config))
            except (TypeError, ValueError, ConfigurationError):
                self.logger.warning("Ignoring malformed user id for rate limiting", user_id=repr(user_id))
            else:
                set_subject_context(user_id=str(user_id))

        api_key = (getattr(request.state, "api_key", None) or "").strip()
        if api_key:
            subjects.append((RateLimitKey.for_api_key(api_key), self.api_key_config))
            set_subject_context(api_key_id=api_key[:8])

        return subjects

    async def admit(self, request: Request) -> Tuple[List[Tuple[RateLimitKey, RateLimitDecision]], Optional[RateLimitDecision]]:
        """Check every subject of ``request``.

        Returns all decisions taken and the first rejection, if any. Subjects
        after a rejection are not checked, so they are not charged.
        """
        decisions = []
        for key, config in self.subjects(request):
            decision = await self.rate_limiter.check(key, config)
            decisions.append((key, decision))
            if not decision.allowed:
                self.logger.warning(
                    "Request rejected by rate limit",
                    key=key.store_key,
                    path=request.url.path,
                    degraded=decision.degraded,
                )
                return decisions, decision
        return decisions, None

    def apply_headers(self, response: Response, decisions: List[Tuple[RateLimitKey, RateLimitDecision]]):
        for key, decision in decisions:
            prefix = self.rate_limiter.headers_prefix(key.subject_type)
            for name, value in decision.headers(prefix).items():
                response.headers[name] = value

    def rejection_response(self, decisions: List[Tuple[RateLimitKey, RateLimitDecision]],
                           decision: RateLimitDecision) -> JSONResponse:
        """Standard 429 body with a retry-after in seconds."""
        error = RateLimitError(
            "Too many requests, please try again later",
            {"limit": decision.limit, "window_seconds": decision.window_seconds},
        )
        content = error.to_response().model_dump()
        content.update(error="rate_limit_exceeded", retry_after=decision.retry_after)

        response = JSONResponse(status_code=error.status_code, content=content)
        response.headers["Retry-After"] = str(decision.retry_after)
        self.apply_headers(response, decisions)
        return response
