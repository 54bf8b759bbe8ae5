"""
Rate limit subjects, configurations and decisions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from shared.errors import ConfigurationError


class SubjectType(str, Enum):
    """Entity a rate limit is scoped to."""
    USER = "user"
    API_KEY = "api_key"
    IP = "ip"
    SERVICE = "service"
    USER_SERVICE = "user_api"


class FailurePolicy(str, Enum):
    """What a check decides when the store cannot be reached."""
    OPEN = "open"
    CLOSED = "closed"


DEFAULT_FAILURE_POLICIES: Dict[SubjectType, FailurePolicy] = {
    SubjectType.USER: FailurePolicy.OPEN,
    SubjectType.API_KEY: FailurePolicy.OPEN,
    SubjectType.SERVICE: FailurePolicy.OPEN,
    SubjectType.USER_SERVICE: FailurePolicy.OPEN,
    # fronts login and registration
    SubjectType.IP: FailurePolicy.CLOSED,
}

HEADER_PREFIXES: Dict[SubjectType, str] = {
    SubjectType.USER: "X-User-RateLimit",
    SubjectType.USER_SERVICE: "X-User-RateLimit",
    SubjectType.API_KEY: "X-APIKey-RateLimit",
    SubjectType.IP: "X-RateLimit",
    SubjectType.SERVICE: "X-RateLimit",
}


def _numeric_id(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative integer", {name: repr(value)})
    return value


def _text_id(value, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{name} must be a non-empty string", {name: repr(value)})
    return value


@dataclass(frozen=True)
class RateLimitKey:
    """A (subject type, subject id) pair identifying one sliding window."""

    subject_type: SubjectType
    subject_id: Union[int, str, Tuple[int, int]]

    @classmethod
    def for_user(cls, user_id: int) -> "RateLimitKey":
        return cls(SubjectType.USER, _numeric_id(user_id, "user_id"))

    @classmethod
    def for_api_key(cls, api_key: str) -> "RateLimitKey":
        return cls(SubjectType.API_KEY, _text_id(api_key, "api_key"))

    @classmethod
    def for_ip(cls, ip: str) -> "RateLimitKey":
        return cls(SubjectType.IP, _text_id(ip, "ip"))

    @classmethod
    def for_service(cls, service_id: int) -> "RateLimitKey":
        return cls(SubjectType.SERVICE, _numeric_id(service_id, "service_id"))

    @classmethod
    def for_user_service(cls, user_id: int, service_id: int) -> "RateLimitKey":
        return cls(
            SubjectType.USER_SERVICE,
            (_numeric_id(user_id, "user_id"), _numeric_id(service_id, "service_id")),
        )

    @classmethod
    def parse(cls, subject_type: str, subject_id: str) -> "RateLimitKey":
        """Build a key from untyped input such as path parameters.

        Numeric subjects accept decimal strings; ``user_api`` expects
        ``"<user_id>:<service_id>"``.
        """
        try:
            kind = SubjectType(subject_type)
        except ValueError:
            raise ConfigurationError("Unknown subject type", {"subject_type": subject_type})

        try:
            if kind is SubjectType.USER:
                return cls.for_user(int(subject_id))
            if kind is SubjectType.SERVICE:
                return cls.for_service(int(subject_id))
            if kind is SubjectType.USER_SERVICE:
                user_part, service_part = str(subject_id).split(":", 1)
                return cls.for_user_service(int(user_part), int(service_part))
        except (TypeError, ValueError):
            raise ConfigurationError("Invalid subject id", {"subject_type": subject_type, "subject_id": subject_id})

        if kind is SubjectType.API_KEY:
            return cls.for_api_key(subject_id)
        return cls.for_ip(subject_id)

    @property
    def store_key(self) -> str:
        if self.subject_type is SubjectType.USER_SERVICE:
            user_id, service_id = self.subject_id
            return f"rate_limit:user_api:{user_id}:{service_id}"
        return f"rate_limit:{self.subject_type.value}:{self.subject_id}"


@dataclass(frozen=True)
class RateLimitConfig:
    """Limit of admitted events per trailing window of whole seconds."""

    limit: int
    window_seconds: int

    def __post_init__(self):
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 0:
            raise ConfigurationError("limit must be a non-negative integer", {"limit": repr(self.limit)})
        if (isinstance(self.window_seconds, bool) or not isinstance(self.window_seconds, int)
                or self.window_seconds < 1):
            raise ConfigurationError(
                "window must be a positive number of whole seconds",
                {"window_seconds": repr(self.window_seconds)},
            )


LOGIN = RateLimitConfig(limit=5, window_seconds=60)
API_CALL = RateLimitConfig(limit=100, window_seconds=60)
REGISTER = RateLimitConfig(limit=3, window_seconds=3600)
IP = RateLimitConfig(limit=200, window_seconds=60)

NAMED_CONFIGS: Dict[str, RateLimitConfig] = {
    "login": LOGIN,
    "api_call": API_CALL,
    "register": REGISTER,
    "ip": IP,
}


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    remaining: int
    limit: int
    window_seconds: int
    degraded: bool = False
    error: Optional[str] = field(default=None, compare=False)

    @property
    def retry_after(self) -> int:
        return 0 if self.allowed else self.window_seconds

    def headers(self, prefix: str = "X-RateLimit") -> Dict[str, str]:
        headers = {
            f"{prefix}-Limit": str(self.limit),
            f"{prefix}-Remaining": str(self.remaining),
            f"{prefix}-Window": f"{self.window_seconds}s",
        }
        if self.degraded:
            headers["X-RateLimit-Error"] = self.error or "rate limit store unavailable"
        return headers
