"""
Admission service settings.

Environment-driven settings are read once at startup and frozen into an
``AdmissionConfig`` that is passed explicitly to every component.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple

from pydantic import Field

from shared.config import BaseConfig

from .caching.keys import KeyScheme
from .metering.pricing import DEFAULT_PRICING, PricingTable
from .ratelimit.models import IP, FailurePolicy, RateLimitConfig, SubjectType


class AdmissionSettings(BaseConfig):
    """Settings read from ``ADMISSION_*`` environment variables."""

    service_name: str = "admission"
    port: int = 8000
    host: str = "0.0.0.0"

    cache_key_prefix: str = ""
    pricing_file: Optional[str] = None
    normalize_model_names: bool = False

    fail_policy_user: FailurePolicy = FailurePolicy.OPEN
    fail_policy_api_key: FailurePolicy = FailurePolicy.OPEN
    fail_policy_service: FailurePolicy = FailurePolicy.OPEN
    fail_policy_user_service: FailurePolicy = FailurePolicy.OPEN
    fail_policy_ip: FailurePolicy = FailurePolicy.CLOSED

    ip_rate_limit: int = Field(default=IP.limit, ge=0)
    ip_rate_window_seconds: int = Field(default=IP.window_seconds, ge=1)
    guarded_path_prefixes: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class AdmissionConfig:
    """Immutable runtime configuration shared by the admission components."""

    redis_url: str
    connect_timeout: float = 5.0
    socket_timeout: float = 3.0
    operation_timeout: float = 4.0
    key_scheme: KeyScheme = field(default_factory=KeyScheme)
    pricing: PricingTable = DEFAULT_PRICING
    failure_policies: Mapping[SubjectType, FailurePolicy] = field(
        default_factory=lambda: MappingProxyType({})
    )
    normalize_model_names: bool = False
    ip_config: RateLimitConfig = IP
    guarded_path_prefixes: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: AdmissionSettings) -> "AdmissionConfig":
        pricing = PricingTable.from_yaml(settings.pricing_file) if settings.pricing_file else DEFAULT_PRICING
        policies = MappingProxyType({
            SubjectType.USER: settings.fail_policy_user,
            SubjectType.API_KEY: settings.fail_policy_api_key,
            SubjectType.SERVICE: settings.fail_policy_service,
            SubjectType.USER_SERVICE: settings.fail_policy_user_service,
            SubjectType.IP: settings.fail_policy_ip,
        })
        return cls(
            redis_url=settings.redis_url,
            connect_timeout=settings.store_connect_timeout,
            socket_timeout=settings.store_socket_timeout,
            operation_timeout=settings.store_operation_timeout,
            key_scheme=KeyScheme(settings.cache_key_prefix),
            pricing=pricing,
            failure_policies=policies,
            normalize_model_names=settings.normalize_model_names,
            ip_config=RateLimitConfig(settings.ip_rate_limit, settings.ip_rate_window_seconds),
            guarded_path_prefixes=tuple(settings.guarded_path_prefixes),
        )


def load_admission_config(settings: Optional[AdmissionSettings] = None) -> AdmissionConfig:
    """Read settings from the environment and freeze them."""
    return AdmissionConfig.from_settings(settings or AdmissionSettings())
