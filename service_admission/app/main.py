"""
Admission service for the API marketplace gateway.

Exposes the sliding-window limiter, the usage meter and cache group
invalidation to the proxy and write-path handlers. Client-facing routes
mounted under a configured prefix are guarded by the per-IP limit.
"""

from typing import Optional, Tuple

from fastapi import Query, Request, Response
from pydantic import BaseModel
from prometheus_client import CollectorRegistry

from shared.base_service import BaseService
from shared.errors import ConfigurationError

from .adapters.redis_store import RedisStore
from .caching.cache_manager import CacheManager
from .caching.cache_store import CacheStore
from .metering.meter import UsageMeter
from .ratelimit.middleware import RateLimitGuard
from .ratelimit.models import API_CALL, NAMED_CONFIGS, RateLimitConfig, RateLimitKey
from .ratelimit.sliding_window import SlidingWindowRateLimiter
from .settings import AdmissionConfig, AdmissionSettings

# operational endpoints and the admission API itself
UNGUARDED_PREFIXES = (
    "/health", "/metrics", "/docs", "/redoc", "/openapi.json",
    "/api/v1/ratelimit", "/api/v1/usage", "/api/v1/cache",
)


class RateLimitCheckRequest(BaseModel):
    subject_type: str
    subject_id: str
    config: Optional[str] = None
    limit: Optional[int] = None
    window_seconds: Optional[int] = None


class MeterRequest(BaseModel):
    request: Optional[str] = None
    response: str
    model: Optional[str] = None


class CostRequest(BaseModel):
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


def is_guarded(path: str, guarded_prefixes: Tuple[str, ...]) -> bool:
    """Whether the per-IP guard applies to ``path``."""
    if path.startswith(UNGUARDED_PREFIXES):
        return False
    return path.startswith(guarded_prefixes)


def resolve_config(name: Optional[str] = None, limit: Optional[int] = None,
                   window_seconds: Optional[int] = None) -> RateLimitConfig:
    """Named config, explicit limit/window, or the general API call limit."""
    if name is not None:
        if name not in NAMED_CONFIGS:
            raise ConfigurationError("Unknown rate limit config", {"config": name})
        return NAMED_CONFIGS[name]
    if limit is not None or window_seconds is not None:
        if limit is None or window_seconds is None:
            raise ConfigurationError("limit and window_seconds must be given together")
        return RateLimitConfig(limit, window_seconds)
    return API_CALL


class AdmissionService(BaseService):
    """Admission-control and usage-metering service."""

    def __init__(
        self,
        settings: Optional[AdmissionSettings] = None,
        admission_config: Optional[AdmissionConfig] = None,
        store: Optional[RedisStore] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        settings = settings or AdmissionSettings()
        super().__init__("admission", settings.port, config=settings, registry=registry)

        self.admission_config = admission_config or AdmissionConfig.from_settings(settings)
        cfg = self.admission_config

        self.store = store or RedisStore(
            cfg.redis_url,
            connect_timeout=cfg.connect_timeout,
            socket_timeout=cfg.socket_timeout,
            operation_timeout=cfg.operation_timeout,
            metrics=self.metrics,
        )
        self.rate_limiter = SlidingWindowRateLimiter(self.store, cfg.failure_policies, metrics=self.metrics)
        self.guard = RateLimitGuard(self.rate_limiter, ip_config=cfg.ip_config)
        self.meter = UsageMeter(cfg.pricing, metrics=self.metrics,
                                normalize_model_names=cfg.normalize_model_names)
        self.cache = CacheStore(self.store, cfg.key_scheme, metrics=self.metrics)
        self.cache_manager = CacheManager(self.cache)

        @self.app.on_event("startup")
        async def _startup():
            await self.store.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.store.close()

        self._setup_rate_limit_middleware()
        self._setup_admission_routes()

    async def _check_dependencies(self):
        await self.store.ping()
        return {"redis": "ok"}

    def _setup_rate_limit_middleware(self):

        @self.app.middleware("http")
        async def enforce_rate_limits(request: Request, call_next):
            if not is_guarded(request.url.path, self.admission_config.guarded_path_prefixes):
                return await call_next(request)

            decisions, rejection = await self.guard.admit(request)
            if rejection is not None:
                return self.guard.rejection_response(decisions, rejection)

            response = await call_next(request)
            self.guard.apply_headers(response, decisions)
            return response

    def _setup_admission_routes(self):

        @self.app.post("/api/v1/ratelimit/check")
        async def check_rate_limit(body: RateLimitCheckRequest, response: Response):
            """Admit or reject one event for a subject."""
            key = RateLimitKey.parse(body.subject_type, body.subject_id)
            config = resolve_config(body.config, body.limit, body.window_seconds)
            decision = await self.rate_limiter.check(key, config)

            for name, value in decision.headers(self.rate_limiter.headers_prefix(key.subject_type)).items():
                response.headers[name] = value
            return {
                "key": key.store_key,
                "allowed": decision.allowed,
                "remaining": decision.remaining,
                "limit": decision.limit,
                "window_seconds": decision.window_seconds,
                "retry_after": decision.retry_after,
                "degraded": decision.degraded,
            }

        @self.app.get("/api/v1/ratelimit/{subject_type}/{subject_id}")
        async def get_rate_limit_status(subject_type: str, subject_id: str, config: Optional[str] = Query(None)):
            """Current usage of a subject's window."""
            key = RateLimitKey.parse(subject_type, subject_id)
            limit_config = resolve_config(config)
            count, remaining = await self.rate_limiter.peek(key, limit_config)
            return {
                "key": key.store_key,
                "count": count,
                "remaining": remaining,
                "limit": limit_config.limit,
                "window_seconds": limit_config.window_seconds,
            }

        @self.app.delete("/api/v1/ratelimit/{subject_type}/{subject_id}")
        async def reset_rate_limit(subject_type: str, subject_id: str):
            key = RateLimitKey.parse(subject_type, subject_id)
            await self.rate_limiter.reset(key)
            return {"key": key.store_key, "reset": True}

        @self.app.post("/api/v1/usage/meter")
        async def meter_usage(body: MeterRequest):
            """Extract and price token usage of a proxied call."""
            model = body.model or self.meter.extract_model(body.request, body.response)
            usage = self.meter.parse_usage(body.response, model)
            return usage.to_dict()

        @self.app.post("/api/v1/usage/cost")
        async def compute_cost(body: CostRequest):
            cost = self.meter.compute_cost(body.input_tokens, body.output_tokens, body.model)
            return {"model": body.model, "cost": cost}

        @self.app.delete("/api/v1/cache/users/{user_id}")
        async def invalidate_user_cache(user_id: int):
            """Drop every cached aggregate of a user."""
            deleted = await self.cache_manager.invalidate_user(user_id)
            return {"user_id": user_id, "deleted": deleted}

        @self.app.delete("/api/v1/cache/services/{service_id}")
        async def invalidate_service_cache(service_id: int, seller_id: int = Query(..., ge=0)):
            """Drop a service and the listings that contain it."""
            deleted = await self.cache_manager.invalidate_api_service(service_id, seller_id)
            return {"service_id": service_id, "seller_id": seller_id, "deleted": deleted}


def create_app():
    """Create FastAPI application."""
    service = AdmissionService()
    return service.app


if __name__ == "__main__":
    service = AdmissionService()
    service.run()
