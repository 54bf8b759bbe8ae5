"""
Entity-level cache manager for marketplace aggregates.
"""

from typing import Awaitable, Callable, List, Optional, Union

from shared.logging import get_logger

from ..domain.models import (
    APIDocumentation,
    APIService,
    Subscription,
    UsagePeriod,
    UsageSummary,
    UserProfile,
    UserSecurity,
    UserSettings,
)
from .cache_store import CacheStore
from .keys import CacheKind


class CacheManager:
    """Typed get/set helpers and invalidation groups over ``CacheStore``."""

    def __init__(self, cache: CacheStore):
        self.cache = cache
        self.logger = get_logger("admission.cache_manager")

    async def get_user_profile(self, user_id: int) -> Optional[UserProfile]:
        return await self.cache.fetch(CacheKind.USER_PROFILE, user_id, model=UserProfile)

    async def set_user_profile(self, profile: UserProfile) -> None:
        await self.cache.populate(CacheKind.USER_PROFILE, profile.user_id, profile)

    async def get_user_settings(self, user_id: int) -> Optional[UserSettings]:
        return await self.cache.fetch(CacheKind.USER_SETTINGS, user_id, model=UserSettings)

    async def set_user_settings(self, settings: UserSettings) -> None:
        await self.cache.populate(CacheKind.USER_SETTINGS, settings.user_id, settings)

    async def get_user_security(self, user_id: int) -> Optional[UserSecurity]:
        return await self.cache.fetch(CacheKind.USER_SECURITY, user_id, model=UserSecurity)

    async def set_user_security(self, security: UserSecurity) -> None:
        await self.cache.populate(CacheKind.USER_SECURITY, security.user_id, security)

    async def get_api_service(self, service_id: int) -> Optional[APIService]:
        return await self.cache.fetch(CacheKind.API_SERVICE, service_id, model=APIService)

    async def set_api_service(self, service: APIService) -> None:
        await self.cache.populate(CacheKind.API_SERVICE, service.service_id, service)

    async def get_seller_services(self, seller_id: int) -> Optional[List[APIService]]:
        return await self.cache.fetch(CacheKind.SELLER_SERVICES, seller_id, model=List[APIService])

    async def set_seller_services(self, seller_id: int, services: List[APIService]) -> None:
        await self.cache.populate(CacheKind.SELLER_SERVICES, seller_id, services)

    async def get_active_services(self) -> Optional[List[APIService]]:
        return await self.cache.fetch(CacheKind.ACTIVE_SERVICES, model=List[APIService])

    async def set_active_services(self, services: List[APIService]) -> None:
        await self.cache.populate(CacheKind.ACTIVE_SERVICES, None, services)

    async def get_subscriptions(self, user_id: int) -> Optional[List[Subscription]]:
        return await self.cache.fetch(CacheKind.USER_SUBSCRIPTIONS, user_id, model=List[Subscription])

    async def set_subscriptions(self, user_id: int, subscriptions: List[Subscription]) -> None:
        await self.cache.populate(CacheKind.USER_SUBSCRIPTIONS, user_id, subscriptions)

    async def get_usage_stats(self, user_id: int, period: Union[UsagePeriod, str]) -> Optional[UsageSummary]:
        return await self.cache.fetch(CacheKind.USAGE_STATS, (user_id, period), model=UsageSummary)

    async def set_usage_stats(self, user_id: int, summary: UsageSummary) -> None:
        await self.cache.populate(CacheKind.USAGE_STATS, (user_id, summary.period), summary)

    async def get_api_doc(self, service_id: int) -> Optional[APIDocumentation]:
        return await self.cache.fetch(CacheKind.API_DOC, service_id, model=APIDocumentation)

    async def set_api_doc(self, doc: APIDocumentation) -> None:
        await self.cache.populate(CacheKind.API_DOC, doc.service_id, doc)

    async def load_user_profile(self, user_id: int,
                                loader: Callable[[], Awaitable[Optional[UserProfile]]]) -> Optional[UserProfile]:
        return await self.cache.read_through(CacheKind.USER_PROFILE, user_id, loader, model=UserProfile)

    async def load_api_service(self, service_id: int,
                               loader: Callable[[], Awaitable[Optional[APIService]]]) -> Optional[APIService]:
        return await self.cache.read_through(CacheKind.API_SERVICE, service_id, loader, model=APIService)

    async def invalidate_user(self, user_id: int) -> int:
        """Drop every per-user aggregate, including usage stats for all periods."""
        entries = [
            (CacheKind.USER_PROFILE, user_id),
            (CacheKind.USER_SETTINGS, user_id),
            (CacheKind.USER_SECURITY, user_id),
            (CacheKind.USER_SUBSCRIPTIONS, user_id),
        ]
        entries.extend((CacheKind.USAGE_STATS, (user_id, period)) for period in UsagePeriod)
        return await self.cache.invalidate_group(entries)

    async def invalidate_api_service(self, service_id: int, seller_id: int) -> int:
        """Drop a service, its documentation and every listing that contains it."""
        return await self.cache.invalidate_group([
            (CacheKind.API_SERVICE, service_id),
            (CacheKind.SELLER_SERVICES, seller_id),
            (CacheKind.API_DOC, service_id),
            (CacheKind.ACTIVE_SERVICES, None),
        ])

    async def invalidate_usage_stats(self, user_id: int) -> int:
        """Drop usage stats after new usage is recorded for ``user_id``."""
        return await self.cache.invalidate_group(
            (CacheKind.USAGE_STATS, (user_id, period)) for period in UsagePeriod
        )
