"""
Read-through cache over the shared store.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

from pydantic import BaseModel, TypeAdapter, ValidationError as PydanticValidationError

from shared.errors import SerializationError, StoreUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.redis_store import RedisStore
from .keys import CacheKind, KeyScheme


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@lru_cache(maxsize=64)
def _adapter(model: Any) -> TypeAdapter:
    return TypeAdapter(model)


def encode(value: Any) -> str:
    """Serialize a cache payload; ``None`` is not cacheable."""
    if value is None:
        raise SerializationError("Cannot cache None")
    try:
        return json.dumps(value, default=_json_default, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise SerializationError("Cache payload is not serializable", {"error": str(e)})


class CacheStore:
    """Keyed, TTL-tiered cache with explicit invalidation.

    ``fetch`` returns ``None`` for a miss. Store failures and malformed
    payloads on the read path are downgraded to misses; failures on the
    invalidation path are raised, since a silent failed delete would leave
    stale data behind.
    """

    def __init__(self, store: RedisStore, key_scheme: Optional[KeyScheme] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.key_scheme = key_scheme or KeyScheme()
        self.metrics = metrics
        self.logger = get_logger("admission.cache")

    def key(self, kind: CacheKind, ident: Any = None) -> str:
        return self.key_scheme.render(kind, ident)

    def _count(self, metric: str, kind: CacheKind, amount: int = 1, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric, amount, kind=kind.name.lower(), **labels)

    async def populate(self, kind: CacheKind, ident: Any, value: Any) -> None:
        """Store ``value`` under the kind's key with the kind's TTL class."""
        key = self.key(kind, ident)
        payload = encode(value)
        await self.store.setex(key, kind.ttl_seconds, payload)
        self.logger.debug("Cache populated", key=key, ttl=kind.ttl_seconds)

    async def _discard(self, kind: CacheKind, key: str, reason: str):
        self._count("cache_errors_total", kind, reason=reason)
        try:
            await self.store.delete(key)
        except StoreUnavailable as e:
            self.logger.warning("Failed to discard malformed cache entry", key=key, error=e.message)

    async def fetch(self, kind: CacheKind, ident: Any = None, model: Any = None) -> Optional[Any]:
        """Return the cached value or ``None`` on a miss.

        With ``model`` (a pydantic model or any type ``TypeAdapter`` accepts)
        the payload is validated into that type; a payload that fails
        validation is treated like one that fails to decode.
        """
        key = self.key(kind, ident)
        try:
            payload = await self.store.get(key)
        except StoreUnavailable as e:
            self.logger.warning("Cache read failed, treating as miss", key=key, error=e.message)
            self._count("cache_errors_total", kind, reason="store_unavailable")
            self._count("cache_misses_total", kind)
            return None

        if payload is None:
            self._count("cache_misses_total", kind)
            return None

        try:
            value = json.loads(payload)
            if model is not None:
                value = _adapter(model).validate_python(value)
        except (ValueError, PydanticValidationError) as e:
            self.logger.warning("Discarding malformed cache entry", key=key, error=str(e))
            await self._discard(kind, key, "malformed")
            self._count("cache_misses_total", kind)
            return None

        self._count("cache_hits_total", kind)
        return value

    async def invalidate(self, kind: CacheKind, ident: Any = None) -> int:
        """Delete one entry; returns 1 if it existed."""
        return await self.invalidate_group([(kind, ident)])

    async def invalidate_group(self, entries: Iterable[Tuple[CacheKind, Any]]) -> int:
        """Delete a set of entries in one call; returns how many existed."""
        entries = list(entries)
        keys = [self.key(kind, ident) for kind, ident in entries]
        if not keys:
            return 0
        try:
            deleted = await self.store.delete(*keys)
        except StoreUnavailable as e:
            self.logger.error("Cache invalidation failed", keys=keys, error=e.message)
            raise

        for kind, _ in entries:
            self._count("cache_invalidations_total", kind)
        self.logger.info("Cache invalidated", keys=keys, deleted=deleted)
        return deleted

    async def read_through(self, kind: CacheKind, ident: Any, loader: Callable[[], Awaitable[Any]],
                           model: Any = None) -> Optional[Any]:
        """Fetch, or load from the primary store and populate on a miss.

        A populate that started before a concurrent invalidation may land
        after it and reintroduce the value it loaded until the TTL expires.
        """
        cached = await self.fetch(kind, ident, model=model)
        if cached is not None:
            return cached

        value = await loader()
        if value is None:
            return None

        try:
            await self.populate(kind, ident, value)
        except (StoreUnavailable, SerializationError) as e:
            self.logger.warning("Cache populate failed", kind=kind.name, error=e.message)
        return value
