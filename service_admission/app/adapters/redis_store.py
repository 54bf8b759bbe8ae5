"""
Shared store adapter for the admission service.

Every call is bounded twice: by the client socket timeouts and by an
overall operation timeout. Failures surface as ``StoreTimeout`` or
``StoreUnavailable`` so callers can apply their own policy.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from shared.errors import StoreTimeout, StoreUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class RedisStore:
    """Thin async wrapper around redis with timeout and error mapping."""

    def __init__(
        self,
        redis_url: str,
        connect_timeout: float = 5.0,
        socket_timeout: float = 3.0,
        operation_timeout: float = 4.0,
        metrics: Optional[MetricsCollector] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.operation_timeout = operation_timeout
        self.metrics = metrics
        self.logger = get_logger("admission.store")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.socket_timeout,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        return self._redis

    async def _execute(self, operation: str, call: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        client = await self._get_redis()
        try:
            if self.metrics:
                with self.metrics.time_operation("store_operation_duration_seconds", operation=operation):
                    return await asyncio.wait_for(call(client), timeout=self.operation_timeout)
            return await asyncio.wait_for(call(client), timeout=self.operation_timeout)
        except (asyncio.TimeoutError, RedisTimeoutError) as e:
            self.logger.warning("Store operation timed out", operation=operation, timeout=self.operation_timeout)
            raise StoreTimeout(details={"operation": operation}) from e
        except (RedisError, OSError) as e:
            self.logger.warning("Store operation failed", operation=operation, error=str(e))
            raise StoreUnavailable(details={"operation": operation, "error": str(e)}) from e

    async def start(self):
        """Connect and verify the store is reachable."""
        await self.ping()
        self.logger.info("Store connected", redis_url=self.redis_url)

    async def close(self):
        """Close the underlying connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Store closed")

    async def ping(self) -> bool:
        return await self._execute("ping", lambda client: client.ping())

    async def eval(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """Run a Lua script atomically on the server."""
        return await self._execute("eval", lambda client: client.eval(script, len(keys), *keys, *args))

    async def get(self, key: str) -> Optional[str]:
        return await self._execute("get", lambda client: client.get(key))

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._execute("setex", lambda client: client.setex(key, ttl_seconds, value))

    async def delete(self, *keys: str) -> int:
        """Delete keys and return how many existed."""
        if not keys:
            return 0
        return int(await self._execute("delete", lambda client: client.delete(*keys)))

    async def zcount(self, key: str, min_score: Any, max_score: Any) -> int:
        return int(await self._execute("zcount", lambda client: client.zcount(key, min_score, max_score)))
