import logging
from typing import Any

import orjson
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from takaro_map.exceptions import CacheUnavailableError
from takaro_map.types import MISSING

from .base import BaseCacheBackend

logger = logging.getLogger(__name__)

_DELETE_BATCH = 500


class RedisBackend(BaseCacheBackend):
    """Shared cache backend on top of ``redis.asyncio``.

    Values are stored as orjson-encoded strings written together with their
    expiry (``SET ... EX``). Every Redis or socket failure is re-raised as
    :class:`CacheUnavailableError` so the owning store can fall back.
    """

    name = "redis"

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        namespace: str = "takaro",
        socket_timeout: float = 2.0,
        socket_connect_timeout: float = 2.0,
    ) -> None:
        self.url = url
        self.namespace = namespace
        self.client = aioredis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            decode_responses=False,
        )

    def _serialize(self, value: Any) -> bytes:
        return orjson.dumps(value)

    def _deserialize(self, raw: bytes | str) -> Any:
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Discarding undecodable cache payload")
            return MISSING

    async def ping(self) -> None:
        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            msg = f"Redis at {self.url} is unreachable: {e}"
            raise CacheUnavailableError(msg) from e

    async def get(self, key: str) -> Any:
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e
        if raw is None:
            return MISSING
        return self._deserialize(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        data = self._serialize(value)
        try:
            if ttl is not None:
                await self.client.set(key, data, ex=max(int(ttl), 1))
            else:
                await self.client.set(key, data)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e

    async def clear_pattern(self, pattern: str) -> int:
        """Enumerate keys matching the glob with SCAN and delete them in batches."""
        cleared = 0
        batch: list[bytes] = []
        try:
            async for key in self.client.scan_iter(match=pattern, count=_DELETE_BATCH):
                batch.append(key)
                if len(batch) >= _DELETE_BATCH:
                    cleared += await self.client.delete(*batch)
                    batch = []
            if batch:
                cleared += await self.client.delete(*batch)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e
        return cleared

    async def clear(self) -> None:
        await self.clear_pattern(f"{self.namespace}:*")

    async def keys_count(self) -> int:
        count = 0
        try:
            async for _ in self.client.scan_iter(
                match=f"{self.namespace}:*", count=_DELETE_BATCH
            ):
                count += 1
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e
        return count

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except (RedisError, OSError) as e:
            logger.debug("Ignoring error while closing Redis client: %s", e)
