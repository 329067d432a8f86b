import asyncio
import logging
import time
from typing import Any

from takaro_map.types import MISSING
from takaro_map.types import CacheItem

from .base import BaseCacheBackend

logger = logging.getLogger(__name__)


class MemoryBackend(BaseCacheBackend):
    """In-memory cache backend implementation."""

    name = "memory"

    def __init__(self) -> None:
        self.cache: dict[str, CacheItem] = {}
        self.lock = asyncio.Lock()
        self.cleanup_interval = 60
        self._cleanup_task: asyncio.Task[None] | None = None

    async def get(self, key: str) -> Any:
        async with self.lock:
            cached_item = self.cache.get(key)
            if cached_item is None:
                return MISSING
            if cached_item.expiry is not None and cached_item.expiry <= time.time():
                del self.cache[key]
                return MISSING
            return cached_item.value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        async with self.lock:
            expiry = time.time() + ttl if ttl is not None else None
            self.cache[key] = CacheItem(value=value, expiry=expiry)

    async def delete(self, key: str) -> None:
        async with self.lock:
            self.cache.pop(key, None)

    async def clear(self) -> None:
        async with self.lock:
            self.cache.clear()

    async def clear_pattern(self, pattern: str) -> int:
        """Remove keys containing the pattern once its ``*`` wildcards are stripped."""
        needle = pattern.replace("*", "")
        async with self.lock:
            matched = [key for key in self.cache if needle in key]
            for key in matched:
                del self.cache[key]
        return len(matched)

    async def keys_count(self) -> int:
        async with self.lock:
            return len(self.cache)

    def start_cleanup(self) -> None:
        """Start the periodic sweep of expired items, if not already running."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            await self.cleanup()

    async def cleanup(self) -> None:
        async with self.lock:
            now = time.time()
            expired_keys = [
                k
                for k, v in self.cache.items()
                if v.expiry is not None and v.expiry <= now
            ]
            for key in expired_keys:
                self.cache.pop(key, None)
        if expired_keys:
            logger.debug("Swept %d expired cache items", len(expired_keys))

    async def close(self) -> None:
        self.stop_cleanup()
