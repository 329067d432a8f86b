"""Tiered cache store: shared Redis when reachable, in-process memory otherwise."""

from logging import getLogger
from typing import Any

from .backends import BaseCacheBackend
from .backends import MemoryBackend
from .backends import RedisBackend
from .exceptions import CacheError
from .types import CACHE_KEY_SEPARATOR
from .types import MISSING

logger = getLogger(__name__)


class CacheStore:
    """Best-effort key/value cache with TTL.

    The store owns two backends behind one interface and picks one of them
    when :meth:`connect` runs. If the remote backend fails later on, the store
    switches to the local backend for the rest of its lifetime. No cache
    failure is ever raised to the caller: reads degrade to a miss and writes
    to a no-op.

    Args:
        remote: Shared backend to try first, or None for memory only
        local: In-process backend used when the remote is unavailable
        prefix: Namespace prepended to every key built with :meth:`key`
    """

    def __init__(
        self,
        remote: BaseCacheBackend | None = None,
        local: MemoryBackend | None = None,
        prefix: str = "takaro",
    ) -> None:
        self.remote = remote
        self.local = local or MemoryBackend()
        self.prefix = prefix
        self._backend: BaseCacheBackend = self.local
        self._degraded = remote is not None

    @classmethod
    def from_url(
        cls,
        redis_url: str | None,
        prefix: str = "takaro",
        connect_timeout: float = 2.0,
    ) -> "CacheStore":
        """Build a store for a Redis URL, or a memory-only store when there is none."""
        remote = None
        if redis_url:
            remote = RedisBackend(
                redis_url,
                namespace=prefix,
                socket_timeout=connect_timeout,
                socket_connect_timeout=connect_timeout,
            )
        return cls(remote=remote, prefix=prefix)

    @property
    def backend(self) -> BaseCacheBackend:
        return self._backend

    @property
    def degraded(self) -> bool:
        """True when a remote backend is configured but not in use."""
        return self._degraded

    async def connect(self) -> bool:
        """Select the remote backend if it answers, the local one otherwise.

        Returns:
            Whether the remote backend is in use
        """
        if self.remote is None:
            logger.info("Cache: no shared backend configured, using in-memory cache")
            self._use(self.local, degraded=False)
            return False

        try:
            await self.remote.ping()
        except CacheError as e:
            logger.warning("Cache: shared backend not available, using in-memory cache: %s", e)
            self._use(self.local, degraded=True)
            return False

        logger.info("Cache: %s connected", self.remote.name)
        self._use(self.remote, degraded=False)
        return True

    def _use(self, backend: BaseCacheBackend, *, degraded: bool) -> None:
        logger.debug("Setting cache backend to: <%s>", backend.__class__.__name__)
        self._backend = backend
        self._degraded = degraded

    def _fall_back(self, operation: str, key: str, error: CacheError) -> None:
        if self._backend is self.local:
            logger.warning("Cache %s error for %s: %s", operation, key, error)
            return
        logger.warning(
            "Cache connection lost during %s of %s (%s), falling back to memory cache",
            operation,
            key,
            error,
        )
        self._use(self.local, degraded=True)

    def key(self, category: str, *parts: str) -> str:
        """Build a namespaced key: ``<prefix>:<category>:<part>:<part>...``."""
        return CACHE_KEY_SEPARATOR.join([self.prefix, category, *parts])

    async def get(self, key: str) -> Any:
        """Return the cached value, or :data:`MISSING`."""
        try:
            value = await self._backend.get(key)
        except CacheError as e:
            self._fall_back("get", key, e)
            return MISSING
        if value is MISSING:
            logger.debug("Cache miss: %s", key)
        else:
            logger.debug("Cache hit: %s (%s)", key, self._backend.name)
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self._backend.set(key, value, ttl)
        except CacheError as e:
            self._fall_back("set", key, e)
        except TypeError as e:
            logger.warning("Cache set error for %s: value is not serializable: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except CacheError as e:
            self._fall_back("delete", key, e)

    async def clear_pattern(self, pattern: str) -> int:
        """Invalidate every key matching a glob such as ``takaro:players:dom:*``."""
        try:
            cleared = await self._backend.clear_pattern(pattern)
        except CacheError as e:
            self._fall_back("clear_pattern", pattern, e)
            return 0
        if cleared:
            logger.info("Invalidated %d cache keys matching %s", cleared, pattern)
        return cleared

    async def stats(self) -> dict[str, Any]:
        try:
            keys = await self._backend.keys_count()
        except CacheError as e:
            self._fall_back("stats", "*", e)
            keys = await self.local.keys_count()
        return {"type": self._backend.name, "degraded": self._degraded, "keys": keys}

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()
        await self.local.close()
