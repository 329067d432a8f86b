from abc import ABC
from abc import abstractmethod
from typing import Any


class BaseCacheBackend(ABC):
    """Base class for all cache backends.

    ``get`` returns :data:`takaro_map.types.MISSING` when the key is absent or
    expired, so that falsy payloads such as ``[]`` stay cacheable.
    """

    name: str = "base"

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Retrieve a cached value."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value in the cache."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value from the cache."""

    @abstractmethod
    async def clear(self) -> None:
        """Clear all cached values."""

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob pattern.

        Returns:
            Number of keys removed
        """

    @abstractmethod
    async def keys_count(self) -> int:
        """Number of keys currently held by the backend."""

    async def ping(self) -> None:  # noqa: B027
        """Check that the backend is reachable. Local backends always are."""

    async def close(self) -> None:  # noqa: B027
        """Release any connection held by the backend."""
