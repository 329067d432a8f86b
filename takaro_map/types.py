"""Type definitions and type aliases for takaro-map."""

from dataclasses import dataclass
from typing import Any
from typing import Final

# Cache key separator, also used by the glob patterns handed to clear_pattern
CACHE_KEY_SEPARATOR = ":"


class _Missing:
    """Sentinel type returned by cache lookups that found nothing."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()


@dataclass
class CacheItem:
    """Cache item with optional expiry time.

    Args:
        value: The cached payload
        expiry: Epoch timestamp when this cache item expires (None = never expires)
    """

    value: Any
    expiry: float | None = None
