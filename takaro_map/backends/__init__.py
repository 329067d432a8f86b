"""Cache backend implementations for takaro-map."""

from .base import BaseCacheBackend
from .memory import MemoryBackend
from .redis import RedisBackend

__all__ = [
    "BaseCacheBackend",
    "MemoryBackend",
    "RedisBackend",
]
