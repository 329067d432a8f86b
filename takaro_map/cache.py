import inspect
from collections.abc import Callable
from functools import wraps
from typing import Any
from typing import TypeVar

from takaro_map.store import CacheStore
from takaro_map.types import MISSING

T = TypeVar("T")

KeySpec = str | Callable[..., str]


async def call_fetch(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a sync or async fetch function and return its result."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


def cached(store: CacheStore, key: KeySpec, ttl: int) -> Callable:
    """Cache-aside decorator for upstream reads.

    The key is either a fixed string or a function of the wrapped call's
    arguments. On a hit the cached value is returned as is; on a miss the
    wrapped function runs and a non-None result is stored for ``ttl``
    seconds before being returned. Exceptions are never cached.

    Example:
        >>> @cached(store, lambda server_id: store.key("mapinfo", "dom", server_id), 3600)
        ... async def map_info(server_id: str) -> dict: ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            cache_key = key(*args, **kwargs) if callable(key) else key

            cached_value = await store.get(cache_key)
            if cached_value is not MISSING:
                return cached_value

            result = await call_fetch(func, *args, **kwargs)

            if result is not None:
                await store.set(cache_key, result, ttl)
            return result

        return wrapper

    return decorator
