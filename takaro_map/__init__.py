"""takaro-map: player positions from Takaro on a live map, behind a tiered cache."""

from .app import create_app as create_app
from .cache import cached as cached
from .coordinator import FetchCacheCoordinator as FetchCacheCoordinator
from .downsample import downsample as downsample
from .pagination import drain_paginated as drain_paginated
from .store import CacheStore as CacheStore
from .types import MISSING as MISSING

__all__ = [
    "MISSING",
    "CacheStore",
    "FetchCacheCoordinator",
    "cached",
    "create_app",
    "downsample",
    "drain_paginated",
]
