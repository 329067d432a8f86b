"""Single chokepoint for upstream reads: cache-aside, de-duplication, filtering."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from datetime import timezone
from typing import Any

from .cache import KeySpec
from .cache import cached
from .client import TakaroClient
from .config import CacheTTL
from .models import PlayerRecord
from .models import as_utc
from .pagination import DEFAULT_MAX_TOTAL
from .pagination import DEFAULT_PAGE_SIZE
from .pagination import drain_paginated
from .store import CacheStore
from .types import MISSING

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class FetchCacheCoordinator:
    """Process-wide coordinator shared by every request.

    Owns the in-flight map used to collapse concurrent full-list fetches.
    The map is only touched from the event loop, and nothing awaits between
    "no fetch in flight" and "register this fetch", so it needs no lock.

    Args:
        store: Cache store shared by all callers
        ttl: Freshness window per resource category
        page_size: Page size used when draining the player list
        max_total: Safety ceiling for the player list
    """

    def __init__(
        self,
        store: CacheStore,
        ttl: CacheTTL | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_total: int = DEFAULT_MAX_TOTAL,
    ) -> None:
        self.store = store
        self.ttl = ttl or CacheTTL()
        self.page_size = page_size
        self.max_total = max_total
        self._in_flight: dict[str, asyncio.Task[list[PlayerRecord]]] = {}

    # Generic cache-aside

    def wrap(self, key: KeySpec, ttl: int, fetch: Callable[..., Any]) -> Callable[..., Any]:
        """Return ``fetch`` wrapped with cache-aside reads and writes."""
        return cached(self.store, key, ttl)(fetch)

    async def cached_call(self, key: str, ttl: int, fetch: Callable[[], Any]) -> Any:
        return await self.wrap(key, ttl, fetch)()

    # Full player list

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def get_full_player_list(
        self, client: TakaroClient, domain: str, server_id: str
    ) -> list[PlayerRecord]:
        """Every known player (online and offline) of one server.

        Concurrent callers for the same server share one upstream fetch.
        """
        dedup_key = f"players:{domain}:{server_id}:full"
        cache_key = self.store.key("players", domain, server_id, "full")

        task = self._in_flight.get(dedup_key)
        if task is None:
            cached_list = await self.store.get(cache_key)
            if cached_list is not MISSING:
                return [PlayerRecord.model_validate(p) for p in cached_list]

            # The lookup above may have suspended; another caller can have
            # started the fetch meanwhile.
            task = self._in_flight.get(dedup_key)
            if task is None:
                task = asyncio.create_task(
                    self._fetch_full_list(client, server_id, cache_key)
                )
                self._in_flight[dedup_key] = task
                task.add_done_callback(lambda t: self._settle(dedup_key, t))
        else:
            logger.debug("Waiting for in-flight player fetch: %s", dedup_key)

        return await asyncio.shield(task)

    def _settle(self, dedup_key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(dedup_key) is task:
            del self._in_flight[dedup_key]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter went away.
            task.exception()

    async def _fetch_full_list(
        self, client: TakaroClient, server_id: str, cache_key: str
    ) -> list[PlayerRecord]:
        start = time.perf_counter()

        # Runs on its own client: the caller that started it may go away first.
        async with client.clone() as upstream:

            async def fetch_page(page: int, limit: int):
                return await upstream.search_players_on_gameserver(server_id, page, limit)

            pogs = await drain_paginated(fetch_page, self.page_size, self.max_total)

        players: dict[str, PlayerRecord] = {}
        for pog in pogs:
            record = PlayerRecord.from_upstream(pog)
            players.setdefault(record.id, record)
        result = list(players.values())

        logger.info(
            "Fetched full player list for %s: %d players in %.0fms",
            server_id,
            len(result),
            (time.perf_counter() - start) * 1000,
        )
        await self.store.set(
            cache_key,
            [p.model_dump(mode="json") for p in result],
            self.ttl.players_list,
        )
        return result

    async def get_players(
        self,
        client: TakaroClient,
        domain: str,
        server_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        load_all: bool = False,
    ) -> list[PlayerRecord]:
        """Filter the cached full list by a last-seen window.

        Online players always pass. Without a window only online players are
        returned; with one, offline players last seen within it are added.
        """
        players = await self.get_full_player_list(client, domain, server_id)
        return filter_players(players, start, end, load_all)

    # Name enrichment

    async def resolve_names(
        self, client: TakaroClient, domain: str, ids: list[str]
    ) -> dict[str, str]:
        """Map player ids to names, asking upstream only for uncached ids."""
        unique_ids = list(dict.fromkeys(i for i in ids if i))
        names: dict[str, str] = {}
        missing: list[str] = []

        for player_id in unique_ids:
            player = await self.store.get(self.store.key("player", domain, player_id))
            if player is MISSING:
                missing.append(player_id)
            else:
                names[player_id] = player.get("name") or "Unknown"

        if not missing:
            if unique_ids:
                logger.debug("All %d player names served from cache", len(unique_ids))
            return names

        page = await client.search_players(missing, limit=len(missing))
        logger.info("Resolved %d/%d player names upstream", len(missing), len(unique_ids))
        for player in page.items:
            await self.store.set(
                self.store.key("player", domain, player["id"]),
                player,
                self.ttl.player_names,
            )
            names[player["id"]] = player.get("name") or "Unknown"
        return names


def filter_players(
    players: list[PlayerRecord],
    start: datetime | None = None,
    end: datetime | None = None,
    load_all: bool = False,
) -> list[PlayerRecord]:
    if load_all:
        return list(players)
    if start is None and end is None:
        return [p for p in players if p.online]

    lower = as_utc(start) if start is not None else EPOCH
    upper = as_utc(end) if end is not None else datetime.now(timezone.utc)
    return [p for p in players if p.seen_between(lower, upper)]
