"""Resource operations for one authenticated caller.

A :class:`TakaroService` is built per request from the caller's auth
context. It holds the caller's upstream client and scopes every cache key
to the caller's domain, while sharing the process-wide coordinator.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any

from .client import TakaroClient
from .config import CacheTTL
from .coordinator import FetchCacheCoordinator
from .downsample import downsample
from .exceptions import UpstreamError
from .models import AreaBox
from .models import AreaRadius
from .models import MovementPath
from .models import MovementPoint
from .models import PlayerRecord
from .models import as_utc
from .store import CacheStore
from .tiles import TileCache

logger = logging.getLogger(__name__)

DEFAULT_WORLD_SIZE = 8192
DEFAULT_MAX_ZOOM = 4
DEFAULT_WINDOW = timedelta(hours=24)
MOVEMENT_HISTORY_LIMIT = 10_000

# Large enough to cover any map, used to pull every movement on a server.
WORLD_BOX = {
    "minX": -100_000,
    "maxX": 100_000,
    "minY": -10_000,
    "maxY": 10_000,
    "minZ": -100_000,
    "maxZ": 100_000,
}


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat().replace("+00:00", "Z") if value else None


def _with_dates(body: dict[str, Any], start: datetime | None, end: datetime | None) -> dict:
    if start is not None:
        body["startDate"] = _iso(start)
    if end is not None:
        body["endDate"] = _iso(end)
    return body


class TakaroService:
    def __init__(
        self,
        client: TakaroClient,
        coordinator: FetchCacheCoordinator,
        domain: str | None,
        tiles: TileCache | None = None,
    ) -> None:
        self.client = client
        self.coordinator = coordinator
        self.domain = domain or "service"
        self.tiles = tiles

    @property
    def store(self) -> CacheStore:
        return self.coordinator.store

    @property
    def ttl(self) -> CacheTTL:
        return self.coordinator.ttl

    def _key(self, category: str, *parts: str) -> str:
        return self.store.key(category, self.domain, *parts)

    # Servers and maps

    async def get_gameservers(self, server_type: str | None = None) -> list[dict]:
        return await self.coordinator.cached_call(
            self._key("gameservers", server_type or "all"),
            self.ttl.game_servers,
            lambda: self.client.search_gameservers(server_type),
        )

    async def get_map_info(self, game_server_id: str) -> dict[str, Any]:
        info = await self.coordinator.cached_call(
            self._key("mapinfo", game_server_id),
            self.ttl.map_info,
            lambda: self.client.get_map_info(game_server_id),
        )
        return {
            "worldSize": info.get("mapSizeX") or DEFAULT_WORLD_SIZE,
            "maxZoom": info.get("maxZoom") or DEFAULT_MAX_ZOOM,
            **info,
        }

    async def get_map_tile(self, game_server_id: str, z: int, x: int, y: int) -> bytes | None:
        """Tile bytes from disk if present, from upstream otherwise."""
        if self.tiles is not None:
            data = await self.tiles.read(self.domain, game_server_id, z, x, y)
            if data is not None:
                return data

        data = await self.client.get_map_tile(game_server_id, z, x, y)
        if data and self.tiles is not None:
            await self.tiles.write(self.domain, game_server_id, z, x, y, data)
        return data

    # Players

    async def get_players(
        self,
        game_server_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        load_all: bool = False,
    ) -> list[PlayerRecord]:
        return await self.coordinator.get_players(
            self.client, self.domain, game_server_id, start, end, load_all
        )

    async def resolve_names(self, ids: list[str]) -> dict[str, str]:
        return await self.coordinator.resolve_names(self.client, self.domain, ids)

    async def enrich_with_names(self, results: list[dict]) -> list[dict]:
        """Add ``playerName`` to tracking results; leave them as is on failure."""
        if not results:
            return results
        try:
            names = await self.resolve_names([r.get("playerId") for r in results])
        except UpstreamError as e:
            logger.warning("Failed to fetch player names: %s", e)
            return results
        return [{**r, "playerName": names.get(r.get("playerId"), "Unknown")} for r in results]

    async def give_item(
        self, game_server_id: str, player_id: str, name: str, amount: int, quality: str = "1"
    ) -> None:
        await self.client.give_item(game_server_id, player_id, name, amount, quality)

    async def add_currency(self, game_server_id: str, player_id: str, currency: int) -> None:
        await self.client.add_currency(game_server_id, player_id, currency)

    # Tracking

    async def get_inventory_history(
        self, player_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[dict]:
        end = end or datetime.now(timezone.utc)
        start = start or end - DEFAULT_WINDOW
        body = _with_dates({"playerId": player_id}, start, end)
        return await self.client.inventory_history(body)

    async def get_player_movement_history(
        self,
        player_ids: str | list[str] | None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = MOVEMENT_HISTORY_LIMIT,
    ) -> list[dict]:
        body: dict[str, Any] = {"limit": limit}
        if player_ids:
            body["playerId"] = [player_ids] if isinstance(player_ids, str) else player_ids
        return await self.client.movement_history(_with_dates(body, start, end))

    async def search_box(self, area: AreaBox) -> list[dict]:
        body = _with_dates(
            {
                "gameserverId": area.game_server_id,
                "minX": area.min_x,
                "maxX": area.max_x,
                "minY": area.min_y,
                "maxY": area.max_y,
                "minZ": area.min_z,
                "maxZ": area.max_z,
            },
            area.start_date,
            area.end_date,
        )
        results = await self.coordinator.cached_call(
            self._key("area", "box", *(str(v) for v in body.values())),
            self.ttl.area_search,
            lambda: self.client.players_in_box(body),
        )
        return await self.enrich_with_names(results)

    async def search_radius(self, area: AreaRadius) -> list[dict]:
        body = _with_dates(
            {
                "gameserverId": area.game_server_id,
                "x": area.x,
                "y": area.y,
                "z": area.z,
                "radius": area.radius,
            },
            area.start_date,
            area.end_date,
        )
        results = await self.coordinator.cached_call(
            self._key("area", "radius", *(str(v) for v in body.values())),
            self.ttl.area_search,
            lambda: self.client.players_in_radius(body),
        )
        return await self.enrich_with_names(results)

    async def get_items(self, game_server_id: str, search: str | None = None) -> list[dict]:
        return await self.coordinator.cached_call(
            self._key("items", game_server_id, search or "all"),
            self.ttl.items,
            lambda: self.client.search_items(game_server_id, search),
        )

    async def search_players_by_item(
        self, item_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[dict]:
        results = await self.client.players_by_item(_with_dates({"itemId": item_id}, start, end))
        return await self.enrich_with_names(results)

    async def get_movement_paths(
        self,
        game_server_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, MovementPath]:
        """Per-player paths over a window, sorted and downsampled for display.

        The raw query is cached per (server, start, end); the default window
        used for downsampling is the last 24 hours.
        """
        body = _with_dates({"gameserverId": game_server_id, **WORLD_BOX}, start, end)
        results = await self.coordinator.cached_call(
            self._key(
                "movementpaths",
                game_server_id,
                _iso(start) or "nostart",
                _iso(end) or "noend",
            ),
            self.ttl.movement_paths,
            lambda: self.client.players_in_box(body),
        )
        results = await self.enrich_with_names(results)

        paths: dict[str, MovementPath] = {}
        for result in results:
            player_id = result.get("playerId")
            if not player_id:
                continue
            timestamp = result.get("createdAt") or result.get("timestamp")
            if not timestamp:
                continue
            path = paths.setdefault(
                player_id, MovementPath(name=result.get("playerName") or "Unknown")
            )
            path.points.append(
                MovementPoint(x=result["x"], y=result["y"], z=result["z"], timestamp=timestamp)
            )

        window_end = as_utc(end) if end else datetime.now(timezone.utc)
        window_start = as_utc(start) if start else window_end - DEFAULT_WINDOW
        window = window_end - window_start

        for path in paths.values():
            path.points.sort(key=lambda p: p.timestamp)
            path.points = downsample(path.points, window)
        return paths
