import asyncio
import json
from collections import Counter
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio

from takaro_map.backends.memory import MemoryBackend
from takaro_map.client import TakaroClient
from takaro_map.coordinator import FetchCacheCoordinator
from takaro_map.store import CacheStore

API_URL = "https://api.takaro.test"


def iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def make_pog(pog_id: str, *, online: bool, last_seen: datetime | None = None, **extra: Any) -> dict:
    """A player-on-gameserver record as the Takaro API returns it."""
    return {
        "id": pog_id,
        "playerId": f"player-{pog_id}",
        "player": {"name": f"Name {pog_id}", "steamId": f"steam-{pog_id}"},
        "positionX": 10.0,
        "positionY": 64.0,
        "positionZ": -20.0,
        "online": online,
        "lastSeen": iso(last_seen) if last_seen else None,
        **extra,
    }


class FakeTakaro:
    """In-memory stand-in for the Takaro API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.pogs: list[dict] = []
        self.players: dict[str, dict] = {}
        self.gameservers: list[dict] = [{"id": "gs-1", "name": "Alpha", "type": "SEVENDAYSTODIE"}]
        self.map_info: dict = {"mapSizeX": 6144, "maxZoom": 5}
        self.tiles: dict[tuple[int, int, int], bytes] = {}
        self.tracking: list[dict] = []
        self.items: list[dict] = [{"id": "item-1", "name": "Auger", "code": "qtAuger"}]
        self.domains: list[dict] = [{"id": "dom-1", "name": "my-domain"}]
        self.failures: dict[str, tuple[int, dict]] = {}
        self.delay = 0.0
        self.calls: Counter[str] = Counter()
        self.bodies: dict[str, list[dict]] = {}

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add_player(self, player_id: str, name: str) -> None:
        self.players[player_id] = {"id": player_id, "name": name}

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        body = json.loads(request.content) if request.content else {}
        self.bodies.setdefault(path, []).append(body)

        if self.delay:
            await asyncio.sleep(self.delay)
        if path in self.failures:
            status, payload = self.failures[path]
            return httpx.Response(status, json=payload)

        if path == "/login":
            return httpx.Response(200, json={"data": {"token": "service-token"}})
        if path == "/me":
            return httpx.Response(200, json={"data": {"domains": self.domains}})
        if path.startswith("/selected-domain/"):
            return httpx.Response(200, json={"data": {}})
        if path == "/gameserver/search":
            return httpx.Response(200, json={"data": self.gameservers})
        if path == "/gameserver/player/search":
            page, limit = body["page"], body["limit"]
            chunk = self.pogs[page * limit : (page + 1) * limit]
            return httpx.Response(200, json={"data": chunk, "meta": {"total": len(self.pogs)}})
        if path == "/player/search":
            ids = body["filters"]["id"]
            found = [self.players[i] for i in ids if i in self.players]
            return httpx.Response(200, json={"data": found, "meta": {"total": len(found)}})
        if path.endswith("/map/info"):
            return httpx.Response(200, json={"data": self.map_info})
        if "/map/tile/" in path:
            x, y, z = (int(p) for p in path.rsplit("/", 3)[1:])
            tile = self.tiles.get((z, x, y))
            if tile is None:
                return httpx.Response(404, json={"message": "Tile not found"})
            return httpx.Response(200, content=tile, headers={"Content-Type": "image/png"})
        if path == "/item/search":
            return httpx.Response(200, json={"data": self.items})
        if path.startswith("/tracking/"):
            return httpx.Response(200, json={"data": self.tracking})
        if path.endswith("/giveItem") or path.endswith("/add-currency"):
            return httpx.Response(200, json={"data": {}})
        return httpx.Response(404, json={"message": f"No route {path}"})


@pytest.fixture
def fake() -> FakeTakaro:
    return FakeTakaro()


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def sample_pogs(now: datetime) -> list[dict]:
    return [
        make_pog("A", online=True),
        make_pog("B", online=False, last_seen=now - timedelta(minutes=10)),
        make_pog("C", online=False, last_seen=now - timedelta(hours=2)),
    ]


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(memory_backend: MemoryBackend) -> CacheStore:
    return CacheStore(local=memory_backend)


@pytest.fixture
def coordinator(store: CacheStore) -> FetchCacheCoordinator:
    return FetchCacheCoordinator(store)


@pytest_asyncio.fixture
async def client(fake: FakeTakaro):
    async with TakaroClient(API_URL, transport=fake.transport()) as takaro:
        yield takaro


@pytest.fixture
def pog_factory():
    return make_pog
