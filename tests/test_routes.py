from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from takaro_map.app import create_app
from takaro_map.client import DOMAIN_COOKIE
from takaro_map.config import Settings
from takaro_map.dependencies import has_takaro_session

SESSION = {"ory_kratos_session": "s3cr3t", DOMAIN_COOKIE: "dom-1"}


def as_param(value) -> str:
    return value.isoformat().replace("+00:00", "Z")


@pytest.fixture
def make_client(fake, tmp_path):
    """Build a TestClient for an app wired to the fake Takaro API."""
    clients: list[TestClient] = []

    def factory(cookies: dict | None = None, **overrides) -> TestClient:
        settings = Settings(
            _env_file=None,
            takaro_api_url="https://api.takaro.test",
            tile_cache_dir=tmp_path / "tiles",
            **overrides,
        )
        http = TestClient(create_app(settings, transport=fake.transport()), cookies=cookies)
        http.__enter__()
        clients.append(http)
        return http

    yield factory
    for http in clients:
        http.__exit__(None, None, None)


@pytest.fixture
def service_client(make_client):
    return make_client(takaro_username="svc", takaro_password="pw", takaro_domain="my-domain")


# Cookie mode


def test_requests_without_session_need_login(make_client):
    http = make_client()

    response = http.get("/api/players", params={"gameServerId": "gs-1"})

    assert response.status_code == 401
    assert response.json()["needsLogin"] is True
    assert response.json()["loginUrl"] == "https://api.takaro.test"


def test_auth_status_without_session(make_client, fake):
    body = make_client().get("/api/auth/status").json()

    assert body["mode"] == "cookie"
    assert body["authenticated"] is False
    assert fake.calls["/me"] == 0


def test_auth_status_with_session(make_client):
    body = make_client(cookies=SESSION).get("/api/auth/status").json()

    assert body["authenticated"] is True
    assert body["domain"] == "dom-1"
    assert body["availableDomains"] == [{"id": "dom-1", "name": "my-domain"}]


def test_players_online_by_default(make_client, fake, sample_pogs):
    fake.pogs = sample_pogs
    http = make_client(cookies=SESSION)

    response = http.get("/api/players", params={"gameServerId": "gs-1"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [p["id"] for p in data] == ["A"]
    assert data[0]["playerId"] == "player-A"
    assert data[0]["name"] == "Name A"
    assert fake.calls["/selected-domain/dom-1"] == 1


def test_players_window_served_from_one_fetch(make_client, fake, sample_pogs, now):
    fake.pogs = sample_pogs
    http = make_client(cookies=SESSION)

    recent = http.get(
        "/api/players",
        params={
            "gameServerId": "gs-1",
            "startDate": as_param(now - timedelta(minutes=30)),
            "endDate": as_param(now),
        },
    ).json()["data"]
    wider = http.get(
        "/api/players",
        params={
            "gameServerId": "gs-1",
            "startDate": as_param(now - timedelta(hours=3)),
            "endDate": as_param(now),
        },
    ).json()["data"]
    everyone = http.get("/api/players", params={"gameServerId": "gs-1", "loadAll": "true"})

    assert [p["id"] for p in recent] == ["A", "B"]
    assert [p["id"] for p in wider] == ["A", "B", "C"]
    assert len(everyone.json()["data"]) == 3
    assert fake.calls["/gameserver/player/search"] == 1


def test_players_requires_server_id(make_client):
    response = make_client(cookies=SESSION).get("/api/players")

    assert response.status_code == 422


def test_select_domain_sets_cookie(make_client, fake):
    http = make_client(cookies={"ory_kratos_session": "s3cr3t"})

    response = http.post("/api/domains/select", json={"domainId": "dom-2"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "domainId": "dom-2"}
    assert response.cookies[DOMAIN_COOKIE] == "dom-2"
    assert fake.calls["/selected-domain/dom-2"] == 1


def test_upstream_error_is_reported(make_client, fake):
    fake.failures["/gameserver/search"] = (500, {"meta": {"error": {"message": "Database down"}}})

    response = make_client(cookies=SESSION).get("/api/gameservers")

    assert response.status_code == 500
    assert response.json() == {"error": "Database down"}


# Service mode


def test_service_mode_logs_in_at_startup(service_client, fake):
    body = service_client.get("/api/auth/status").json()

    assert body["mode"] == "service"
    assert body["authenticated"] is True
    assert fake.calls["/login"] == 1
    assert fake.calls["/selected-domain/dom-1"] == 1


def test_service_mode_serves_without_cookies(service_client, fake):
    response = service_client.get("/api/gameservers")

    assert response.status_code == 200
    assert response.json() == {"data": fake.gameservers}


def test_service_mode_cannot_change_domain(service_client):
    response = service_client.post("/api/domains/select", json={"domainId": "dom-2"})

    assert response.status_code == 400


def test_service_mode_lists_configured_domain(service_client):
    body = service_client.get("/api/domains").json()

    assert body["data"] == [{"id": "my-domain", "name": "my-domain"}]
    assert body["currentDomain"] == "my-domain"


@pytest.mark.parametrize(
    ("domain", "failure"),
    [
        ("my-domain", {"/login": (401, {"message": "Invalid credentials"})}),
        ("unknown-domain", {}),
    ],
)
def test_service_mode_unavailable_when_login_fails(make_client, fake, domain, failure):
    fake.failures.update(failure)
    http = make_client(takaro_username="svc", takaro_password="pw", takaro_domain=domain)

    response = http.get("/api/gameservers")

    assert response.status_code == 503
    assert http.get("/api/auth/status").json()["authenticated"] is False


# Maps


def test_map_tile(service_client, fake):
    fake.tiles[(1, 2, 3)] = b"\x89PNG"

    response = service_client.get("/api/map/gs-1/1/2/3.png")

    assert response.status_code == 200
    assert response.content == b"\x89PNG"
    assert response.headers["content-type"] == "image/png"
    assert response.headers["cache-control"] == "public, max-age=3600"


def test_missing_map_tile_is_empty(service_client):
    response = service_client.get("/api/map/gs-1/1/9/9.png")

    assert response.status_code == 204
    assert response.content == b""


def test_map_info(service_client):
    data = service_client.get("/api/map-info/gs-1").json()["data"]

    assert data["worldSize"] == 6144
    assert data["maxZoom"] == 5


# Tracking and actions


def test_movement_paths(service_client, fake, now):
    fake.add_player("p1", "Alice")
    seen_at = as_param(now - timedelta(minutes=1))
    fake.tracking = [{"playerId": "p1", "x": 1, "y": 2, "z": 3, "createdAt": seen_at}]

    response = service_client.get(
        "/api/movement-paths",
        params={"gameServerId": "gs-1", "startDate": as_param(now - timedelta(hours=1))},
    )

    paths = response.json()["data"]
    assert paths["p1"]["name"] == "Alice"
    assert paths["p1"]["points"][0]["x"] == 1


def test_area_box_search(service_client, fake):
    fake.tracking = [{"playerId": "p1", "x": 1, "y": 2, "z": 3}]

    response = service_client.post(
        "/api/players/area/box",
        json={"gameServerId": "gs-1", "minX": 0, "maxX": 10, "minZ": 0, "maxZ": 10},
    )

    assert response.status_code == 200
    assert response.json()["data"][0]["playerName"] == "Unknown"


def test_area_radius_requires_positive_radius(service_client):
    response = service_client.post(
        "/api/players/area/radius", json={"gameServerId": "gs-1", "x": 0, "z": 0, "radius": 0}
    )

    assert response.status_code == 422


def test_give_item(service_client, fake):
    response = service_client.post(
        "/api/player/p1/give-item",
        json={"gameServerId": "gs-1", "itemName": "Auger", "amount": 2},
    )

    assert response.json()["success"] is True
    assert fake.bodies["/gameserver/gs-1/player/p1/giveItem"] == [
        {"name": "Auger", "amount": 2, "quality": "1"}
    ]


def test_add_currency(service_client, fake):
    response = service_client.post(
        "/api/player/p1/add-currency", json={"gameServerId": "gs-1", "currency": 50}
    )

    assert response.json()["success"] is True
    assert fake.bodies["/gameserver/gs-1/player/p1/add-currency"] == [{"currency": 50}]


def test_items(service_client, fake):
    response = service_client.get("/api/items", params={"gameServerId": "gs-1"})

    assert response.json() == {"data": fake.items}


# Cache


def test_cache_stats(service_client):
    service_client.get("/api/gameservers")

    body = service_client.get("/api/cache/stats").json()

    assert body["data"]["type"] == "memory"
    assert body["data"]["degraded"] is False
    assert body["data"]["keys"] >= 1


def test_cache_invalidation_forces_refetch(service_client, fake, sample_pogs):
    fake.pogs = sample_pogs
    params = {"gameServerId": "gs-1"}

    service_client.get("/api/players", params=params)
    service_client.get("/api/players", params=params)
    cleared = service_client.delete("/api/cache/players").json()
    service_client.get("/api/players", params=params)

    assert cleared == {"data": {"cleared": 1}}
    assert fake.calls["/gameserver/player/search"] == 2


def test_cache_invalidation_rejects_unknown_category(service_client):
    response = service_client.delete("/api/cache/everything")

    assert response.status_code == 400


@pytest.mark.parametrize(
    ("cookies", "expected"),
    [
        ({"ory_kratos_session": "x"}, True),
        ({"takaro_session": "x"}, True),
        ({DOMAIN_COOKIE: "dom-1"}, True),
        ({"theme": "dark"}, False),
        ({}, False),
    ],
)
def test_session_cookie_detection(cookies, expected):
    assert has_takaro_session(cookies) is expected
