"""HTTP routes of the map dashboard."""

import logging
from datetime import datetime
from typing import Annotated
from typing import Any

from fastapi import APIRouter
from fastapi import FastAPI
from fastapi import HTTPException
from fastapi import Path
from fastapi import Query
from fastapi import Request
from fastapi import Response
from fastapi.responses import JSONResponse
from starlette.status import HTTP_204_NO_CONTENT
from starlette.status import HTTP_400_BAD_REQUEST
from starlette.status import HTTP_401_UNAUTHORIZED

from .client import DOMAIN_COOKIE
from .dependencies import CacheStoreDep
from .dependencies import ServiceDep
from .dependencies import SettingsDep
from .dependencies import cookie_client
from .dependencies import has_takaro_session
from .exceptions import UpstreamError
from .models import AddCurrency
from .models import AreaBox
from .models import AreaRadius
from .models import DomainSelection
from .models import GiveItem
from .models import ItemSearch

logger = logging.getLogger(__name__)

TILE_MAX_AGE = 3600
COOKIE_MAX_AGE = 30 * 24 * 60 * 60

# Resource categories that may be invalidated over HTTP
INVALIDATABLE = frozenset(
    {"players", "player", "gameservers", "mapinfo", "movementpaths", "items", "area"}
)

GameServerId = Annotated[str, Query(alias="gameServerId", min_length=1)]
StartDate = Annotated[datetime | None, Query(alias="startDate")]
EndDate = Annotated[datetime | None, Query(alias="endDate")]

router = APIRouter(prefix="/api")


# Auth


@router.get("/auth/status")
async def auth_status(request: Request, settings: SettingsDep) -> dict[str, Any]:
    state = request.app.state
    if settings.service_mode:
        authenticated = state.service_client is not None
        return {
            "mode": "service",
            "serviceMode": True,
            "authenticated": authenticated,
            "domain": settings.takaro_domain,
            "dashboardUrl": settings.dashboard_url,
        }

    domain_id = request.cookies.get(DOMAIN_COOKIE)
    valid = False
    domains: list[dict] = []
    if has_takaro_session(request.cookies):
        async with cookie_client(request, domain_id) as client:
            try:
                domains = (await client.me()).get("domains") or []
                valid = True
            except UpstreamError as e:
                logger.warning("Cookie validation failed: %s", e)

    return {
        "mode": "cookie",
        "serviceMode": False,
        "authenticated": valid,
        "domain": domain_id,
        "availableDomains": domains,
        "needsLogin": not valid,
        "loginUrl": settings.takaro_api_url,
        "dashboardUrl": settings.dashboard_url,
    }


@router.get("/domains")
async def list_domains(request: Request, settings: SettingsDep) -> Any:
    if settings.service_mode:
        domain = settings.takaro_domain
        return {"data": [{"id": domain, "name": domain}], "currentDomain": domain}

    async with cookie_client(request) as client:
        try:
            domains = (await client.me()).get("domains") or []
        except UpstreamError:
            return JSONResponse(
                status_code=HTTP_401_UNAUTHORIZED,
                content={"error": "Not authenticated or session expired"},
            )
    return {"data": domains, "currentDomain": request.cookies.get(DOMAIN_COOKIE)}


@router.post("/domains/select")
async def select_domain(
    selection: DomainSelection, request: Request, response: Response, settings: SettingsDep
) -> dict[str, Any]:
    if settings.service_mode:
        raise HTTPException(
            status_code=HTTP_400_BAD_REQUEST, detail="Cannot change domain in service mode"
        )

    async with cookie_client(request, selection.domain_id) as client:
        await client.select_domain(selection.domain_id)

    response.set_cookie(
        DOMAIN_COOKIE,
        selection.domain_id,
        max_age=COOKIE_MAX_AGE,
        samesite="lax",
        secure=request.url.scheme == "https",
        httponly=False,
    )
    return {"success": True, "domainId": selection.domain_id}


# Servers and maps


@router.get("/gameservers")
async def gameservers(service: ServiceDep) -> dict[str, Any]:
    return {"data": await service.get_gameservers()}


@router.get("/map-info/{game_server_id}")
async def map_info(game_server_id: str, service: ServiceDep) -> dict[str, Any]:
    return {"data": await service.get_map_info(game_server_id)}


@router.get("/map/{game_server_id}/{z}/{x}/{y}.png")
async def map_tile(
    game_server_id: Annotated[str, Path(pattern=r"^[A-Za-z0-9_-]+$")],
    z: int,
    x: int,
    y: int,
    service: ServiceDep,
) -> Response:
    data = await service.get_map_tile(game_server_id, z, x, y)
    if not data:
        return Response(status_code=HTTP_204_NO_CONTENT)
    return Response(
        content=data,
        media_type="image/png",
        headers={"Cache-Control": f"public, max-age={TILE_MAX_AGE}"},
    )


# Players


@router.get("/players")
async def players(
    service: ServiceDep,
    game_server_id: GameServerId,
    start: StartDate = None,
    end: EndDate = None,
    load_all: Annotated[bool, Query(alias="loadAll")] = False,
) -> dict[str, Any]:
    records = await service.get_players(game_server_id, start, end, load_all)
    return {"data": [r.model_dump(mode="json", by_alias=True) for r in records]}


@router.get("/inventory/{player_id}")
async def inventory(
    player_id: str, service: ServiceDep, start: StartDate = None, end: EndDate = None
) -> dict[str, Any]:
    return {"data": await service.get_inventory_history(player_id, start, end)}


@router.get("/player-history/{game_server_id}/{player_id}")
async def player_history(
    game_server_id: str,
    player_id: str,
    service: ServiceDep,
    start: StartDate = None,
    end: EndDate = None,
) -> dict[str, Any]:
    return {"data": await service.get_player_movement_history(player_id, start, end)}


@router.get("/movement-paths")
async def movement_paths(
    service: ServiceDep,
    game_server_id: GameServerId,
    start: StartDate = None,
    end: EndDate = None,
) -> dict[str, Any]:
    paths = await service.get_movement_paths(game_server_id, start, end)
    return {"data": {pid: path.model_dump(mode="json") for pid, path in paths.items()}}


@router.post("/players/area/box")
async def area_box(area: AreaBox, service: ServiceDep) -> dict[str, Any]:
    return {"data": await service.search_box(area)}


@router.post("/players/area/radius")
async def area_radius(area: AreaRadius, service: ServiceDep) -> dict[str, Any]:
    return {"data": await service.search_radius(area)}


# Items and admin actions


@router.get("/items")
async def items(
    service: ServiceDep,
    game_server_id: GameServerId,
    search: str | None = None,
) -> dict[str, Any]:
    return {"data": await service.get_items(game_server_id, search or None)}


@router.post("/players/item")
async def players_by_item(query: ItemSearch, service: ServiceDep) -> dict[str, Any]:
    results = await service.search_players_by_item(
        query.item_id, query.start_date, query.end_date
    )
    return {"data": results}


@router.post("/player/{player_id}/give-item")
async def give_item(player_id: str, body: GiveItem, service: ServiceDep) -> dict[str, Any]:
    await service.give_item(
        body.game_server_id, player_id, body.item_name, body.amount, body.quality
    )
    return {"success": True, "message": f"Gave {body.amount}x {body.item_name} to player"}


@router.post("/player/{player_id}/add-currency")
async def add_currency(player_id: str, body: AddCurrency, service: ServiceDep) -> dict[str, Any]:
    await service.add_currency(body.game_server_id, player_id, body.currency)
    return {"success": True, "message": f"Added {body.currency} currency to player"}


# Cache monitoring


@router.get("/cache/stats")
async def cache_stats(store: CacheStoreDep) -> dict[str, Any]:
    return {"data": await store.stats()}


@router.delete("/cache/{category}")
async def invalidate_cache(category: str, service: ServiceDep) -> dict[str, Any]:
    """Drop every cached entry of one category for the caller's domain."""
    if category not in INVALIDATABLE:
        raise HTTPException(
            status_code=HTTP_400_BAD_REQUEST, detail=f"Unknown cache category: {category}"
        )
    pattern = service.store.key(category, service.domain, "*")
    return {"data": {"cleared": await service.store.clear_pattern(pattern)}}


def add_routes(app: FastAPI) -> None:
    """Mount the dashboard API on an application."""
    app.include_router(router)
