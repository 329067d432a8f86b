"""Thin async client for the Takaro REST API."""

import logging
import time
from collections.abc import Mapping
from typing import Any

import httpx

from .exceptions import UpstreamError
from .pagination import Page

logger = logging.getLogger(__name__)

DOMAIN_COOKIE = "takaro-domain"
SLOW_CALL_SECONDS = 2.0


def extract_error_message(error: Exception, fallback: str) -> str:
    """Best-effort human-readable message for a failed upstream call.

    Priority: ``meta.error.message`` from the body, then a top-level
    ``message``, then the transport error text, then ``fallback``.
    """
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            meta_error = (body.get("meta") or {}).get("error") or {}
            if isinstance(meta_error, dict) and meta_error.get("message"):
                return str(meta_error["message"])
            if body.get("message"):
                return str(body["message"])
    return str(error) or fallback


class TakaroClient:
    """Async HTTP wrapper around the Takaro endpoints the dashboard reads.

    Authenticates either with a service-account token (:meth:`login`) or by
    forwarding the browser's cookies. Use as an async context manager, or
    call :meth:`aclose` when done.
    """

    def __init__(
        self,
        base_url: str,
        *,
        cookies: Mapping[str, str] | None = None,
        domain_id: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.domain_id = domain_id
        self.timeout = timeout
        self._transport = transport
        self._cookies = dict(cookies or {})
        if domain_id and DOMAIN_COOKIE not in self._cookies:
            self._cookies[DOMAIN_COOKIE] = domain_id
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"User-Agent": "takaro-map/1.0"},
            timeout=timeout,
            transport=transport,
        )
        self._apply_cookies()

    def _apply_cookies(self) -> None:
        # Forwarded verbatim: the browser's cookies are opaque to us.
        if self._cookies:
            self._http.headers["Cookie"] = "; ".join(
                f"{name}={value}" for name, value in self._cookies.items()
            )

    def clone(self) -> "TakaroClient":
        """An independent client with the same credentials and domain.

        Work that outlives the request which started it runs on a clone, so
        the request closing its own client cannot cut that work short.
        """
        twin = TakaroClient(
            self.base_url,
            cookies=self._cookies,
            domain_id=self.domain_id,
            timeout=self.timeout,
            transport=self._transport,
        )
        authorization = self._http.headers.get("Authorization")
        if authorization:
            twin._http.headers["Authorization"] = authorization
        return twin

    async def __aenter__(self) -> "TakaroClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        fallback: str = "Takaro API request failed",
        expected_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = await self._http.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = extract_error_message(e, fallback)
            level = (
                logging.DEBUG if e.response.status_code in expected_statuses else logging.ERROR
            )
            logger.log(
                level,
                "Takaro API error: %s %s -> %d: %s",
                method,
                path,
                e.response.status_code,
                message,
            )
            raise UpstreamError(message, status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            message = extract_error_message(e, fallback)
            logger.error("Takaro API error: %s %s: %s", method, path, message)
            raise UpstreamError(message) from e
        except (httpx.InvalidURL, RuntimeError) as e:
            # A closed client raises RuntimeError before any I/O happens.
            logger.error("Takaro API error: %s %s: %s", method, path, e)
            raise UpstreamError(str(e) or fallback) from e

        duration = time.perf_counter() - start
        level = logging.WARNING if duration > SLOW_CALL_SECONDS else logging.INFO
        logger.log(level, "Takaro API: %s %s - %.0fms", method, path, duration * 1000)
        return response

    async def _json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            msg = f"Takaro API returned invalid JSON for {path}"
            raise UpstreamError(msg, status_code=response.status_code) from e

    async def _data(self, method: str, path: str, **kwargs: Any) -> Any:
        return (await self._json(method, path, **kwargs)).get("data")

    # Session

    async def login(self, username: str, password: str) -> None:
        payload = await self._data(
            "POST",
            "/login",
            json={"username": username, "password": password},
            fallback="Login failed",
        )
        token = (payload or {}).get("token")
        if not token:
            msg = "Login failed"
            raise UpstreamError(msg)
        self._http.headers["Authorization"] = f"Bearer {token}"

    async def me(self) -> dict[str, Any]:
        return await self._data("GET", "/me") or {}

    async def select_domain(self, domain_id: str) -> None:
        await self._request(
            "POST", f"/selected-domain/{domain_id}", fallback="Failed to select domain"
        )
        self.domain_id = domain_id
        self._cookies[DOMAIN_COOKIE] = domain_id
        self._apply_cookies()

    # Game servers and maps

    async def search_gameservers(self, server_type: str | None = None) -> list[dict]:
        body = {
            "filters": {"type": [server_type]} if server_type else {},
            "sortBy": "name",
            "sortDirection": "asc",
            "limit": 100,
        }
        return await self._data("POST", "/gameserver/search", json=body) or []

    async def get_map_info(self, game_server_id: str) -> dict[str, Any]:
        return (
            await self._data(
                "GET", f"/gameserver/{game_server_id}/map/info", fallback="Failed to get map info"
            )
            or {}
        )

    async def get_map_tile(self, game_server_id: str, z: int, x: int, y: int) -> bytes | None:
        """Fetch a PNG tile; a missing tile (404) is None, not an error."""
        try:
            response = await self._request(
                "GET",
                f"/gameserver/{game_server_id}/map/tile/{x}/{y}/{z}",
                fallback="Failed to get map tile",
                expected_statuses=(404,),
            )
        except UpstreamError as e:
            if e.status_code == 404:
                return None
            raise
        return response.content

    # Players

    async def search_players_on_gameserver(
        self, game_server_id: str, page: int, limit: int
    ) -> Page:
        body = {
            "filters": {"gameServerId": [game_server_id]},
            "extend": ["player"],
            "page": page,
            "limit": limit,
        }
        payload = await self._json(
            "POST", "/gameserver/player/search", json=body, fallback="Failed to get players"
        )
        return Page.from_response(payload)

    async def search_players(self, ids: list[str], page: int = 0, limit: int | None = None) -> Page:
        body = {"filters": {"id": ids}, "page": page, "limit": limit or len(ids)}
        payload = await self._json(
            "POST", "/player/search", json=body, fallback="Failed to look up players"
        )
        return Page.from_response(payload)

    async def give_item(
        self, game_server_id: str, player_id: str, name: str, amount: int, quality: str = "1"
    ) -> None:
        await self._request(
            "POST",
            f"/gameserver/{game_server_id}/player/{player_id}/giveItem",
            json={"name": name, "amount": amount, "quality": quality},
            fallback="Failed to give item",
        )

    async def add_currency(self, game_server_id: str, player_id: str, currency: int) -> None:
        await self._request(
            "POST",
            f"/gameserver/{game_server_id}/player/{player_id}/add-currency",
            json={"currency": currency},
            fallback="Failed to add currency",
        )

    # Items

    async def search_items(self, game_server_id: str, name: str | None = None) -> list[dict]:
        body: dict[str, Any] = {"filters": {"gameserverId": [game_server_id]}, "limit": 1000}
        if name:
            body["search"] = {"name": [name]}
        items = await self._data("POST", "/item/search", json=body, fallback="Failed to get items")
        return items or []

    # Tracking

    async def players_in_box(self, body: dict[str, Any]) -> list[dict]:
        return (
            await self._data(
                "POST", "/tracking/location/box", json=body, fallback="Box search failed"
            )
            or []
        )

    async def players_in_radius(self, body: dict[str, Any]) -> list[dict]:
        return (
            await self._data(
                "POST", "/tracking/location/radius", json=body, fallback="Radius search failed"
            )
            or []
        )

    async def inventory_history(self, body: dict[str, Any]) -> list[dict]:
        return (
            await self._data(
                "POST",
                "/tracking/inventory/player",
                json=body,
                fallback="Failed to get inventory history",
            )
            or []
        )

    async def movement_history(self, body: dict[str, Any]) -> list[dict]:
        return (
            await self._data(
                "POST", "/tracking/location", json=body, fallback="Failed to get movement history"
            )
            or []
        )

    async def players_by_item(self, body: dict[str, Any]) -> list[dict]:
        return (
            await self._data(
                "POST",
                "/tracking/inventory/item",
                json=body,
                fallback="Failed to get players by item",
            )
            or []
        )
