"""FastAPI dependencies: cache store, auth context and per-request service."""

import logging
from collections.abc import AsyncIterator
from collections.abc import Mapping
from typing import Annotated

from fastapi import Depends
from fastapi import Request

from .client import DOMAIN_COOKIE
from .client import TakaroClient
from .config import Settings
from .coordinator import FetchCacheCoordinator
from .exceptions import AuthenticationError
from .exceptions import ClientNotInitializedError
from .exceptions import UpstreamError
from .service import TakaroService
from .store import CacheStore

logger = logging.getLogger(__name__)

DOMAIN_HEADER = "x-takaro-domain"


def has_takaro_session(cookies: Mapping[str, str]) -> bool:
    """Whether the browser sent anything that looks like a Takaro session."""
    return any(
        name.startswith("ory_") or "session" in name or name == DOMAIN_COOKIE
        for name in cookies
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache_store(request: Request) -> CacheStore:
    return request.app.state.store


def get_coordinator(request: Request) -> FetchCacheCoordinator:
    return request.app.state.coordinator


def cookie_client(request: Request, domain_id: str | None = None) -> TakaroClient:
    """Upstream client that forwards the caller's cookies."""
    settings: Settings = request.app.state.settings
    return TakaroClient(
        settings.takaro_api_url,
        cookies=request.cookies,
        domain_id=domain_id,
        timeout=settings.upstream_timeout,
        transport=request.app.state.upstream_transport,
    )


async def get_takaro_service(request: Request) -> AsyncIterator[TakaroService]:
    """Resolve the caller's auth context into a :class:`TakaroService`.

    Service mode shares the pre-authenticated service client; cookie mode
    builds a short-lived client around the browser's Takaro cookies.

    Raises:
        ClientNotInitializedError: While the service client is not initialized
        AuthenticationError: In cookie mode, when no session cookie was sent
    """
    state = request.app.state
    settings: Settings = state.settings

    if settings.service_mode:
        if state.service_client is None:
            msg = "Service not initialized. Please wait or check server logs."
            raise ClientNotInitializedError(msg)
        yield TakaroService(
            state.service_client, state.coordinator, state.service_domain, state.tiles
        )
        return

    if not has_takaro_session(request.cookies):
        msg = "Not authenticated. Please log in to Takaro first."
        raise AuthenticationError(msg)

    domain_id = request.cookies.get(DOMAIN_COOKIE) or request.headers.get(DOMAIN_HEADER)
    async with cookie_client(request, domain_id) as client:
        if domain_id:
            try:
                await client.select_domain(domain_id)
            except UpstreamError as e:
                # Some reads still work against the previously selected domain.
                logger.warning("Failed to set selected domain %s: %s", domain_id, e)
        yield TakaroService(client, state.coordinator, domain_id, state.tiles)


CacheStoreDep = Annotated[CacheStore, Depends(get_cache_store)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
ServiceDep = Annotated[TakaroService, Depends(get_takaro_service)]
