"""Application factory and entry point."""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.status import HTTP_401_UNAUTHORIZED
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from .client import TakaroClient
from .config import Settings
from .config import get_settings
from .coordinator import FetchCacheCoordinator
from .exceptions import AuthenticationError
from .exceptions import ClientNotInitializedError
from .exceptions import UpstreamError
from .routes import add_routes
from .store import CacheStore
from .tiles import TileCache

logger = logging.getLogger(__name__)


async def init_service_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> tuple[TakaroClient | None, str | None]:
    """Log the service account in and select its domain.

    Returns:
        The authenticated client and the selected domain id, or
        ``(None, None)`` when login fails. Failures are logged, not raised,
        so the server still starts and answers 503 until restarted.
    """
    client = TakaroClient(
        settings.takaro_api_url, timeout=settings.upstream_timeout, transport=transport
    )
    try:
        logger.info("Logging into Takaro as service account...")
        await client.login(
            settings.takaro_username or "",
            settings.takaro_password.get_secret_value() if settings.takaro_password else "",
        )
        domains = (await client.me()).get("domains") or []
        target = next(
            (d for d in domains if settings.takaro_domain in (d.get("name"), d.get("id"))),
            None,
        )
        if target is None:
            available = ", ".join(f"{d.get('name')} ({d.get('id')})" for d in domains)
            msg = (
                f"Domain '{settings.takaro_domain}' not found. "
                f"Available domains: {available or 'none'}"
            )
            raise UpstreamError(msg)
        await client.select_domain(target["id"])
    except UpstreamError as e:
        logger.error("Failed to initialize service client: %s", e)
        await client.aclose()
        return None, None

    logger.info(
        "Service client authenticated for domain: %s (%s)", settings.takaro_domain, target["id"]
    )
    return client, target["id"]


def create_app(
    settings: Settings | None = None,
    store: CacheStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the dashboard application.

    Args:
        settings: Configuration; read from the environment when omitted
        store: Cache store to use instead of one built from ``settings``
        transport: httpx transport for upstream calls (tests inject a mock)
    """
    settings = settings or get_settings()
    store = store or CacheStore.from_url(
        settings.redis_url, settings.cache_key_prefix, settings.redis_connect_timeout
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await store.connect()
        store.local.start_cleanup()
        if settings.service_mode:
            client, domain = await init_service_client(settings, transport)
            app.state.service_client = client
            app.state.service_domain = domain
        else:
            logger.info("Cookie mode active - users must be logged into Takaro")
        try:
            yield
        finally:
            if app.state.service_client is not None:
                await app.state.service_client.aclose()
            await store.close()

    app = FastAPI(title="Takaro Map", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.coordinator = FetchCacheCoordinator(
        store, settings.cache_ttl, settings.page_size, settings.max_total
    )
    app.state.tiles = TileCache(settings.tile_cache_dir)
    app.state.upstream_transport = transport
    app.state.service_client = None
    app.state.service_domain = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_timing(request: Request, call_next):
        if not request.url.path.startswith("/api"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        level = logging.WARNING if duration > 2000 else logging.INFO
        logger.log(
            level,
            "%s %s - %.0fms (%d)",
            request.method,
            request.url.path,
            duration,
            response.status_code,
        )
        return response

    @app.exception_handler(UpstreamError)
    async def upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR, content={"error": exc.message}
        )

    @app.exception_handler(ClientNotInitializedError)
    async def not_initialized(request: Request, exc: ClientNotInitializedError) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE, content={"error": str(exc)}
        )

    @app.exception_handler(AuthenticationError)
    async def auth_error(request: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_401_UNAUTHORIZED,
            content={
                "error": str(exc),
                "needsLogin": True,
                "loginUrl": settings.takaro_api_url,
            },
        )

    add_routes(app)
    return app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
