import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from music_relay.db.engine import engine, init_models
from music_relay.routers import health, stream, tracks
from music_relay.routers.stream import StreamingUnavailableError
from music_relay.settings import settings
from music_relay.streaming.proxy import StreamProxy
from music_relay.telegram.client import BotApiClient

logger = logging.getLogger(__name__)


async def _check_database() -> None:
    """Verify the catalog database is reachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # 1. Check database
    try:
        await _check_database()
        await init_models()
        logger.info("Catalog database verified")
    except Exception as exc:
        logger.debug("Database connection error: %s", exc)
        raise SystemExit(
            "FATAL: Cannot reach the catalog database. "
            "Check DATABASE_URL and ensure the server is running."
        ) from exc

    # 2. Telegram client for the stream proxy (one connection pool for both hops)
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.proxy_read_timeout_seconds,
            connect=settings.proxy_connect_timeout_seconds,
        ),
        follow_redirects=True,
    )
    bot: BotApiClient | None = None
    if settings.telegram_bot_token:
        bot = BotApiClient(
            settings.telegram_bot_token,
            api_base=settings.telegram_api_base,
            http_client=http_client,
        )
        app.state.stream_proxy = StreamProxy(
            bot,
            timeout=httpx.Timeout(
                settings.proxy_read_timeout_seconds,
                connect=settings.proxy_connect_timeout_seconds,
            ),
            cache_max_age=settings.stream_cache_max_age,
        )
        logger.info("Stream proxy ready")
    else:
        app.state.stream_proxy = None
        logger.warning("TELEGRAM_BOT_TOKEN not set; /stream will answer 503")

    yield

    # Shutdown
    await http_client.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges"],
    )

    application.include_router(health.router)
    application.include_router(stream.router)
    application.include_router(health.version_router, prefix="/api/v1")
    application.include_router(tracks.router, prefix="/api/v1")

    @application.exception_handler(StreamingUnavailableError)
    async def streaming_unavailable_handler(
        request: Request, exc: StreamingUnavailableError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={
                "error": {
                    "code": "STREAMING_UNAVAILABLE",
                    "message": str(exc),
                    "details": None,
                }
            },
        )

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred.",
                    "details": None,
                }
            },
        )

    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run("music_relay.main:app", host=settings.service_host, port=settings.service_port)
