"""Service metadata: liveness with dependency status, and build version."""

import logging
import os
import subprocess  # nosec B404
from functools import lru_cache

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from music_relay.db.engine import get_db
from music_relay.schemas.health import HealthResponse, VersionResponse
from music_relay.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])
version_router = APIRouter(tags=["version"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> HealthResponse:
    """Report whether the catalog is reachable and streaming is configured.

    Always answers 200; ``status`` is ``degraded`` when the catalog is down.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.warning("Health check could not reach the catalog: %s", type(exc).__name__)
        database = "unavailable"

    proxy = getattr(request.app.state, "stream_proxy", None)
    streaming = "configured" if proxy is not None else "disabled"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=settings.app_version,
        database=database,
        streaming=streaming,
    )


@lru_cache(maxsize=1)
def _git_sha() -> str:
    try:
        return (
            subprocess.check_output(  # nosec
                ["git", "rev-parse", "--short", "HEAD"],
                stderr=subprocess.DEVNULL,
            )
            .decode()
            .strip()
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


@version_router.get("/version", response_model=VersionResponse)
async def get_version() -> VersionResponse:
    return VersionResponse(
        name=settings.app_name,
        version=settings.app_version,
        git_sha=_git_sha(),
        build_time=os.environ.get("BUILD_TIME", "unknown"),
    )
