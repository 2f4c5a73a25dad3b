"""Audio passthrough endpoint.

``GET /stream/{handle_id}`` resolves a Telegram file handle and relays the
bytes with Range support, so browsers can seek without ever seeing the bot
token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from music_relay.schemas.errors import ErrorDetail, ErrorResponse
from music_relay.streaming.proxy import StreamProxy, StreamProxyError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])


class StreamingUnavailableError(Exception):
    """Raised when the proxy was not configured (no bot token)."""


def get_stream_proxy(request: Request) -> StreamProxy:
    proxy = getattr(request.app.state, "stream_proxy", None)
    if proxy is None:
        raise StreamingUnavailableError("Streaming is not configured")
    return proxy


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
        headers={"Access-Control-Allow-Origin": "*"},
    )


@router.get(
    "/stream/{handle_id}",
    response_model=None,
    responses={
        200: {"content": {"audio/mpeg": {}}, "description": "Full audio file"},
        206: {"description": "Partial content (Range request)"},
        404: {"description": "File handle does not resolve", "model": ErrorResponse},
        502: {"description": "Upstream failure", "model": ErrorResponse},
        504: {"description": "Upstream timeout", "model": ErrorResponse},
    },
)
async def stream_audio(
    handle_id: str,
    range_header: str | None = Header(default=None, alias="Range"),
    proxy: StreamProxy = Depends(get_stream_proxy),  # noqa: B008
) -> StreamingResponse | JSONResponse:
    """Relay the audio behind *handle_id*, honouring an optional ``Range`` header."""
    try:
        relayed = await proxy.serve(handle_id, range_header)
    except StreamProxyError as exc:
        return _error_response(exc.status_code, exc.code, exc.message)

    return StreamingResponse(
        relayed.body,
        status_code=relayed.status_code,
        headers=relayed.headers,
        media_type=relayed.headers.get("Content-Type"),
        background=BackgroundTask(relayed.close),
    )
