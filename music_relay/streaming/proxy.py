"""Range-aware passthrough for Telegram-hosted audio.

Two sequential upstream calls per request:

1. ``getFile`` resolves the opaque ``file_id`` to a ``file_path``. Never
   cached, because file ids can rotate.
2. ``GET /file/bot<token>/<file_path>`` with the client's ``Range`` header
   forwarded verbatim. The body is relayed chunk by chunk and never read into
   memory.

The download URL embeds the bot token. Nothing derived from it (URL,
exception text) may reach a client or a log line unredacted.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

import httpx

from music_relay.telegram.client import (
    BotApiClient,
    TelegramError,
    TelegramNetworkError,
    TelegramTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_TYPE = "audio/mpeg"
DEFAULT_CACHE_MAX_AGE = 86400

# Upstream headers mirrored onto the client response
MIRRORED_HEADERS: tuple[str, ...] = ("content-length", "content-range", "accept-ranges")


class StreamProxyError(Exception):
    """Base class for failures surfaced to the client as an HTTP status."""

    status_code: int = 502
    code: str = "UPSTREAM_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class HandleNotFoundError(StreamProxyError):
    status_code = 404
    code = "NOT_FOUND"


class UpstreamStatusError(StreamProxyError):
    """Origin answered with something other than 200/206."""

    code = "UPSTREAM_STATUS"


class UpstreamUnavailableError(StreamProxyError):
    code = "UPSTREAM_UNAVAILABLE"


class UpstreamTimeoutError(StreamProxyError):
    status_code = 504
    code = "UPSTREAM_TIMEOUT"


@dataclass
class ProxiedStream:
    """Status, headers and a live body iterator for one relayed response.

    ``close`` must be awaited once the body is consumed or abandoned; it
    releases the upstream connection.
    """

    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes]
    close: Callable[[], Awaitable[None]]


class StreamProxy:
    """Resolves file handles and relays their bytes."""

    def __init__(
        self,
        client: BotApiClient,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
        cache_max_age: int = DEFAULT_CACHE_MAX_AGE,
    ) -> None:
        self._client = client
        self._http = http_client or client.http
        self._timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self._cache_max_age = cache_max_age

    async def resolve(self, handle_id: str) -> str:
        """Return the transient download URL for *handle_id*.

        Raises:
            HandleNotFoundError: Telegram does not know the handle (or refuses it).
            UpstreamTimeoutError / UpstreamUnavailableError: Bot API unreachable.
        """
        try:
            file_info = await self._client.get_file(handle_id, timeout=self._timeout.read)
        except TelegramTimeoutError:
            logger.warning("getFile timed out for %s", handle_id)
            raise UpstreamTimeoutError("Timed out resolving file") from None
        except TelegramNetworkError as exc:
            logger.warning("getFile failed for %s: %s", handle_id, exc)
            raise UpstreamUnavailableError("Could not resolve file") from None
        except TelegramError as exc:
            logger.info("getFile rejected %s: %s", handle_id, exc.description)
            raise HandleNotFoundError("File not found on Telegram") from None

        file_path = file_info.get("file_path")
        if not file_path:
            raise HandleNotFoundError("File not found on Telegram")
        return self._client.file_url(file_path)

    async def serve(self, handle_id: str, range_header: str | None = None) -> ProxiedStream:
        """Resolve *handle_id* and open a streaming relay of its bytes."""
        url = await self.resolve(handle_id)

        headers = {"Range": range_header} if range_header else {}
        request = self._http.build_request("GET", url, headers=headers, timeout=self._timeout)
        try:
            upstream = await self._http.send(request, stream=True)
        except httpx.TimeoutException:
            logger.warning("Origin timed out for %s", handle_id)
            raise UpstreamTimeoutError("Timed out fetching file") from None
        except httpx.HTTPError as exc:
            logger.warning("Origin request failed for %s: %s", handle_id, type(exc).__name__)
            raise UpstreamUnavailableError("Failed to fetch file") from None

        if upstream.status_code not in (200, 206):
            status = upstream.status_code
            await upstream.aclose()
            logger.warning("Origin returned HTTP %d for %s", status, handle_id)
            raise UpstreamStatusError(
                "Failed to fetch file", status_code=status if status >= 400 else 502
            )

        return ProxiedStream(
            status_code=upstream.status_code,
            headers=self._response_headers(upstream),
            body=self._relay(upstream, handle_id),
            close=upstream.aclose,
        )

    def _response_headers(self, upstream: httpx.Response) -> dict[str, str]:
        headers = {
            "Content-Type": upstream.headers.get("content-type") or DEFAULT_AUDIO_TYPE,
            "Cache-Control": f"public, max-age={self._cache_max_age}",
            "Access-Control-Allow-Origin": "*",
        }
        for name in MIRRORED_HEADERS:
            value = upstream.headers.get(name)
            if value:
                headers["-".join(part.capitalize() for part in name.split("-"))] = value
        return headers

    @staticmethod
    async def _relay(upstream: httpx.Response, handle_id: str) -> AsyncIterator[bytes]:
        # aiter_raw: bytes are passed through exactly as served, no decoding
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.HTTPError as exc:
            # Headers are already sent; the client sees a truncated body
            logger.warning("Relay of %s aborted: %s", handle_id, type(exc).__name__)
            raise
        finally:
            await upstream.aclose()
