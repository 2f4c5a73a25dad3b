"""Async Telegram Bot API client built on httpx.

Only the handful of methods the relay consumes are wrapped. Every call goes
through :meth:`BotApiClient.call`, which splits failures into two kinds:

- :class:`TelegramNetworkError`: timeouts, connection errors, server errors
  and rate limiting. Callers retry these.
- :class:`TelegramError`: the API answered ``ok: false`` (message not found,
  file too big, ...). Callers treat these as data, not as faults.

The bot token is part of every request URL, so it is scrubbed from all
error messages this module produces.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# httpx logs every request URL at INFO and the URL carries the bot token
for _name in ("httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.WARNING)

DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT = 15.0

# Extra headroom on top of the long-poll wait so the HTTP timeout never fires first
LONG_POLL_GRACE_SECONDS = 10.0


class TelegramError(Exception):
    """Raised when the Bot API reports ``ok: false`` for a call."""

    def __init__(self, method: str, description: str, error_code: int | None = None) -> None:
        self.method = method
        self.description = description
        self.error_code = error_code
        super().__init__(f"{method} failed: {description}")


class TelegramNetworkError(TelegramError):
    """Transient failure talking to the Bot API (retryable)."""

    def __init__(
        self,
        method: str,
        description: str,
        error_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(method, description, error_code)
        self.retry_after = retry_after


class TelegramTimeoutError(TelegramNetworkError):
    """The Bot API did not answer in time."""


class BotApiClient:
    """Thin wrapper around the Bot API HTTP interface."""

    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not token:
            raise ValueError("Telegram bot token is not configured. Set TELEGRAM_BOT_TOKEN.")
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    async def __aenter__(self) -> BotApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    def redact(self, text: str) -> str:
        """Remove the bot token from *text*."""
        return text.replace(self._token, "<redacted>")

    def method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._token}/{method}"

    def file_url(self, file_path: str) -> str:
        """Transient download URL for a ``file_path`` returned by ``getFile``."""
        return f"{self._api_base}/file/bot{self._token}/{file_path.lstrip('/')}"

    async def call(
        self, method: str, *, request_timeout: float | None = None, **params: Any
    ) -> Any:
        """Invoke a Bot API method and return its ``result`` payload.

        ``None`` parameters are dropped so optional arguments can be passed
        through unconditionally.

        Raises:
            TelegramNetworkError: on transport failures, 5xx and 429.
            TelegramError: when the API reports ``ok: false``.
        """
        payload = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._http.post(
                self.method_url(method),
                json=payload,
                timeout=request_timeout if request_timeout is not None else self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TelegramTimeoutError(method, f"timed out ({type(exc).__name__})") from None
        except httpx.TransportError as exc:
            raise TelegramNetworkError(
                method, self.redact(f"transport error: {type(exc).__name__}: {exc}")
            ) from None

        try:
            body = response.json()
        except ValueError:
            raise TelegramNetworkError(
                method, f"non-JSON response (HTTP {response.status_code})", response.status_code
            ) from None

        if not isinstance(body, dict):
            raise TelegramNetworkError(method, "malformed response body", response.status_code)

        if body.get("ok"):
            return body.get("result")

        error_code = body.get("error_code", response.status_code)
        description = self.redact(str(body.get("description", "unknown error")))
        logger.debug("Bot API %s returned error %s: %s", method, error_code, description)

        if error_code == 429:
            retry_after = (body.get("parameters") or {}).get("retry_after")
            raise TelegramNetworkError(
                method,
                description,
                error_code,
                retry_after=float(retry_after) if retry_after is not None else None,
            )
        if isinstance(error_code, int) and error_code >= 500:
            raise TelegramNetworkError(method, description, error_code)

        raise TelegramError(method, description, error_code)

    # ------------------------------------------------------------------
    # Bot API methods
    # ------------------------------------------------------------------

    async def get_me(self) -> dict[str, Any]:
        return await self.call("getMe")

    async def get_chat(self, chat_id: int | str) -> dict[str, Any]:
        return await self.call("getChat", chat_id=chat_id)

    async def get_updates(
        self,
        offset: int,
        timeout: int,
        allowed_updates: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Long-poll for updates, waiting up to *timeout* seconds server-side."""
        result = await self.call(
            "getUpdates",
            request_timeout=timeout + LONG_POLL_GRACE_SECONDS,
            offset=offset,
            timeout=timeout,
            allowed_updates=allowed_updates,
        )
        return result or []

    async def get_file(self, file_id: str, *, timeout: float | None = None) -> dict[str, Any]:
        return await self.call("getFile", request_timeout=timeout, file_id=file_id)

    async def forward_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        *,
        disable_notification: bool = True,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return await self.call(
            "forwardMessage",
            request_timeout=timeout,
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            disable_notification=disable_notification,
        )

    async def delete_message(
        self, chat_id: int | str, message_id: int, *, timeout: float | None = None
    ) -> bool:
        result = await self.call(
            "deleteMessage",
            request_timeout=timeout,
            chat_id=chat_id,
            message_id=message_id,
        )
        return bool(result)
