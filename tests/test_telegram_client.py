"""Tests for the Bot API client using httpx.MockTransport."""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from music_relay.telegram.client import (
    BotApiClient,
    TelegramError,
    TelegramNetworkError,
    TelegramTimeoutError,
)

TOKEN = "123456:SECRET-token"


def _client(handler) -> BotApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BotApiClient(TOKEN, api_base="https://api.test", http_client=http)


class TestCall:
    async def test_ok_returns_result_and_drops_none_params(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"id": 1, "username": "relay"}})

        client = _client(handler)
        result = await client.call("getMe", foo=None, bar=2)

        assert result == {"id": 1, "username": "relay"}
        assert seen["url"] == f"https://api.test/bot{TOKEN}/getMe"
        assert seen["body"] == {"bar": 2}

    async def test_api_error_is_telegram_error(self):
        def handler(request):
            return httpx.Response(
                400,
                json={"ok": False, "error_code": 400, "description": "message not found"},
            )

        with pytest.raises(TelegramError) as info:
            await _client(handler).forward_message(-1, -1, 5)

        assert not isinstance(info.value, TelegramNetworkError)
        assert info.value.error_code == 400
        assert "message not found" in info.value.description

    async def test_rate_limit_is_transient_with_retry_after(self):
        def handler(request):
            return httpx.Response(
                429,
                json={
                    "ok": False,
                    "error_code": 429,
                    "description": "Too Many Requests: retry after 7",
                    "parameters": {"retry_after": 7},
                },
            )

        with pytest.raises(TelegramNetworkError) as info:
            await _client(handler).get_me()

        assert info.value.retry_after == 7.0

    async def test_server_error_is_transient(self):
        def handler(request):
            body = {"ok": False, "error_code": 502, "description": "Bad Gateway"}
            return httpx.Response(502, json=body)

        with pytest.raises(TelegramNetworkError):
            await _client(handler).get_me()

    async def test_non_json_body_is_transient(self):
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>")

        with pytest.raises(TelegramNetworkError):
            await _client(handler).get_me()

    async def test_timeout_maps_to_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TelegramTimeoutError):
            await _client(handler).get_me()

    async def test_transport_error_never_contains_token(self):
        def handler(request):
            raise httpx.ConnectError(f"cannot connect to {request.url}", request=request)

        with pytest.raises(TelegramNetworkError) as info:
            await _client(handler).get_me()

        assert TOKEN not in str(info.value)
        assert "<redacted>" in str(info.value)

    async def test_request_logging_never_contains_token(self, caplog):
        caplog.set_level(logging.DEBUG)

        def handler(request):
            return httpx.Response(200, json={"ok": True, "result": []})

        await _client(handler).get_updates(offset=0, timeout=0)

        leaked = [r.getMessage() for r in caplog.records if TOKEN in r.getMessage()]
        assert not leaked


class TestMethods:
    async def test_get_updates_passes_long_poll_params(self):
        seen: dict = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["timeout"] = request.extensions["timeout"]
            return httpx.Response(200, json={"ok": True, "result": [{"update_id": 3}]})

        client = _client(handler)
        updates = await client.get_updates(offset=3, timeout=30, allowed_updates=["message"])

        assert updates == [{"update_id": 3}]
        assert seen["body"] == {"offset": 3, "timeout": 30, "allowed_updates": ["message"]}
        assert seen["timeout"]["read"] == 40.0

    async def test_delete_message_returns_bool(self):
        def handler(request):
            return httpx.Response(200, json={"ok": True, "result": True})

        assert await _client(handler).delete_message(-100, 9) is True

    def test_file_url_and_redaction(self):
        client = BotApiClient(TOKEN, api_base="https://api.test/")

        url = client.file_url("/music/file_1.mp3")

        assert url == f"https://api.test/file/bot{TOKEN}/music/file_1.mp3"
        assert client.redact(url) == "https://api.test/file/bot<redacted>/music/file_1.mp3"

    def test_missing_token_rejected(self):
        with pytest.raises(ValueError):
            BotApiClient("")
