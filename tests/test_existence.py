"""Tests for the forward-then-delete existence check and its retry wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from music_relay.telegram.client import TelegramError, TelegramNetworkError
from music_relay.telegram.existence import ForwardDeleteChecker, RetryingChecker

CHAT = -100555


@pytest.fixture
def bot() -> AsyncMock:
    return AsyncMock()


class TestForwardDeleteChecker:
    async def test_existing_message_is_forwarded_then_copy_deleted(self, bot: AsyncMock):
        bot.forward_message.return_value = {"message_id": 901, "audio": {"file_id": "f"}}

        checker = ForwardDeleteChecker(bot, CHAT, timeout=5.0)
        message = await checker.fetch(42)

        assert message["message_id"] == 901
        bot.forward_message.assert_awaited_once_with(
            chat_id=CHAT,
            from_chat_id=CHAT,
            message_id=42,
            disable_notification=True,
            timeout=5.0,
        )
        bot.delete_message.assert_awaited_once_with(CHAT, 901, timeout=5.0)

    async def test_api_error_means_absent(self, bot: AsyncMock):
        bot.forward_message.side_effect = TelegramError(
            "forwardMessage", "message to forward not found", 400
        )

        checker = ForwardDeleteChecker(bot, CHAT)

        assert await checker.exists(42) is False
        bot.delete_message.assert_not_awaited()

    async def test_network_error_propagates(self, bot: AsyncMock):
        bot.forward_message.side_effect = TelegramNetworkError("forwardMessage", "timed out")

        with pytest.raises(TelegramNetworkError):
            await ForwardDeleteChecker(bot, CHAT).fetch(42)

    async def test_failed_delete_still_counts_as_existing(self, bot: AsyncMock):
        bot.forward_message.return_value = {"message_id": 901}
        bot.delete_message.side_effect = TelegramError("deleteMessage", "not enough rights", 400)

        assert await ForwardDeleteChecker(bot, CHAT).exists(42) is True


class TestRetryingChecker:
    async def test_retries_transient_failures(self, monkeypatch):
        sleeps: list[float] = []

        async def _sleep(delay):
            sleeps.append(delay)

        monkeypatch.setattr("music_relay.telegram.existence.asyncio.sleep", _sleep)

        inner = AsyncMock()
        inner.fetch.side_effect = [
            TelegramNetworkError("forwardMessage", "flood", 429, retry_after=4),
            TelegramNetworkError("forwardMessage", "timed out"),
            {"message_id": 1},
        ]

        checker = RetryingChecker(inner, attempts=3, delay=0.5)

        assert await checker.fetch(7) == {"message_id": 1}
        assert sleeps == [4, 0.5]

    async def test_gives_up_as_missing(self, monkeypatch):
        monkeypatch.setattr("music_relay.telegram.existence.asyncio.sleep", AsyncMock())

        inner = AsyncMock()
        inner.fetch.side_effect = TelegramNetworkError("forwardMessage", "timed out")

        checker = RetryingChecker(inner, attempts=2, delay=0)

        assert await checker.exists(7) is False
        assert inner.fetch.await_count == 2
