"""Source chat discovery for the historical scan.

The scan needs the numeric id of the channel or supergroup. When
``TELEGRAM_CHANNEL_ID`` is missing or stale the bot waits until it is added to
a chat (or sees a post in one) and records the id in the env file.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from dotenv import set_key

from music_relay.telegram.client import BotApiClient, TelegramError, TelegramNetworkError

logger = logging.getLogger(__name__)

SOURCE_CHAT_TYPES: frozenset[str] = frozenset({"channel", "supergroup"})


async def verify_chat(client: BotApiClient, chat_id: int | str) -> dict[str, Any] | None:
    """Return chat info if the bot can see *chat_id*, else ``None``."""
    try:
        return await client.get_chat(chat_id)
    except TelegramNetworkError:
        raise
    except TelegramError as exc:
        logger.warning("Configured chat %s is not accessible: %s", chat_id, exc)
        return None


def chat_from_update(update: dict[str, Any]) -> dict[str, Any] | None:
    for key in ("channel_post", "message", "my_chat_member"):
        payload = update.get(key)
        if payload and payload.get("chat"):
            return payload["chat"]
    return None


async def wait_for_chat(
    client: BotApiClient,
    *,
    poll_timeout: int = 10,
    retry_delay: float = 2.0,
) -> dict[str, Any]:
    """Block until an update reveals a channel or supergroup the bot belongs to."""
    logger.info("Waiting for the bot to be added to a channel (and a message to be posted)...")
    offset = 0
    while True:
        try:
            updates = await client.get_updates(
                offset=offset,
                timeout=poll_timeout,
                allowed_updates=["message", "channel_post", "my_chat_member"],
            )
        except TelegramNetworkError as exc:
            logger.warning("Update poll failed while waiting for chat: %s", exc)
            updates = []

        for update in updates:
            offset = max(offset, int(update["update_id"]) + 1)
            chat = chat_from_update(update)
            if chat and chat.get("type") in SOURCE_CHAT_TYPES:
                logger.info("Detected chat %r (id: %s)", chat.get("title"), chat["id"])
                return chat

        await asyncio.sleep(retry_delay)


async def resolve_chat_id(client: BotApiClient, configured: int | None) -> tuple[int, bool]:
    """Return ``(chat_id, detected)``; *detected* is true when the id was discovered."""
    if configured is not None and await verify_chat(client, configured) is not None:
        return configured, False
    chat = await wait_for_chat(client)
    return int(chat["id"]), True


def update_env_file(path: Path, key: str, value: object) -> None:
    """Set ``key=value`` in a dotenv file, replacing an existing assignment."""
    if not path.exists():
        path.touch()
    set_key(str(path), key, str(value), quote_mode="never")
    logger.info("Updated %s: %s=%s", path, key, value)
