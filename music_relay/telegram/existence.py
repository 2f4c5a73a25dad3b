"""Message existence checks for chats the bot cannot list.

The Bot API has no way to read chat history or ask whether message ``N``
exists. The only available signal is to forward the message somewhere and see
whether the forward succeeds. :class:`ForwardDeleteChecker` forwards the
message back into the source chat and immediately deletes the copy.

The prober and scanner only depend on :class:`MessageExistenceChecker`, so a
direct lookup can replace the forward trick without touching them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from music_relay.telegram.client import BotApiClient, TelegramError, TelegramNetworkError

logger = logging.getLogger(__name__)


class MessageExistenceChecker(Protocol):
    """Answers "does message id N currently exist in the source chat"."""

    async def fetch(self, message_id: int) -> dict[str, Any] | None:
        """Return the message payload if *message_id* exists, else ``None``.

        Raises:
            TelegramNetworkError: when the answer is unknown (transient failure).
        """
        ...

    async def exists(self, message_id: int) -> bool: ...


class ForwardDeleteChecker:
    """Existence check via forward-to-self followed by delete of the copy.

    The returned payload is the forwarded copy. Its ``message_id`` is the
    copy's id, and ``forward_origin`` / ``forward_date`` describe the original.
    """

    def __init__(self, client: BotApiClient, chat_id: int | str, timeout: float = 15.0) -> None:
        self._client = client
        self._chat_id = chat_id
        self._timeout = timeout

    @property
    def chat_id(self) -> int | str:
        return self._chat_id

    async def fetch(self, message_id: int) -> dict[str, Any] | None:
        try:
            copy = await self._client.forward_message(
                chat_id=self._chat_id,
                from_chat_id=self._chat_id,
                message_id=message_id,
                disable_notification=True,
                timeout=self._timeout,
            )
        except TelegramNetworkError:
            raise
        except TelegramError:
            return None

        await self._delete_copy(copy.get("message_id"))
        return copy

    async def exists(self, message_id: int) -> bool:
        return await self.fetch(message_id) is not None

    async def _delete_copy(self, copy_id: int | None) -> None:
        if copy_id is None:
            return
        try:
            await self._client.delete_message(self._chat_id, copy_id, timeout=self._timeout)
        except TelegramError as exc:
            # A leftover copy is a visible duplicate in the chat, not a data error
            logger.warning("Failed to delete forwarded copy %s: %s", copy_id, exc)


class RetryingChecker:
    """Wrap a checker so transient failures are retried with a fixed delay.

    When every attempt fails the id is reported as missing. Probing and
    scanning both tolerate false negatives, so an unreachable id never aborts
    a run.
    """

    def __init__(
        self,
        inner: MessageExistenceChecker,
        attempts: int = 3,
        delay: float = 1.0,
    ) -> None:
        self._inner = inner
        self._attempts = max(1, attempts)
        self._delay = delay

    async def fetch(self, message_id: int) -> dict[str, Any] | None:
        for attempt in range(1, self._attempts + 1):
            try:
                return await self._inner.fetch(message_id)
            except TelegramNetworkError as exc:
                if attempt == self._attempts:
                    logger.warning(
                        "Giving up on message %d after %d attempts: %s",
                        message_id,
                        attempt,
                        exc,
                    )
                    return None
                delay = exc.retry_after if exc.retry_after is not None else self._delay
                logger.debug("Check of message %d failed (%s); retrying", message_id, exc)
                await asyncio.sleep(delay)
        return None

    async def exists(self, message_id: int) -> bool:
        return await self.fetch(message_id) is not None
