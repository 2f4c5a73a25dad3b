"""Long-poll listener indexing new audio as it is posted.

The poller holds a single piece of state, the next ``getUpdates`` offset. The
offset is advanced past a whole batch *before* the batch is processed: a crash
mid-batch loses those updates from the Bot API queue, and the next historical
scan picks them up again. Processing is idempotent because the store
deduplicates on fingerprint.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from music_relay.catalog.store import CatalogStore, PersistenceError
from music_relay.ingest.candidates import (
    created_topic,
    message_from_update,
    referenced_topic,
    track_candidate_from_message,
)
from music_relay.telegram.client import BotApiClient, TelegramError, TelegramNetworkError

logger = logging.getLogger(__name__)

ALLOWED_UPDATES: list[str] = ["message", "channel_post"]


@dataclass
class PollReport:
    """Counters for a single poll cycle."""

    updates: int = 0
    tracks_created: int = 0
    duplicates: int = 0
    topics_created: int = 0
    errors: int = 0


class UpdatePoller:
    """Cooperative ``getUpdates`` loop feeding the catalog store."""

    def __init__(
        self,
        client: BotApiClient,
        store: CatalogStore,
        *,
        poll_timeout: int = 30,
        retry_delay: float = 5.0,
        chat_id: int | None = None,
        offset: int = 0,
    ) -> None:
        self._client = client
        self._store = store
        self._poll_timeout = poll_timeout
        self._retry_delay = retry_delay
        self._chat_id = chat_id
        self._stopping = asyncio.Event()
        self.offset = offset

    def stop(self) -> None:
        """Ask :meth:`run` to exit after the current cycle."""
        self._stopping.set()

    async def run(self) -> None:
        """Poll until :meth:`stop` is called or the task is cancelled.

        Raises:
            StoreUnavailableError: the catalog store became unreachable.
        """
        logger.info("Listening for new music (offset=%d)", self.offset)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except TelegramNetworkError as exc:
                delay = exc.retry_after if exc.retry_after is not None else self._retry_delay
                logger.warning("Poll failed (%s); retrying in %.1fs", exc, delay)
                await self._sleep(delay)
            except TelegramError as exc:
                # e.g. 409 Conflict when another getUpdates consumer or a webhook is active
                logger.error("getUpdates rejected: %s; retrying in %.1fs", exc, self._retry_delay)
                await self._sleep(self._retry_delay)
        logger.info("Poller stopped at offset %d", self.offset)

    async def run_once(self) -> PollReport:
        """Fetch one batch of updates and index it."""
        updates = await self._client.get_updates(
            offset=self.offset,
            timeout=self._poll_timeout,
            allowed_updates=ALLOWED_UPDATES,
        )
        report = PollReport(updates=len(updates))
        if not updates:
            return report

        self.offset = max(int(u["update_id"]) for u in updates) + 1

        for update in updates:
            message = message_from_update(update)
            if message is None:
                continue
            if self._chat_id is not None and message.get("chat", {}).get("id") != self._chat_id:
                logger.debug("Ignoring message from chat %s", message.get("chat", {}).get("id"))
                continue
            await self._handle_message(message, report)

        return report

    async def _handle_message(self, message: dict[str, Any], report: PollReport) -> None:
        try:
            topic = created_topic(message)
            if topic is not None and await self._store.upsert_topic(topic.id, topic.name):
                report.topics_created += 1

            candidate = track_candidate_from_message(message)
            if candidate is None:
                return

            topic = referenced_topic(message)
            if topic is not None and await self._store.upsert_topic(topic.id, topic.name):
                report.topics_created += 1

            outcome = await self._store.upsert_track(candidate)
            if outcome.created:
                report.tracks_created += 1
            else:
                report.duplicates += 1
                logger.info("Skipped %r (already indexed)", candidate.title)
        except PersistenceError as exc:
            report.errors += 1
            logger.error("Failed to index message %s: %s", message.get("message_id"), exc)

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except TimeoutError:
            pass
