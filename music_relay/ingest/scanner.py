"""One-shot historical scan of a chat's message ids.

Sweeps ``1 .. max_id - 1`` in fixed-size batches. Each batch's existence
checks run concurrently and fully settle (including any buffer flush) before
the next batch starts, so at most ``batch_size`` Bot API calls are in flight.

New audio is buffered and flushed to the catalog every ``flush_threshold``
candidates and once more at the end. An interrupted scan loses at most one
unflushed buffer; re-running is safe because the store deduplicates on
fingerprint.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from music_relay.catalog.store import CatalogStore, TrackCandidate
from music_relay.ingest.candidates import track_candidate_from_message
from music_relay.telegram.existence import MessageExistenceChecker

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20
DEFAULT_FLUSH_THRESHOLD = 50


@dataclass
class ScanReport:
    """Summary of a historical scan."""

    max_id: int = 0
    scanned: int = 0
    found: int = 0
    created: int = 0
    duplicates: int = 0
    errors: int = 0


class HistoricalScanner:
    """Bounded-concurrency sweep over a chat's message id space."""

    def __init__(
        self,
        checker: MessageExistenceChecker,
        store: CatalogStore,
        chat_id: int,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._checker = checker
        self._store = store
        self._chat_id = chat_id
        self._batch_size = batch_size
        self._flush_threshold = max(1, flush_threshold)
        self._buffer: list[TrackCandidate] = []

    async def scan(self, max_id: int) -> ScanReport:
        """Scan ids ``1 .. max_id - 1`` and index every unseen audio message.

        Topic assignment is not attempted: forwarded copies do not say which
        forum topic the original lived in, so tracks are stored with no topic.

        Raises:
            StoreUnavailableError: the catalog store became unreachable.
        """
        report = ScanReport(max_id=max_id)
        seen = await self._store.list_fingerprints()
        logger.info("Scanning ids 1-%d (%d tracks already indexed)", max_id - 1, len(seen))

        for batch_start in range(1, max_id, self._batch_size):
            batch = list(range(batch_start, min(batch_start + self._batch_size, max_id)))
            messages = await asyncio.gather(*(self._checker.fetch(i) for i in batch))

            for message_id, message in zip(batch, messages, strict=True):
                report.scanned += 1
                if message is None:
                    continue
                candidate = self._candidate(message_id, message)
                if candidate is None or candidate.file_unique_id in seen:
                    continue
                seen.add(candidate.file_unique_id)
                self._buffer.append(candidate)
                report.found += 1

            if len(self._buffer) >= self._flush_threshold:
                await self._flush(report)

            logger.info(
                "Scanned: %d/%d | Found: %d new tracks", report.scanned, max_id - 1, report.found
            )

        await self._flush(report)

        logger.info(
            "Scan complete: %d created, %d duplicates, %d errors (of %d ids)",
            report.created,
            report.duplicates,
            report.errors,
            report.scanned,
        )
        return report

    def _candidate(self, message_id: int, message: dict[str, Any]) -> TrackCandidate | None:
        return track_candidate_from_message(
            message,
            message_id=message_id,
            chat_id=self._chat_id,
            use_message_topic=False,
        )

    async def _flush(self, report: ScanReport) -> None:
        if not self._buffer:
            return
        pending, self._buffer = self._buffer, []
        result = await self._store.add_tracks(pending)
        report.created += result.created
        report.duplicates += result.duplicates
        report.errors += result.failed
        logger.info("Flushed %d candidates (%d new)", len(pending), result.created)
