"""Catalog store: idempotent persistence of tracks and topics.

The ``file_unique_id`` column carries a unique constraint, and that constraint
is what serializes concurrent ingestion. Each upsert runs in its own short
transaction. When two writers race on the same fingerprint the loser's insert
fails with an integrity error, is rolled back, and is reported as
``created=False`` together with the winning row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from music_relay.models.topic import Topic
from music_relay.models.track import Track

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_PERFORMER = "Unknown Artist"
DEFAULT_MIME_TYPE = "audio/mpeg"


class StoreUnavailableError(Exception):
    """The database cannot be reached. Fatal for an ingestion run."""


class PersistenceError(Exception):
    """A single record could not be written. Non-fatal for a batch."""


@dataclass(frozen=True)
class TrackCandidate:
    """A track seen on Telegram that has not been persisted yet."""

    file_id: str
    file_unique_id: str
    message_id: int
    chat_id: int
    date: int
    title: str = UNKNOWN_TITLE
    performer: str = UNKNOWN_PERFORMER
    duration: int = 0
    file_size: int = 0
    mime_type: str = DEFAULT_MIME_TYPE
    topic_id: int | None = None
    thumbnail_file_id: str | None = None


@dataclass
class UpsertResult:
    created: bool
    track: Track


@dataclass
class FlushResult:
    """Outcome of writing a batch of candidates."""

    created: int = 0
    duplicates: int = 0
    failed: int = 0
    tracks: list[Track] = field(default_factory=list)


def _is_unreachable(exc: SQLAlchemyError) -> bool:
    """True when *exc* means the store itself is gone, not that one row is bad."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class CatalogStore:
    """Append/read access to the ``tracks`` and ``topics`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert_track(self, candidate: TrackCandidate) -> UpsertResult:
        """Insert *candidate* unless its fingerprint is already stored.

        Raises:
            StoreUnavailableError: the database is unreachable.
            PersistenceError: the row could not be written for another reason.
        """
        try:
            async with self._session_factory() as session:
                existing = await self._find_by_fingerprint(session, candidate.file_unique_id)
                if existing is not None:
                    return UpsertResult(created=False, track=existing)

                track = Track(
                    file_id=candidate.file_id,
                    file_unique_id=candidate.file_unique_id,
                    title=candidate.title or UNKNOWN_TITLE,
                    performer=candidate.performer or UNKNOWN_PERFORMER,
                    duration=max(0, candidate.duration),
                    file_size=max(0, candidate.file_size),
                    mime_type=candidate.mime_type or DEFAULT_MIME_TYPE,
                    thumbnail_file_id=candidate.thumbnail_file_id,
                    topic_id=candidate.topic_id,
                    message_id=candidate.message_id,
                    chat_id=candidate.chat_id,
                    date=candidate.date,
                )
                session.add(track)
                try:
                    await session.commit()
                except IntegrityError:
                    # Lost a race with another writer on the same fingerprint
                    await session.rollback()
                    winner = await self._find_by_fingerprint(session, candidate.file_unique_id)
                    if winner is None:
                        raise
                    logger.debug("Concurrent insert for %s; keeping existing row", winner.id)
                    return UpsertResult(created=False, track=winner)

                await session.refresh(track)
                logger.info(
                    "Indexed track %d: %r by %r (topic: %s)",
                    track.id,
                    track.title,
                    track.performer,
                    track.topic_id if track.topic_id is not None else "none",
                )
                return UpsertResult(created=True, track=track)
        except SQLAlchemyError as exc:
            raise self._classify(exc, f"track {candidate.file_unique_id}") from exc

    async def upsert_topic(self, topic_id: int, name: str) -> bool:
        """Insert a topic if *topic_id* is unseen. Returns ``True`` when created."""
        try:
            async with self._session_factory() as session:
                if await session.get(Topic, topic_id) is not None:
                    return False
                session.add(Topic(id=topic_id, name=name))
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                logger.info("New topic %d: %r", topic_id, name)
                return True
        except SQLAlchemyError as exc:
            raise self._classify(exc, f"topic {topic_id}") from exc

    async def add_tracks(self, candidates: Iterable[TrackCandidate]) -> FlushResult:
        """Persist a batch of candidates, one transaction per candidate.

        A failure on one candidate is logged and counted; an unreachable store
        aborts the whole batch by raising :class:`StoreUnavailableError`.
        """
        result = FlushResult()
        for candidate in candidates:
            try:
                outcome = await self.upsert_track(candidate)
            except PersistenceError as exc:
                result.failed += 1
                logger.error("Failed to store %s: %s", candidate.file_unique_id, exc)
                continue
            if outcome.created:
                result.created += 1
                result.tracks.append(outcome.track)
            else:
                result.duplicates += 1
        return result

    async def list_fingerprints(self) -> set[str]:
        try:
            async with self._session_factory() as session:
                rows = await session.execute(select(Track.file_unique_id))
                return set(rows.scalars().all())
        except SQLAlchemyError as exc:
            raise self._classify(exc, "fingerprint listing") from exc

    async def count_tracks(self) -> int:
        try:
            async with self._session_factory() as session:
                total = await session.execute(select(func.count()).select_from(Track))
                return total.scalar_one()
        except SQLAlchemyError as exc:
            raise self._classify(exc, "track count") from exc

    async def get_topic_ids(self) -> set[int]:
        try:
            async with self._session_factory() as session:
                rows = await session.execute(select(Topic.id))
                return set(rows.scalars().all())
        except SQLAlchemyError as exc:
            raise self._classify(exc, "topic listing") from exc

    @staticmethod
    async def _find_by_fingerprint(session: AsyncSession, file_unique_id: str) -> Track | None:
        result = await session.execute(select(Track).where(Track.file_unique_id == file_unique_id))
        return result.scalar_one_or_none()

    @staticmethod
    def _classify(exc: SQLAlchemyError, what: str) -> Exception:
        if _is_unreachable(exc):
            return StoreUnavailableError(f"Catalog store unreachable during {what}")
        return PersistenceError(f"Could not persist {what}: {type(exc).__name__}")
