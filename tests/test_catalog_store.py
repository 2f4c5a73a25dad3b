"""Tests for the catalog store against in-memory SQLite."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from music_relay.catalog.store import (
    UNKNOWN_PERFORMER,
    UNKNOWN_TITLE,
    CatalogStore,
    PersistenceError,
    StoreUnavailableError,
    TrackCandidate,
)


def _candidate(n: int, **overrides) -> TrackCandidate:
    fields = {
        "file_id": f"file-{n}",
        "file_unique_id": f"uniq-{n}",
        "message_id": n,
        "chat_id": -100123,
        "date": 1_700_000_000 + n,
        "title": f"Song {n}",
        "performer": "Someone",
        "duration": 200,
    }
    fields.update(overrides)
    return TrackCandidate(**fields)


class TestUpsertTrack:
    async def test_first_insert_creates(self, store: CatalogStore):
        result = await store.upsert_track(_candidate(1))

        assert result.created is True
        assert result.track.id is not None
        assert result.track.file_unique_id == "uniq-1"
        assert await store.count_tracks() == 1

    async def test_same_fingerprint_is_idempotent(self, store: CatalogStore):
        first = await store.upsert_track(_candidate(1))
        second = await store.upsert_track(_candidate(1, file_id="rotated-handle", title="Other"))

        assert second.created is False
        assert second.track.id == first.track.id
        assert second.track.title == "Song 1"
        assert await store.count_tracks() == 1

    async def test_blank_metadata_gets_defaults(self, store: CatalogStore):
        result = await store.upsert_track(_candidate(1, title="", performer=""))

        assert result.track.title == UNKNOWN_TITLE
        assert result.track.performer == UNKNOWN_PERFORMER

    async def test_lost_race_reports_existing_row(self, store: CatalogStore, monkeypatch):
        """The pre-check misses the other writer; the unique constraint catches it."""
        winner = await store.upsert_track(_candidate(1))

        original = CatalogStore._find_by_fingerprint
        calls = {"n": 0}

        async def _blind_first_lookup(session, file_unique_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await original(session, file_unique_id)

        monkeypatch.setattr(CatalogStore, "_find_by_fingerprint", staticmethod(_blind_first_lookup))

        result = await store.upsert_track(_candidate(1))

        assert result.created is False
        assert result.track.id == winner.track.id
        assert await store.count_tracks() == 1


class TestAddTracks:
    async def test_counts_created_and_duplicates(self, store: CatalogStore):
        await store.upsert_track(_candidate(2))

        result = await store.add_tracks([_candidate(1), _candidate(2), _candidate(3)])

        assert result.created == 2
        assert result.duplicates == 1
        assert result.failed == 0
        assert {t.file_unique_id for t in result.tracks} == {"uniq-1", "uniq-3"}

    async def test_rerun_does_not_change_count(self, store: CatalogStore):
        batch = [_candidate(n) for n in range(1, 6)]
        await store.add_tracks(batch)
        again = await store.add_tracks(batch)

        assert again.created == 0
        assert again.duplicates == 5
        assert await store.count_tracks() == 5

    async def test_persistence_error_is_counted_not_raised(self, store: CatalogStore, monkeypatch):
        original = store.upsert_track

        async def _flaky(candidate):
            if candidate.file_unique_id == "uniq-2":
                raise PersistenceError("bad row")
            return await original(candidate)

        monkeypatch.setattr(store, "upsert_track", _flaky)

        result = await store.add_tracks([_candidate(1), _candidate(2), _candidate(3)])

        assert result.created == 2
        assert result.failed == 1

    async def test_unavailable_store_aborts_batch(self, store: CatalogStore, monkeypatch):
        async def _down(candidate):
            raise StoreUnavailableError("gone")

        monkeypatch.setattr(store, "upsert_track", _down)

        with pytest.raises(StoreUnavailableError):
            await store.add_tracks([_candidate(1)])


class TestTopicsAndListings:
    async def test_upsert_topic_once(self, store: CatalogStore):
        assert await store.upsert_topic(7, "Jazz") is True
        assert await store.upsert_topic(7, "Renamed") is False
        assert await store.get_topic_ids() == {7}

    async def test_list_fingerprints(self, store: CatalogStore):
        await store.add_tracks([_candidate(1), _candidate(2)])

        assert await store.list_fingerprints() == {"uniq-1", "uniq-2"}


class TestErrorClassification:
    def test_operational_error_means_unavailable(self):
        exc = OperationalError("SELECT 1", {}, Exception("connection refused"))

        assert isinstance(CatalogStore._classify(exc, "x"), StoreUnavailableError)

    def test_other_errors_are_per_record(self):
        exc = ProgrammingError("INSERT", {}, Exception("bad"))

        assert isinstance(CatalogStore._classify(exc, "x"), PersistenceError)

    async def test_unreachable_database_raises_unavailable(self):
        factory = MagicMock(side_effect=OperationalError("connect", {}, Exception("refused")))
        store = CatalogStore(factory)

        with pytest.raises(StoreUnavailableError):
            await store.count_tracks()
