"""Tests for the mpv IPC sink against a fake mpv socket server."""

from __future__ import annotations

import asyncio
import json

import pytest

from music_relay.playback.events import DurationChanged, PositionChanged, TrackEnded
from music_relay.playback.mpv import (
    MpvError,
    MpvSink,
    mpv_sink_factory,
    start_mpv,
    translate_mpv_event,
)
from music_relay.playback.sink import MediaLoadError


class TestTranslate:
    def test_eof_is_track_ended(self):
        assert translate_mpv_event({"event": "end-file", "reason": "eof"}) == TrackEnded()

    def test_replaced_file_is_not_track_ended(self):
        assert translate_mpv_event({"event": "end-file", "reason": "stop"}) is None

    def test_property_changes(self):
        assert translate_mpv_event(
            {"event": "property-change", "id": 1, "name": "time-pos", "data": 12.5}
        ) == PositionChanged(12.5)
        assert translate_mpv_event(
            {"event": "property-change", "id": 2, "name": "duration", "data": 240}
        ) == DurationChanged(240.0)

    def test_unavailable_property_ignored(self):
        assert translate_mpv_event({"event": "property-change", "name": "time-pos"}) is None

    def test_unrelated_event_ignored(self):
        assert translate_mpv_event({"event": "playback-restart"}) is None


class FakeMpv:
    """Answers every command with success and emits load events for ``loadfile``."""

    def __init__(self, *, broken_urls: set[str] | None = None) -> None:
        self.commands: list[list] = []
        self.broken_urls = broken_urls or set()
        self.writer: asyncio.StreamWriter | None = None

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writer = writer
        while line := await reader.readline():
            request = json.loads(line)
            command = request["command"]
            self.commands.append(command)
            self.send({"request_id": request["request_id"], "error": "success", "data": None})
            if command[0] == "loadfile":
                if command[1] in self.broken_urls:
                    self.send({"event": "end-file", "reason": "error", "file_error": "failed"})
                else:
                    self.send({"event": "start-file"})
                    self.send({"event": "file-loaded"})
            await writer.drain()
        writer.close()

    def send(self, payload: dict) -> None:
        assert self.writer is not None
        self.writer.write((json.dumps(payload) + "\n").encode())


@pytest.fixture
async def mpv(tmp_path):
    fake = FakeMpv(broken_urls={"http://relay/stream/broken"})
    path = str(tmp_path / "mpv.sock")
    server = await asyncio.start_unix_server(fake.handle, path=path)
    yield fake, path
    server.close()
    await server.wait_closed()


async def test_connect_observes_progress_properties(mpv):
    fake, path = mpv
    events: asyncio.Queue = asyncio.Queue()

    sink = await MpvSink.connect(path, events)
    await sink.close()

    assert fake.commands == [
        ["observe_property", 1, "time-pos"],
        ["observe_property", 2, "duration"],
    ]


async def test_commands_map_to_mpv_ipc(mpv):
    fake, path = mpv
    events: asyncio.Queue = asyncio.Queue()
    sink = await MpvSink.connect(path, events)

    await sink.load("http://relay/stream/abc")
    await sink.play()
    await sink.seek(30.0)
    await sink.set_volume(55)
    await sink.pause()
    await sink.close()

    assert fake.commands[2:] == [
        ["loadfile", "http://relay/stream/abc", "replace", -1, "pause=yes"],
        ["set_property", "pause", False],
        ["seek", 30.0, "absolute"],
        ["set_property", "volume", 55],
        ["set_property", "pause", True],
    ]


async def test_load_error_raises_media_load_error(mpv):
    _, path = mpv
    sink = await MpvSink.connect(path, asyncio.Queue())

    with pytest.raises(MediaLoadError):
        await sink.load("http://relay/stream/broken")

    await sink.close()


async def test_events_forwarded_to_channel(mpv):
    fake, path = mpv
    events: asyncio.Queue = asyncio.Queue()
    sink = await MpvSink.connect(path, events)

    fake.send({"event": "property-change", "id": 1, "name": "time-pos", "data": 3.0})
    fake.send({"event": "end-file", "reason": "eof"})

    assert await asyncio.wait_for(events.get(), 1) == PositionChanged(3.0)
    assert await asyncio.wait_for(events.get(), 1) == TrackEnded()
    await sink.close()


async def test_factory_connects_session_sink(mpv):
    from music_relay.playback.session import PlaybackSession
    from music_relay.playback.state import QueueItem, TransportState

    fake, path = mpv

    async with PlaybackSession(mpv_sink_factory(path), "http://relay") as session:
        session.engine.set_queue([QueueItem(id=1, file_id="abc", duration=100)])
        assert await session.engine.select_index(0) is True
        assert session.engine.state.transport is TransportState.PLAYING

    assert ["loadfile", "http://relay/stream/abc", "replace", -1, "pause=yes"] in fake.commands


async def test_start_mpv_requires_binary(monkeypatch):
    monkeypatch.setattr("music_relay.playback.mpv.shutil.which", lambda name: None)

    with pytest.raises(MpvError):
        await start_mpv()


class SlowMpv:
    """Numbers playlist entries and reports ``file-loaded`` after a delay."""

    def __init__(self, *, load_delay: float = 0.05, stale_event: bool = False) -> None:
        self.load_delay = load_delay
        self.stale_event = stale_event
        self.entries = 0
        self.writer: asyncio.StreamWriter | None = None
        self.tasks: list[asyncio.Task] = []

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writer = writer
        while line := await reader.readline():
            request = json.loads(line)
            data = None
            if request["command"][0] == "loadfile":
                if self.stale_event:
                    self.send({"event": "file-loaded"})
                    self.send({"request_id": request["request_id"], "error": "success"})
                    await writer.drain()
                    continue
                self.entries += 1
                data = {"playlist_entry_id": self.entries}
            self.send({"request_id": request["request_id"], "error": "success", "data": data})
            if data is not None:
                self.send({"event": "start-file", "playlist_entry_id": data["playlist_entry_id"]})
                self.tasks.append(asyncio.create_task(self._loaded_later()))
            await writer.drain()
        writer.close()

    async def _loaded_later(self) -> None:
        await asyncio.sleep(self.load_delay)
        self.send({"event": "file-loaded"})

    def send(self, payload: dict) -> None:
        assert self.writer is not None
        self.writer.write((json.dumps(payload) + "\n").encode())


async def _serve(fake, tmp_path):
    path = str(tmp_path / "slow.sock")
    server = await asyncio.start_unix_server(fake.handle, path=path)
    return server, path


async def test_newer_selection_supersedes_pending_load(tmp_path):
    from music_relay.playback.engine import PlaybackEngine
    from music_relay.playback.state import QueueItem, TransportState

    fake = SlowMpv()
    server, path = await _serve(fake, tmp_path)
    sink = await MpvSink.connect(path, asyncio.Queue())
    engine = PlaybackEngine(sink, lambda track: f"http://relay/stream/{track.file_id}")
    first = QueueItem(id=1, file_id="a")
    second = QueueItem(id=2, file_id="b")

    async def select_second_later():
        await asyncio.sleep(0.01)
        return await engine.select_track(second)

    results = await asyncio.wait_for(
        asyncio.gather(engine.select_track(first), select_second_later()), 2
    )

    assert results == [False, True]
    assert engine.state.track == second
    assert engine.state.transport is TransportState.PLAYING

    await sink.close()
    for task in fake.tasks:
        task.cancel()
    server.close()
    await server.wait_closed()


async def test_file_loaded_before_reply_belongs_to_previous_file(tmp_path):
    fake = SlowMpv(stale_event=True)
    server, path = await _serve(fake, tmp_path)
    reader, writer = await asyncio.open_unix_connection(path)
    sink = MpvSink(reader, writer, asyncio.Queue(), command_timeout=0.2)

    with pytest.raises(MediaLoadError):
        await sink.load("http://relay/stream/abc")

    await sink.close()
    server.close()
    await server.wait_closed()
