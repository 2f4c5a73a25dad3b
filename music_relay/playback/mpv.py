"""mpv media sink over the JSON IPC socket.

mpv is started with ``--input-ipc-server=<path> --idle=yes`` and receives
stream URLs from the relay. Commands are JSON lines tagged with a
``request_id``; replies and unsolicited events share the same socket, so a
single reader task routes replies to waiting callers and translates events
onto the session channel.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any

from music_relay.playback.events import DurationChanged, MediaEvent, PositionChanged, TrackEnded
from music_relay.playback.sink import MediaLoadError, PlaybackRejectedError, SinkFactory

logger = logging.getLogger(__name__)

_OBSERVED = {1: "time-pos", 2: "duration"}


class MpvError(Exception):
    """mpv answered a command with an error status, or the socket died."""


@dataclass
class _PendingLoad:
    """A ``loadfile`` waiting for its ``file-loaded`` event.

    Events only count once mpv has replied to this load's command; anything
    earlier belongs to a previous file. When mpv reports a playlist entry id,
    events for other entries are ignored.
    """

    request_id: int
    waiter: asyncio.Future[None]
    armed: bool = False
    entry_id: int | None = None
    started: bool = False

    def owns(self, payload: dict[str, Any]) -> bool:
        entry = payload.get("playlist_entry_id")
        return self.entry_id is None or entry is None or entry == self.entry_id


def translate_mpv_event(payload: dict[str, Any]) -> MediaEvent | None:
    """Map one mpv IPC event object to a media event, or ``None`` to ignore it."""
    event = payload.get("event")
    if event == "end-file":
        # "stop" and "quit" come from loadfile-replace and shutdown, not the end of the track
        if payload.get("reason") == "eof":
            return TrackEnded()
        return None
    if event == "property-change":
        value = payload.get("data")
        if not isinstance(value, (int, float)):
            return None
        name = payload.get("name")
        if name == "time-pos":
            return PositionChanged(float(value))
        if name == "duration":
            return DurationChanged(float(value))
    return None


class MpvSink:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        events: asyncio.Queue[MediaEvent],
        *,
        command_timeout: float = 10.0,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._events = events
        self._command_timeout = command_timeout
        self._next_id = 0
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._load: _PendingLoad | None = None
        self._reader_task = asyncio.create_task(self._read_loop())

    @classmethod
    async def connect(cls, socket_path: str, events: asyncio.Queue[MediaEvent]) -> MpvSink:
        reader, writer = await asyncio.open_unix_connection(socket_path)
        sink = cls(reader, writer, events)
        for observe_id, name in _OBSERVED.items():
            await sink.command("observe_property", observe_id, name)
        logger.info("Connected to mpv at %s", socket_path)
        return sink

    def _send(self, args: tuple[Any, ...]) -> tuple[int, asyncio.Future[Any]]:
        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        line = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
        self._writer.write(line.encode("utf-8"))
        return request_id, future

    async def _reply(self, request_id: int, future: asyncio.Future[Any], name: str) -> Any:
        try:
            await self._writer.drain()
            return await asyncio.wait_for(future, self._command_timeout)
        except (ConnectionError, TimeoutError) as exc:
            raise MpvError(f"mpv command {name!r} failed: {exc}") from exc
        finally:
            self._pending.pop(request_id, None)

    async def command(self, *args: Any) -> Any:
        """Send one command and wait for its reply ``data``."""
        request_id, future = self._send(args)
        return await self._reply(request_id, future, args[0])

    # ------------------------------------------------------------------
    # MediaSink
    # ------------------------------------------------------------------

    async def load(self, url: str) -> None:
        previous = self._load
        if previous is not None and not previous.waiter.done():
            previous.waiter.set_exception(MpvError("superseded by a newer load"))

        args = ("loadfile", url, "replace", -1, "pause=yes")
        request_id, future = self._send(args)
        pending = _PendingLoad(request_id, asyncio.get_running_loop().create_future())
        self._load = pending
        try:
            await self._reply(request_id, future, args[0])
            await asyncio.wait_for(pending.waiter, self._command_timeout)
        except (MpvError, TimeoutError) as exc:
            raise MediaLoadError(f"mpv could not open {url}: {exc}") from exc
        finally:
            if self._load is pending:
                self._load = None

    async def play(self) -> None:
        try:
            await self.command("set_property", "pause", False)
        except MpvError as exc:
            raise PlaybackRejectedError(str(exc)) from exc

    async def pause(self) -> None:
        await self.command("set_property", "pause", True)

    async def seek(self, position: float) -> None:
        await self.command("seek", position, "absolute")

    async def set_volume(self, volume: int) -> None:
        await self.command("set_property", "volume", volume)

    async def close(self) -> None:
        self._reader_task.cancel()
        try:
            await self._reader_task
        except asyncio.CancelledError:
            pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError as exc:
            logger.debug("mpv socket closed with error: %s", exc)

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            while line := await self._reader.readline():
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed mpv line: %r", line)
                    continue
                self._dispatch(payload)
        finally:
            error = MpvError("mpv connection closed")
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(error)
            if self._load is not None and not self._load.waiter.done():
                self._load.waiter.set_exception(error)

    def _dispatch(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("request_id")
        if request_id is not None and "event" not in payload:
            future = self._pending.get(request_id)
            if future is None or future.done():
                return
            if payload.get("error") == "success":
                future.set_result(payload.get("data"))
                self._arm_load(request_id, payload.get("data"))
            else:
                future.set_exception(MpvError(str(payload.get("error"))))
            return

        self._track_load(payload)
        event = translate_mpv_event(payload)
        if event is not None:
            self._events.put_nowait(event)

    def _arm_load(self, request_id: int, data: Any) -> None:
        pending = self._load
        if pending is None or pending.request_id != request_id:
            return
        pending.armed = True
        if isinstance(data, dict) and isinstance(data.get("playlist_entry_id"), int):
            pending.entry_id = data["playlist_entry_id"]

    def _track_load(self, payload: dict[str, Any]) -> None:
        pending = self._load
        if pending is None or not pending.armed or pending.waiter.done():
            return
        name = payload.get("event")
        if name == "start-file":
            pending.started = pending.owns(payload)
        elif name == "file-loaded":
            # file-loaded carries no entry id; it follows the start-file of its own entry
            if pending.started or pending.entry_id is None:
                pending.waiter.set_result(None)
        elif name == "end-file" and payload.get("reason") == "error" and pending.owns(payload):
            error = str(payload.get("file_error", "load error"))
            pending.waiter.set_exception(MpvError(error))


def mpv_sink_factory(socket_path: str) -> SinkFactory:
    """Sink factory connecting to an already running mpv."""

    async def _factory(events: asyncio.Queue[MediaEvent]) -> MpvSink:
        return await MpvSink.connect(socket_path, events)

    return _factory


async def start_mpv(socket_path: str | None = None, *, startup_timeout: float = 5.0):
    """Spawn a headless mpv listening on *socket_path*.

    Returns ``(process, socket_path)``. The caller terminates the process.
    """
    binary = shutil.which("mpv")
    if binary is None:
        raise MpvError("mpv executable not found on PATH")
    if socket_path is None:
        socket_path = os.path.join(tempfile.gettempdir(), f"music-relay-mpv-{os.getpid()}")
    if os.path.exists(socket_path):
        os.unlink(socket_path)

    process = await asyncio.create_subprocess_exec(
        binary,
        "--idle=yes",
        "--no-video",
        "--no-terminal",
        f"--input-ipc-server={socket_path}",
    )
    deadline = asyncio.get_running_loop().time() + startup_timeout
    while not os.path.exists(socket_path):
        if process.returncode is not None:
            raise MpvError(f"mpv exited with status {process.returncode}")
        if asyncio.get_running_loop().time() > deadline:
            process.terminate()
            raise MpvError(f"mpv socket not created after {startup_timeout}s")
        await asyncio.sleep(0.05)
    logger.info("Started mpv (pid %s) with socket %s", process.pid, socket_path)
    return process, socket_path
