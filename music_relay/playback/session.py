"""Per-listener playback session.

A session owns the media sink, the event channel, and the engine. The sink is
acquired on entry and released on exit; nothing is shared between sessions.

    async with PlaybackSession(mpv_sink_factory(socket_path), base_url) as session:
        session.engine.set_queue(tracks)
        await session.engine.select_index(0)
        await session.run_until_idle()
"""

from __future__ import annotations

import asyncio
import logging
import random
from types import TracebackType
from urllib.parse import quote

from music_relay.playback.engine import PlaybackEngine
from music_relay.playback.events import MediaEvent
from music_relay.playback.sink import MediaSink, SinkFactory
from music_relay.playback.state import QueueItem, TransportState

logger = logging.getLogger(__name__)


def stream_url_builder(base_url: str):
    """Return a function mapping a queue item to its ``/stream/{file_id}`` URL."""
    base = base_url.rstrip("/")

    def _url(track: QueueItem) -> str:
        return f"{base}/stream/{quote(track.file_id, safe='')}"

    return _url


class PlaybackSession:
    def __init__(
        self,
        sink_factory: SinkFactory,
        stream_base_url: str,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._sink_factory = sink_factory
        self._stream_url = stream_url_builder(stream_base_url)
        self._rng = rng
        self.events: asyncio.Queue[MediaEvent] = asyncio.Queue()
        self._sink: MediaSink | None = None
        self._engine: PlaybackEngine | None = None

    @property
    def engine(self) -> PlaybackEngine:
        if self._engine is None:
            raise RuntimeError("Playback session is not open")
        return self._engine

    async def __aenter__(self) -> PlaybackSession:
        self._sink = await self._sink_factory(self.events)
        self._engine = PlaybackEngine(self._sink, self._stream_url, rng=self._rng)
        await self._sink.set_volume(self._engine.state.volume)
        logger.debug("Playback session opened")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        sink, self._sink, self._engine = self._sink, None, None
        if sink is not None:
            await sink.close()
        logger.debug("Playback session closed")

    async def pump(self) -> MediaEvent:
        """Deliver the next sink event to the engine and return it."""
        event = await self.events.get()
        try:
            await self.engine.handle(event)
        finally:
            self.events.task_done()
        return event

    async def drain(self) -> int:
        """Deliver every event already queued. Returns how many were handled."""
        handled = 0
        while not self.events.empty():
            await self.pump()
            handled += 1
        return handled

    async def run(self) -> None:
        """Deliver events until the surrounding task is cancelled."""
        while True:
            await self.pump()

    async def run_until_idle(self) -> None:
        """Deliver events until playback stops (end of queue or pause)."""
        while self.engine.state.transport in (TransportState.PLAYING, TransportState.LOADING):
            await self.pump()
