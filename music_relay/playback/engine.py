"""Client-side playback engine.

States::

    idle ──select──▶ loading ──started──▶ playing ◀──toggle──▶ paused
                        │                     │
                        └──rejected/failed──▶ paused
                                              │
                              TrackEnded ─────┴──▶ loading (next) | paused (end)

All mutation happens on one event loop, from user calls or from events the
sink puts on the session channel. Selections are not cancelled. Each one
takes a new token, and a completion whose token is no longer current is
dropped so a slow load can never overwrite a newer selection.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from dataclasses import replace

from music_relay.playback.events import DurationChanged, MediaEvent, PositionChanged, TrackEnded
from music_relay.playback.sink import MediaLoadError, MediaSink, PlaybackRejectedError
from music_relay.playback.state import (
    RESTART_THRESHOLD_SECONDS,
    Advance,
    PlaybackState,
    PlayQueue,
    QueueItem,
    RepeatMode,
    TransportState,
    clamp,
    plan_after_end,
    plan_next,
    plan_previous,
)

logger = logging.getLogger(__name__)


class PlaybackEngine:
    """Sequences a :class:`PlayQueue` through a single media sink."""

    def __init__(
        self,
        sink: MediaSink,
        stream_url: Callable[[QueueItem], str],
        *,
        rng: random.Random | None = None,
        restart_threshold: float = RESTART_THRESHOLD_SECONDS,
    ) -> None:
        self._sink = sink
        self._stream_url = stream_url
        self._rng = rng or random.Random()
        self._restart_threshold = restart_threshold
        self._selection = 0
        self.state = PlaybackState()
        self.queue = PlayQueue()

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def set_queue(self, tracks: Iterable[QueueItem], cursor: int | None = None) -> None:
        """Replace the queue. The cursor follows the current track when present."""
        queue = PlayQueue.of(tracks, cursor)
        if cursor is None and self.state.track is not None:
            queue = queue.at(queue.index_of(self.state.track))
        self.queue = queue

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def select_track(self, track: QueueItem, index: int | None = None) -> bool:
        """Load and start *track*.

        Returns ``True`` when this selection reached ``playing``. ``False``
        means it was rejected, failed to load, or was superseded.
        """
        self._selection += 1
        token = self._selection

        if index is None:
            index = self.queue.index_of(track)
        self.queue = self.queue.at(index)
        self.state = replace(
            self.state,
            track=track,
            transport=TransportState.LOADING,
            position=0.0,
            duration=float(track.duration) if track.duration > 0 else None,
        )
        logger.info("Loading %r by %r", track.title, track.performer)

        try:
            await self._sink.load(self._stream_url(track))
            if token != self._selection:
                return False
            await self._sink.play()
        except (PlaybackRejectedError, MediaLoadError) as exc:
            if token == self._selection:
                logger.warning("Playback of %r did not start: %s", track.title, exc)
                self.state = replace(self.state, transport=TransportState.PAUSED)
            return False

        if token != self._selection:
            return False
        self.state = replace(self.state, transport=TransportState.PLAYING)
        return True

    async def select_index(self, index: int) -> bool:
        return await self.select_track(self.queue.items[index], index)

    async def toggle_play(self) -> TransportState:
        """``playing`` ⇄ ``paused``. No-op while idle or loading."""
        transport = self.state.transport
        if transport is TransportState.PLAYING:
            await self._sink.pause()
            self.state = replace(self.state, transport=TransportState.PAUSED)
        elif transport is TransportState.PAUSED:
            try:
                await self._sink.play()
            except PlaybackRejectedError as exc:
                logger.warning("Resume rejected: %s", exc)
            else:
                self.state = replace(self.state, transport=TransportState.PLAYING)
        return self.state.transport

    async def seek(self, percent: float) -> bool:
        """Jump to *percent* of the track. Ignored until the duration is known."""
        duration = self.state.duration
        if self.state.track is None or not duration:
            return False
        position = duration * clamp(percent, 0.0, 100.0) / 100.0
        await self._sink.seek(position)
        self.state = replace(self.state, position=position)
        return True

    async def set_volume(self, volume: float) -> int:
        level = int(round(clamp(volume, 0, 100)))
        await self._sink.set_volume(level)
        self.state = replace(self.state, volume=level)
        return level

    def toggle_shuffle(self) -> bool:
        self.state = replace(self.state, shuffle=not self.state.shuffle)
        return self.state.shuffle

    def cycle_repeat(self) -> RepeatMode:
        self.state = replace(self.state, repeat=self.state.repeat.cycle())
        return self.state.repeat

    async def next(self) -> None:
        await self._apply(plan_next(self.state, self.queue, self._rng.randrange))

    async def previous(self) -> None:
        await self._apply(plan_previous(self.state, self.queue, self._restart_threshold))

    # ------------------------------------------------------------------
    # Sink events
    # ------------------------------------------------------------------

    async def handle(self, event: MediaEvent) -> None:
        if isinstance(event, TrackEnded):
            await self._on_track_ended()
        elif isinstance(event, PositionChanged):
            self.state = replace(self.state, position=max(0.0, event.position))
        elif isinstance(event, DurationChanged):
            if event.duration > 0:
                self.state = replace(self.state, duration=event.duration)

    async def _on_track_ended(self) -> None:
        if self.state.transport is not TransportState.PLAYING:
            logger.debug("Ignoring end-of-track in state %s", self.state.transport)
            return
        await self._apply(plan_after_end(self.state, self.queue, self._rng.randrange))

    async def _apply(self, advance: Advance) -> None:
        if advance.action == "select" and advance.index is not None:
            await self.select_index(advance.index)
        elif advance.action == "restart":
            await self._restart()
        elif advance.action == "stop":
            logger.info("End of queue")
            self.state = replace(self.state, transport=TransportState.PAUSED)

    async def _restart(self) -> None:
        await self._sink.seek(0.0)
        self.state = replace(self.state, position=0.0)
        if self.state.transport is not TransportState.PLAYING:
            return
        try:
            await self._sink.play()
        except PlaybackRejectedError as exc:
            logger.warning("Restart rejected: %s", exc)
            self.state = replace(self.state, transport=TransportState.PAUSED)