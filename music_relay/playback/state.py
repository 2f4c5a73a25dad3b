"""Playback state, play queue, and the pure advance rules.

Everything here is free of I/O. The engine asks these functions what to do
next and then drives the media sink accordingly, which keeps queue policy
testable without a sink.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, NamedTuple

# previous() restarts the current track instead of going back once this much has played
RESTART_THRESHOLD_SECONDS = 3.0

DEFAULT_VOLUME = 80


class TransportState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


class RepeatMode(StrEnum):
    OFF = "off"
    ALL = "all"
    ONE = "one"

    def cycle(self) -> RepeatMode:
        """``off -> all -> one -> off``."""
        order = (RepeatMode.OFF, RepeatMode.ALL, RepeatMode.ONE)
        return order[(order.index(self) + 1) % len(order)]


@dataclass(frozen=True)
class QueueItem:
    """A track reference as the player sees it."""

    id: int
    file_id: str
    title: str = "Unknown Title"
    performer: str = "Unknown Artist"
    duration: int = 0
    topic_id: int | None = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> QueueItem:
        """Build from a ``TrackInfo`` JSON object."""
        return cls(
            id=int(data["id"]),
            file_id=str(data["file_id"]),
            title=data.get("title") or "Unknown Title",
            performer=data.get("performer") or "Unknown Artist",
            duration=int(data.get("duration") or 0),
            topic_id=data.get("topic_id"),
        )


@dataclass(frozen=True)
class PlayQueue:
    """Ordered tracks plus a cursor. Replaced wholesale, never edited in place."""

    items: tuple[QueueItem, ...] = ()
    cursor: int | None = None

    @classmethod
    def of(cls, tracks: Iterable[QueueItem], cursor: int | None = None) -> PlayQueue:
        items = tuple(tracks)
        if cursor is not None and not 0 <= cursor < len(items):
            raise IndexError(f"cursor {cursor} out of range for queue of {len(items)}")
        return cls(items=items, cursor=cursor)

    def __len__(self) -> int:
        return len(self.items)

    def index_of(self, track: QueueItem) -> int | None:
        for i, item in enumerate(self.items):
            if item.id == track.id:
                return i
        return None

    def at(self, cursor: int | None) -> PlayQueue:
        return replace(self, cursor=cursor)


@dataclass(frozen=True)
class PlaybackState:
    track: QueueItem | None = None
    transport: TransportState = TransportState.IDLE
    position: float = 0.0
    duration: float | None = None
    volume: int = DEFAULT_VOLUME
    shuffle: bool = False
    repeat: RepeatMode = RepeatMode.OFF


# ---------------------------------------------------------------------------
# Advance rules
# ---------------------------------------------------------------------------


class Advance(NamedTuple):
    """What the engine should do next.

    ``action`` is one of ``"select"`` (play ``queue[index]``), ``"restart"``
    (replay the current track from 0), ``"stop"`` (pause where we are) or
    ``"none"`` (nothing to do).
    """

    action: str
    index: int | None = None


NONE = Advance("none")
RESTART = Advance("restart")
STOP = Advance("stop")

Chooser = Callable[[int], int]


def _random_index(size: int) -> int:
    return random.randrange(size)


def _following_index(state: PlaybackState, queue: PlayQueue) -> Advance:
    """Sequential successor of the cursor, honouring repeat-all wrap-around."""
    nxt = 0 if queue.cursor is None else queue.cursor + 1
    if nxt < len(queue):
        return Advance("select", nxt)
    if state.repeat is RepeatMode.ALL:
        return Advance("select", 0)
    return STOP


def plan_after_end(
    state: PlaybackState, queue: PlayQueue, choose: Chooser = _random_index
) -> Advance:
    """Decide what follows a :class:`~music_relay.playback.events.TrackEnded`.

    Repeat-one restarts the track. Shuffle picks a uniformly random index,
    the current one included. Otherwise the next index is selected, wrapping
    to 0 under repeat-all and stopping at the end under repeat-off.
    """
    if state.track is None:
        return NONE
    if state.repeat is RepeatMode.ONE:
        return RESTART
    if not queue.items:
        return STOP
    if state.shuffle:
        return Advance("select", choose(len(queue)))
    return _following_index(state, queue)


def plan_next(state: PlaybackState, queue: PlayQueue, choose: Chooser = _random_index) -> Advance:
    """Manual skip: like :func:`plan_after_end` but repeat-one does not pin the track."""
    if not queue.items:
        return NONE
    if state.shuffle:
        return Advance("select", choose(len(queue)))
    advance = _following_index(state, queue)
    return NONE if advance is STOP else advance


def plan_previous(
    state: PlaybackState,
    queue: PlayQueue,
    threshold: float = RESTART_THRESHOLD_SECONDS,
) -> Advance:
    """Previous button.

    Past *threshold* seconds into the track it restarts the track. Otherwise
    it moves to the prior index, wrapping to the last index only under
    repeat-all; at the head of the queue without wrap it restarts.
    With the default threshold, 5 s in restarts the track and 1 s in moves back.
    """
    if not queue.items:
        return NONE
    if state.track is not None and state.position > threshold:
        return RESTART
    if queue.cursor is None:
        return Advance("select", 0)
    prev = queue.cursor - 1
    if prev >= 0:
        return Advance("select", prev)
    if state.repeat is RepeatMode.ALL:
        return Advance("select", len(queue) - 1)
    return RESTART if state.track is not None else NONE


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
