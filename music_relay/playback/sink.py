"""Media sink contract.

A sink is whatever actually produces sound: an mpv process, a test double,
a browser bridge. The engine owns exactly one sink per session and is the
only caller of these methods. Sinks report progress and end-of-track by
putting :mod:`~music_relay.playback.events` on the channel they were built
with.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

from music_relay.playback.events import MediaEvent


class PlaybackRejectedError(Exception):
    """The sink refused to start playback (e.g. autoplay policy)."""


class MediaLoadError(Exception):
    """The sink could not open the source."""


class MediaSink(Protocol):
    async def load(self, url: str) -> None:
        """Replace the current source with *url* without starting playback."""
        ...

    async def play(self) -> None:
        """Start or resume playback.

        Raises:
            PlaybackRejectedError: playback was refused.
        """
        ...

    async def pause(self) -> None: ...

    async def seek(self, position: float) -> None:
        """Jump to *position* seconds from the start."""
        ...

    async def set_volume(self, volume: int) -> None:
        """Set output volume on a 0-100 scale."""
        ...

    async def close(self) -> None:
        """Release the underlying resource. The sink is unusable afterwards."""
        ...


# Builds and connects a sink that reports into the given channel
SinkFactory = Callable[["asyncio.Queue[MediaEvent]"], Awaitable[MediaSink]]
