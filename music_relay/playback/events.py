"""Events emitted by a media sink and consumed by the playback engine.

Sinks never call into the engine. They put events on the session's channel
and the engine handles them one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TrackEnded:
    """The sink reached the end of the current source."""


@dataclass(frozen=True)
class PositionChanged:
    position: float


@dataclass(frozen=True)
class DurationChanged:
    duration: float


MediaEvent = TrackEnded | PositionChanged | DurationChanged
