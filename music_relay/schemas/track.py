from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class TrackInfo(BaseModel):
    """Track metadata returned by the catalog listing."""

    id: int
    file_id: str
    title: str
    performer: str
    duration: int
    topic_id: int | None = None
    date: int


class TrackDetail(TrackInfo):
    """Full track detail including file and source information."""

    file_unique_id: str
    file_size: int
    mime_type: str
    message_id: int
    chat_id: int
    thumbnail_file_id: str | None = None
    indexed_at: datetime | None = None
