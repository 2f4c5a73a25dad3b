"""Extract track candidates and topics from Telegram message payloads."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from music_relay.catalog.store import (
    DEFAULT_MIME_TYPE,
    UNKNOWN_PERFORMER,
    UNKNOWN_TITLE,
    TrackCandidate,
)


@dataclass(frozen=True)
class TopicInfo:
    id: int
    name: str


def fallback_topic_name(topic_id: int) -> str:
    return f"Topic {topic_id}"


def message_from_update(update: dict[str, Any]) -> dict[str, Any] | None:
    """Return the message carried by an update (group message or channel post)."""
    return update.get("message") or update.get("channel_post")


def message_topic_id(message: dict[str, Any]) -> int | None:
    thread_id = message.get("message_thread_id")
    return int(thread_id) if thread_id else None


def message_date(message: dict[str, Any]) -> int:
    """Original post time of *message*, looking through forwards when present."""
    origin = message.get("forward_origin") or {}
    for value in (origin.get("date"), message.get("forward_date"), message.get("date")):
        if value:
            return int(value)
    return int(time.time())


def track_candidate_from_message(
    message: dict[str, Any],
    *,
    message_id: int | None = None,
    chat_id: int | None = None,
    topic_id: int | None = None,
    use_message_topic: bool = True,
) -> TrackCandidate | None:
    """Build a :class:`TrackCandidate` from a message carrying ``audio``.

    Args:
        message: Telegram ``Message`` object.
        message_id: Override for the source message id (the historical
            scanner sees forwarded copies whose own id is meaningless).
        chat_id: Override for the source chat id.
        topic_id: Explicit topic id; used when *use_message_topic* is false.
        use_message_topic: Read the topic from ``message_thread_id``.

    Returns:
        The candidate, or ``None`` when the message has no audio.
    """
    audio = message.get("audio")
    if not audio or not audio.get("file_unique_id") or not audio.get("file_id"):
        return None

    thumbnail = audio.get("thumbnail") or audio.get("thumb") or {}

    return TrackCandidate(
        file_id=audio["file_id"],
        file_unique_id=audio["file_unique_id"],
        title=audio.get("title") or audio.get("file_name") or UNKNOWN_TITLE,
        performer=audio.get("performer") or UNKNOWN_PERFORMER,
        duration=int(audio.get("duration") or 0),
        file_size=int(audio.get("file_size") or 0),
        mime_type=audio.get("mime_type") or DEFAULT_MIME_TYPE,
        topic_id=message_topic_id(message) if use_message_topic else topic_id,
        message_id=message_id if message_id is not None else int(message["message_id"]),
        chat_id=chat_id if chat_id is not None else int(message["chat"]["id"]),
        date=message_date(message),
        thumbnail_file_id=thumbnail.get("file_id"),
    )


def created_topic(message: dict[str, Any]) -> TopicInfo | None:
    """Topic announced by a ``forum_topic_created`` service message."""
    created = message.get("forum_topic_created")
    if not created:
        return None
    topic_id = message.get("message_thread_id") or message.get("message_id")
    name = created.get("name") or fallback_topic_name(int(topic_id))
    return TopicInfo(id=int(topic_id), name=name)


def referenced_topic(message: dict[str, Any]) -> TopicInfo | None:
    """Topic a regular message was posted into, with the best name available.

    Messages inside a forum topic reply to the topic's creation message, which
    carries the real name. Without it the name is synthesized.
    """
    topic_id = message_topic_id(message)
    if topic_id is None:
        return None
    parent = message.get("reply_to_message") or {}
    name = (parent.get("forum_topic_created") or {}).get("name")
    return TopicInfo(id=topic_id, name=name or fallback_topic_name(topic_id))
