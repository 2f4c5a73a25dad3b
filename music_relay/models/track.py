from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from music_relay.models import Base


class Track(Base):
    __tablename__ = "tracks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # File identity
    file_id: Mapped[str] = mapped_column(Text, nullable=False)
    file_unique_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)

    # Core metadata
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    performer: Mapped[str] = mapped_column(String(500), nullable=False)

    # Audio properties
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="audio/mpeg")
    thumbnail_file_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Source location
    topic_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    message_id: Mapped[int] = mapped_column(Integer, nullable=False)
    chat_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    date: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamps
    indexed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_tracks_topic_id", "topic_id"),
        Index("ix_tracks_performer_title", "performer", "title"),
        Index("ix_tracks_date", "date"),
    )
