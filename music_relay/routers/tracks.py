"""Catalog endpoints: paginated track listing, track detail, and topics."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from music_relay.db.engine import get_db
from music_relay.models.topic import Topic
from music_relay.models.track import Track
from music_relay.schemas.errors import ErrorDetail, ErrorResponse
from music_relay.schemas.pagination import PaginatedResponse, PaginationMeta
from music_relay.schemas.topic import TopicInfo
from music_relay.schemas.track import TrackDetail, TrackInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tracks"])


def _track_to_info(track: Track) -> TrackInfo:
    """Map a Track ORM model to a TrackInfo schema."""
    return TrackInfo(
        id=track.id,
        file_id=track.file_id,
        title=track.title,
        performer=track.performer,
        duration=track.duration,
        topic_id=track.topic_id,
        date=track.date,
    )


def _track_to_detail(track: Track) -> TrackDetail:
    """Map a Track ORM model to a TrackDetail schema."""
    return TrackDetail(
        id=track.id,
        file_id=track.file_id,
        title=track.title,
        performer=track.performer,
        duration=track.duration,
        topic_id=track.topic_id,
        date=track.date,
        file_unique_id=track.file_unique_id,
        file_size=track.file_size,
        mime_type=track.mime_type,
        message_id=track.message_id,
        chat_id=track.chat_id,
        thumbnail_file_id=track.thumbnail_file_id,
        indexed_at=track.indexed_at,
    )


@router.get(
    "/tracks",
    response_model=PaginatedResponse[TrackInfo],
    responses={422: {"description": "Validation error"}},
)
async def list_tracks(
    page: int = Query(default=1),
    pageSize: int = Query(default=50, alias="pageSize"),  # noqa: N803
    q: str | None = Query(default=None),
    topic: int | None = Query(default=None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PaginatedResponse[TrackInfo]:
    """Return tracks newest first, optionally filtered by topic and title/performer search."""
    base_query = select(Track)

    if topic is not None:
        base_query = base_query.where(Track.topic_id == topic)

    if q:
        escaped = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        base_query = base_query.where(
            or_(
                Track.title.ilike(pattern, escape="\\"),
                Track.performer.ilike(pattern, escape="\\"),
            )
        )

    count_query = select(func.count()).select_from(base_query.subquery())
    total_items_result = await db.execute(count_query)
    total_items: int = total_items_result.scalar_one()

    # Out-of-range page and pageSize are clamped, not rejected
    meta = PaginationMeta.for_page(page, pageSize, total_items)

    data_query = (
        base_query.order_by(Track.date.desc(), Track.id.desc())
        .offset(meta.offset)
        .limit(meta.page_size)
    )
    result = await db.execute(data_query)
    tracks = result.scalars().all()

    return PaginatedResponse[TrackInfo](
        data=[_track_to_info(t) for t in tracks],
        pagination=meta,
    )


@router.get(
    "/tracks/{track_id}",
    response_model=TrackDetail,
    responses={
        404: {"description": "Track not found", "model": ErrorResponse},
        422: {"description": "Validation error"},
    },
)
async def get_track(
    track_id: int,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> TrackDetail | JSONResponse:
    """Return full detail for a single track."""
    track = await db.get(Track, track_id)

    if track is None:
        error_body = ErrorResponse(
            error=ErrorDetail(
                code="NOT_FOUND",
                message=f"No track found with id {track_id}",
            )
        )
        return JSONResponse(
            status_code=404,
            content=error_body.model_dump(),
        )

    return _track_to_detail(track)


@router.get("/topics", response_model=list[TopicInfo])
async def list_topics(
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> list[TopicInfo]:
    """Return every known topic with its track count, alphabetically."""
    counts = (
        select(Track.topic_id, func.count(Track.id).label("track_count"))
        .where(Track.topic_id.isnot(None))
        .group_by(Track.topic_id)
        .subquery()
    )
    query = (
        select(Topic.id, Topic.name, func.coalesce(counts.c.track_count, 0))
        .outerjoin(counts, counts.c.topic_id == Topic.id)
        .order_by(Topic.name)
    )
    result = await db.execute(query)
    return [
        TopicInfo(id=topic_id, name=name, track_count=count) for topic_id, name, count in result
    ]
