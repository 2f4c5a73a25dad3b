from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


from music_relay.models.topic import Topic  # noqa: E402
from music_relay.models.track import Track  # noqa: E402

__all__ = ["Base", "Topic", "Track"]
