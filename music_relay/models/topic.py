from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from music_relay.models import Base


class Topic(Base):
    __tablename__ = "topics"

    # Telegram forum message_thread_id, not locally assigned
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
