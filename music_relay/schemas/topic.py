from pydantic import BaseModel


class TopicInfo(BaseModel):
    id: int
    name: str
    track_count: int = 0
