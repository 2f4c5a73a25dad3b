from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    version: str
    database: Literal["ok", "unavailable"]
    streaming: Literal["configured", "disabled"]


class VersionResponse(BaseModel):
    name: str
    version: str
    git_sha: str
    build_time: str
