from typing import Optional

from pydantic import BaseModel, Field


class PurgeRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=10000)


class PurgeResponse(BaseModel):
    success: bool
    sessions: int = 0
    events: int = 0
