from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TopicCreate(BaseModel):
    text: str = Field(..., min_length=1)
    preference: Optional[int] = None


class TopicPreferenceUpdate(BaseModel):
    preference: int


class TopicResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    topic_id: int
    owner_id: str
    text: str
    preference: int
    created_at: Optional[datetime] = None


class TopicListResponse(BaseModel):
    topics: List[TopicResponse] = Field(default_factory=list)
