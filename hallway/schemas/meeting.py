from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from hallway.services.lifecycle import MeetingPhase


class MeetingCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    register_creator: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


class MeetingSummary(BaseModel):
    meeting_id: str
    name: str
    phase: MeetingPhase
    round_number: int
    registered: bool = False
    checked_in: bool = False
    preference: Optional[int] = None


class MeetingPreferenceUpdate(BaseModel):
    preference: int = Field(..., ge=-1000, le=1000)


class RegisteredMeetingsResponse(BaseModel):
    meetings: List[str] = Field(default_factory=list)


class SelectedTopic(BaseModel):
    entry_id: str
    label: str
    score: int


class CohortSnapshot(BaseModel):
    cohort_id: str
    status: str
    members: List[str] = Field(default_factory=list)
    ballots_received: int = 0
    selected: List[SelectedTopic] = Field(default_factory=list)


class MeetingSnapshot(BaseModel):
    meeting_id: str
    name: str
    phase: MeetingPhase
    round_number: int
    registered: List[str] = Field(default_factory=list)
    checked_in: List[str] = Field(default_factory=list)
    deferred: List[str] = Field(default_factory=list)
    # Checked-in participants left out of formation for holding too few topics.
    excluded: List[str] = Field(default_factory=list)
    cohorts: List[CohortSnapshot] = Field(default_factory=list)
