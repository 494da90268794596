from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class BallotSubmitRequest(BaseModel):
    # Best first.
    ordered_entry_ids: List[str] = Field(default_factory=list)


class SlateEntryResponse(BaseModel):
    entry_id: str
    position: int
    contributor_id: str
    topic_id: Optional[int] = None
    label: str
    is_placeholder: bool = False


class ScoreRowResponse(BaseModel):
    entry_id: str
    label: str
    contributor_id: str
    topic_id: Optional[int] = None
    is_placeholder: bool = False
    score: int
    mean_rank: float
    first_place_count: int


class RankingResultResponse(BaseModel):
    cohort_id: str
    selected_entry_ids: List[str] = Field(default_factory=list)
    selected: List[ScoreRowResponse] = Field(default_factory=list)
    scores: List[ScoreRowResponse] = Field(default_factory=list)
    resolved_at: Optional[str] = None


class SlateResponse(BaseModel):
    cohort_id: str
    meeting_id: str
    round_number: int
    status: str
    members: List[str] = Field(default_factory=list)
    entries: List[SlateEntryResponse] = Field(default_factory=list)
    submitted_voters: List[str] = Field(default_factory=list)
    own_ballot: Optional[List[str]] = None
    result: Optional[RankingResultResponse] = None


class BallotReceiptResponse(BaseModel):
    cohort_id: str
    meeting_id: str
    voter_id: str
    ballots_received: int
    ballots_expected: int
    cohort_resolved: bool
    meeting_resolved: bool
    result: Optional[RankingResultResponse] = None
