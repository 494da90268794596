from .meeting import (
    MeetingCreate,
    MeetingSummary,
    MeetingSnapshot,
    MeetingPreferenceUpdate,
)
from .topic import TopicCreate, TopicResponse, TopicPreferenceUpdate
from .ranking import (
    BallotSubmitRequest,
    BallotReceiptResponse,
    RankingResultResponse,
    SlateResponse,
)

__all__ = [
    "MeetingCreate",
    "MeetingSummary",
    "MeetingSnapshot",
    "MeetingPreferenceUpdate",
    "TopicCreate",
    "TopicResponse",
    "TopicPreferenceUpdate",
    "BallotSubmitRequest",
    "BallotReceiptResponse",
    "RankingResultResponse",
    "SlateResponse",
]
