# Import models to make them accessible via hallway.models
# and ensure they are registered with SQLAlchemy's Base metadata
from .participant import Participant
from .topic import Topic
from .meeting import Meeting, MeetingParticipant
from .cohort import Cohort, CohortMember, SlateEntry
from .ballot import BallotEntry, RankingResultRecord

__all__ = [
    "Participant",
    "Topic",
    "Meeting",
    "MeetingParticipant",
    "Cohort",
    "CohortMember",
    "SlateEntry",
    "BallotEntry",
    "RankingResultRecord",
]
