from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.participant import Participant


class ParticipantManager:
    """Keeps a local record for every identity the session service vouches for."""

    def __init__(self, db: Session):
        self.db = db

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return self.db.get(Participant, participant_id)

    def ensure_participant(
        self, participant_id: str, display_name: Optional[str] = None
    ) -> Participant:
        participant = self.get_participant(participant_id)
        if participant is None:
            participant = Participant(
                participant_id=participant_id,
                display_name=(display_name or "").strip() or None,
            )
            self.db.add(participant)
            self.db.commit()
            self.db.refresh(participant)
        elif display_name and display_name.strip() != participant.display_name:
            participant.display_name = display_name.strip()
            self.db.commit()
        return participant


def get_participant_manager(db: Session = Depends(get_db)) -> ParticipantManager:
    """Dependency provider for ParticipantManager."""
    return ParticipantManager(db=db)
