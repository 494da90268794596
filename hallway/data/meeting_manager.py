from typing import Any, Dict, List, Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.meeting import Meeting, MeetingParticipant
from ..services.errors import AccessDenied, NotFound, StaleOperation
from ..services.lifecycle import ROSTER_FROZEN_PHASES, MeetingPhase, parse_phase
from ..utils.identifiers import generate_meeting_id

MEETING_NAME_LIMIT = 200


class MeetingManager:
    """Manages meetings and who is registered for them."""

    def __init__(self, db: Session, logger=None):
        self.db = db
        self.logger = logger or (lambda _msg: None)

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        return self.db.get(Meeting, meeting_id)

    def require_meeting(self, meeting_id: str) -> Meeting:
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            raise NotFound(f"Meeting {meeting_id} not found.")
        return meeting

    def create_meeting(
        self,
        name: str,
        created_by: str,
        *,
        register_creator: bool = True,
    ) -> Meeting:
        cleaned = (name or "").strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Meeting name cannot be empty.")
        if len(cleaned) > MEETING_NAME_LIMIT:
            raise HTTPException(
                status_code=400,
                detail=f"Meeting name exceeds {MEETING_NAME_LIMIT} characters.",
            )

        meeting = Meeting(
            meeting_id=generate_meeting_id(self.db),
            name=cleaned,
            phase=MeetingPhase.SCHEDULED.value,
            round_number=1,
            created_by=created_by,
        )
        self.db.add(meeting)
        if register_creator:
            self.db.add(
                MeetingParticipant(
                    meeting_id=meeting.meeting_id,
                    participant_id=created_by,
                )
            )
        self.db.commit()
        self.db.refresh(meeting)
        self.logger(f"Created meeting {meeting.meeting_id} ({cleaned})")
        return meeting

    def get_registration(
        self, meeting_id: str, participant_id: str
    ) -> Optional[MeetingParticipant]:
        return self.db.get(
            MeetingParticipant,
            {"meeting_id": meeting_id, "participant_id": participant_id},
        )

    def register(self, meeting_id: str, participant_id: str) -> MeetingParticipant:
        self.require_meeting(meeting_id)
        registration = self.get_registration(meeting_id, participant_id)
        if registration is None:
            registration = MeetingParticipant(
                meeting_id=meeting_id,
                participant_id=participant_id,
            )
            self.db.add(registration)
            self.db.commit()
            self.db.refresh(registration)
        return registration

    def unregister(self, meeting_id: str, participant_id: str) -> None:
        meeting = self.require_meeting(meeting_id)
        registration = self.get_registration(meeting_id, participant_id)
        if registration is None:
            return
        if registration.checked_in and parse_phase(meeting.phase) in ROSTER_FROZEN_PHASES:
            raise StaleOperation(
                "You are part of this round's roster and cannot leave the meeting "
                "until it is resolved."
            )
        self.db.delete(registration)
        self.db.commit()

    def set_preference(
        self, meeting_id: str, participant_id: str, preference: int
    ) -> MeetingParticipant:
        self.require_meeting(meeting_id)
        registration = self.get_registration(meeting_id, participant_id)
        if registration is None:
            raise AccessDenied("Register for the meeting before scoring it.")
        registration.preference = int(preference)
        self.db.commit()
        self.db.refresh(registration)
        return registration

    def list_meetings(self, participant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Return every meeting, the caller's registered meetings first in order
        of their preference, the rest by id.
        """
        meetings = self.db.query(Meeting).order_by(Meeting.meeting_id).all()
        registrations: Dict[str, MeetingParticipant] = {}
        if participant_id:
            registrations = {
                row.meeting_id: row
                for row in self.db.query(MeetingParticipant)
                .filter(MeetingParticipant.participant_id == participant_id)
                .all()
            }

        def sort_key(meeting: Meeting):
            registration = registrations.get(meeting.meeting_id)
            if registration is None:
                return (1, 0, meeting.meeting_id)
            return (0, -int(registration.preference or 0), meeting.meeting_id)

        payload = []
        for meeting in sorted(meetings, key=sort_key):
            registration = registrations.get(meeting.meeting_id)
            payload.append(
                {
                    "meeting_id": meeting.meeting_id,
                    "name": meeting.name,
                    "phase": parse_phase(meeting.phase).value,
                    "round_number": meeting.round_number,
                    "registered": registration is not None,
                    "checked_in": bool(registration and registration.checked_in),
                    "preference": int(registration.preference) if registration else None,
                }
            )
        return payload

    def registered_meeting_ids(self, participant_id: str) -> List[str]:
        rows = (
            self.db.query(MeetingParticipant.meeting_id)
            .filter(MeetingParticipant.participant_id == participant_id)
            .order_by(
                MeetingParticipant.preference.desc(),
                MeetingParticipant.meeting_id.asc(),
            )
            .all()
        )
        return [meeting_id for (meeting_id,) in rows]


def get_meeting_manager(db: Session = Depends(get_db)) -> MeetingManager:
    """Dependency provider for MeetingManager."""
    return MeetingManager(db=db)
