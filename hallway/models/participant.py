from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Participant(Base):
    __tablename__ = "participants"

    # Supplied by the session/auth service; trusted as-is.
    participant_id = Column(String(64), primary_key=True, index=True)
    display_name = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    topics = relationship(
        "Topic",
        back_populates="owner",
        cascade="all, delete-orphan",
        order_by="Topic.topic_id",
    )
    registrations = relationship(
        "MeetingParticipant",
        back_populates="participant",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"Participant(participant_id={self.participant_id!r})"
