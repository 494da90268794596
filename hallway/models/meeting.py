from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Meeting(Base):
    __tablename__ = "meetings"

    meeting_id = Column(String(20), primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    # One of MeetingPhase; only changed through services.lifecycle.advance().
    phase = Column(String(32), nullable=False, default="scheduled")
    round_number = Column(Integer, nullable=False, default=1)
    created_by = Column(
        String(64),
        ForeignKey("participants.participant_id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    registrations = relationship(
        "MeetingParticipant",
        back_populates="meeting",
        cascade="all, delete-orphan",
        order_by="MeetingParticipant.participant_id",
    )
    cohorts = relationship(
        "Cohort",
        back_populates="meeting",
        cascade="all, delete-orphan",
        order_by="Cohort.cohort_id",
    )

    def __repr__(self) -> str:
        return (
            f"Meeting(meeting_id={self.meeting_id!r}, phase={self.phase!r}, "
            f"round_number={self.round_number!r})"
        )


class MeetingParticipant(Base):
    """A participant's registration for a meeting, plus per-round check-in state."""

    __tablename__ = "meeting_participants"

    meeting_id = Column(
        String(20),
        ForeignKey("meetings.meeting_id", ondelete="CASCADE"),
        primary_key=True,
    )
    participant_id = Column(
        String(64),
        ForeignKey("participants.participant_id", ondelete="CASCADE"),
        primary_key=True,
    )
    # Participant's score for the meeting itself; higher is preferred.
    preference = Column(Integer, nullable=False, default=0)
    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_round = Column(Integer, nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    # Round in which this participant was left over by the partition.
    deferred_round = Column(Integer, nullable=True)
    registered_at = Column(DateTime(timezone=True), server_default=func.now())

    meeting = relationship("Meeting", back_populates="registrations")
    participant = relationship("Participant", back_populates="registrations")
