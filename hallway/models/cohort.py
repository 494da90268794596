from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Cohort(Base):
    __tablename__ = "cohorts"

    cohort_id = Column(String(40), primary_key=True, index=True)
    meeting_id = Column(
        String(20),
        ForeignKey("meetings.meeting_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    round_number = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="collecting")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    meeting = relationship("Meeting", back_populates="cohorts")
    members = relationship(
        "CohortMember",
        back_populates="cohort",
        cascade="all, delete-orphan",
        order_by="CohortMember.seat",
    )
    slate = relationship(
        "SlateEntry",
        back_populates="cohort",
        cascade="all, delete-orphan",
        order_by="SlateEntry.position",
    )
    result = relationship(
        "RankingResultRecord",
        back_populates="cohort",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def member_ids(self):
        return [member.participant_id for member in self.members]

    def __repr__(self) -> str:
        return f"Cohort(cohort_id={self.cohort_id!r}, status={self.status!r})"


class CohortMember(Base):
    __tablename__ = "cohort_members"
    __table_args__ = (
        UniqueConstraint(
            "meeting_id",
            "round_number",
            "participant_id",
            name="uq_cohort_member_round",
        ),
    )

    cohort_id = Column(
        String(40),
        ForeignKey("cohorts.cohort_id", ondelete="CASCADE"),
        primary_key=True,
    )
    participant_id = Column(
        String(64),
        ForeignKey("participants.participant_id", ondelete="CASCADE"),
        primary_key=True,
    )
    meeting_id = Column(String(20), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    seat = Column(Integer, nullable=False)

    cohort = relationship("Cohort", back_populates="members")


class SlateEntry(Base):
    __tablename__ = "slate_entries"
    __table_args__ = (
        UniqueConstraint("cohort_id", "position", name="uq_slate_entry_position"),
    )

    entry_id = Column(String(48), primary_key=True)
    cohort_id = Column(
        String(40),
        ForeignKey("cohorts.cohort_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    contributor_id = Column(String(64), nullable=False)
    topic_id = Column(
        Integer,
        ForeignKey("topics.topic_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Copied from the topic so the slate and its tie-breaks survive later
    # topic deletion, which clears topic_id.
    source_topic_id = Column(Integer, nullable=True)
    label = Column(String(500), nullable=False)
    is_placeholder = Column(Boolean, nullable=False, default=False)

    cohort = relationship("Cohort", back_populates="slate")
