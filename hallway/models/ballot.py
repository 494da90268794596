from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class BallotEntry(Base):
    """One voter's rank for one slate entry; a ballot is nine of these."""

    __tablename__ = "ballot_entries"
    __table_args__ = (
        UniqueConstraint(
            "cohort_id", "voter_id", "entry_id", name="uq_ballot_entry_vote"
        ),
        UniqueConstraint(
            "cohort_id", "voter_id", "rank_position", name="uq_ballot_entry_rank"
        ),
    )

    ballot_entry_id = Column(Integer, primary_key=True, autoincrement=True)
    cohort_id = Column(
        String(40),
        ForeignKey("cohorts.cohort_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter_id = Column(String(64), nullable=False, index=True)
    entry_id = Column(
        String(48),
        ForeignKey("slate_entries.entry_id", ondelete="CASCADE"),
        nullable=False,
    )
    rank_position = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RankingResultRecord(Base):
    __tablename__ = "ranking_results"

    cohort_id = Column(
        String(40),
        ForeignKey("cohorts.cohort_id", ondelete="CASCADE"),
        primary_key=True,
    )
    selected_entry_ids = Column(JSON, nullable=False, default=list)
    scores = Column(JSON, nullable=False, default=list)
    resolved_at = Column(DateTime(timezone=True), server_default=func.now())

    cohort = relationship("Cohort", back_populates="result")
