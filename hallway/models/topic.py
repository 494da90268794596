from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Topic(Base):
    __tablename__ = "topics"

    topic_id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(
        String(64),
        ForeignKey("participants.participant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text = Column(String(500), nullable=False)
    # Owner's own ordering of their topics; higher is preferred.
    preference = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("Participant", back_populates="topics")

    def __repr__(self) -> str:
        return (
            f"Topic(topic_id={self.topic_id!r}, owner_id={self.owner_id!r}, "
            f"preference={self.preference!r})"
        )
