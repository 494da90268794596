from typing import List, Optional

from fastapi import Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config.loader import get_topic_limits
from ..database import get_db
from ..models.cohort import Cohort, SlateEntry
from ..models.topic import Topic
from ..services.errors import AccessDenied, NotFound, TopicInUse
from ..services.lifecycle import CohortStatus


class TopicManager:
    """Manages the topics a participant nominates for discussion."""

    def __init__(self, db: Session):
        self.db = db

    def list_topics(self, owner_id: str) -> List[Topic]:
        """Return the owner's topics, most preferred first."""
        return (
            self.db.query(Topic)
            .filter(Topic.owner_id == owner_id)
            .order_by(Topic.preference.desc(), Topic.topic_id.asc())
            .all()
        )

    def count_topics(self, owner_id: str) -> int:
        value = (
            self.db.query(func.count(Topic.topic_id))
            .filter(Topic.owner_id == owner_id)
            .scalar()
        )
        return int(value or 0)

    def create_topic(
        self, owner_id: str, text: str, preference: Optional[int] = None
    ) -> Topic:
        limits = get_topic_limits()
        cleaned = (text or "").strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Topic text cannot be empty.")
        if len(cleaned) > limits["label_character_limit"]:
            raise HTTPException(
                status_code=400,
                detail=(
                    "Topic text exceeds the limit of "
                    f"{limits['label_character_limit']} characters."
                ),
            )
        if self.count_topics(owner_id) >= limits["max_topics_per_participant"]:
            raise HTTPException(
                status_code=400,
                detail=(
                    "Topic limit reached "
                    f"({limits['max_topics_per_participant']} per participant)."
                ),
            )

        if preference is None:
            # New topics go to the bottom of the owner's list.
            lowest = (
                self.db.query(func.min(Topic.preference))
                .filter(Topic.owner_id == owner_id)
                .scalar()
            )
            preference = 0 if lowest is None else int(lowest) - 1

        topic = Topic(owner_id=owner_id, text=cleaned, preference=int(preference))
        self.db.add(topic)
        self.db.commit()
        self.db.refresh(topic)
        return topic

    def _owned_topic(self, topic_id: int, owner_id: str) -> Topic:
        topic = self.db.get(Topic, topic_id)
        if topic is None:
            raise NotFound(f"Topic {topic_id} not found.")
        if topic.owner_id != owner_id:
            raise AccessDenied("Only the owner can change this topic.")
        return topic

    def set_preference(self, topic_id: int, owner_id: str, preference: int) -> Topic:
        topic = self._owned_topic(topic_id, owner_id)
        topic.preference = int(preference)
        self.db.commit()
        self.db.refresh(topic)
        return topic

    def is_in_active_round(self, topic_id: int) -> bool:
        """True while the topic sits on the slate of an unresolved cohort."""
        hit = (
            self.db.query(SlateEntry.entry_id)
            .join(Cohort, Cohort.cohort_id == SlateEntry.cohort_id)
            .filter(
                SlateEntry.topic_id == topic_id,
                Cohort.status != CohortStatus.RESOLVED.value,
            )
            .first()
        )
        return hit is not None

    def delete_topic(self, topic_id: int, owner_id: str) -> None:
        topic = self._owned_topic(topic_id, owner_id)
        if self.is_in_active_round(topic_id):
            raise TopicInUse(
                f"Topic {topic_id} is on a slate that is still being ranked."
            )
        self.db.query(SlateEntry).filter(SlateEntry.topic_id == topic_id).update(
            {SlateEntry.topic_id: None}, synchronize_session=False
        )
        self.db.delete(topic)
        self.db.commit()


def get_topic_manager(db: Session = Depends(get_db)) -> TopicManager:
    """Dependency provider for TopicManager."""
    return TopicManager(db=db)
