from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from hallway.config.loader import UNDERSIZED_TOPICS_PAD, UNDERSIZED_TOPICS_REJECT

from .errors import IncompleteTopicSlate

TOPICS_PER_MEMBER = 3
PLACEHOLDER_LABEL = "(no topic)"


@dataclass(frozen=True)
class TopicCandidate:
    topic_id: int
    text: str
    preference: int = 0


@dataclass(frozen=True)
class SlateItem:
    entry_id: str
    position: int
    contributor_id: str
    label: str
    topic_id: Optional[int] = None
    is_placeholder: bool = False


def entry_identifier(cohort_id: str, position: int) -> str:
    return f"{cohort_id}-S{position + 1}"


def top_topics(
    topics: Sequence[TopicCandidate], count: int = TOPICS_PER_MEMBER
) -> List[TopicCandidate]:
    """Return the owner's most preferred topics, lowest id first on ties."""
    ordered = sorted(topics, key=lambda topic: (-int(topic.preference), topic.topic_id))
    return ordered[:count]


class SlateAssembler:
    def __init__(self, undersized_policy: str = UNDERSIZED_TOPICS_PAD) -> None:
        if undersized_policy not in {UNDERSIZED_TOPICS_PAD, UNDERSIZED_TOPICS_REJECT}:
            raise ValueError(f"Unknown undersized topic policy: {undersized_policy!r}")
        self.undersized_policy = undersized_policy

    def assemble(
        self,
        cohort_id: str,
        member_ids: Sequence[str],
        topics_by_member: Mapping[str, Sequence[TopicCandidate]],
    ) -> Tuple[SlateItem, ...]:
        """
        Build the cohort's slate: three entries per member in seat order.

        Identical topic text from different members stays as separate entries.
        Members short of topics are padded with placeholders or rejected
        depending on the configured policy.
        """
        entries: List[SlateItem] = []
        for member_id in member_ids:
            chosen = top_topics(topics_by_member.get(member_id, ()))
            if len(chosen) < TOPICS_PER_MEMBER and (
                self.undersized_policy == UNDERSIZED_TOPICS_REJECT
            ):
                raise IncompleteTopicSlate(member_id, len(chosen), TOPICS_PER_MEMBER)

            for topic in chosen:
                position = len(entries)
                entries.append(
                    SlateItem(
                        entry_id=entry_identifier(cohort_id, position),
                        position=position,
                        contributor_id=member_id,
                        label=topic.text,
                        topic_id=topic.topic_id,
                    )
                )
            for _ in range(TOPICS_PER_MEMBER - len(chosen)):
                position = len(entries)
                entries.append(
                    SlateItem(
                        entry_id=entry_identifier(cohort_id, position),
                        position=position,
                        contributor_id=member_id,
                        label=PLACEHOLDER_LABEL,
                        is_placeholder=True,
                    )
                )
        return tuple(entries)
