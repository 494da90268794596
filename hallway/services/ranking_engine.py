from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from hallway.config.loader import UNDERSIZED_TOPICS_REJECT, get_cohort_settings
from hallway.database import get_db
from hallway.models.ballot import BallotEntry, RankingResultRecord
from hallway.models.cohort import Cohort, CohortMember, SlateEntry
from hallway.models.meeting import Meeting, MeetingParticipant
from hallway.models.topic import Topic
from hallway.utils.identifiers import generate_cohort_id

from .borda import BordaResolver, RankingResult, ScoreRow, validate_ballot
from .cohort_partitioner import CohortPartitioner, Partition
from .errors import (
    AccessDenied,
    DuplicateSubmission,
    IncompleteTopicSlate,
    NotFound,
    StaleOperation,
)
from .lifecycle import (
    ROSTER_FROZEN_PHASES,
    CohortStatus,
    MeetingPhase,
    advance,
    advance_cohort,
    parse_phase,
    require_phase,
)
from .meeting_locks import MeetingLockRegistry, meeting_locks
from .slate_assembler import (
    TOPICS_PER_MEMBER,
    SlateAssembler,
    SlateItem,
    TopicCandidate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BallotReceipt:
    cohort_id: str
    meeting_id: str
    voter_id: str
    ballots_received: int
    ballots_expected: int
    result: Optional[RankingResult] = None
    meeting_resolved: bool = False

    @property
    def cohort_resolved(self) -> bool:
        return self.result is not None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "cohort_id": self.cohort_id,
            "meeting_id": self.meeting_id,
            "voter_id": self.voter_id,
            "ballots_received": self.ballots_received,
            "ballots_expected": self.ballots_expected,
            "cohort_resolved": self.cohort_resolved,
            "meeting_resolved": self.meeting_resolved,
            "result": self.result.to_payload() if self.result else None,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _slate_item(entry: SlateEntry) -> SlateItem:
    return SlateItem(
        entry_id=entry.entry_id,
        position=entry.position,
        contributor_id=entry.contributor_id,
        label=entry.label,
        topic_id=entry.source_topic_id,
        is_placeholder=bool(entry.is_placeholder),
    )


class RankingEngine:
    """
    Cohort formation and Borda ranking over the stored meeting state.

    Operations are coroutines because they serialize on the lock registry;
    the database work inside each one is synchronous and committed before
    the lock is released.
    """

    def __init__(
        self,
        db: Session,
        *,
        rng: Optional[random.Random] = None,
        locks: Optional[MeetingLockRegistry] = None,
        undersized_policy: Optional[str] = None,
    ) -> None:
        settings = get_cohort_settings()
        self.db = db
        self.rng = rng or random.Random(settings["random_seed"])
        self.locks = locks or meeting_locks
        self.undersized_policy = undersized_policy or settings["undersized_topics"]
        self.partitioner = CohortPartitioner(self.rng)
        self.assembler = SlateAssembler(self.undersized_policy)
        self.resolver = BordaResolver()

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def _get_meeting(self, meeting_id: str) -> Meeting:
        meeting = self.db.get(Meeting, meeting_id)
        if meeting is None:
            raise NotFound(f"Meeting {meeting_id} not found.")
        self.db.refresh(meeting)
        return meeting

    def _get_cohort(self, cohort_id: str) -> Cohort:
        cohort = self.db.get(Cohort, cohort_id)
        if cohort is None:
            raise NotFound(f"Cohort {cohort_id} not found.")
        self.db.refresh(cohort)
        return cohort

    def get_cohort(self, cohort_id: str) -> Cohort:
        return self._get_cohort(cohort_id)

    def _get_registration(
        self, meeting: Meeting, participant_id: str
    ) -> MeetingParticipant:
        registration = self.db.get(
            MeetingParticipant,
            {"meeting_id": meeting.meeting_id, "participant_id": participant_id},
        )
        if registration is None:
            raise AccessDenied(
                f"Participant {participant_id} is not registered for meeting "
                f"{meeting.meeting_id}."
            )
        return registration

    def _current_cohorts(self, meeting: Meeting) -> List[Cohort]:
        return (
            self.db.query(Cohort)
            .filter(
                Cohort.meeting_id == meeting.meeting_id,
                Cohort.round_number == meeting.round_number,
            )
            .order_by(Cohort.cohort_id)
            .all()
        )

    def _topic_candidates(self, participant_ids: Sequence[str]) -> Dict[str, List[TopicCandidate]]:
        rows = (
            self.db.query(Topic)
            .filter(Topic.owner_id.in_(list(participant_ids)))
            .order_by(Topic.topic_id)
            .all()
        )
        grouped: Dict[str, List[TopicCandidate]] = {pid: [] for pid in participant_ids}
        for topic in rows:
            grouped.setdefault(topic.owner_id, []).append(
                TopicCandidate(
                    topic_id=topic.topic_id,
                    text=topic.text,
                    preference=int(topic.preference or 0),
                )
            )
        return grouped

    def _ballots(self, cohort_id: str) -> Dict[str, List[str]]:
        rows = (
            self.db.query(BallotEntry.voter_id, BallotEntry.entry_id)
            .filter(BallotEntry.cohort_id == cohort_id)
            .order_by(BallotEntry.voter_id, BallotEntry.rank_position)
            .all()
        )
        ballots: Dict[str, List[str]] = {}
        for voter_id, entry_id in rows:
            ballots.setdefault(str(voter_id), []).append(str(entry_id))
        return ballots

    def _set_phase(self, meeting: Meeting, target: MeetingPhase) -> None:
        previous = meeting.phase
        meeting.phase = advance(meeting.phase, target).value
        logger.info(
            "Meeting %s moved %s -> %s (round %s)",
            meeting.meeting_id,
            previous,
            meeting.phase,
            meeting.round_number,
        )

    # ------------------------------------------------------------------ #
    # Check-in
    # ------------------------------------------------------------------ #

    async def open_check_in(self, meeting_id: str) -> Dict[str, Any]:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            require_phase(meeting.phase, MeetingPhase.SCHEDULED, action="open check-in")
            self._set_phase(meeting, MeetingPhase.CHECKING_IN)
            self.db.commit()
            return self._snapshot(meeting)

    async def check_in(self, meeting_id: str, participant_id: str) -> Dict[str, Any]:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            if parse_phase(meeting.phase) in ROSTER_FROZEN_PHASES:
                raise StaleOperation(
                    f"Check-in for round {meeting.round_number} of meeting "
                    f"{meeting_id} is closed; cohorts have already been formed."
                )
            require_phase(meeting.phase, MeetingPhase.CHECKING_IN, action="check in")
            registration = self._get_registration(meeting, participant_id)

            if self.undersized_policy == UNDERSIZED_TOPICS_REJECT:
                topic_count = (
                    self.db.query(func.count(Topic.topic_id))
                    .filter(Topic.owner_id == participant_id)
                    .scalar()
                ) or 0
                if topic_count < TOPICS_PER_MEMBER:
                    raise IncompleteTopicSlate(
                        participant_id, int(topic_count), TOPICS_PER_MEMBER
                    )

            if not registration.checked_in:
                registration.checked_in = True
                registration.checked_in_round = meeting.round_number
                registration.checked_in_at = _now()
                self.db.commit()
                logger.info("Participant %s checked in to %s", participant_id, meeting_id)
            return self._snapshot(meeting)

    async def withdraw_check_in(self, meeting_id: str, participant_id: str) -> Dict[str, Any]:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            if parse_phase(meeting.phase) in ROSTER_FROZEN_PHASES:
                raise StaleOperation(
                    f"The roster for meeting {meeting_id} is frozen; "
                    "check-in can no longer be withdrawn."
                )
            require_phase(meeting.phase, MeetingPhase.CHECKING_IN, action="withdraw")
            registration = self._get_registration(meeting, participant_id)
            if registration.checked_in:
                registration.checked_in = False
                registration.checked_in_round = None
                registration.checked_in_at = None
                self.db.commit()
            return self._snapshot(meeting)

    # ------------------------------------------------------------------ #
    # Cohort formation
    # ------------------------------------------------------------------ #

    async def form_cohorts(self, meeting_id: str) -> Dict[str, Any]:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            require_phase(meeting.phase, MeetingPhase.CHECKING_IN, action="form cohorts")
            roster = [
                registration.participant_id
                for registration in meeting.registrations
                if registration.checked_in
            ]
            topics = self._topic_candidates(roster)
            excluded: List[str] = []
            if self.undersized_policy == UNDERSIZED_TOPICS_REJECT:
                # Topics may have been deleted since check-in.
                excluded = [
                    pid for pid in roster if len(topics[pid]) < TOPICS_PER_MEMBER
                ]
                roster = [pid for pid in roster if pid not in excluded]
            partition = self.partitioner.partition(roster)
            slates = self._assemble_slates(meeting, partition, topics)

            round_number = meeting.round_number
            for cohort_id, members in zip(slates, partition.cohorts):
                cohort = Cohort(
                    cohort_id=cohort_id,
                    meeting_id=meeting.meeting_id,
                    round_number=round_number,
                    status=CohortStatus.COLLECTING.value,
                )
                self.db.add(cohort)
                for seat, participant_id in enumerate(members):
                    self.db.add(
                        CohortMember(
                            cohort_id=cohort_id,
                            participant_id=participant_id,
                            meeting_id=meeting.meeting_id,
                            round_number=round_number,
                            seat=seat,
                        )
                    )
                for item in slates[cohort_id]:
                    self.db.add(
                        SlateEntry(
                            entry_id=item.entry_id,
                            cohort_id=cohort_id,
                            position=item.position,
                            contributor_id=item.contributor_id,
                            topic_id=item.topic_id,
                            source_topic_id=item.topic_id,
                            label=item.label,
                            is_placeholder=item.is_placeholder,
                        )
                    )

            deferred = set(partition.deferred)
            for registration in meeting.registrations:
                if registration.participant_id in deferred:
                    registration.deferred_round = round_number
                elif registration.participant_id in excluded:
                    registration.checked_in = False
                    registration.checked_in_round = None
                    registration.checked_in_at = None

            self._set_phase(meeting, MeetingPhase.COHORTS_FORMED)
            self.db.commit()
            if excluded:
                logger.warning(
                    "Left %s out of meeting %s round %s: fewer than %s topics",
                    excluded,
                    meeting.meeting_id,
                    round_number,
                    TOPICS_PER_MEMBER,
                )
            logger.info(
                "Formed %s cohort(s) for meeting %s round %s; deferred %s",
                len(partition.cohorts),
                meeting.meeting_id,
                round_number,
                sorted(deferred) or "none",
            )
            snapshot = self._snapshot(meeting)
            snapshot["excluded"] = excluded
            return snapshot

    def _assemble_slates(
        self,
        meeting: Meeting,
        partition: Partition,
        topics: Dict[str, List[TopicCandidate]],
    ) -> Dict[str, Sequence[SlateItem]]:
        # Every slate is built before anything is written, so a failure
        # leaves the meeting untouched in checking_in.
        slates: Dict[str, Sequence[SlateItem]] = {}
        for index, members in enumerate(partition.cohorts, start=1):
            cohort_id = generate_cohort_id(meeting.meeting_id, meeting.round_number, index)
            slates[cohort_id] = self.assembler.assemble(cohort_id, members, topics)
        return slates

    async def open_ranking(self, meeting_id: str) -> Dict[str, Any]:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            require_phase(
                meeting.phase, MeetingPhase.COHORTS_FORMED, action="open ranking"
            )
            self._set_phase(meeting, MeetingPhase.RANKING_IN_PROGRESS)
            self.db.commit()
            return self._snapshot(meeting)

    async def open_next_round(self, meeting_id: str) -> Dict[str, Any]:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            require_phase(meeting.phase, MeetingPhase.RESOLVED, action="open a new round")
            finished_round = meeting.round_number
            self._set_phase(meeting, MeetingPhase.CHECKING_IN)
            meeting.round_number = finished_round + 1
            for registration in meeting.registrations:
                if registration.deferred_round == finished_round:
                    registration.checked_in = True
                    registration.checked_in_round = meeting.round_number
                    registration.checked_in_at = _now()
                else:
                    registration.checked_in = False
                    registration.checked_in_round = None
                    registration.checked_in_at = None
            self.db.commit()
            return self._snapshot(meeting)

    # ------------------------------------------------------------------ #
    # Ballots and resolution
    # ------------------------------------------------------------------ #

    def get_slate(self, cohort_id: str, participant_id: str) -> Dict[str, Any]:
        cohort = self._get_cohort(cohort_id)
        if participant_id not in cohort.member_ids:
            raise AccessDenied(f"You are not a member of cohort {cohort_id}.")
        ballots = self._ballots(cohort_id)
        return {
            "cohort_id": cohort.cohort_id,
            "meeting_id": cohort.meeting_id,
            "round_number": cohort.round_number,
            "status": cohort.status,
            "members": cohort.member_ids,
            "entries": [
                {
                    "entry_id": entry.entry_id,
                    "position": entry.position,
                    "contributor_id": entry.contributor_id,
                    "topic_id": entry.topic_id,
                    "label": entry.label,
                    "is_placeholder": bool(entry.is_placeholder),
                }
                for entry in cohort.slate
            ],
            "submitted_voters": sorted(ballots),
            "own_ballot": ballots.get(participant_id),
            "result": self._stored_result(cohort).to_payload() if cohort.result else None,
        }

    async def submit_ballot(
        self,
        cohort_id: str,
        voter_id: str,
        ordered_entry_ids: Sequence[str],
    ) -> BallotReceipt:
        meeting_id = self._get_cohort(cohort_id).meeting_id
        async with self.locks.cohort(meeting_id, cohort_id):
            cohort = self._get_cohort(cohort_id)
            members = cohort.member_ids
            if voter_id not in members:
                raise AccessDenied(f"You are not a member of cohort {cohort_id}.")
            if cohort.status == CohortStatus.RESOLVED.value:
                raise DuplicateSubmission(
                    f"Cohort {cohort_id} is already resolved; ballots can no longer "
                    "be submitted."
                )
            meeting = self._get_meeting(meeting_id)
            require_phase(
                meeting.phase, MeetingPhase.RANKING_IN_PROGRESS, action="submit a ballot"
            )

            slate_ids = [entry.entry_id for entry in cohort.slate]
            ordered = validate_ballot(ordered_entry_ids, slate_ids)

            # A re-submission before resolution replaces the earlier ballot.
            self.db.query(BallotEntry).filter(
                BallotEntry.cohort_id == cohort_id,
                BallotEntry.voter_id == voter_id,
            ).delete(synchronize_session=False)
            for rank_position, entry_id in enumerate(ordered):
                self.db.add(
                    BallotEntry(
                        cohort_id=cohort_id,
                        voter_id=voter_id,
                        entry_id=entry_id,
                        rank_position=rank_position,
                    )
                )
            self.db.flush()

            ballots = self._ballots(cohort_id)
            result: Optional[RankingResult] = None
            if set(members) <= set(ballots):
                result = self._store_result(cohort)
            self.db.commit()
            logger.info(
                "Ballot from %s accepted for cohort %s (%s/%s)",
                voter_id,
                cohort_id,
                len(ballots),
                len(members),
            )

        meeting_resolved = False
        if result is not None:
            meeting_resolved = await self._settle_meeting(meeting_id)
        return BallotReceipt(
            cohort_id=cohort_id,
            meeting_id=meeting_id,
            voter_id=voter_id,
            ballots_received=len(ballots),
            ballots_expected=len(members),
            result=result,
            meeting_resolved=meeting_resolved,
        )

    async def resolve_cohort(self, cohort_id: str) -> RankingResult:
        """Resolve a cohort from its stored ballots; repeat calls return the stored result."""
        meeting_id = self._get_cohort(cohort_id).meeting_id
        async with self.locks.cohort(meeting_id, cohort_id):
            cohort = self._get_cohort(cohort_id)
            if cohort.result is not None:
                return self._stored_result(cohort)
            meeting = self._get_meeting(meeting_id)
            require_phase(
                meeting.phase, MeetingPhase.RANKING_IN_PROGRESS, action="resolve a cohort"
            )
            result = self._store_result(cohort)
            self.db.commit()
        await self._settle_meeting(meeting_id)
        return result

    def compute_result(self, cohort_id: str) -> RankingResult:
        """Recompute a cohort's result from stored ballots without saving it."""
        cohort = self._get_cohort(cohort_id)
        return self.resolver.resolve(
            cohort.cohort_id,
            [_slate_item(entry) for entry in cohort.slate],
            self._ballots(cohort_id),
            cohort.member_ids,
        )

    def get_result(self, cohort_id: str) -> Optional[RankingResult]:
        cohort = self._get_cohort(cohort_id)
        return self._stored_result(cohort) if cohort.result else None

    def _store_result(self, cohort: Cohort) -> RankingResult:
        result = self.compute_result(cohort.cohort_id)
        cohort.status = advance_cohort(cohort.status, CohortStatus.RESOLVED).value
        self.db.add(
            RankingResultRecord(
                cohort_id=cohort.cohort_id,
                selected_entry_ids=list(result.selected_entry_ids),
                scores=[row.to_payload() for row in result.scores],
                resolved_at=result.resolved_at,
            )
        )
        logger.info(
            "Cohort %s resolved; selected %s",
            cohort.cohort_id,
            list(result.selected_entry_ids),
        )
        return result

    @staticmethod
    def _stored_result(cohort: Cohort) -> RankingResult:
        record = cohort.result
        return RankingResult(
            cohort_id=cohort.cohort_id,
            selected_entry_ids=tuple(record.selected_entry_ids or ()),
            scores=tuple(ScoreRow.from_payload(row) for row in record.scores or ()),
            resolved_at=record.resolved_at or _now(),
        )

    async def _settle_meeting(self, meeting_id: str) -> bool:
        async with self.locks.meeting(meeting_id):
            meeting = self._get_meeting(meeting_id)
            if parse_phase(meeting.phase) != MeetingPhase.RANKING_IN_PROGRESS:
                return parse_phase(meeting.phase) == MeetingPhase.RESOLVED
            cohorts = self._current_cohorts(meeting)
            if not cohorts or any(
                cohort.status != CohortStatus.RESOLVED.value for cohort in cohorts
            ):
                return False
            self._set_phase(meeting, MeetingPhase.RESOLVED)
            self.db.commit()
            return True

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def meeting_snapshot(self, meeting_id: str) -> Dict[str, Any]:
        return self._snapshot(self._get_meeting(meeting_id))

    def _snapshot(self, meeting: Meeting) -> Dict[str, Any]:
        round_number = meeting.round_number
        registrations = list(meeting.registrations)
        cohorts_payload = []
        for cohort in self._current_cohorts(meeting):
            ballots = self._ballots(cohort.cohort_id)
            result = self._stored_result(cohort) if cohort.result else None
            cohorts_payload.append(
                {
                    "cohort_id": cohort.cohort_id,
                    "status": cohort.status,
                    "members": cohort.member_ids,
                    "ballots_received": len(ballots),
                    "selected": [
                        {"entry_id": row.entry_id, "label": row.label, "score": row.score}
                        for row in result.selected
                    ]
                    if result
                    else [],
                }
            )
        return {
            "meeting_id": meeting.meeting_id,
            "name": meeting.name,
            "phase": parse_phase(meeting.phase).value,
            "round_number": round_number,
            "registered": [reg.participant_id for reg in registrations],
            "checked_in": [reg.participant_id for reg in registrations if reg.checked_in],
            "deferred": [
                reg.participant_id
                for reg in registrations
                if reg.deferred_round == round_number
            ],
            "cohorts": cohorts_payload,
        }


def get_ranking_engine(db: Session = Depends(get_db)) -> RankingEngine:
    """Dependency provider for RankingEngine."""
    return RankingEngine(db)
