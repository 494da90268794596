from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from .errors import IllegalTransition


class MeetingPhase(str, Enum):
    SCHEDULED = "scheduled"
    CHECKING_IN = "checking_in"
    COHORTS_FORMED = "cohorts_formed"
    RANKING_IN_PROGRESS = "ranking_in_progress"
    RESOLVED = "resolved"


class CohortStatus(str, Enum):
    COLLECTING = "collecting"
    RESOLVED = "resolved"


MEETING_TRANSITIONS: Dict[MeetingPhase, FrozenSet[MeetingPhase]] = {
    MeetingPhase.SCHEDULED: frozenset({MeetingPhase.CHECKING_IN}),
    MeetingPhase.CHECKING_IN: frozenset({MeetingPhase.COHORTS_FORMED}),
    MeetingPhase.COHORTS_FORMED: frozenset({MeetingPhase.RANKING_IN_PROGRESS}),
    MeetingPhase.RANKING_IN_PROGRESS: frozenset({MeetingPhase.RESOLVED}),
    # Next round.
    MeetingPhase.RESOLVED: frozenset({MeetingPhase.CHECKING_IN}),
}

COHORT_TRANSITIONS: Dict[CohortStatus, FrozenSet[CohortStatus]] = {
    CohortStatus.COLLECTING: frozenset({CohortStatus.RESOLVED}),
    CohortStatus.RESOLVED: frozenset(),
}

# Phases after the roster has been frozen for the current round.
ROSTER_FROZEN_PHASES = frozenset(
    {
        MeetingPhase.COHORTS_FORMED,
        MeetingPhase.RANKING_IN_PROGRESS,
        MeetingPhase.RESOLVED,
    }
)


def parse_phase(value) -> MeetingPhase:
    if isinstance(value, MeetingPhase):
        return value
    return MeetingPhase(str(value))


def advance(current, target) -> MeetingPhase:
    """Return ``target`` if the meeting may move there from ``current``."""
    current_phase = parse_phase(current)
    target_phase = parse_phase(target)
    if target_phase not in MEETING_TRANSITIONS[current_phase]:
        raise IllegalTransition(current_phase.value, target_phase.value)
    return target_phase


def advance_cohort(current, target) -> CohortStatus:
    current_status = CohortStatus(str(getattr(current, "value", current)))
    target_status = CohortStatus(str(getattr(target, "value", target)))
    if target_status not in COHORT_TRANSITIONS[current_status]:
        raise IllegalTransition(current_status.value, target_status.value)
    return target_status


def require_phase(current, *allowed: MeetingPhase, action: str) -> MeetingPhase:
    """Guard an operation that is only valid in some phases."""
    current_phase = parse_phase(current)
    if current_phase not in allowed:
        expected = ", ".join(phase.value for phase in allowed)
        raise IllegalTransition(
            current_phase.value,
            None,
            f"Cannot {action} while the meeting is {current_phase.value} "
            f"(expected {expected}).",
        )
    return current_phase
