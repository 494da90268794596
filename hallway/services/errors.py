"""Errors raised by the cohort ranking engine.

Each carries the HTTP status the API layer answers with; ``hallway.main``
maps them to JSON responses. None of them is fatal beyond the meeting or
cohort it names.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence


class RankingError(Exception):
    status_code = 400
    kind = "ranking_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(RankingError):
    status_code = 404
    kind = "not_found"


class AccessDenied(RankingError):
    status_code = 403
    kind = "access_denied"


class InsufficientParticipants(RankingError):
    status_code = 409
    kind = "insufficient_participants"

    def __init__(self, checked_in: int, required: int) -> None:
        super().__init__(
            f"Not enough participants checked in ({checked_in}); "
            f"at least {required} are needed to form a cohort."
        )
        self.checked_in = checked_in
        self.required = required


class IncompleteTopicSlate(RankingError):
    status_code = 409
    kind = "incomplete_topic_slate"

    def __init__(self, participant_id: str, topic_count: int, required: int) -> None:
        super().__init__(
            f"Participant {participant_id} has {topic_count} topic(s); "
            f"{required} are required."
        )
        self.participant_id = participant_id
        self.topic_count = topic_count
        self.required = required


class InvalidBallot(RankingError):
    status_code = 422
    kind = "invalid_ballot"

    def __init__(
        self,
        detail: str,
        *,
        missing: Iterable[str] = (),
        duplicated: Iterable[str] = (),
        unknown: Iterable[str] = (),
    ) -> None:
        super().__init__(detail)
        self.missing: Sequence[str] = sorted(missing)
        self.duplicated: Sequence[str] = sorted(duplicated)
        self.unknown: Sequence[str] = sorted(unknown)


class DuplicateSubmission(RankingError):
    status_code = 409
    kind = "duplicate_submission"


class StaleOperation(RankingError):
    status_code = 409
    kind = "stale_operation"


class IllegalTransition(RankingError):
    status_code = 409
    kind = "illegal_transition"

    def __init__(self, current: str, target: Optional[str], detail: str = "") -> None:
        message = detail or f"Cannot move from {current} to {target}."
        super().__init__(message)
        self.current = current
        self.target = target


class BallotsOutstanding(RankingError):
    status_code = 409
    kind = "ballots_outstanding"

    def __init__(self, cohort_id: str, pending_voters: Iterable[str]) -> None:
        pending = sorted(pending_voters)
        super().__init__(
            f"Cohort {cohort_id} is still waiting for ballots from: "
            + ", ".join(pending)
        )
        self.cohort_id = cohort_id
        self.pending_voters = pending


class TopicInUse(RankingError):
    status_code = 409
    kind = "topic_in_use"
