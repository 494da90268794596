from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from hallway.auth.identity import get_current_participant_id
from hallway.models.cohort import Cohort
from hallway.schemas.ranking import (
    BallotReceiptResponse,
    BallotSubmitRequest,
    RankingResultResponse,
    SlateResponse,
)
from hallway.services.errors import AccessDenied, NotFound
from hallway.services.ranking_engine import RankingEngine, get_ranking_engine
from hallway.utils.websocket_manager import meeting_events


router = APIRouter(prefix="/api/cohorts", tags=["cohorts"])
logger = logging.getLogger("hallway")


def _ensure_cohort_access(cohort: Cohort, participant_id: str) -> None:
    organizer_id = getattr(cohort.meeting, "created_by", None)
    if participant_id in cohort.member_ids or participant_id == organizer_id:
        return
    raise AccessDenied(f"You are not a member of cohort {cohort.cohort_id}.")


@router.get("/{cohort_id}/slate", response_model=SlateResponse)
async def get_slate(
    cohort_id: str,
    participant_id: str = Depends(get_current_participant_id),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    return SlateResponse(**engine.get_slate(cohort_id, participant_id))


@router.post("/{cohort_id}/ballots", response_model=BallotReceiptResponse)
async def submit_ballot(
    cohort_id: str,
    payload: BallotSubmitRequest,
    participant_id: str = Depends(get_current_participant_id),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    receipt = await engine.submit_ballot(
        cohort_id, participant_id, payload.ordered_entry_ids
    )
    meeting_id = receipt.meeting_id

    await meeting_events.broadcast(
        meeting_id,
        "ballot_submitted",
        {
            "cohort_id": cohort_id,
            "ballots_received": receipt.ballots_received,
            "ballots_expected": receipt.ballots_expected,
        },
        initiator_id=participant_id,
    )
    if receipt.result is not None:
        await meeting_events.broadcast(
            meeting_id,
            "cohort_resolved",
            receipt.result.to_payload(),
            initiator_id=participant_id,
        )
    if receipt.meeting_resolved:
        await meeting_events.broadcast(
            meeting_id,
            "meeting_resolved",
            engine.meeting_snapshot(meeting_id),
            initiator_id=participant_id,
        )
    return BallotReceiptResponse(**receipt.to_payload())


@router.post("/{cohort_id}/resolve", response_model=RankingResultResponse)
async def resolve_cohort(
    cohort_id: str,
    participant_id: str = Depends(get_current_participant_id),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    cohort = engine.get_cohort(cohort_id)
    _ensure_cohort_access(cohort, participant_id)
    meeting_id = cohort.meeting_id
    already_resolved = cohort.result is not None

    result = await engine.resolve_cohort(cohort_id)
    if not already_resolved:
        await meeting_events.broadcast(
            meeting_id,
            "cohort_resolved",
            result.to_payload(),
            initiator_id=participant_id,
        )
        snapshot = engine.meeting_snapshot(meeting_id)
        if snapshot["phase"] == "resolved":
            await meeting_events.broadcast(
                meeting_id, "meeting_resolved", snapshot, initiator_id=participant_id
            )
    return RankingResultResponse(**result.to_payload())


@router.get("/{cohort_id}/result", response_model=RankingResultResponse)
async def get_result(
    cohort_id: str,
    participant_id: str = Depends(get_current_participant_id),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    cohort = engine.get_cohort(cohort_id)
    _ensure_cohort_access(cohort, participant_id)
    result = engine.get_result(cohort_id)
    if result is None:
        raise NotFound(f"Cohort {cohort_id} has not been resolved yet.")
    return RankingResultResponse(**result.to_payload())
