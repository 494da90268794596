from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status

from hallway.auth.identity import get_current_participant, get_current_participant_id
from hallway.data.meeting_manager import MeetingManager, get_meeting_manager
from hallway.models.meeting import Meeting
from hallway.models.participant import Participant
from hallway.schemas.meeting import (
    MeetingCreate,
    MeetingPreferenceUpdate,
    MeetingSnapshot,
    MeetingSummary,
    RegisteredMeetingsResponse,
)
from hallway.services.errors import AccessDenied
from hallway.services.ranking_engine import RankingEngine, get_ranking_engine
from hallway.utils.websocket_manager import meeting_events


router = APIRouter(prefix="/api/meetings", tags=["meetings"])
logger = logging.getLogger("hallway")


def _require_organizer(meeting: Meeting, participant_id: str) -> None:
    # Only the participant who created the meeting moves it between phases.
    if meeting.created_by != participant_id:
        raise AccessDenied("Only the meeting organizer can do that.")


def _summary(payload: Dict[str, Any]) -> MeetingSummary:
    return MeetingSummary(**payload)


async def _announce(
    meeting_id: str,
    event_type: str,
    snapshot: Dict[str, Any],
    initiator_id: str,
) -> None:
    delivered = await meeting_events.broadcast(
        meeting_id, event_type, snapshot, initiator_id=initiator_id
    )
    logger.debug(
        "Broadcast %s for meeting %s to %s subscriber(s)",
        event_type,
        meeting_id,
        delivered,
    )


@router.get("", response_model=List[MeetingSummary])
async def list_meetings(
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
):
    return [_summary(item) for item in meeting_manager.list_meetings(participant_id)]


@router.post("", response_model=MeetingSummary, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    payload: MeetingCreate,
    participant: Participant = Depends(get_current_participant),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
):
    meeting = meeting_manager.create_meeting(
        payload.name,
        participant.participant_id,
        register_creator=payload.register_creator,
    )
    logger.info(
        "Participant %s created meeting %s", participant.participant_id, meeting.meeting_id
    )
    return MeetingSummary(
        meeting_id=meeting.meeting_id,
        name=meeting.name,
        phase=meeting.phase,
        round_number=meeting.round_number,
        registered=payload.register_creator,
        checked_in=False,
        preference=0 if payload.register_creator else None,
    )


@router.get("/registered", response_model=RegisteredMeetingsResponse)
async def list_registered_meetings(
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
):
    return RegisteredMeetingsResponse(
        meetings=meeting_manager.registered_meeting_ids(participant_id)
    )


@router.post("/{meeting_id}/registration", status_code=status.HTTP_204_NO_CONTENT)
async def register_for_meeting(
    meeting_id: str,
    participant: Participant = Depends(get_current_participant),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
):
    meeting_manager.register(meeting_id, participant.participant_id)


@router.delete("/{meeting_id}/registration", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_from_meeting(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
):
    meeting_manager.unregister(meeting_id, participant_id)


@router.put("/{meeting_id}/preference", status_code=status.HTTP_204_NO_CONTENT)
async def set_meeting_preference(
    meeting_id: str,
    payload: MeetingPreferenceUpdate,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
):
    meeting_manager.set_preference(meeting_id, participant_id, payload.preference)


@router.post("/{meeting_id}/check-in/open", response_model=MeetingSnapshot)
async def open_check_in(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    _require_organizer(meeting_manager.require_meeting(meeting_id), participant_id)
    snapshot = await engine.open_check_in(meeting_id)
    await _announce(meeting_id, "check_in_update", snapshot, participant_id)
    return MeetingSnapshot(**snapshot)


@router.post("/{meeting_id}/check-in", response_model=MeetingSnapshot)
async def check_in(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    meeting_manager.require_meeting(meeting_id)
    snapshot = await engine.check_in(meeting_id, participant_id)
    await _announce(meeting_id, "check_in_update", snapshot, participant_id)
    return MeetingSnapshot(**snapshot)


@router.delete("/{meeting_id}/check-in", response_model=MeetingSnapshot)
async def withdraw_check_in(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    meeting_manager.require_meeting(meeting_id)
    snapshot = await engine.withdraw_check_in(meeting_id, participant_id)
    await _announce(meeting_id, "check_in_update", snapshot, participant_id)
    return MeetingSnapshot(**snapshot)


@router.post("/{meeting_id}/cohorts", response_model=MeetingSnapshot)
async def form_cohorts(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    _require_organizer(meeting_manager.require_meeting(meeting_id), participant_id)
    snapshot = await engine.form_cohorts(meeting_id)
    await _announce(meeting_id, "cohorts_formed", snapshot, participant_id)
    return MeetingSnapshot(**snapshot)


@router.post("/{meeting_id}/ranking/open", response_model=MeetingSnapshot)
async def open_ranking(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    _require_organizer(meeting_manager.require_meeting(meeting_id), participant_id)
    snapshot = await engine.open_ranking(meeting_id)
    await _announce(meeting_id, "ranking_opened", snapshot, participant_id)
    return MeetingSnapshot(**snapshot)


@router.post("/{meeting_id}/rounds", response_model=MeetingSnapshot)
async def open_next_round(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    meeting_manager: MeetingManager = Depends(get_meeting_manager),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    _require_organizer(meeting_manager.require_meeting(meeting_id), participant_id)
    snapshot = await engine.open_next_round(meeting_id)
    await _announce(meeting_id, "round_opened", snapshot, participant_id)
    return MeetingSnapshot(**snapshot)


@router.get("/{meeting_id}/state", response_model=MeetingSnapshot)
async def get_meeting_state(
    meeting_id: str,
    participant_id: str = Depends(get_current_participant_id),
    engine: RankingEngine = Depends(get_ranking_engine),
):
    return MeetingSnapshot(**engine.meeting_snapshot(meeting_id))
