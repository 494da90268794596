"""
Trusted identity for incoming requests.

Authentication happens upstream: the session service (or the reverse proxy
in front of it) sets a header carrying the participant id, and everything
here takes that value at face value.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from hallway.config.loader import get_identity_header
from hallway.data.participant_manager import ParticipantManager, get_participant_manager
from hallway.models.participant import Participant
from hallway.utils.identifiers import normalize_participant_id

logger = logging.getLogger("hallway.identity")

DISPLAY_NAME_HEADER = "X-Participant-Name"


def read_participant_id(request: Request) -> Optional[str]:
    """Return the participant id from the trusted header, or None."""
    return normalize_participant_id(request.headers.get(get_identity_header()))


async def get_current_participant_id(request: Request) -> str:
    """
    FastAPI dependency returning the caller's participant id.
    Raises 401 if the identity header is missing or malformed.
    """
    participant_id = read_participant_id(request)
    if participant_id is None:
        logger.debug("Request to %s without a usable identity header.", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing participant identity.",
        )
    request.state.participant_id = participant_id
    return participant_id


async def get_current_participant(
    request: Request,
    participant_id: str = Depends(get_current_participant_id),
    participant_manager: ParticipantManager = Depends(get_participant_manager),
) -> Participant:
    """Like get_current_participant_id, but also upserts the local participant record."""
    display_name = request.headers.get(DISPLAY_NAME_HEADER)
    return participant_manager.ensure_participant(participant_id, display_name)
