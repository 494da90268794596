from .identity import (
    read_participant_id,
    get_current_participant_id,
    get_current_participant,
    DISPLAY_NAME_HEADER,
)

__all__ = [
    "read_participant_id",
    "get_current_participant_id",
    "get_current_participant",
    "DISPLAY_NAME_HEADER",
]
