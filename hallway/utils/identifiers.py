import re
import string
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from hallway.models.meeting import Meeting

MEETING_ID_PREFIX = "MTG"
MEETING_ID_SUFFIX_WIDTH = 4
COHORT_SEQUENCE_WIDTH = 2
ROUND_SEQUENCE_WIDTH = 2

_BASE36_DIGITS = string.digits + string.ascii_uppercase
_PARTICIPANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9@._:+-]{1,64}$")


def to_base36(number: int, width: int = 0) -> str:
    """Uppercase base36, left-padded with zeros to ``width``."""
    if number < 0:
        raise ValueError("number must be non-negative")
    digits = ""
    while True:
        number, remainder = divmod(number, 36)
        digits = _BASE36_DIGITS[remainder] + digits
        if not number:
            break
    return digits.rjust(width, "0")


def _last_sequence_for_day(db: Session, day_prefix: str) -> int:
    latest: Optional[str] = (
        db.query(Meeting.meeting_id)
        .filter(Meeting.meeting_id.like(f"{day_prefix}-%"))
        .order_by(Meeting.meeting_id.desc())
        .limit(1)
        .scalar()
    )
    if not latest:
        return 0
    _, _, suffix = latest.rpartition("-")
    try:
        return int(suffix, 36)
    except ValueError:
        return 0


def generate_meeting_id(db: Session, created_at: Optional[datetime] = None) -> str:
    """
    Meeting ids read as MTGYYYYMMDD-XXXX: the UTC creation day followed by
    a four character base36 counter that restarts every day.
    """
    moment = (created_at or datetime.now(timezone.utc)).astimezone(timezone.utc)
    day_prefix = f"{MEETING_ID_PREFIX}{moment:%Y%m%d}"
    sequence = _last_sequence_for_day(db, day_prefix) + 1
    return f"{day_prefix}-{to_base36(sequence, MEETING_ID_SUFFIX_WIDTH)}"


def generate_cohort_id(meeting_id: str, round_number: int, index: int) -> str:
    """Cohort ids read as <meeting>-R<round>-C<n>, with n starting at 1."""
    return (
        f"{meeting_id}-R{round_number:0{ROUND_SEQUENCE_WIDTH}d}"
        f"-C{index:0{COHORT_SEQUENCE_WIDTH}d}"
    )


def normalize_participant_id(raw: Optional[str]) -> Optional[str]:
    """Return the trimmed participant id, or None when it is unusable."""
    if raw is None:
        return None
    candidate = str(raw).strip()
    if not _PARTICIPANT_ID_PATTERN.match(candidate):
        return None
    return candidate
