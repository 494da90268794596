"""Cohort formation and ranking services for Hallway."""

from .meeting_locks import (
    meeting_locks,
    MeetingLockRegistry,
)  # noqa: F401
from .ranking_engine import RankingEngine, BallotReceipt  # noqa: F401

__all__ = [
    "meeting_locks",
    "MeetingLockRegistry",
    "RankingEngine",
    "BallotReceipt",
]
