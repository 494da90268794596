from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MeetingLocks:
    meeting_id: str
    roster: asyncio.Lock = field(default_factory=asyncio.Lock)
    cohorts: Dict[str, asyncio.Lock] = field(default_factory=dict)
    # Holders and waiters, per cohort and for the whole entry.
    cohort_users: Dict[str, int] = field(default_factory=dict)
    users: int = 0
    last_used: datetime = field(default_factory=_now)

    def touch(self) -> None:
        self.last_used = _now()


class MeetingLockRegistry:
    """
    In-process serialization for meeting operations.

    One lock per meeting covers check-in, partitioning and phase changes.
    Each cohort gets its own lock so ballots for different cohorts never
    wait on each other. Holders of a meeting lock never take a cohort lock;
    a cohort-lock holder releases it before taking the meeting lock.

    Entries are reference counted: a lock exists only while someone holds
    or waits on it, so finished meetings and resolved cohorts leave nothing
    behind.
    """

    def __init__(self) -> None:
        self._meetings: Dict[str, MeetingLocks] = {}
        self._lock = asyncio.Lock()

    async def _checkout(
        self, meeting_id: str, cohort_id: Optional[str] = None
    ) -> asyncio.Lock:
        async with self._lock:
            entry = self._meetings.get(meeting_id)
            if entry is None:
                entry = MeetingLocks(meeting_id=meeting_id)
                self._meetings[meeting_id] = entry
            entry.touch()
            entry.users += 1
            if cohort_id is None:
                return entry.roster
            lock = entry.cohorts.get(cohort_id)
            if lock is None:
                lock = asyncio.Lock()
                entry.cohorts[cohort_id] = lock
            entry.cohort_users[cohort_id] = entry.cohort_users.get(cohort_id, 0) + 1
            return lock

    async def _checkin(self, meeting_id: str, cohort_id: Optional[str] = None) -> None:
        async with self._lock:
            entry = self._meetings.get(meeting_id)
            if entry is None:
                return
            if cohort_id is not None:
                remaining = entry.cohort_users.get(cohort_id, 1) - 1
                if remaining > 0:
                    entry.cohort_users[cohort_id] = remaining
                else:
                    entry.cohort_users.pop(cohort_id, None)
                    entry.cohorts.pop(cohort_id, None)
            entry.users -= 1
            if entry.users <= 0:
                del self._meetings[meeting_id]

    @asynccontextmanager
    async def meeting(self, meeting_id: str) -> AsyncIterator[None]:
        lock = await self._checkout(meeting_id)
        try:
            async with lock:
                yield
        finally:
            await self._checkin(meeting_id)

    @asynccontextmanager
    async def cohort(self, meeting_id: str, cohort_id: str) -> AsyncIterator[None]:
        lock = await self._checkout(meeting_id, cohort_id)
        try:
            async with lock:
                yield
        finally:
            await self._checkin(meeting_id, cohort_id)

    async def snapshot(self) -> Dict[str, Dict[str, object]]:
        async with self._lock:
            return {
                meeting_id: {
                    "rosterLocked": entry.roster.locked(),
                    "cohortLocks": sorted(entry.cohorts),
                    "users": entry.users,
                    "lastUsed": entry.last_used.isoformat(),
                }
                for meeting_id, entry in self._meetings.items()
            }


meeting_locks = MeetingLockRegistry()
