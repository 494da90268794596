from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class Subscriber:
    """A WebSocket listening to one meeting's progress events."""

    id: str
    websocket: WebSocket
    participant_id: Optional[str] = None

    async def send_json(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


class MeetingEventBroadcaster:
    def __init__(self):
        # Key: meeting_id, Value: {subscriber_id: Subscriber}
        self.subscribers: Dict[str, Dict[str, Subscriber]] = {}

    async def connect(
        self,
        websocket: WebSocket,
        meeting_id: str,
        *,
        participant_id: Optional[str] = None,
    ) -> str:
        """Accept a WebSocket for a meeting and return its subscriber id."""
        await websocket.accept()
        subscriber_id = str(uuid4())
        self.subscribers.setdefault(meeting_id, {})[subscriber_id] = Subscriber(
            id=subscriber_id,
            websocket=websocket,
            participant_id=participant_id,
        )
        logger.debug(
            "Subscriber connected: meeting_id=%s subscriber_id=%s participant_id=%s",
            meeting_id,
            subscriber_id,
            participant_id,
        )
        return subscriber_id

    def disconnect(self, meeting_id: str, subscriber_id: str) -> None:
        meeting_subscribers = self.subscribers.get(meeting_id)
        if not meeting_subscribers:
            return
        if meeting_subscribers.pop(subscriber_id, None) is not None:
            logger.debug(
                "Subscriber disconnected: meeting_id=%s subscriber_id=%s",
                meeting_id,
                subscriber_id,
            )
        if not meeting_subscribers:
            self.subscribers.pop(meeting_id, None)

    async def broadcast(
        self,
        meeting_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        initiator_id: Optional[str] = None,
    ) -> int:
        """Send an event to every subscriber of a meeting; returns how many received it."""
        message = {
            "type": event_type,
            "payload": payload,
            "meta": {"meetingId": meeting_id, "initiatorId": initiator_id},
        }
        delivered = 0
        dropped: list[str] = []
        # Snapshot: disconnect() may run concurrently from other handlers.
        for subscriber_id, subscriber in list(self.subscribers.get(meeting_id, {}).items()):
            try:
                await subscriber.send_json(message)
                delivered += 1
            except Exception:  # pragma: no cover - depends on network
                dropped.append(subscriber_id)

        for subscriber_id in dropped:
            self.disconnect(meeting_id, subscriber_id)
        return delivered

    def subscriber_count(self, meeting_id: str) -> int:
        return len(self.subscribers.get(meeting_id, {}))


meeting_events = MeetingEventBroadcaster()
