import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from hallway.config.loader import get_identity_header
from hallway.services.errors import NotFound
from hallway.services.ranking_engine import RankingEngine, get_ranking_engine
from hallway.utils.identifiers import normalize_participant_id
from hallway.utils.websocket_manager import meeting_events

router = APIRouter(prefix="/ws", tags=["realtime"])

logger = logging.getLogger(__name__)


def _socket_participant_id(websocket: WebSocket):
    # Browsers cannot set headers on a WebSocket handshake, so a query
    # parameter is accepted as well.
    raw = websocket.headers.get(get_identity_header()) or websocket.query_params.get(
        "participantId"
    )
    return normalize_participant_id(raw)


@router.websocket("/meetings/{meeting_id}")
async def meeting_socket(
    websocket: WebSocket,
    meeting_id: str,
    engine: RankingEngine = Depends(get_ranking_engine),
) -> None:
    """
    Read-only feed of a meeting's progress: check-ins, cohort formation,
    ballots received and results.
    """
    try:
        snapshot = engine.meeting_snapshot(meeting_id)
    except NotFound:
        logger.error("Meeting %s not found for WebSocket connection", meeting_id)
        await websocket.close(code=1008, reason="Meeting not found")
        return

    participant_id = _socket_participant_id(websocket)
    subscriber_id = await meeting_events.connect(
        websocket, meeting_id, participant_id=participant_id
    )
    await websocket.send_json(
        {
            "type": "connection_ack",
            "payload": {
                "meetingId": meeting_id,
                "subscriberId": subscriber_id,
                "participantId": participant_id,
                "state": snapshot,
            },
        }
    )

    try:
        while True:
            message = await websocket.receive_json()
            message_type = message.get("type") if isinstance(message, dict) else None

            if message_type == "ping":
                await websocket.send_json(
                    {
                        "type": "pong",
                        "payload": {
                            "meetingId": meeting_id,
                            "timestamp": datetime.now(timezone.utc).isoformat(),
                        },
                    }
                )
            elif message_type == "state_request":
                # The session lives as long as the socket; drop cached rows.
                engine.db.expire_all()
                await websocket.send_json(
                    {
                        "type": "meeting_state",
                        "payload": engine.meeting_snapshot(meeting_id),
                    }
                )
            else:
                await websocket.send_json(
                    {
                        "type": "error",
                        "payload": {
                            "message": f"Unknown message type '{message_type}'",
                        },
                    }
                )
    except WebSocketDisconnect:
        logger.debug(
            "WebSocketDisconnect: meeting_id=%s subscriber_id=%s",
            meeting_id,
            subscriber_id,
        )
    finally:
        meeting_events.disconnect(meeting_id, subscriber_id)
        logger.info(
            "Subscriber %s left meeting %s; %s still connected",
            subscriber_id,
            meeting_id,
            meeting_events.subscriber_count(meeting_id),
        )
