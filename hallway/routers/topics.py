import logging

from fastapi import APIRouter, Depends, status

from hallway.auth.identity import get_current_participant, get_current_participant_id
from hallway.data.topic_manager import TopicManager, get_topic_manager
from hallway.models.participant import Participant
from hallway.schemas.topic import (
    TopicCreate,
    TopicListResponse,
    TopicPreferenceUpdate,
    TopicResponse,
)


router = APIRouter(prefix="/api/topics", tags=["topics"])
logger = logging.getLogger("hallway")


@router.get("", response_model=TopicListResponse)
async def list_own_topics(
    participant_id: str = Depends(get_current_participant_id),
    topic_manager: TopicManager = Depends(get_topic_manager),
):
    topics = topic_manager.list_topics(participant_id)
    return TopicListResponse(
        topics=[TopicResponse.model_validate(topic) for topic in topics]
    )


@router.post("", response_model=TopicResponse, status_code=status.HTTP_201_CREATED)
async def create_topic(
    payload: TopicCreate,
    participant: Participant = Depends(get_current_participant),
    topic_manager: TopicManager = Depends(get_topic_manager),
):
    topic = topic_manager.create_topic(
        participant.participant_id, payload.text, payload.preference
    )
    logger.info(
        "Participant %s added topic %s", participant.participant_id, topic.topic_id
    )
    return TopicResponse.model_validate(topic)


@router.put("/{topic_id}/preference", response_model=TopicResponse)
async def set_topic_preference(
    topic_id: int,
    payload: TopicPreferenceUpdate,
    participant_id: str = Depends(get_current_participant_id),
    topic_manager: TopicManager = Depends(get_topic_manager),
):
    topic = topic_manager.set_preference(topic_id, participant_id, payload.preference)
    return TopicResponse.model_validate(topic)


@router.delete("/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_topic(
    topic_id: int,
    participant_id: str = Depends(get_current_participant_id),
    topic_manager: TopicManager = Depends(get_topic_manager),
):
    topic_manager.delete_topic(topic_id, participant_id)
    logger.info("Participant %s deleted topic %s", participant_id, topic_id)
