"""
Data access layer providing managers for participants, topics and meetings.
"""

from .participant_manager import ParticipantManager
from .meeting_manager import MeetingManager
from .topic_manager import TopicManager

__all__ = ["ParticipantManager", "MeetingManager", "TopicManager"]
