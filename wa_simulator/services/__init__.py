"""Stateful services wired to an EventBus"""

from .badge_service import BadgeScheduler
from .event_log import EventLog
from .flow_service import FlowService, FlowState
from .orchestrator import ConversationOrchestrator, EventStream
from .playback_service import PlaybackService
from .state_store import StateStore
from .typing_service import TypingService

__all__ = [
    "BadgeScheduler",
    "ConversationOrchestrator",
    "EventLog",
    "EventStream",
    "FlowService",
    "FlowState",
    "PlaybackService",
    "StateStore",
    "TypingService",
]
