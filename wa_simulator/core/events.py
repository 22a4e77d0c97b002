"""Conversation event types

Closed set of events the engine broadcasts. Each event is a frozen
dataclass carrying ``conversation_id`` and ``timestamp`` (clock ms) plus a
read-only payload. Exceptions never travel inside events; errors are
carried as ``ErrorInfo`` values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Mapping, Optional, Tuple, Union

from wa_simulator.core.conversation.models import Message, SenderType, freeze
from wa_simulator.core.errors import SimulatorError


class EventType(str, Enum):
    """Event type string constants"""

    # conversation
    CONVERSATION_STARTED = "conversation.started"
    CONVERSATION_PAUSED = "conversation.paused"
    CONVERSATION_RESUMED = "conversation.resumed"
    CONVERSATION_COMPLETED = "conversation.completed"
    CONVERSATION_RESET = "conversation.reset"
    CONVERSATION_ERROR = "conversation.error"
    CONVERSATION_SPEED_CHANGED = "conversation.speed_changed"
    CONVERSATION_JUMPED = "conversation.jumped"

    # message
    MESSAGE_TYPING_STARTED = "message.typing_started"
    MESSAGE_TYPING_STOPPED = "message.typing_stopped"
    MESSAGE_SENT = "message.sent"
    MESSAGE_DELIVERED = "message.delivered"
    MESSAGE_READ = "message.read"

    # flow
    FLOW_TRIGGERED = "flow.triggered"
    FLOW_COMPLETED = "flow.completed"
    FLOW_FAILED = "flow.failed"


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    recoverable: bool = True

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorInfo:
        recoverable = error.recoverable if isinstance(error, SimulatorError) else False
        return cls(code=type(error).__name__, message=str(error), recoverable=recoverable)


@dataclass(frozen=True)
class BaseEvent:
    type: ClassVar[EventType]

    conversation_id: str
    timestamp: float


# === Conversation events ===


@dataclass(frozen=True)
class ConversationStarted(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_STARTED

    total_messages: int
    playback_speed: float
    start_index: int = 0


@dataclass(frozen=True)
class ConversationPaused(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_PAUSED

    current_message_index: int


@dataclass(frozen=True)
class ConversationResumed(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_RESUMED

    current_message_index: int


@dataclass(frozen=True)
class ConversationCompleted(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_COMPLETED

    total_messages: int
    duration: float


@dataclass(frozen=True)
class ConversationReset(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_RESET


@dataclass(frozen=True)
class ConversationError(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_ERROR

    error: ErrorInfo


@dataclass(frozen=True)
class ConversationSpeedChanged(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_SPEED_CHANGED

    old_speed: float
    new_speed: float


@dataclass(frozen=True)
class ConversationJumped(BaseEvent):
    type: ClassVar[EventType] = EventType.CONVERSATION_JUMPED

    from_index: int
    to_index: int


# === Message events ===


@dataclass(frozen=True)
class MessageEvent(BaseEvent):
    """Message lifecycle event. ``message`` is the snapshot at emit time."""

    message: Message
    message_index: int

    @property
    def sender(self) -> SenderType:
        return self.message.sender


@dataclass(frozen=True)
class MessageTypingStarted(MessageEvent):
    type: ClassVar[EventType] = EventType.MESSAGE_TYPING_STARTED


@dataclass(frozen=True)
class MessageTypingStopped(MessageEvent):
    type: ClassVar[EventType] = EventType.MESSAGE_TYPING_STOPPED


@dataclass(frozen=True)
class MessageSent(MessageEvent):
    type: ClassVar[EventType] = EventType.MESSAGE_SENT


@dataclass(frozen=True)
class MessageDelivered(MessageEvent):
    type: ClassVar[EventType] = EventType.MESSAGE_DELIVERED


@dataclass(frozen=True)
class MessageRead(MessageEvent):
    type: ClassVar[EventType] = EventType.MESSAGE_READ


# === Flow events ===


@dataclass(frozen=True)
class FlowTriggered(BaseEvent):
    type: ClassVar[EventType] = EventType.FLOW_TRIGGERED

    flow_id: str
    flow_token: str
    message: Message
    message_index: int
    flow_data: Mapping[str, Any] = field(default_factory=freeze)
    steps: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class FlowCompleted(BaseEvent):
    type: ClassVar[EventType] = EventType.FLOW_COMPLETED

    flow_id: str
    flow_token: str
    result: Mapping[str, Any] = field(default_factory=freeze)
    duration: float = 0.0


@dataclass(frozen=True)
class FlowFailed(BaseEvent):
    type: ClassVar[EventType] = EventType.FLOW_FAILED

    flow_id: str
    flow_token: str
    error: Optional[ErrorInfo] = None


ConversationEvent = Union[
    ConversationStarted,
    ConversationPaused,
    ConversationResumed,
    ConversationCompleted,
    ConversationReset,
    ConversationError,
    ConversationSpeedChanged,
    ConversationJumped,
    MessageTypingStarted,
    MessageTypingStopped,
    MessageSent,
    MessageDelivered,
    MessageRead,
    FlowTriggered,
    FlowCompleted,
    FlowFailed,
]

EVENT_CLASSES: Mapping[EventType, type] = {
    cls.type: cls
    for cls in (
        ConversationStarted,
        ConversationPaused,
        ConversationResumed,
        ConversationCompleted,
        ConversationReset,
        ConversationError,
        ConversationSpeedChanged,
        ConversationJumped,
        MessageTypingStarted,
        MessageTypingStopped,
        MessageSent,
        MessageDelivered,
        MessageRead,
        FlowTriggered,
        FlowCompleted,
        FlowFailed,
    )
}

EventPredicate = Callable[[BaseEvent], bool]


class EventFilters:
    """Ready-made predicates for ``filtered`` subscriptions."""

    @staticmethod
    def is_conversation_event(event: BaseEvent) -> bool:
        return event.type.value.startswith("conversation.")

    @staticmethod
    def is_message_event(event: BaseEvent) -> bool:
        return isinstance(event, MessageEvent)

    @staticmethod
    def is_flow_event(event: BaseEvent) -> bool:
        return event.type.value.startswith("flow.")

    @staticmethod
    def is_error_event(event: BaseEvent) -> bool:
        return event.type in (EventType.CONVERSATION_ERROR, EventType.FLOW_FAILED)

    @staticmethod
    def by_type(*event_types: EventType) -> EventPredicate:
        wanted = frozenset(event_types)
        return lambda event: event.type in wanted

    @staticmethod
    def by_conversation(conversation_id: str) -> EventPredicate:
        return lambda event: event.conversation_id == conversation_id


def event_to_dict(event: BaseEvent) -> dict[str, Any]:
    """Flat JSON-friendly view of an event (used by the event log and the API)."""
    data: dict[str, Any] = {
        "type": event.type.value,
        "conversation_id": event.conversation_id,
        "timestamp": event.timestamp,
    }
    if isinstance(event, (MessageEvent, FlowTriggered)):
        data["message_id"] = event.message.id
        data["message_index"] = event.message_index
        data["sender"] = event.message.sender.value
    for name in ("flow_id", "flow_token", "old_speed", "new_speed", "from_index",
                 "to_index", "total_messages", "duration", "current_message_index",
                 "playback_speed"):
        if hasattr(event, name):
            data[name] = getattr(event, name)
    for name in ("result", "flow_data"):
        if hasattr(event, name):
            data[name] = dict(getattr(event, name))
    error = getattr(event, "error", None)
    if error is not None:
        data["error"] = {"code": error.code, "message": error.message,
                         "recoverable": error.recoverable}
    return data
