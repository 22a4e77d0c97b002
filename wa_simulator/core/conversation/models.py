"""Conversation domain model (framework free)

Messages and conversations are frozen values. Every change returns a new
instance; ``Conversation.replace_message`` is the only way a message's
status or timing stamps move forward.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from wa_simulator.core.errors import InvalidStatusTransitionError


class SenderType(str, Enum):
    USER = "user"
    BUSINESS = "business"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    CONTACT = "contact"
    INTERACTIVE = "interactive"
    TEMPLATE = "template"
    FLOW = "flow"


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


STATUS_TRANSITIONS: Dict[MessageStatus, frozenset] = {
    MessageStatus.SENDING: frozenset({MessageStatus.SENT, MessageStatus.FAILED}),
    MessageStatus.SENT: frozenset({MessageStatus.DELIVERED, MessageStatus.FAILED}),
    MessageStatus.DELIVERED: frozenset({MessageStatus.READ}),
    MessageStatus.READ: frozenset(),
    MessageStatus.FAILED: frozenset({MessageStatus.SENDING}),  # retry
}


def is_valid_status_transition(
    from_status: MessageStatus, to_status: MessageStatus
) -> bool:
    return to_status in STATUS_TRANSITIONS[from_status]


def freeze(data: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    """Read-only shallow copy, used for every payload that leaves the engine."""
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class FlowContent:
    """Embedded WhatsApp Flow carried by a trigger message."""

    flow_id: str
    flow_token: Optional[str] = None
    flow_data: Mapping[str, Any] = field(default_factory=freeze)
    steps: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class MessageContent:
    text: Optional[str] = None
    media: Optional[Mapping[str, Any]] = None
    interactive: Optional[Mapping[str, Any]] = None
    template: Optional[Mapping[str, Any]] = None
    flow: Optional[FlowContent] = None
    location: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class MessageTiming:
    """Timing metadata in milliseconds.

    ``queue_at`` is the typing-start offset at 1.0x. The ``*_at`` stamps are
    clock times recorded as the message moves through its statuses.
    """

    queue_at: float
    typing_duration: float
    delay_before_typing: float
    sent_at: Optional[float] = None
    delivered_at: Optional[float] = None
    read_at: Optional[float] = None


@dataclass(frozen=True)
class Message:
    id: str
    sender: SenderType
    type: MessageType
    content: MessageContent
    timing: MessageTiming
    status: MessageStatus = MessageStatus.SENDING
    is_flow_trigger: bool = False

    def with_status(self, new_status: MessageStatus, at: Optional[float] = None) -> Message:
        """Move to ``new_status``. Raises InvalidStatusTransitionError on an illegal step."""
        if not is_valid_status_transition(self.status, new_status):
            raise InvalidStatusTransitionError(
                self.id, self.status.value, new_status.value
            )
        timing = self.timing
        if new_status == MessageStatus.SENT:
            timing = replace(timing, sent_at=at)
        elif new_status == MessageStatus.DELIVERED:
            timing = replace(timing, delivered_at=at)
        elif new_status == MessageStatus.READ:
            timing = replace(timing, read_at=at)
        return replace(self, status=new_status, timing=timing)

    def rewound(self) -> Message:
        """Back to ``sending`` with status stamps cleared (reset / backward seek only)."""
        return replace(
            self,
            status=MessageStatus.SENDING,
            timing=replace(self.timing, sent_at=None, delivered_at=None, read_at=None),
        )

    @property
    def display_text(self) -> str:
        return get_message_display_text(self)


def is_flow_trigger(message: Message) -> bool:
    if message.is_flow_trigger or message.type == MessageType.FLOW:
        return True
    interactive = message.content.interactive
    return (
        message.type == MessageType.INTERACTIVE
        and interactive is not None
        and interactive.get("type") == "flow"
    )


_MEDIA_LABELS = {
    MessageType.IMAGE: "📷 Image",
    MessageType.AUDIO: "🎵 Audio message",
    MessageType.VIDEO: "🎥 Video",
    MessageType.DOCUMENT: "📄 Document",
    MessageType.STICKER: "Sticker",
    MessageType.LOCATION: "📍 Location",
    MessageType.CONTACT: "👤 Contact",
    MessageType.FLOW: "📋 Flow",
}


def get_message_display_text(message: Message) -> str:
    content = message.content
    if message.type == MessageType.TEXT:
        return content.text or ""
    if message.type in (MessageType.IMAGE, MessageType.VIDEO) and content.media:
        caption = content.media.get("caption")
        if caption:
            return str(caption)
    if message.type == MessageType.INTERACTIVE and content.interactive:
        return str(content.interactive.get("body", ""))
    if message.type == MessageType.TEMPLATE and content.template:
        return f"Template: {content.template.get('name', '')}"
    if content.text:
        return content.text
    return _MEDIA_LABELS.get(message.type, "Message")


@dataclass(frozen=True)
class ConversationMetadata:
    id: str
    title: str
    business_name: str
    business_phone: str
    user_phone: str
    language: str = "en"
    description: str = ""
    tags: Tuple[str, ...] = ()
    category: Optional[str] = None
    estimated_duration: float = 0.0


@dataclass(frozen=True)
class ConversationSettings:
    playback_speed: float = 1.0
    auto_advance: bool = True
    show_typing_indicators: bool = True
    show_read_receipts: bool = True


@dataclass(frozen=True)
class EducationalBadge:
    id: str
    title: str
    trigger_at_message_index: int
    display_duration: float
    subtitle: str = ""


@dataclass(frozen=True)
class Conversation:
    metadata: ConversationMetadata
    messages: Tuple[Message, ...]
    settings: ConversationSettings = field(default_factory=ConversationSettings)
    educational_badges: Tuple[EducationalBadge, ...] = ()

    @property
    def id(self) -> str:
        return self.metadata.id

    def __len__(self) -> int:
        return len(self.messages)

    def message_at(self, index: int) -> Optional[Message]:
        if 0 <= index < len(self.messages):
            return self.messages[index]
        return None

    def index_of(self, message_id: str) -> int:
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                return i
        raise KeyError(f"Message not found: {message_id}")

    def replace_message(self, message: Message) -> Conversation:
        index = self.index_of(message.id)
        messages = self.messages[:index] + (message,) + self.messages[index + 1 :]
        return replace(self, messages=messages)

    def rewind(self) -> Conversation:
        return replace(self, messages=tuple(m.rewound() for m in self.messages))

    def with_settings(self, **changes: Any) -> Conversation:
        return replace(self, settings=replace(self.settings, **changes))
