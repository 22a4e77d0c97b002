"""Conversation model, template schema and scenario catalog."""

from .catalog import ScenarioCatalog
from .models import (
    Conversation,
    ConversationMetadata,
    ConversationSettings,
    EducationalBadge,
    FlowContent,
    Message,
    MessageContent,
    MessageStatus,
    MessageTiming,
    MessageType,
    SenderType,
    is_flow_trigger,
)
from .template import ConversationTemplate, build_conversation, parse_template

__all__ = [
    "Conversation",
    "ConversationMetadata",
    "ConversationSettings",
    "ConversationTemplate",
    "EducationalBadge",
    "FlowContent",
    "Message",
    "MessageContent",
    "MessageStatus",
    "MessageTiming",
    "MessageType",
    "ScenarioCatalog",
    "SenderType",
    "build_conversation",
    "is_flow_trigger",
    "parse_template",
]
