"""Conversation template schema and the template -> Conversation factory.

Templates arrive from the scenario catalog (JSON) or from API callers, so
both camelCase and snake_case keys are accepted.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from wa_simulator.core.conversation.models import (
    Conversation,
    ConversationMetadata,
    ConversationSettings,
    EducationalBadge,
    FlowContent,
    Message,
    MessageContent,
    MessageTiming,
    MessageType,
    SenderType,
    freeze,
)
from wa_simulator.core.errors import (
    MAX_PLAYBACK_SPEED,
    MIN_PLAYBACK_SPEED,
    InvalidTemplateError,
)

# typing duration per message type when the template leaves it out (ms)
TYPE_TYPING_DURATIONS = {
    MessageType.IMAGE: 2500,
    MessageType.VIDEO: 2500,
    MessageType.AUDIO: 1800,
    MessageType.DOCUMENT: 2000,
    MessageType.INTERACTIVE: 3000,
    MessageType.TEMPLATE: 2200,
    MessageType.FLOW: 3500,
}
DEFAULT_TYPING_DURATION = 1500
MS_PER_CHARACTER = 50
MIN_TEXT_TYPING = 800
MAX_TEXT_TYPING = 4000


class _TemplateModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class TemplateMetadata(_TemplateModel):
    id: str = Field(..., min_length=1)
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    business_name: str
    business_phone: str = Field(
        default="",
        validation_alias=AliasChoices(
            "businessPhone", "businessPhoneNumber", "business_phone"
        ),
    )
    user_phone: str = Field(
        default="",
        validation_alias=AliasChoices("userPhone", "userPhoneNumber", "user_phone"),
    )
    language: str = "en"
    category: Optional[str] = None


class FlowTemplate(_TemplateModel):
    flow_id: str
    flow_token: Optional[str] = None
    flow_data: dict[str, Any] = Field(default_factory=dict)
    steps: list[dict[str, Any]] = Field(default_factory=list)


class ContentTemplate(_TemplateModel):
    text: Optional[str] = None
    media: Optional[dict[str, Any]] = None
    interactive: Optional[dict[str, Any]] = None
    template: Optional[dict[str, Any]] = None
    flow: Optional[FlowTemplate] = None
    location: Optional[dict[str, Any]] = None


class MessageTemplate(_TemplateModel):
    sender: SenderType
    type: MessageType = MessageType.TEXT
    content: ContentTemplate = Field(default_factory=ContentTemplate)
    delay_before_typing: Optional[float] = Field(default=None, ge=0)
    typing_duration: Optional[float] = Field(default=None, ge=0)
    is_flow_trigger: bool = Field(
        default=False,
        validation_alias=AliasChoices("isFlowTrigger", "flowTrigger", "is_flow_trigger"),
    )


class SettingsTemplate(_TemplateModel):
    playback_speed: float = Field(
        default=1.0, ge=MIN_PLAYBACK_SPEED, le=MAX_PLAYBACK_SPEED
    )
    auto_advance: bool = True
    show_typing_indicators: bool = True
    show_read_receipts: bool = True


class BadgeTemplate(_TemplateModel):
    """Shown when the message at ``trigger_at_message_index`` is sent."""

    id: str
    title: str
    subtitle: str = ""
    trigger_at_message_index: int = Field(..., ge=0)
    display_duration: float = Field(default=3000, gt=0)


class ConversationTemplate(_TemplateModel):
    """Declarative script of a demo conversation."""

    metadata: TemplateMetadata
    messages: list[MessageTemplate] = Field(..., min_length=1)
    settings: SettingsTemplate = Field(default_factory=SettingsTemplate)
    educational_badges: list[BadgeTemplate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _badges_point_at_messages(self) -> ConversationTemplate:
        for badge in self.educational_badges:
            if badge.trigger_at_message_index >= len(self.messages):
                raise ValueError(
                    f"Badge {badge.id} triggers at message "
                    f"{badge.trigger_at_message_index}, but the template has "
                    f"{len(self.messages)} messages"
                )
        return self


def parse_template(data: Mapping[str, Any]) -> ConversationTemplate:
    """Validate raw template data. Raises InvalidTemplateError."""
    try:
        return ConversationTemplate.model_validate(data)
    except ValidationError as e:
        raise InvalidTemplateError(f"Invalid conversation template: {e}") from e


def default_delay_before_typing(sender: SenderType, index: int) -> float:
    base_delay = 500 if index == 0 else 1500
    multiplier = 1.2 if sender == SenderType.BUSINESS else 1.0
    return float(round(base_delay * multiplier))


def default_typing_duration(message: MessageTemplate) -> float:
    if message.type == MessageType.TEXT:
        length = len(message.content.text or "")
        return float(max(MIN_TEXT_TYPING, min(MAX_TEXT_TYPING, length * MS_PER_CHARACTER)))
    return float(TYPE_TYPING_DURATIONS.get(message.type, DEFAULT_TYPING_DURATION))


def _build_content(content: ContentTemplate) -> MessageContent:
    flow = None
    if content.flow is not None:
        flow = FlowContent(
            flow_id=content.flow.flow_id,
            flow_token=content.flow.flow_token,
            flow_data=freeze(content.flow.flow_data),
            steps=tuple(freeze(step) for step in content.flow.steps),
        )
    return MessageContent(
        text=content.text,
        media=freeze(content.media) if content.media is not None else None,
        interactive=freeze(content.interactive) if content.interactive is not None else None,
        template=freeze(content.template) if content.template is not None else None,
        flow=flow,
        location=freeze(content.location) if content.location is not None else None,
    )


def build_conversation(template: ConversationTemplate) -> Conversation:
    """Derive a Conversation from a template.

    Message ids are ``<conversation id>-msg-<n>`` so the same template always
    yields the same identities. An explicit ``0`` delay or typing duration is
    kept; only missing values fall back to the defaults.
    """
    conversation_id = template.metadata.id
    messages = []
    elapsed = 0.0
    for index, msg in enumerate(template.messages):
        delay = (
            msg.delay_before_typing
            if msg.delay_before_typing is not None
            else default_delay_before_typing(msg.sender, index)
        )
        typing = (
            msg.typing_duration
            if msg.typing_duration is not None
            else default_typing_duration(msg)
        )
        queue_at = elapsed + delay
        elapsed = queue_at + typing
        messages.append(
            Message(
                id=f"{conversation_id}-msg-{index + 1}",
                sender=msg.sender,
                type=msg.type,
                content=_build_content(msg.content),
                timing=MessageTiming(
                    queue_at=queue_at,
                    typing_duration=float(typing),
                    delay_before_typing=float(delay),
                ),
                is_flow_trigger=msg.is_flow_trigger,
            )
        )

    meta = template.metadata
    metadata = ConversationMetadata(
        id=conversation_id,
        title=meta.title,
        business_name=meta.business_name,
        business_phone=meta.business_phone,
        user_phone=meta.user_phone,
        language=meta.language,
        description=meta.description,
        tags=tuple(meta.tags),
        category=meta.category,
        estimated_duration=elapsed,
    )
    settings = ConversationSettings(
        playback_speed=template.settings.playback_speed,
        auto_advance=template.settings.auto_advance,
        show_typing_indicators=template.settings.show_typing_indicators,
        show_read_receipts=template.settings.show_read_receipts,
    )
    badges = tuple(
        EducationalBadge(
            id=b.id,
            title=b.title,
            subtitle=b.subtitle,
            trigger_at_message_index=b.trigger_at_message_index,
            display_duration=b.display_duration,
        )
        for b in template.educational_badges
    )
    return Conversation(
        metadata=metadata,
        messages=tuple(messages),
        settings=settings,
        educational_badges=badges,
    )
