"""API request/response schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


# === Request Schemas ===


class LoadRequest(BaseModel):
    """Load a catalog scenario or an inline template"""

    scenario_id: Optional[str] = Field(None, description="Catalog scenario id")
    template: Optional[dict[str, Any]] = Field(
        None, description="Inline conversation template (camelCase or snake_case)"
    )
    autoplay: bool = False

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "LoadRequest":
        if (self.scenario_id is None) == (self.template is None):
            raise ValueError("Provide exactly one of 'scenario_id' or 'template'")
        return self


class JumpRequest(BaseModel):
    index: int = Field(..., ge=0, description="Message index to seek to")


class SpeedRequest(BaseModel):
    speed: float = Field(..., gt=0, description="Playback speed multiplier (0.1 - 5.0)")


class FlowCompleteRequest(BaseModel):
    result: dict[str, Any] = Field(default_factory=dict)


# === Response Schemas ===


class ErrorInfoSchema(BaseModel):
    code: str
    message: str
    recoverable: bool = True


class ProgressInfo(BaseModel):
    completion_percentage: float
    elapsed_time: float
    remaining_time: float


class MessageInfo(BaseModel):
    """Message snapshot"""

    id: str
    index: int
    sender: str
    type: str
    status: str
    text: str
    is_flow_trigger: bool = False
    queue_at: float
    sent_at: Optional[float] = None
    delivered_at: Optional[float] = None
    read_at: Optional[float] = None


class BadgeInfo(BaseModel):
    id: str
    title: str
    subtitle: str = ""
    trigger_at_message_index: int
    display_duration: float


class StateResponse(BaseModel):
    """Playback state snapshot"""

    status: str
    conversation_id: Optional[str] = None
    title: Optional[str] = None
    current_message_index: int = 0
    total_messages: int = 0
    playback_speed: float = 1.0
    progress: ProgressInfo
    typing: dict[str, bool] = {}
    messages: list[MessageInfo] = []
    active_badge: Optional[BadgeInfo] = None
    error: Optional[ErrorInfoSchema] = None


class ControlResponse(BaseModel):
    """Control call result + resulting state"""

    success: bool
    event: Optional[dict[str, Any]] = None
    state: StateResponse


class ScenarioInfo(BaseModel):
    id: str
    title: str
    description: str = ""
    business_name: str
    message_count: int
    estimated_duration: float
    tags: list[str] = []
    category: Optional[str] = None


class EventsResponse(BaseModel):
    events: list[dict[str, Any]] = []


class ErrorResponse(BaseModel):
    """Error response"""

    detail: str
