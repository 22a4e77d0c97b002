"""Message processing: schedule computation (pure)

Offsets are milliseconds relative to the moment playback (re)starts at
``start_index``. For message ``i``:

    typing_start[i] = send[i-1] + delay_before_typing[i] / speed
    send[i]         = typing_start[i] + typing_duration[i] / speed

with ``send[start_index - 1] = 0``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Union

from wa_simulator.core.conversation.models import Conversation, SenderType
from wa_simulator.core.conversation.template import ConversationTemplate, build_conversation
from wa_simulator.core.errors import InvalidMessageIndexError
from wa_simulator.core.playback.state import validate_speed

ScheduleSource = Union[Conversation, ConversationTemplate]


@dataclass(frozen=True)
class MessageProcessingConfig:
    """Fast mode caps the scaled delay and typing time of every message."""

    fast_mode: bool = False
    max_delay_ms: float = 500.0
    max_typing_ms: float = 800.0


@dataclass(frozen=True)
class ScheduledMessage:
    index: int
    message_id: str
    sender: SenderType
    delay_before_typing: float
    typing_duration: float
    typing_start: float
    send: float


class PhaseKind(str, Enum):
    READ = "read"
    TYPING_START = "typing_start"
    SEND = "send"


@dataclass(frozen=True)
class Phase:
    """One timed transition. ``order`` is the execution order within a schedule."""

    order: int
    kind: PhaseKind
    message_index: int
    offset: float

    @property
    def key(self) -> str:
        return f"{self.order:04d}:{self.kind.value}:{self.message_index}"


def _as_conversation(source: ScheduleSource) -> Conversation:
    if isinstance(source, ConversationTemplate):
        return build_conversation(source)
    return source


def compute_schedule(
    source: ScheduleSource,
    speed: float,
    start_index: int = 0,
    config: Optional[MessageProcessingConfig] = None,
) -> List[ScheduledMessage]:
    """Offsets of every message from ``start_index`` on. Raises InvalidSpeedError."""
    speed = validate_speed(speed)
    conversation = _as_conversation(source)
    total = len(conversation)
    if not 0 <= start_index <= total:
        raise InvalidMessageIndexError(start_index, total)
    config = config or MessageProcessingConfig()

    schedule: List[ScheduledMessage] = []
    previous_send = 0.0
    for index in range(start_index, total):
        message = conversation.messages[index]
        delay = message.timing.delay_before_typing / speed
        typing = message.timing.typing_duration / speed
        if config.fast_mode:
            delay = min(delay, config.max_delay_ms)
            typing = min(typing, config.max_typing_ms)
        typing_start = previous_send + delay
        send = typing_start + typing
        schedule.append(
            ScheduledMessage(
                index=index,
                message_id=message.id,
                sender=message.sender,
                delay_before_typing=delay,
                typing_duration=typing,
                typing_start=typing_start,
                send=send,
            )
        )
        previous_send = send
    return schedule


def build_phases(schedule: Sequence[ScheduledMessage], read_receipts: bool = True) -> List[Phase]:
    """Flatten a schedule into ordered phases.

    Per message: READ of the previous message (read receipts only), then
    TYPING_START, then SEND. The last message is read right after it is sent.
    """
    phases: List[Phase] = []

    def add(kind: PhaseKind, index: int, offset: float) -> None:
        phases.append(Phase(order=len(phases), kind=kind, message_index=index, offset=offset))

    for position, item in enumerate(schedule):
        if read_receipts and position > 0:
            add(PhaseKind.READ, schedule[position - 1].index, item.typing_start)
        add(PhaseKind.TYPING_START, item.index, item.typing_start)
        add(PhaseKind.SEND, item.index, item.send)
    if read_receipts and schedule:
        add(PhaseKind.READ, schedule[-1].index, schedule[-1].send)
    return phases


def rescale_remaining(remaining: float, old_speed: float, new_speed: float) -> float:
    return remaining * old_speed / new_speed


def estimate_duration(
    source: ScheduleSource,
    speed: float = 1.0,
    config: Optional[MessageProcessingConfig] = None,
) -> float:
    schedule = compute_schedule(source, speed, config=config)
    return schedule[-1].send if schedule else 0.0


def time_to_message(schedule: Sequence[ScheduledMessage], index: int) -> Optional[float]:
    """Typing-start offset of message ``index``, None when it is not scheduled."""
    for item in schedule:
        if item.index == index:
            return item.typing_start
    return None
