"""Playback state and its pure transforms (framework free, no I/O)

Every function takes a ``PlaybackState`` and returns a new one. Invalid
input raises a ``SimulatorError`` and leaves the caller's state untouched.
``current_message_index`` is the index of the next message to be sent; it
equals the message count once the conversation has completed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping, Optional

from wa_simulator.core.conversation.models import (
    Conversation,
    Message,
    MessageStatus,
    SenderType,
    freeze,
)
from wa_simulator.core.errors import (
    MAX_PLAYBACK_SPEED,
    MIN_PLAYBACK_SPEED,
    InvalidMessageIndexError,
    InvalidSpeedError,
    NoConversationError,
)
from wa_simulator.core.events import ErrorInfo


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class PlaybackProgress:
    completion_percentage: float = 0.0
    elapsed_time: float = 0.0
    remaining_time: float = 0.0


@dataclass(frozen=True)
class PlaybackState:
    conversation: Optional[Conversation] = None
    is_playing: bool = False
    is_paused: bool = False
    is_completed: bool = False
    has_error: bool = False
    current_message_index: int = 0
    playback_speed: float = 1.0
    progress: PlaybackProgress = field(default_factory=PlaybackProgress)
    typing_states: Mapping[SenderType, bool] = field(default_factory=freeze)
    error: Optional[ErrorInfo] = None

    @property
    def status(self) -> PlaybackStatus:
        if self.has_error:
            return PlaybackStatus.ERROR
        if self.conversation is None:
            return PlaybackStatus.IDLE
        if self.is_completed:
            return PlaybackStatus.COMPLETED
        if self.is_playing:
            return PlaybackStatus.PLAYING
        if self.is_paused:
            return PlaybackStatus.PAUSED
        return PlaybackStatus.LOADED

    @property
    def total_messages(self) -> int:
        return len(self.conversation) if self.conversation is not None else 0

    @property
    def current_message(self) -> Optional[Message]:
        if self.conversation is None:
            return None
        return self.conversation.message_at(self.current_message_index)

    @property
    def next_message(self) -> Optional[Message]:
        if self.conversation is None:
            return None
        return self.conversation.message_at(self.current_message_index + 1)

    @property
    def is_typing(self) -> bool:
        return any(self.typing_states.values())


def validate_speed(speed: float) -> float:
    if not MIN_PLAYBACK_SPEED <= speed <= MAX_PLAYBACK_SPEED:
        raise InvalidSpeedError(speed)
    return float(speed)


def completion_percentage(index: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return max(0.0, min(100.0, index / total * 100.0))


def _require_conversation(state: PlaybackState) -> Conversation:
    if state.conversation is None:
        raise NoConversationError()
    return state.conversation


def _with_index(state: PlaybackState, index: int) -> PlaybackState:
    progress = replace(
        state.progress,
        completion_percentage=completion_percentage(index, state.total_messages),
    )
    return replace(state, current_message_index=index, progress=progress)


def _full_duration(conversation: Conversation, speed: float) -> float:
    return conversation.metadata.estimated_duration / speed


# === Creation / loading ===


def create_initial_state(playback_speed: float = 1.0) -> PlaybackState:
    return PlaybackState(playback_speed=validate_speed(playback_speed))


def load(state: PlaybackState, conversation: Conversation) -> PlaybackState:
    """Replace whatever was loaded. Speed comes from the conversation settings."""
    speed = validate_speed(conversation.settings.playback_speed)
    return PlaybackState(
        conversation=conversation.rewind(),
        playback_speed=speed,
        progress=PlaybackProgress(remaining_time=_full_duration(conversation, speed)),
    )


# === Play / pause ===


def start(state: PlaybackState) -> PlaybackState:
    _require_conversation(state)
    return replace(
        state, is_playing=True, is_paused=False, is_completed=False, has_error=False
    )


def pause(state: PlaybackState) -> PlaybackState:
    return replace(state, is_playing=False, is_paused=True)


def resume(state: PlaybackState) -> PlaybackState:
    _require_conversation(state)
    return replace(state, is_playing=True, is_paused=False)


def complete(state: PlaybackState) -> PlaybackState:
    conversation = _require_conversation(state)
    done = _with_index(state, len(conversation))
    return replace(
        done,
        is_playing=False,
        is_paused=False,
        is_completed=True,
        typing_states=freeze(),
        progress=replace(done.progress, remaining_time=0.0),
    )


def set_error(state: PlaybackState, error: ErrorInfo) -> PlaybackState:
    return replace(
        state,
        is_playing=False,
        is_paused=False,
        has_error=True,
        error=error,
        typing_states=freeze(),
    )


# === Position ===


def advance(state: PlaybackState, index: int) -> PlaybackState:
    """Move to ``index``, valid range ``[0, n]``."""
    conversation = _require_conversation(state)
    if not 0 <= index <= len(conversation):
        raise InvalidMessageIndexError(index, len(conversation))
    return _with_index(state, index)


def reset(state: PlaybackState) -> PlaybackState:
    """Back to the start of the loaded conversation, keeping the current speed.

    Applying it twice yields the same state as applying it once.
    """
    if state.conversation is None:
        return PlaybackState(playback_speed=state.playback_speed)
    return PlaybackState(
        conversation=state.conversation.rewind(),
        playback_speed=state.playback_speed,
        progress=PlaybackProgress(
            remaining_time=_full_duration(state.conversation, state.playback_speed)
        ),
    )


def jump(
    state: PlaybackState, index: int, mark_read: bool = True, at: Optional[float] = None
) -> PlaybackState:
    """Seek to ``index`` (``[0, n-1]``).

    Messages before ``index`` end up delivered (read when ``mark_read``), the
    rest are back to ``sending``. Playing/paused flags are left to the caller.
    """
    conversation = _require_conversation(state)
    if not 0 <= index < len(conversation):
        raise InvalidMessageIndexError(index, len(conversation))

    rewound = conversation.rewind()
    messages = []
    for i, message in enumerate(rewound.messages):
        if i < index:
            message = message.with_status(MessageStatus.SENT, at).with_status(
                MessageStatus.DELIVERED, at
            )
            if mark_read:
                message = message.with_status(MessageStatus.READ, at)
        messages.append(message)

    moved = replace(
        state,
        conversation=replace(rewound, messages=tuple(messages)),
        is_completed=False,
        has_error=False,
        error=None,
        typing_states=freeze(),
    )
    return _with_index(moved, index)


# === Message status ===


def _update_message(
    state: PlaybackState, message_id: str, status: MessageStatus, at: Optional[float]
) -> PlaybackState:
    conversation = _require_conversation(state)
    message = conversation.messages[conversation.index_of(message_id)]
    return replace(
        state, conversation=conversation.replace_message(message.with_status(status, at))
    )


def mark_sent(state: PlaybackState, message_id: str, at: Optional[float] = None) -> PlaybackState:
    return _update_message(state, message_id, MessageStatus.SENT, at)


def mark_delivered(
    state: PlaybackState, message_id: str, at: Optional[float] = None
) -> PlaybackState:
    return _update_message(state, message_id, MessageStatus.DELIVERED, at)


def mark_read(state: PlaybackState, message_id: str, at: Optional[float] = None) -> PlaybackState:
    return _update_message(state, message_id, MessageStatus.READ, at)


# === Settings / derived data ===


def set_speed(state: PlaybackState, speed: float) -> PlaybackState:
    speed = validate_speed(speed)
    return replace(state, playback_speed=speed)


def with_typing_states(
    state: PlaybackState, typing_states: Mapping[SenderType, bool]
) -> PlaybackState:
    return replace(state, typing_states=freeze(typing_states))


def with_times(state: PlaybackState, elapsed: float, remaining: float) -> PlaybackState:
    progress = replace(
        state.progress, elapsed_time=max(0.0, elapsed), remaining_time=max(0.0, remaining)
    )
    return replace(state, progress=progress)


# === Queries ===


def can_play(state: PlaybackState) -> bool:
    return state.status in (
        PlaybackStatus.LOADED,
        PlaybackStatus.PAUSED,
        PlaybackStatus.COMPLETED,
        PlaybackStatus.PLAYING,
    )


def can_pause(state: PlaybackState) -> bool:
    return state.status == PlaybackStatus.PLAYING


def can_reset(state: PlaybackState) -> bool:
    return state.conversation is not None


def can_jump_to(state: PlaybackState, index: int) -> bool:
    return state.conversation is not None and 0 <= index < len(state.conversation)
