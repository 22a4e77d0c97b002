"""Playback core: pure state transforms, scheduling, typing reducer"""

from .schedule import (
    MessageProcessingConfig,
    Phase,
    PhaseKind,
    ScheduledMessage,
    build_phases,
    compute_schedule,
    estimate_duration,
    rescale_remaining,
    time_to_message,
)
from .state import PlaybackProgress, PlaybackState, PlaybackStatus
from .typing import apply_typing_event, derive_typing_state

__all__ = [
    "MessageProcessingConfig",
    "Phase",
    "PhaseKind",
    "PlaybackProgress",
    "PlaybackState",
    "PlaybackStatus",
    "ScheduledMessage",
    "apply_typing_event",
    "build_phases",
    "compute_schedule",
    "derive_typing_state",
    "estimate_duration",
    "rescale_remaining",
    "time_to_message",
]
