"""Simulator error taxonomy.

Recoverable errors are returned to callers inside a failed ``Result``.
``InvalidStatusTransitionError`` and ``DisposedError`` are raised: the first
is a programming error inside the engine, the second a lifecycle bug in the
caller. Neither is ever swallowed.
"""

from __future__ import annotations

MIN_PLAYBACK_SPEED = 0.1
MAX_PLAYBACK_SPEED = 5.0


class SimulatorError(Exception):
    """Base class for every error the engine produces."""

    recoverable: bool = True


class InvalidSpeedError(SimulatorError):
    def __init__(self, speed: float):
        self.speed = speed
        super().__init__(
            f"Speed must be between {MIN_PLAYBACK_SPEED}x and "
            f"{MAX_PLAYBACK_SPEED}x, got {speed}x"
        )


class InvalidMessageIndexError(SimulatorError):
    def __init__(self, index: int, total: int):
        self.index = index
        self.total = total
        super().__init__(f"Invalid message index: {index} (messages: {total})")


class NoConversationError(SimulatorError):
    def __init__(self) -> None:
        super().__init__("No conversation loaded")


class InvalidPlaybackStateError(SimulatorError):
    """Control call not allowed in the current playback status."""

    def __init__(self, action: str, status: str):
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action}: playback is {status}")


class InvalidTemplateError(SimulatorError):
    """Conversation template failed validation."""


class FlowTimeoutError(SimulatorError):
    def __init__(self, flow_id: str, flow_token: str, timeout_ms: float):
        self.flow_id = flow_id
        self.flow_token = flow_token
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Flow {flow_id} ({flow_token}) exceeded {timeout_ms:.0f}ms"
        )


class InvalidStatusTransitionError(SimulatorError):
    recoverable = False

    def __init__(self, message_id: str, from_status: str, to_status: str):
        self.message_id = message_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid status transition for {message_id}: "
            f"{from_status} -> {to_status}"
        )


class DisposedError(SimulatorError):
    recoverable = False

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Orchestrator already destroyed; cannot {action}()")


class UnknownFlowError(SimulatorError):
    def __init__(self, flow_token: str):
        self.flow_token = flow_token
        super().__init__(f"No active flow with token {flow_token}")
