"""Flow service: executes embedded WhatsApp Flows triggered during playback

Subscribes to ``flow.triggered``. Each active flow has its own
max-execution timer; expiry reports ``flow.failed`` and never touches the
message schedule. With auto-complete on, a mock response completes the
flow after a short delay (demo mode).
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, cast

from wa_simulator.core.clock import Clock, TimerSet
from wa_simulator.core.conversation.models import freeze
from wa_simulator.core.event_bus import EventBus
from wa_simulator.core.events import (
    BaseEvent,
    ErrorInfo,
    EventType,
    FlowCompleted,
    FlowFailed,
    FlowTriggered,
)
from wa_simulator.core.errors import FlowTimeoutError, SimulatorError
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_EXECUTION_MS = 30000
DEFAULT_MOCK_EXECUTION_DELAY_MS = 2000

DEFAULT_MOCK_RESPONSES: Dict[str, Dict[str, Any]] = {
    "booking_flow": {
        "booking_id": "BK12345",
        "service": "Premium Consultation",
        "date": "2024-02-15",
        "time": "14:00",
        "status": "confirmed",
        "total_amount": 150,
    },
    "support_flow": {
        "ticket_id": "TK67890",
        "category": "Technical Support",
        "priority": "medium",
        "status": "created",
        "assigned_agent": "Sarah Johnson",
    },
    "feedback_flow": {
        "feedback_id": "FB11111",
        "rating": 5,
        "category": "service_quality",
        "comment": "Excellent service, very satisfied!",
        "would_recommend": True,
    },
    "catalog_flow": {
        "items_selected": ["item_1", "item_3", "item_7"],
        "total_items": 3,
        "estimated_total": 299.99,
        "currency": "USD",
        "next_action": "proceed_to_cart",
    },
}
GENERIC_MOCK_RESPONSE = {"status": "completed", "message": "Flow completed successfully"}


@dataclass(frozen=True)
class FlowState:
    flow_id: str
    flow_token: str
    conversation_id: str
    message_index: int
    start_time: float
    data: Mapping[str, Any] = field(default_factory=freeze)
    steps: Tuple[Mapping[str, Any], ...] = ()
    is_active: bool = True
    is_completed: bool = False
    has_error: bool = False
    end_time: Optional[float] = None
    result: Optional[Mapping[str, Any]] = None
    error: Optional[ErrorInfo] = None

    @property
    def execution_time(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


class FlowService:
    """Flow lifecycle: triggered → completed | failed (timeout / cancel)"""

    def __init__(
        self,
        event_bus: EventBus,
        clock: Clock,
        max_execution_ms: float = DEFAULT_MAX_EXECUTION_MS,
        auto_complete: bool = True,
        mock_execution_delay_ms: float = DEFAULT_MOCK_EXECUTION_DELAY_MS,
        mock_responses: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self._bus = event_bus
        self._clock = clock
        self._max_execution_ms = max_execution_ms
        self._auto_complete = auto_complete
        self._mock_delay_ms = mock_execution_delay_ms
        self._mock_responses = {**DEFAULT_MOCK_RESPONSES, **(mock_responses or {})}
        self._timers = TimerSet(clock, "flows")
        self._active: Dict[str, FlowState] = {}
        self._history: List[FlowState] = []
        self._unsubscribers = self._register_event_handlers()

    def _register_event_handlers(self) -> list:
        """EventBus subscriptions"""
        return [
            self._bus.subscribe(self._on_flow_triggered, EventType.FLOW_TRIGGERED),
            self._bus.subscribe(self._on_paused, EventType.CONVERSATION_PAUSED),
            self._bus.subscribe(
                self._on_resumed,
                EventType.CONVERSATION_RESUMED,
                EventType.CONVERSATION_STARTED,
            ),
            self._bus.subscribe(
                self._on_rewound,
                EventType.CONVERSATION_RESET,
                EventType.CONVERSATION_JUMPED,
            ),
        ]

    # === Queries ===

    @property
    def pending_timer_count(self) -> int:
        return self._timers.pending_count

    def get_flow_state(self, flow_token: str) -> Optional[FlowState]:
        return self._active.get(flow_token)

    def active_flows(self) -> List[FlowState]:
        return list(self._active.values())

    @property
    def history(self) -> List[FlowState]:
        return list(self._history)

    @property
    def last_completed(self) -> Optional[FlowState]:
        for flow in reversed(self._history):
            if flow.is_completed:
                return flow
        return None

    def clear_history(self) -> None:
        self._history.clear()

    # === Control ===

    def complete_flow(self, flow_token: str, result: Mapping[str, Any]) -> bool:
        """Finish an active flow with ``result``. False when the token is unknown."""
        flow = self._active.pop(flow_token, None)
        if flow is None:
            logger.warning("complete_flow: no active flow %s", flow_token)
            return False
        self._cancel_timers(flow_token)
        now = self._clock.now()
        done = replace(
            flow,
            is_active=False,
            is_completed=True,
            end_time=now,
            result=freeze(result),
        )
        self._history.append(done)
        self._bus.emit(
            FlowCompleted(
                conversation_id=flow.conversation_id,
                timestamp=now,
                flow_id=flow.flow_id,
                flow_token=flow_token,
                result=done.result,
                duration=done.execution_time or 0.0,
            )
        )
        logger.info("Flow completed: %s (%s)", flow.flow_id, flow_token)
        return True

    def cancel_flow(self, flow_token: str, reason: str = "Cancelled") -> bool:
        flow = self._active.get(flow_token)
        if flow is None:
            return False
        return self._fail(flow, SimulatorError(f"Flow cancelled: {reason}"))

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._timers.cancel_all()
        self._active.clear()

    # === Event handlers ===

    def _on_flow_triggered(self, event: BaseEvent) -> None:
        event = cast(FlowTriggered, event)
        if event.flow_token in self._active:
            logger.warning("Flow already active: %s", event.flow_token)
            return
        flow = FlowState(
            flow_id=event.flow_id,
            flow_token=event.flow_token,
            conversation_id=event.conversation_id,
            message_index=event.message_index,
            start_time=self._clock.now(),
            data=event.flow_data,
            steps=event.steps,
        )
        self._active[flow.flow_token] = flow
        token = flow.flow_token
        self._timers.schedule(
            (token, "timeout"), self._max_execution_ms, lambda: self._on_timeout(token)
        )
        if self._auto_complete:
            self._timers.schedule(
                (token, "mock"), self._mock_delay_ms, lambda: self._on_mock_done(token)
            )
        logger.info("Flow started: %s (%s)", flow.flow_id, token)

    def _on_paused(self, event: BaseEvent) -> None:
        self._timers.suspend()

    def _on_resumed(self, event: BaseEvent) -> None:
        self._timers.resume()

    def _on_rewound(self, event: BaseEvent) -> None:
        if event.type == EventType.CONVERSATION_JUMPED:
            reason = "Conversation jumped"
        else:
            reason = "Conversation reset"
        for token in list(self._active):
            logger.info("Cancelling flow %s: %s", token, reason)
            self.cancel_flow(token, reason)
        self._timers.cancel_all()

    # === Timer callbacks ===

    def _on_timeout(self, flow_token: str) -> None:
        flow = self._active.get(flow_token)
        if flow is None:
            return
        logger.warning("Flow timed out: %s (%s)", flow.flow_id, flow_token)
        self._fail(flow, FlowTimeoutError(flow.flow_id, flow_token, self._max_execution_ms))

    def _on_mock_done(self, flow_token: str) -> None:
        flow = self._active.get(flow_token)
        if flow is None:
            return
        response = self._mock_responses.get(flow.flow_id, GENERIC_MOCK_RESPONSE)
        self.complete_flow(flow_token, response)

    def _fail(self, flow: FlowState, error: SimulatorError) -> bool:
        self._active.pop(flow.flow_token, None)
        self._cancel_timers(flow.flow_token)
        now = self._clock.now()
        info = ErrorInfo.from_exception(error)
        failed = replace(flow, is_active=False, has_error=True, end_time=now, error=info)
        self._history.append(failed)
        self._bus.emit(
            FlowFailed(
                conversation_id=flow.conversation_id,
                timestamp=now,
                flow_id=flow.flow_id,
                flow_token=flow.flow_token,
                error=info,
            )
        )
        return True

    def _cancel_timers(self, flow_token: str) -> None:
        self._timers.cancel((flow_token, "timeout"))
        self._timers.cancel((flow_token, "mock"))
