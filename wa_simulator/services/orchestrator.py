"""ConversationOrchestrator: public control surface of the engine

Wires one EventBus, one StateStore and the services that hang off them.
Services never call each other; everything between them goes through
events. ``destroy()`` must be called exactly once; any control call after
it raises ``DisposedError``.
"""

from typing import Any, Callable, Mapping, Optional, Union

from wa_simulator.core.clock import Clock
from wa_simulator.core.conversation.models import Conversation, EducationalBadge, SenderType
from wa_simulator.core.conversation.template import (
    ConversationTemplate,
    build_conversation,
    parse_template,
)
from wa_simulator.core.errors import DisposedError, SimulatorError, UnknownFlowError
from wa_simulator.core.event_bus import EventBus, EventHandler, Unsubscribe
from wa_simulator.core.events import EventType
from wa_simulator.core.playback import state as ps
from wa_simulator.core.playback.schedule import MessageProcessingConfig
from wa_simulator.core.playback.state import PlaybackState
from wa_simulator.core.result import Result
from wa_simulator.services.badge_service import BadgeScheduler
from wa_simulator.services.event_log import DEFAULT_LOG_SIZE, EventLog
from wa_simulator.services.flow_service import (
    DEFAULT_MAX_EXECUTION_MS,
    DEFAULT_MOCK_EXECUTION_DELAY_MS,
    FlowService,
)
from wa_simulator.services.playback_service import PlaybackService
from wa_simulator.services.state_store import StateListener, StateStore
from wa_simulator.services.typing_service import TypingService
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

ConversationSource = Union[Conversation, ConversationTemplate, Mapping[str, Any]]


class EventStream:
    """Read-only view of the bus: observers may subscribe, never emit."""

    def __init__(self, event_bus: EventBus):
        self._bus = event_bus

    def subscribe(self, handler: EventHandler, *event_types: EventType) -> Unsubscribe:
        return self._bus.subscribe(handler, *event_types)


class ConversationOrchestrator:
    """Facade over playback, typing, flow and badge services.

    Usage:
        orchestrator = ConversationOrchestrator(FakeClock())
        orchestrator.events.subscribe(print, EventType.MESSAGE_SENT)
        orchestrator.load_conversation(template, autoplay=True)
        ...
        orchestrator.destroy()
    """

    def __init__(
        self,
        clock: Clock,
        event_bus: Optional[EventBus] = None,
        processing: Optional[MessageProcessingConfig] = None,
        auto_restart_delay_ms: Optional[float] = None,
        flow_max_execution_ms: float = DEFAULT_MAX_EXECUTION_MS,
        flow_auto_complete: bool = True,
        flow_mock_execution_delay_ms: float = DEFAULT_MOCK_EXECUTION_DELAY_MS,
        event_log_size: int = DEFAULT_LOG_SIZE,
    ):
        self._clock = clock
        self._bus = event_bus or EventBus()
        self._store = StateStore()
        self._playback = PlaybackService(
            self._bus,
            self._store,
            clock,
            config=processing,
            auto_restart_delay_ms=auto_restart_delay_ms,
        )
        self._typing = TypingService(self._bus, sink=self._on_typing_changed)
        self._flows = FlowService(
            self._bus,
            clock,
            max_execution_ms=flow_max_execution_ms,
            auto_complete=flow_auto_complete,
            mock_execution_delay_ms=flow_mock_execution_delay_ms,
        )
        self._badges = BadgeScheduler(self._bus, clock)
        self._log = EventLog(self._bus, max_size=event_log_size)
        self._events = EventStream(self._bus)
        self._destroyed = False

    @classmethod
    def from_settings(cls, clock: Clock, settings: Any) -> "ConversationOrchestrator":
        """Build from a ``config.Settings`` instance."""
        return cls(
            clock,
            processing=MessageProcessingConfig(fast_mode=settings.FAST_MODE),
            auto_restart_delay_ms=settings.AUTO_RESTART_DELAY_MS,
            flow_max_execution_ms=settings.FLOW_MAX_EXECUTION_MS,
            flow_auto_complete=settings.FLOW_AUTO_COMPLETE,
            flow_mock_execution_delay_ms=settings.FLOW_MOCK_EXECUTION_DELAY_MS,
            event_log_size=settings.EVENT_LOG_SIZE,
        )

    # === Observation ===

    @property
    def events(self) -> EventStream:
        return self._events

    @property
    def flows(self) -> FlowService:
        return self._flows

    @property
    def badges(self) -> BadgeScheduler:
        return self._badges

    @property
    def event_log(self) -> EventLog:
        return self._log

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def state_changes(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to state snapshots (called only when the state changes)."""
        self._ensure_alive("state_changes")
        return self._store.subscribe(listener)

    def get_current_state(self) -> PlaybackState:
        self._ensure_alive("get_current_state")
        return self._store.get()

    @property
    def pending_timer_count(self) -> int:
        """Armed timers across playback, flows and badges."""
        return (
            self._playback.pending_timer_count
            + self._flows.pending_timer_count
            + self._badges.pending_timer_count
        )

    @property
    def active_badge(self) -> Optional[EducationalBadge]:
        return self._badges.active_badge

    # === Control ===

    def load_conversation(self, source: ConversationSource, autoplay: bool = False) -> Result:
        """Replace the loaded conversation: cancel timers → reset → load → (play)."""
        self._ensure_alive("load_conversation")
        try:
            conversation = self._to_conversation(source)
        except SimulatorError as e:
            logger.warning("load_conversation rejected: %s", e)
            return Result.fail(e)

        if self._store.get().conversation is not None:
            self._playback.reset()
        result = self._playback.load(conversation)
        if not result.success:
            return result
        self._typing.set_enabled(conversation.settings.show_typing_indicators)
        self._badges.set_badges(conversation.educational_badges)
        if autoplay:
            return self._playback.play()
        return result

    def play(self) -> Result:
        self._ensure_alive("play")
        return self._playback.play()

    def pause(self) -> Result:
        self._ensure_alive("pause")
        return self._playback.pause()

    def reset(self) -> Result:
        self._ensure_alive("reset")
        return self._playback.reset()

    def jump_to(self, index: int) -> Result:
        self._ensure_alive("jump_to")
        return self._playback.jump_to(index)

    def set_speed(self, speed: float) -> Result:
        self._ensure_alive("set_speed")
        return self._playback.set_speed(speed)

    def next_message(self) -> Result:
        self._ensure_alive("next_message")
        return self._playback.next_message()

    def previous_message(self) -> Result:
        self._ensure_alive("previous_message")
        return self._playback.previous_message()

    def complete_flow(self, flow_token: str, result: Mapping[str, Any]) -> Result:
        self._ensure_alive("complete_flow")
        if not self._flows.complete_flow(flow_token, result):
            return Result.fail(UnknownFlowError(flow_token))
        return Result.ok()

    def destroy(self) -> None:
        """Tear down every timer and subscription."""
        self._ensure_alive("destroy")
        self._playback.destroy()
        self._typing.dispose()
        self._flows.dispose()
        self._badges.dispose()
        self._log.dispose()
        self._store.clear_listeners()
        self._bus.clear()
        self._destroyed = True
        logger.info("Orchestrator destroyed")

    # === Internals ===

    def _ensure_alive(self, action: str) -> None:
        if self._destroyed:
            raise DisposedError(action)

    @staticmethod
    def _to_conversation(source: ConversationSource) -> Conversation:
        if isinstance(source, Conversation):
            return source
        if not isinstance(source, ConversationTemplate):
            source = parse_template(source)
        return build_conversation(source)

    def _on_typing_changed(self, typing_states: Mapping[SenderType, bool]) -> None:
        self._store.update(lambda s: ps.with_typing_states(s, typing_states))
