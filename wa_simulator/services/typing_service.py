"""Typing indicator service: EventBus subscriber, no timers of its own"""

from typing import Callable, Mapping

from wa_simulator.core.conversation.models import SenderType, freeze
from wa_simulator.core.event_bus import EventBus
from wa_simulator.core.events import BaseEvent
from wa_simulator.core.playback.typing import TYPING_EVENT_TYPES, apply_typing_event
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

TypingSink = Callable[[Mapping[SenderType, bool]], None]


class TypingService:
    """Tracks who is typing from the message event stream.

    Each change of the typing map is pushed to ``sink`` (the state store in
    the orchestrator). When disabled the map stays empty.
    """

    def __init__(self, event_bus: EventBus, sink: TypingSink, enabled: bool = True):
        self._bus = event_bus
        self._sink = sink
        self._enabled = enabled
        self._states: Mapping[SenderType, bool] = freeze()
        self._unsubscribe = self._bus.subscribe(self._on_event, *TYPING_EVENT_TYPES)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def states(self) -> Mapping[SenderType, bool]:
        return self._states

    def is_typing(self, sender: SenderType) -> bool:
        return bool(self._states.get(sender, False))

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self.clear()

    def clear(self) -> None:
        if self._states:
            self._states = freeze()
            self._sink(self._states)

    def _on_event(self, event: BaseEvent) -> None:
        if not self._enabled:
            return
        updated = apply_typing_event(self._states, event)
        if updated is not self._states:
            self._states = updated
            logger.debug("Typing states: %s", {s.value: v for s, v in updated.items()})
            self._sink(updated)

    def dispose(self) -> None:
        self._unsubscribe()
        self._states = freeze()
