"""Educational badge scheduler: shows annotation badges as messages are sent"""

from typing import Callable, Dict, List, Optional, Sequence, cast

from wa_simulator.core.clock import Clock, TimerSet
from wa_simulator.core.conversation.models import EducationalBadge
from wa_simulator.core.event_bus import EventBus
from wa_simulator.core.events import BaseEvent, EventType, MessageSent
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

# pause between hiding one badge and showing the next queued one
QUEUE_GAP_MS = 200

BadgeListener = Callable[[Optional[EducationalBadge]], None]


class BadgeScheduler:
    """One badge on screen at a time; the rest wait in a FIFO queue.

    A badge is shown once per playthrough, when the message at its
    ``trigger_at_message_index`` is sent. It hides itself after
    ``display_duration`` ms.
    """

    def __init__(
        self,
        event_bus: EventBus,
        clock: Clock,
        badges: Sequence[EducationalBadge] = (),
        enabled: bool = True,
        queue_gap_ms: float = QUEUE_GAP_MS,
    ):
        self._bus = event_bus
        self._timers = TimerSet(clock, "badges")
        self._badges: List[EducationalBadge] = list(badges)
        self._enabled = enabled
        self._queue_gap_ms = queue_gap_ms
        self._active: Optional[EducationalBadge] = None
        self._queue: List[EducationalBadge] = []
        self._shown: set = set()
        self._show_counts: Dict[str, int] = {}
        self._listeners: List[BadgeListener] = []
        self._unsubscribers = [
            self._bus.subscribe(self._on_message_sent, EventType.MESSAGE_SENT),
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
            self._bus.subscribe(self._on_error, EventType.CONVERSATION_ERROR),
        ]

    # === Queries ===

    @property
    def active_badge(self) -> Optional[EducationalBadge]:
        return self._active

    @property
    def queue(self) -> List[EducationalBadge]:
        return list(self._queue)

    @property
    def shown_badge_ids(self) -> frozenset:
        return frozenset(self._shown)

    @property
    def show_counts(self) -> Dict[str, int]:
        return dict(self._show_counts)

    @property
    def pending_timer_count(self) -> int:
        return self._timers.pending_count

    def badge_for_message(self, message_index: int) -> Optional[EducationalBadge]:
        for badge in self._badges:
            if badge.trigger_at_message_index == message_index:
                return badge
        return None

    def subscribe(self, listener: BadgeListener) -> Callable[[], None]:
        """``listener`` receives the new active badge (None when hidden)."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # === Control ===

    def set_badges(self, badges: Sequence[EducationalBadge]) -> None:
        self.clear()
        self._badges = list(badges)

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self.clear()

    def show(self, badge: EducationalBadge) -> None:
        if not self._enabled:
            return
        self._shown.add(badge.id)
        if self._active is not None:
            self._queue.append(badge)
            logger.debug("Badge queued: %s", badge.id)
            return
        self._active = badge
        self._show_counts[badge.id] = self._show_counts.get(badge.id, 0) + 1
        self._timers.schedule("hide", badge.display_duration, self.hide)
        logger.info("Badge shown: %s", badge.id)
        self._notify()

    def show_by_id(self, badge_id: str) -> bool:
        for badge in self._badges:
            if badge.id == badge_id:
                self.show(badge)
                return True
        return False

    def hide(self) -> None:
        if self._active is None:
            return
        self._timers.cancel("hide")
        logger.debug("Badge hidden: %s", self._active.id)
        self._active = None
        self._notify()
        if self._queue:
            self._timers.schedule("next", self._queue_gap_ms, self._process_queue)

    def clear(self) -> None:
        """Hide everything and forget which badges were shown."""
        self._timers.cancel_all()
        self._queue.clear()
        self._shown.clear()
        if self._active is not None:
            self._active = None
            self._notify()

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._timers.cancel_all()
        self._listeners.clear()

    # === Internals ===

    def _process_queue(self) -> None:
        if self._queue and self._active is None:
            self.show(self._queue.pop(0))

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._active)

    def _on_message_sent(self, event: BaseEvent) -> None:
        event = cast(MessageSent, event)
        badge = self.badge_for_message(event.message_index)
        if badge is not None and badge.id not in self._shown:
            self.show(badge)

    def _on_paused(self, event: BaseEvent) -> None:
        self._timers.suspend()

    def _on_resumed(self, event: BaseEvent) -> None:
        self._timers.resume()

    def _on_rewound(self, event: BaseEvent) -> None:
        self.clear()

    def _on_error(self, event: BaseEvent) -> None:
        self.clear()
