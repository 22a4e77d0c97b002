"""EventBus - event channel between the playback engine and its observers

Rules:
- Observers never call each other; they only react to events
- Delivery is synchronous, in subscription order, on the emitting call
- The handler list is snapshotted when ``emit`` starts: a handler added
  during delivery only sees later events
- A raising handler is logged and skipped; the remaining handlers still run
"""

from __future__ import annotations

from typing import Callable, FrozenSet, List, Optional

from wa_simulator.core.events import BaseEvent, EventType
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[BaseEvent], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    __slots__ = ("handler", "event_types", "active")

    def __init__(self, handler: EventHandler, event_types: Optional[FrozenSet[EventType]]):
        self.handler = handler
        self.event_types = event_types
        self.active = True

    def wants(self, event: BaseEvent) -> bool:
        return self.event_types is None or event.type in self.event_types


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", repr(handler))


class EventBus:
    """Synchronous event bus

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(on_sent, EventType.MESSAGE_SENT)
        bus.emit(MessageSent(conversation_id="c1", timestamp=0, message=m, message_index=0))
        unsubscribe()

    Subscribing with no event types receives every event.
    """

    def __init__(self) -> None:
        self._subscriptions: List[_Subscription] = []
        self._emitted = 0

    def subscribe(self, handler: EventHandler, *event_types: EventType) -> Unsubscribe:
        """Register ``handler``. Returns a callable that removes it (safe to call twice)."""
        subscription = _Subscription(handler, frozenset(event_types) or None)
        self._subscriptions.append(subscription)
        logger.debug(
            "EventBus subscribe: %s -> %s",
            ",".join(t.value for t in event_types) or "*",
            _handler_name(handler),
        )

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions.remove(subscription)
            logger.debug("EventBus unsubscribe: %s", _handler_name(handler))

        return unsubscribe

    def emit(self, event: BaseEvent) -> None:
        """Deliver ``event`` to every matching handler."""
        self._emitted += 1
        snapshot = [s for s in self._subscriptions if s.wants(event)]
        if not snapshot:
            logger.debug("EventBus: no subscribers for %s", event.type.value)
            return

        logger.debug(
            "EventBus emit: %s (conversation=%s, handlers=%d)",
            event.type.value,
            event.conversation_id,
            len(snapshot),
        )
        for subscription in snapshot:
            # unsubscribed by an earlier handler of this same emit
            if not subscription.active:
                continue
            try:
                subscription.handler(event)
            except Exception:
                logger.exception(
                    "EventBus handler error: %s (event=%s)",
                    _handler_name(subscription.handler),
                    event.type.value,
                )

    def clear(self) -> None:
        """Remove every subscription."""
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()

    @property
    def handler_count(self) -> int:
        """Number of registered handlers"""
        return len(self._subscriptions)

    @property
    def emitted_count(self) -> int:
        return self._emitted
