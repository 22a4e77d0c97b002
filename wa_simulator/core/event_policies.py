"""Delivery policies applied per subscription.

The bus itself never drops events. Observers that want rate limiting or
de-duplication wrap their handler explicitly:

    bus.subscribe(throttled(on_progress, clock, 250), EventType.MESSAGE_SENT)
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from wa_simulator.core.clock import Clock
from wa_simulator.core.event_bus import EventHandler
from wa_simulator.core.events import BaseEvent

_UNSET = object()


def throttled(handler: EventHandler, clock: Clock, interval_ms: float) -> EventHandler:
    """Leading-edge throttle: at most one delivery per ``interval_ms``."""
    if interval_ms < 0:
        raise ValueError(f"interval_ms must be >= 0, got {interval_ms}")
    last_delivery: Optional[float] = None

    def wrapper(event: BaseEvent) -> None:
        nonlocal last_delivery
        now = clock.now()
        if last_delivery is not None and now - last_delivery < interval_ms:
            return
        last_delivery = now
        handler(event)

    wrapper.__qualname__ = f"throttled({getattr(handler, '__qualname__', handler)})"
    return wrapper


def distinct(
    handler: EventHandler, key: Callable[[BaseEvent], Any] = lambda e: e.type
) -> EventHandler:
    """Drop an event whose ``key`` equals the key of the previous delivered one."""
    last_key: Any = _UNSET

    def wrapper(event: BaseEvent) -> None:
        nonlocal last_key
        current = key(event)
        if current == last_key:
            return
        last_key = current
        handler(event)

    wrapper.__qualname__ = f"distinct({getattr(handler, '__qualname__', handler)})"
    return wrapper


def filtered(handler: EventHandler, predicate: Callable[[BaseEvent], bool]) -> EventHandler:
    def wrapper(event: BaseEvent) -> None:
        if predicate(event):
            handler(event)

    wrapper.__qualname__ = f"filtered({getattr(handler, '__qualname__', handler)})"
    return wrapper
