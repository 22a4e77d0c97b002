"""Event log: bounded record of the most recent events (read-only observer)"""

from collections import Counter, deque
from typing import Deque, Dict, List, Optional

from wa_simulator.core.event_bus import EventBus
from wa_simulator.core.events import BaseEvent, EventType

DEFAULT_LOG_SIZE = 100


class EventLog:
    def __init__(self, event_bus: EventBus, max_size: int = DEFAULT_LOG_SIZE):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._events: Deque[BaseEvent] = deque(maxlen=max_size)
        self._counts: Counter = Counter()
        self._unsubscribe = event_bus.subscribe(self._record)

    def _record(self, event: BaseEvent) -> None:
        self._events.append(event)
        self._counts[event.type] += 1

    def recent(self, limit: Optional[int] = None) -> List[BaseEvent]:
        """Newest last. ``limit`` keeps only the last N entries."""
        events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def of_type(self, event_type: EventType) -> List[BaseEvent]:
        return [e for e in self._events if e.type == event_type]

    def counts(self) -> Dict[EventType, int]:
        """Totals since creation (not limited by the ring size)."""
        return dict(self._counts)

    def __len__(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        self._events.clear()
        self._counts.clear()

    def dispose(self) -> None:
        self._unsubscribe()
