"""Timer sources for the playback engine.

Every delay in the engine is expressed in milliseconds and goes through a
``Clock``. ``FakeClock`` is a deterministic, manually advanced clock used by
tests and offline replays; ``AsyncioClock`` runs timers on an asyncio loop.

``TimerSet`` groups the timers of one owner so they can be cancelled,
suspended (keeping their remaining time) and rescaled together.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], None]


class TimerHandle:
    """A scheduled callback. ``due`` is an absolute clock time in ms."""

    __slots__ = ("timer_id", "due", "callback", "cancelled")

    def __init__(self, timer_id: int, due: float, callback: TimerCallback):
        self.timer_id = timer_id
        self.due = due
        self.callback = callback
        self.cancelled = False

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "pending"
        return f"TimerHandle(id={self.timer_id}, due={self.due:.1f}, {state})"


class Clock(ABC):
    """Millisecond clock able to schedule and cancel callbacks."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    @abstractmethod
    def now(self) -> float:
        ...

    @abstractmethod
    def call_later(self, delay_ms: float, callback: TimerCallback) -> TimerHandle:
        ...

    @abstractmethod
    def cancel(self, handle: TimerHandle) -> None:
        ...

    @property
    @abstractmethod
    def pending_count(self) -> int:
        """Number of scheduled callbacks that have neither fired nor been cancelled."""
        ...


class FakeClock(Clock):
    """Deterministic clock. Time only moves on ``advance``/``advance_to``.

    Callbacks due at the same instant fire in the order they were scheduled.
    """

    def __init__(self, start: float = 0.0) -> None:
        super().__init__()
        self._now = float(start)
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._pending: Dict[int, TimerHandle] = {}

    def now(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(next(self._ids), self._now + max(0.0, delay_ms), callback)
        heapq.heappush(self._queue, (handle.due, handle.timer_id, handle))
        self._pending[handle.timer_id] = handle
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True
        self._pending.pop(handle.timer_id, None)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def next_due(self) -> Optional[float]:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0][0] if self._queue else None

    def advance(self, ms: float) -> None:
        """Move time forward by ``ms``, firing every callback due on the way."""
        self.advance_to(self._now + ms)

    def advance_to(self, target: float) -> None:
        if target < self._now:
            raise ValueError(f"FakeClock cannot go backwards ({target} < {self._now})")
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            _, _, handle = heapq.heappop(self._queue)
            self._pending.pop(handle.timer_id, None)
            self._now = max(self._now, due)
            handle.callback()
        self._now = target

    def run_until_idle(self, max_steps: int = 10_000) -> int:
        """Fire callbacks until none are left. Returns the number of jumps made."""
        steps = 0
        while steps < max_steps:
            due = self.next_due()
            if due is None:
                return steps
            self.advance_to(due)
            steps += 1
        raise RuntimeError(f"FakeClock still busy after {max_steps} steps")


class AsyncioClock(Clock):
    """Clock backed by ``loop.call_later``. Must be used from the loop's thread."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        super().__init__()
        self._loop = loop or asyncio.get_running_loop()
        self._handles: Dict[int, asyncio.TimerHandle] = {}

    def now(self) -> float:
        return self._loop.time() * 1000.0

    def call_later(self, delay_ms: float, callback: TimerCallback) -> TimerHandle:
        delay_ms = max(0.0, delay_ms)
        handle = TimerHandle(next(self._ids), self.now() + delay_ms, callback)
        self._handles[handle.timer_id] = self._loop.call_later(
            delay_ms / 1000.0, self._fire, handle
        )
        return handle

    def _fire(self, handle: TimerHandle) -> None:
        self._handles.pop(handle.timer_id, None)
        if not handle.cancelled:
            handle.callback()

    def cancel(self, handle: TimerHandle) -> None:
        handle.cancelled = True
        scheduled = self._handles.pop(handle.timer_id, None)
        if scheduled is not None:
            scheduled.cancel()

    @property
    def pending_count(self) -> int:
        return len(self._handles)


class TimerSet:
    """Keyed group of timers owned by one service.

    Scheduling an existing key replaces the old timer. While suspended, new
    timers are parked with their delay and start on ``resume``.
    """

    def __init__(self, clock: Clock, name: str = "timers") -> None:
        self._clock = clock
        self._name = name
        self._active: Dict[Hashable, Tuple[TimerHandle, TimerCallback]] = {}
        self._suspended: Dict[Hashable, Tuple[float, TimerCallback]] = {}
        self._is_suspended = False

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def is_suspended(self) -> bool:
        return self._is_suspended

    @property
    def pending_count(self) -> int:
        """Timers currently armed on the clock (suspended ones excluded)."""
        return len(self._active)

    @property
    def suspended_count(self) -> int:
        return len(self._suspended)

    def __len__(self) -> int:
        return len(self._active) + len(self._suspended)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._active or key in self._suspended

    def schedule(self, key: Hashable, delay_ms: float, callback: TimerCallback) -> None:
        self.cancel(key)
        if self._is_suspended:
            self._suspended[key] = (max(0.0, delay_ms), callback)
            return
        self._arm(key, delay_ms, callback)

    def _arm(self, key: Hashable, delay_ms: float, callback: TimerCallback) -> None:
        def fire() -> None:
            entry = self._active.get(key)
            if entry is not None and entry[0] is handle:
                del self._active[key]
            callback()

        handle = self._clock.call_later(delay_ms, fire)
        self._active[key] = (handle, callback)

    def cancel(self, key: Hashable) -> bool:
        entry = self._active.pop(key, None)
        if entry is not None:
            self._clock.cancel(entry[0])
            return True
        return self._suspended.pop(key, None) is not None

    def cancel_all(self) -> int:
        count = len(self)
        for handle, _ in self._active.values():
            self._clock.cancel(handle)
        self._active.clear()
        self._suspended.clear()
        self._is_suspended = False
        if count:
            logger.debug("%s: cancelled %d timer(s)", self._name, count)
        return count

    def remaining(self, key: Hashable) -> Optional[float]:
        if key in self._suspended:
            return self._suspended[key][0]
        entry = self._active.get(key)
        if entry is None:
            return None
        return max(0.0, entry[0].due - self._clock.now())

    def suspend(self) -> None:
        """Cancel armed timers, remembering how long each had left."""
        if self._is_suspended:
            return
        now = self._clock.now()
        for key, (handle, callback) in self._active.items():
            self._clock.cancel(handle)
            self._suspended[key] = (max(0.0, handle.due - now), callback)
        self._active.clear()
        self._is_suspended = True

    def resume(self) -> None:
        if not self._is_suspended:
            return
        parked = list(self._suspended.items())
        self._suspended.clear()
        self._is_suspended = False
        for key, (remaining, callback) in parked:
            self._arm(key, remaining, callback)

    def rescale(self, factor: float) -> None:
        """Multiply every remaining delay by ``factor``.

        Armed timers are cancelled and re-armed in their original order.
        """
        if factor <= 0:
            raise ValueError(f"rescale factor must be positive, got {factor}")
        was_suspended = self._is_suspended
        self.suspend()
        self._suspended = {
            key: (remaining * factor, callback)
            for key, (remaining, callback) in self._suspended.items()
        }
        if not was_suspended:
            self.resume()
