"""State store: holds the current PlaybackState and streams snapshots"""

from typing import Callable, List

from wa_simulator.core.playback.state import PlaybackState, create_initial_state
from wa_simulator.core.logging import get_logger

logger = get_logger(__name__)

StateListener = Callable[[PlaybackState], None]


class StateStore:
    """Single owner of the current playback state.

    ``update`` applies a pure transform; listeners are notified only when
    the resulting state differs from the previous one.
    """

    def __init__(self, initial: PlaybackState | None = None):
        self._state = initial or create_initial_state()
        self._listeners: List[StateListener] = []

    def get(self) -> PlaybackState:
        return self._state

    def update(self, transform: Callable[[PlaybackState], PlaybackState]) -> PlaybackState:
        new_state = transform(self._state)
        if new_state != self._state:
            self._state = new_state
            self._notify()
        return self._state

    def set(self, state: PlaybackState) -> PlaybackState:
        return self.update(lambda _: state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear_listeners(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("State listener error: %s", getattr(listener, "__qualname__", listener))
