"""Typing indicator reducer (pure)"""

from __future__ import annotations

from typing import Iterable, Mapping

from wa_simulator.core.conversation.models import SenderType, freeze
from wa_simulator.core.events import BaseEvent, EventType, MessageEvent

TYPING_EVENT_TYPES = (
    EventType.MESSAGE_TYPING_STARTED,
    EventType.MESSAGE_TYPING_STOPPED,
    EventType.MESSAGE_SENT,
    EventType.CONVERSATION_RESET,
    EventType.CONVERSATION_COMPLETED,
    EventType.CONVERSATION_JUMPED,
    EventType.CONVERSATION_ERROR,
)

_CLEARING = frozenset(
    {
        EventType.CONVERSATION_RESET,
        EventType.CONVERSATION_COMPLETED,
        EventType.CONVERSATION_JUMPED,
        EventType.CONVERSATION_ERROR,
    }
)


def apply_typing_event(
    states: Mapping[SenderType, bool], event: BaseEvent
) -> Mapping[SenderType, bool]:
    """Next typing map after ``event``. Unrelated events return ``states`` as is."""
    if event.type in _CLEARING:
        return freeze() if states else states
    if not isinstance(event, MessageEvent):
        return states
    if event.type == EventType.MESSAGE_TYPING_STARTED:
        typing = True
    elif event.type in (EventType.MESSAGE_TYPING_STOPPED, EventType.MESSAGE_SENT):
        typing = False
    else:
        return states
    if bool(states.get(event.sender, False)) == typing:
        return states
    updated = dict(states)
    if typing:
        updated[event.sender] = True
    else:
        updated.pop(event.sender, None)
    return freeze(updated)


def derive_typing_state(events: Iterable[BaseEvent]) -> Mapping[SenderType, bool]:
    states: Mapping[SenderType, bool] = freeze()
    for event in events:
        states = apply_typing_event(states, event)
    return states
