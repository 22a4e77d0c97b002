"""Shared test fixtures."""

from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient

from wa_simulator.core.clock import FakeClock
from wa_simulator.core.event_bus import EventBus
from wa_simulator.core.events import BaseEvent, EventType
from wa_simulator.main import create_app
from wa_simulator.services.orchestrator import ConversationOrchestrator


class EventRecorder:
    """Collects every event delivered to it."""

    def __init__(self) -> None:
        self.events: list[BaseEvent] = []

    def __call__(self, event: BaseEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def of(self, event_type: EventType) -> list[BaseEvent]:
        return [e for e in self.events if e.type == event_type]

    def timeline(self, *event_types: EventType) -> list[tuple[str, float]]:
        wanted = set(event_types)
        return [
            (e.type.value, e.timestamp)
            for e in self.events
            if not wanted or e.type in wanted
        ]


TemplateFactory = Callable[..., dict[str, Any]]


def _message(sender: str, text: str, delay: float, typing: float) -> dict[str, Any]:
    return {
        "sender": sender,
        "type": "text",
        "content": {"text": text},
        "delayBeforeTyping": delay,
        "typingDuration": typing,
    }


@pytest.fixture()
def template_factory() -> TemplateFactory:
    """Builds raw template dicts. Default: the three-message example timeline."""

    def make(
        messages: Optional[list[dict[str, Any]]] = None,
        conversation_id: str = "demo",
        badges: Optional[list[dict[str, Any]]] = None,
        **settings: Any,
    ) -> dict[str, Any]:
        if messages is None:
            messages = [
                _message("user", "Hi, is there a table for two?", 0, 1200),
                _message("business", "Sure! What time?", 1000, 1200),
                _message("user", "8pm", 500, 800),
            ]
        return {
            "metadata": {
                "id": conversation_id,
                "title": "Demo",
                "businessName": "Demo Bistro",
                "businessPhone": "+100",
                "userPhone": "+200",
            },
            "messages": messages,
            "settings": settings,
            "educationalBadges": badges or [],
        }

    return make


@pytest.fixture()
def example_template(template_factory: TemplateFactory) -> dict[str, Any]:
    return template_factory()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture()
def orchestrator(clock: FakeClock, recorder: EventRecorder):
    """Orchestrator on a FakeClock with every event recorded."""
    orch = ConversationOrchestrator(clock)
    orch.events.subscribe(recorder)
    yield orch
    if not orch.is_destroyed:
        orch.destroy()


@pytest.fixture()
def client():
    """FastAPI TestClient; the app runs on a FakeClock (``client.app.state.clock``)."""
    app = create_app(clock_factory=FakeClock)
    with TestClient(app) as test_client:
        yield test_client
