"""FlowService tests"""

import pytest

from wa_simulator.core.conversation.template import build_conversation, parse_template
from wa_simulator.core.events import (
    ConversationJumped,
    ConversationPaused,
    ConversationReset,
    ConversationResumed,
    EventType,
    FlowTriggered,
)
from wa_simulator.services.flow_service import GENERIC_MOCK_RESPONSE, FlowService


@pytest.fixture()
def trigger_message(template_factory):
    template = template_factory(
        messages=[
            {
                "sender": "business",
                "content": {"text": "Book here", "flow": {"flowId": "booking_flow"}},
                "isFlowTrigger": True,
            }
        ]
    )
    return build_conversation(parse_template(template)).messages[0]


@pytest.fixture()
def setup(bus, clock, recorder):
    bus.subscribe(recorder)
    service = FlowService(bus, clock)
    yield service, bus, clock, recorder
    service.dispose()


def _trigger(bus, clock, message, token="tok-1", flow_id="booking_flow"):
    bus.emit(
        FlowTriggered(
            conversation_id="demo",
            timestamp=clock.now(),
            flow_id=flow_id,
            flow_token=token,
            message=message,
            message_index=0,
        )
    )


class TestAutoComplete:
    def test_mock_completion(self, setup, trigger_message):
        service, bus, clock, recorder = setup
        _trigger(bus, clock, trigger_message)
        assert service.get_flow_state("tok-1").is_active

        clock.advance(2000)
        completed = recorder.of(EventType.FLOW_COMPLETED)
        assert len(completed) == 1
        assert completed[0].timestamp == 2000
        assert completed[0].duration == 2000
        assert completed[0].result["booking_id"] == "BK12345"
        assert service.active_flows() == []
        assert service.last_completed.flow_token == "tok-1"
        assert service.pending_timer_count == 0

    def test_unknown_flow_gets_generic_response(self, setup, trigger_message):
        service, bus, clock, recorder = setup
        _trigger(bus, clock, trigger_message, flow_id="survey_flow")
        clock.advance(2000)
        assert dict(recorder.of(EventType.FLOW_COMPLETED)[0].result) == GENERIC_MOCK_RESPONSE

    def test_duplicate_token_ignored(self, setup, trigger_message):
        service, bus, clock, _ = setup
        _trigger(bus, clock, trigger_message)
        clock.advance(500)
        _trigger(bus, clock, trigger_message)
        assert service.get_flow_state("tok-1").start_time == 0


class TestManualFlows:
    def test_timeout(self, bus, clock, recorder, trigger_message):
        bus.subscribe(recorder)
        service = FlowService(bus, clock, auto_complete=False)
        _trigger(bus, clock, trigger_message)

        clock.advance(29999)
        assert recorder.of(EventType.FLOW_FAILED) == []
        clock.advance(1)
        failed = recorder.of(EventType.FLOW_FAILED)
        assert len(failed) == 1
        assert failed[0].error.code == "FlowTimeoutError"
        assert failed[0].timestamp == 30000
        assert service.history[-1].has_error
        assert clock.pending_count == 0

    def test_complete_by_caller(self, bus, clock, recorder, trigger_message):
        bus.subscribe(recorder)
        service = FlowService(bus, clock, auto_complete=False)
        _trigger(bus, clock, trigger_message)
        clock.advance(1500)

        assert service.complete_flow("tok-1", {"guests": 4})
        assert not service.complete_flow("tok-1", {"guests": 4})
        completed = recorder.of(EventType.FLOW_COMPLETED)[0]
        assert completed.result == {"guests": 4}
        assert completed.duration == 1500
        assert clock.pending_count == 0

    def test_cancel(self, bus, clock, recorder, trigger_message):
        bus.subscribe(recorder)
        service = FlowService(bus, clock, auto_complete=False)
        _trigger(bus, clock, trigger_message)
        assert service.cancel_flow("tok-1", "user closed")
        assert not service.cancel_flow("tok-1")
        assert "user closed" in recorder.of(EventType.FLOW_FAILED)[0].error.message


class TestPlaybackCoupling:
    def test_pause_suspends_timers(self, setup, trigger_message):
        service, bus, clock, recorder = setup
        _trigger(bus, clock, trigger_message)
        clock.advance(500)
        bus.emit(ConversationPaused(conversation_id="demo", timestamp=500, current_message_index=1))
        assert clock.pending_count == 0

        clock.advance(10000)
        assert recorder.of(EventType.FLOW_COMPLETED) == []
        bus.emit(ConversationResumed(conversation_id="demo", timestamp=10500, current_message_index=1))
        clock.advance(1500)
        assert recorder.of(EventType.FLOW_COMPLETED)[0].timestamp == 12000

    def test_reset_drops_active_flows(self, setup, trigger_message):
        service, bus, clock, recorder = setup
        _trigger(bus, clock, trigger_message)
        bus.emit(ConversationReset(conversation_id="demo", timestamp=0))
        assert service.active_flows() == []
        assert clock.pending_count == 0
        clock.advance(5000)
        assert recorder.of(EventType.FLOW_COMPLETED) == []
        history = service.history
        assert len(history) == 1
        assert history[0].has_error
        failed = recorder.of(EventType.FLOW_FAILED)
        assert len(failed) == 1
        assert "Conversation reset" in failed[0].error.message

    def test_jump_cancels_active_flows(self, setup, trigger_message):
        service, bus, clock, recorder = setup
        _trigger(bus, clock, trigger_message)
        bus.emit(ConversationJumped(conversation_id="demo", timestamp=0, from_index=1, to_index=0))
        assert service.active_flows() == []
        assert clock.pending_count == 0
        assert "Conversation jumped" in recorder.of(EventType.FLOW_FAILED)[0].error.message
