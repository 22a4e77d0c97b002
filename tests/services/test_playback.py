"""Playback engine tests (orchestrator on a FakeClock)"""

import pytest

from wa_simulator.core.clock import FakeClock
from wa_simulator.core.conversation.models import MessageStatus, SenderType
from wa_simulator.core.conversation.template import build_conversation, parse_template
from wa_simulator.core.errors import DisposedError
from wa_simulator.core.events import EventType
from wa_simulator.core.playback import state as ps
from wa_simulator.core.playback.state import PlaybackStatus
from wa_simulator.services.orchestrator import ConversationOrchestrator
from wa_simulator.services.playback_service import resolve_flow

SENT = EventType.MESSAGE_SENT
TYPING = EventType.MESSAGE_TYPING_STARTED
COMPLETED = EventType.CONVERSATION_COMPLETED


def _zero_message(sender: str, text: str) -> dict:
    return {
        "sender": sender,
        "content": {"text": text},
        "delayBeforeTyping": 0,
        "typingDuration": 0,
    }


# ============================================================
# timeline
# ============================================================


class TestTimeline:
    def test_example_timeline(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template)
        orchestrator.play()
        clock.advance(10000)

        assert recorder.timeline(TYPING, SENT, COMPLETED) == [
            ("message.typing_started", 0),
            ("message.sent", 1200),
            ("message.typing_started", 2200),
            ("message.sent", 3400),
            ("message.typing_started", 3900),
            ("message.sent", 4700),
            ("conversation.completed", 4700),
        ]
        assert recorder.of(COMPLETED)[0].duration == 4700

    def test_send_sequence_per_message(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template)
        orchestrator.play()
        clock.advance(1200)

        assert recorder.types() == [
            "conversation.started",
            "message.typing_started",
            "message.typing_stopped",
            "message.sent",
            "message.delivered",
        ]

    def test_read_receipt_fires_with_next_typing(
        self, orchestrator, clock, recorder, example_template
    ):
        orchestrator.load_conversation(example_template)
        orchestrator.play()
        clock.advance(2200)

        reads = recorder.of(EventType.MESSAGE_READ)
        assert [(e.message_index, e.timestamp) for e in reads] == [(0, 2200)]
        types = recorder.types()
        assert types.index("message.read") < len(types) - 1
        assert types[-1] == "message.typing_started"

    def test_without_read_receipts(self, orchestrator, clock, recorder, template_factory):
        orchestrator.load_conversation(template_factory(showReadReceipts=False))
        orchestrator.play()
        clock.advance(10000)

        assert recorder.of(EventType.MESSAGE_READ) == []
        messages = orchestrator.get_current_state().conversation.messages
        assert all(m.status == MessageStatus.DELIVERED for m in messages)

    def test_final_state(self, orchestrator, clock, example_template):
        orchestrator.load_conversation(example_template)
        orchestrator.play()
        clock.advance(10000)

        state = orchestrator.get_current_state()
        assert state.status == PlaybackStatus.COMPLETED
        assert state.current_message_index == 3
        assert state.progress.completion_percentage == 100.0
        assert state.progress.elapsed_time == 4700
        assert state.progress.remaining_time == 0
        assert all(m.status == MessageStatus.READ for m in state.conversation.messages)
        assert clock.pending_count == 0

    def test_zero_delay_ordering(self, orchestrator, clock, recorder, template_factory):
        template = template_factory(
            messages=[_zero_message("user", "a"), _zero_message("business", "b")]
        )
        orchestrator.load_conversation(template)
        orchestrator.play()
        clock.advance(0)

        assert recorder.types() == [
            "conversation.started",
            "message.typing_started",
            "message.typing_stopped",
            "message.sent",
            "message.delivered",
            "message.read",
            "message.typing_started",
            "message.typing_stopped",
            "message.sent",
            "message.delivered",
            "message.read",
            "conversation.completed",
        ]
        assert [e.message_index for e in recorder.of(SENT)] == [0, 1]
        assert {e.timestamp for e in recorder.events} == {0}

    def test_deterministic_replay(self, example_template):
        def run():
            clock = FakeClock()
            orch = ConversationOrchestrator(clock)
            seen = []
            orch.events.subscribe(
                lambda e: seen.append((e.type, e.timestamp, getattr(e, "message_index", None)))
            )
            orch.load_conversation(example_template, autoplay=True)
            clock.advance(1000)
            orch.set_speed(2.0)
            clock.advance(700)
            orch.pause()
            clock.advance(300)
            orch.play()
            clock.run_until_idle()
            orch.destroy()
            return seen

        assert run() == run()


# ============================================================
# typing indicators
# ============================================================


class TestTypingIndicators:
    def test_typing_state_in_snapshot(self, orchestrator, clock, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(100)
        state = orchestrator.get_current_state()
        assert state.typing_states == {SenderType.USER: True}
        assert state.is_typing

        clock.advance(1100)
        assert not orchestrator.get_current_state().is_typing

    def test_disabled_indicators(self, orchestrator, clock, template_factory):
        orchestrator.load_conversation(template_factory(showTypingIndicators=False), autoplay=True)
        clock.advance(100)
        assert not orchestrator.get_current_state().is_typing


# ============================================================
# pause / resume
# ============================================================


class TestPauseResume:
    def test_pause_holds_remaining_time(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(1000)
        result = orchestrator.pause()

        assert result.success
        assert result.event.current_message_index == 0
        assert clock.pending_count == 0
        clock.advance(5000)
        assert recorder.of(SENT) == []

        orchestrator.play()
        clock.advance(200)
        assert [e.timestamp for e in recorder.of(SENT)] == [6200]
        assert recorder.of(EventType.CONVERSATION_RESUMED)[0].timestamp == 6000

    def test_pause_when_not_playing(self, orchestrator, example_template):
        orchestrator.load_conversation(example_template)
        result = orchestrator.pause()
        assert not result.success
        assert result.error.code == "InvalidPlaybackStateError"

    def test_play_while_playing_is_noop(self, orchestrator, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        result = orchestrator.play()
        assert result.success
        assert result.event is None
        assert len(recorder.of(EventType.CONVERSATION_STARTED)) == 1

    def test_play_without_conversation(self, orchestrator):
        result = orchestrator.play()
        assert not result.success
        assert result.error.code == "NoConversationError"

    def test_play_after_completion_restarts(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(10000)
        orchestrator.play()

        assert recorder.types()[-2:] == ["conversation.reset", "conversation.started"]
        assert orchestrator.get_current_state().status == PlaybackStatus.PLAYING


# ============================================================
# speed
# ============================================================


class TestSpeed:
    def test_speed_change_mid_typing(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(600)
        result = orchestrator.set_speed(2.0)

        assert result.event.old_speed == 1.0
        assert result.event.new_speed == 2.0
        clock.advance(400)
        assert [e.timestamp for e in recorder.of(SENT)] == [900]

    def test_speed_change_while_paused(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(600)
        orchestrator.pause()
        orchestrator.set_speed(2.0)
        clock.advance(400)
        orchestrator.play()
        clock.advance(300)
        assert [e.timestamp for e in recorder.of(SENT)] == [1300]

    def test_order_survives_speed_changes(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        for speed in (2.0, 0.5, 5.0, 0.1, 1.0):
            clock.advance(350)
            orchestrator.set_speed(speed)
        clock.run_until_idle()

        message_events = [
            (e.message_index, e.type)
            for e in recorder.events
            if e.type in (TYPING, SENT)
        ]
        assert message_events == [
            (0, TYPING), (0, SENT),
            (1, TYPING), (1, SENT),
            (2, TYPING), (2, SENT),
        ]
        assert recorder.types()[-1] == "conversation.completed"

    def test_same_speed_emits_nothing(self, orchestrator, recorder, example_template):
        orchestrator.load_conversation(example_template)
        result = orchestrator.set_speed(1.0)
        assert result.success
        assert recorder.of(EventType.CONVERSATION_SPEED_CHANGED) == []

    def test_invalid_speed(self, orchestrator, example_template):
        orchestrator.load_conversation(example_template)
        result = orchestrator.set_speed(7.5)
        assert not result.success
        assert result.error.code == "InvalidSpeedError"
        assert orchestrator.get_current_state().playback_speed == 1.0

    def test_speed_before_load(self, orchestrator):
        assert orchestrator.set_speed(2.0).success
        assert orchestrator.get_current_state().playback_speed == 2.0


# ============================================================
# reset / seek
# ============================================================


class TestResetAndSeek:
    def test_reset_is_idempotent(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(2500)
        orchestrator.reset()
        first = orchestrator.get_current_state()
        orchestrator.reset()

        assert orchestrator.get_current_state() == first
        assert first.status == PlaybackStatus.LOADED
        assert first.current_message_index == 0
        assert len(recorder.of(EventType.CONVERSATION_RESET)) == 2
        assert clock.pending_count == 0

    def test_jump_while_playing(self, orchestrator, clock, recorder, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(1300)
        result = orchestrator.jump_to(2)

        assert (result.event.from_index, result.event.to_index) == (1, 2)
        state = orchestrator.get_current_state()
        assert [m.status for m in state.conversation.messages] == [
            MessageStatus.READ,
            MessageStatus.READ,
            MessageStatus.SENDING,
        ]
        clock.advance(10000)
        assert [e.message_index for e in recorder.of(SENT)] == [0, 2]
        assert recorder.of(SENT)[-1].timestamp == 2600

    def test_jump_while_playing_keeps_elapsed_time(
        self, orchestrator, clock, example_template
    ):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(1300)
        orchestrator.jump_to(2)
        assert orchestrator.get_current_state().progress.elapsed_time == 1300

        clock.advance(1300)
        state = orchestrator.get_current_state()
        assert state.status == PlaybackStatus.COMPLETED
        assert state.progress.elapsed_time == 2600

    def test_jump_while_paused_resumes_from_target(
        self, orchestrator, clock, recorder, example_template
    ):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(100)
        orchestrator.pause()
        orchestrator.jump_to(1)
        assert orchestrator.get_current_state().status == PlaybackStatus.PAUSED
        assert clock.pending_count == 0

        orchestrator.play()
        clock.advance(1000)
        typing = recorder.of(TYPING)
        assert [(e.message_index, e.timestamp) for e in typing] == [(0, 0), (1, 1100)]

    def test_seek_matches_playthrough(self, example_template):
        """Statuses after seeking equal those reached by playing to the same index."""
        clock = FakeClock()
        played = ConversationOrchestrator(clock)
        played.load_conversation(example_template, autoplay=True)
        clock.advance(3900)
        assert played.get_current_state().current_message_index == 2

        seeked = ConversationOrchestrator(FakeClock())
        seeked.load_conversation(example_template)
        seeked.jump_to(2)

        def statuses(orch):
            return [m.status for m in orch.get_current_state().conversation.messages]

        assert statuses(seeked) == statuses(played)
        played.destroy()
        seeked.destroy()

    def test_jump_out_of_range(self, orchestrator, example_template):
        orchestrator.load_conversation(example_template)
        result = orchestrator.jump_to(3)
        assert not result.success
        assert result.error.code == "InvalidMessageIndexError"

    def test_next_and_previous(self, orchestrator, example_template):
        orchestrator.load_conversation(example_template)
        assert orchestrator.next_message().success
        assert orchestrator.get_current_state().current_message_index == 1
        assert orchestrator.previous_message().success
        assert orchestrator.get_current_state().current_message_index == 0
        assert not orchestrator.previous_message().success


class TestControlFromHandlers:
    def test_reset_from_sent_handler(self, orchestrator, clock, recorder, example_template):
        calls = []

        def reset_once(event):
            if not calls:
                calls.append(event.message_index)
                orchestrator.reset()

        orchestrator.events.subscribe(reset_once, SENT)
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(1200)

        state = orchestrator.get_current_state()
        assert calls == [0]
        assert state.status == PlaybackStatus.LOADED
        assert state.current_message_index == 0
        assert recorder.of(EventType.CONVERSATION_ERROR) == []
        assert recorder.of(EventType.MESSAGE_DELIVERED) == []
        assert clock.pending_count == 0

    def test_jump_from_sent_handler(self, orchestrator, clock, recorder, example_template):
        def rewind_after_second(event):
            if event.message_index == 1 and not recorder.of(EventType.CONVERSATION_JUMPED):
                orchestrator.jump_to(0)

        orchestrator.events.subscribe(rewind_after_second, SENT)
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.run_until_idle()

        assert recorder.of(EventType.CONVERSATION_ERROR) == []
        assert orchestrator.get_current_state().status == PlaybackStatus.COMPLETED
        assert [e.message_index for e in recorder.of(SENT)] == [0, 1, 0, 1, 2]
        assert recorder.of(COMPLETED)[0].timestamp == 3400 + 4700


# ============================================================
# step mode / auto restart
# ============================================================


class TestStepMode:
    def test_pauses_after_each_send(self, orchestrator, clock, recorder, template_factory):
        orchestrator.load_conversation(template_factory(autoAdvance=False), autoplay=True)
        clock.advance(5000)
        assert orchestrator.get_current_state().status == PlaybackStatus.PAUSED
        assert [e.timestamp for e in recorder.of(SENT)] == [1200]

        orchestrator.play()
        clock.advance(5000)
        assert [e.timestamp for e in recorder.of(SENT)] == [1200, 7200]

        orchestrator.play()
        clock.advance(5000)
        assert orchestrator.get_current_state().status == PlaybackStatus.COMPLETED
        assert len(recorder.of(EventType.CONVERSATION_PAUSED)) == 2


class TestAutoRestart:
    def test_restarts_after_delay(self, clock, recorder, example_template):
        orch = ConversationOrchestrator(clock, auto_restart_delay_ms=1000)
        orch.events.subscribe(recorder)
        orch.load_conversation(example_template, autoplay=True)
        clock.advance(5700)

        assert recorder.of(EventType.CONVERSATION_RESET)[-1].timestamp == 5700
        assert recorder.of(EventType.CONVERSATION_STARTED)[-1].timestamp == 5700
        assert recorder.of(TYPING)[-1].timestamp == 5700
        orch.destroy()
        assert clock.pending_count == 0

    def test_off_by_default(self, orchestrator, clock, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(20000)
        assert orchestrator.get_current_state().status == PlaybackStatus.COMPLETED
        assert clock.pending_count == 0


# ============================================================
# errors / lifecycle
# ============================================================


class TestErrors:
    def test_phase_failure_moves_to_error(
        self, orchestrator, clock, recorder, example_template, monkeypatch
    ):
        def boom(state, message_id, at=None):
            raise RuntimeError("store exploded")

        monkeypatch.setattr("wa_simulator.core.playback.state.mark_sent", boom)
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(1200)

        errors = recorder.of(EventType.CONVERSATION_ERROR)
        assert len(errors) == 1
        assert errors[0].error.code == "RuntimeError"
        assert not errors[0].error.recoverable
        state = orchestrator.get_current_state()
        assert state.status == PlaybackStatus.ERROR
        assert not state.is_typing
        assert clock.pending_count == 0
        assert orchestrator.pending_timer_count == 0

        assert not orchestrator.play().success
        monkeypatch.undo()
        orchestrator.reset()
        assert orchestrator.get_current_state().status == PlaybackStatus.LOADED

    def test_failure_clears_badges(
        self, orchestrator, clock, template_factory, monkeypatch
    ):
        original = ps.mark_sent

        def fail_second(state, message_id, *args, **kwargs):
            if message_id == "demo-msg-2":
                raise RuntimeError("store exploded")
            return original(state, message_id, *args, **kwargs)

        monkeypatch.setattr("wa_simulator.core.playback.state.mark_sent", fail_second)
        badges = [{"id": "intro", "title": "Intro", "triggerAtMessageIndex": 0,
                   "displayDuration": 5000}]
        orchestrator.load_conversation(template_factory(badges=badges), autoplay=True)
        clock.advance(1200)
        assert orchestrator.active_badge.id == "intro"

        clock.advance(2200)
        assert orchestrator.get_current_state().status == PlaybackStatus.ERROR
        assert orchestrator.active_badge is None
        assert orchestrator.pending_timer_count == 0
        assert clock.pending_count == 0

    def test_invalid_template(self, orchestrator, template_factory):
        result = orchestrator.load_conversation(template_factory(messages=[]))
        assert not result.success
        assert result.error.code == "InvalidTemplateError"
        assert orchestrator.get_current_state().status == PlaybackStatus.IDLE


class TestLifecycle:
    def test_load_while_playing(self, orchestrator, clock, recorder, template_factory):
        orchestrator.load_conversation(template_factory(), autoplay=True)
        clock.advance(1300)
        orchestrator.load_conversation(template_factory(conversation_id="other"))

        resets = recorder.of(EventType.CONVERSATION_RESET)
        assert [e.conversation_id for e in resets] == ["demo"]
        state = orchestrator.get_current_state()
        assert state.status == PlaybackStatus.LOADED
        assert state.conversation.id == "other"
        assert state.current_message_index == 0
        assert clock.pending_count == 0

    def test_no_timers_after_pause_reset_destroy(self, orchestrator, clock, example_template):
        orchestrator.load_conversation(example_template, autoplay=True)
        clock.advance(500)
        orchestrator.pause()
        assert clock.pending_count == 0
        orchestrator.play()
        orchestrator.reset()
        assert clock.pending_count == 0
        orchestrator.play()
        orchestrator.destroy()
        assert clock.pending_count == 0

    def test_calls_after_destroy_raise(self, orchestrator, example_template):
        orchestrator.load_conversation(example_template)
        orchestrator.destroy()
        assert orchestrator.is_destroyed
        with pytest.raises(DisposedError):
            orchestrator.play()
        with pytest.raises(DisposedError):
            orchestrator.get_current_state()
        with pytest.raises(DisposedError):
            orchestrator.destroy()

    def test_state_listener_only_on_change(self, orchestrator, clock, example_template):
        snapshots = []
        orchestrator.state_changes(snapshots.append)
        orchestrator.load_conversation(example_template)
        count = len(snapshots)
        orchestrator.set_speed(1.0)
        assert len(snapshots) == count
        orchestrator.play()
        assert snapshots[-1].status == PlaybackStatus.PLAYING


# ============================================================
# flow resolution
# ============================================================


def _interactive_flow(action=None) -> dict:
    interactive = {"type": "flow", "body": "Open the menu"}
    if action is not None:
        interactive["action"] = action
    return {"sender": "business", "type": "interactive",
            "content": {"interactive": interactive}}


class TestFlowResolution:
    def _message(self, template_factory, action=None):
        template = template_factory(messages=[_interactive_flow(action)])
        return build_conversation(parse_template(template)).messages[0]

    def test_action_keys(self, template_factory):
        message = self._message(
            template_factory, {"flow_id": "menu_flow", "flow_token": "tok-menu"}
        )
        assert resolve_flow(message) == ("menu_flow", "tok-menu", None, ())

    def test_action_parameters(self, template_factory):
        message = self._message(
            template_factory,
            {"parameters": {"flow_id": "menu_flow", "flow_token": "tok-menu"}},
        )
        flow_id, flow_token, _, _ = resolve_flow(message)
        assert (flow_id, flow_token) == ("menu_flow", "tok-menu")

    def test_fallback_ids(self, template_factory):
        flow_id, flow_token, _, _ = resolve_flow(self._message(template_factory))
        assert flow_id == "demo-msg-1-flow"
        assert flow_token.startswith("flow_")

    def test_interactive_trigger_during_playback(
        self, orchestrator, clock, recorder, template_factory
    ):
        action = {"flow_id": "booking_flow", "flow_token": "tok-menu"}
        template = template_factory(messages=[_interactive_flow(action)])
        orchestrator.load_conversation(template, autoplay=True)
        clock.run_until_idle()

        triggered = recorder.of(EventType.FLOW_TRIGGERED)
        assert [(e.flow_id, e.flow_token) for e in triggered] == [("booking_flow", "tok-menu")]
        completed = recorder.of(EventType.FLOW_COMPLETED)
        assert completed[0].flow_token == "tok-menu"
        assert completed[0].result["status"] == "confirmed"
