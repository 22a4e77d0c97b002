"""Playback service: owns the timer lifecycle of one conversation

State changes go through the pure transforms in ``core.playback.state``;
this service only decides *when* they happen and emits the matching events.

Lifecycle:
    Idle → Loaded → Playing ⇄ Paused → Completed
    Error is reachable from any state; reset returns to Loaded
    (Idle when nothing is loaded).
"""

import uuid
from functools import partial
from typing import List, Optional

from wa_simulator.core.clock import Clock, TimerSet
from wa_simulator.core.conversation.models import Conversation, Message, is_flow_trigger
from wa_simulator.core.errors import (
    DisposedError,
    InvalidMessageIndexError,
    InvalidPlaybackStateError,
    NoConversationError,
    SimulatorError,
)
from wa_simulator.core.event_bus import EventBus
from wa_simulator.core.events import (
    ConversationCompleted,
    ConversationError,
    ConversationJumped,
    ConversationPaused,
    ConversationReset,
    ConversationResumed,
    ConversationSpeedChanged,
    ConversationStarted,
    ErrorInfo,
    FlowTriggered,
    MessageDelivered,
    MessageRead,
    MessageSent,
    MessageTypingStarted,
    MessageTypingStopped,
)
from wa_simulator.core.logging import get_logger
from wa_simulator.core.playback import state as ps
from wa_simulator.core.playback.schedule import (
    MessageProcessingConfig,
    Phase,
    PhaseKind,
    build_phases,
    compute_schedule,
)
from wa_simulator.core.playback.state import PlaybackStatus
from wa_simulator.core.result import Result
from wa_simulator.services.state_store import StateStore

logger = get_logger(__name__)

AUTO_RESTART_KEY = "auto-restart"


def resolve_flow(message: Message) -> tuple:
    """(flow_id, flow_token, flow_data, steps) for a trigger message."""
    flow = message.content.flow
    if flow is not None:
        token = flow.flow_token or f"flow_{uuid.uuid4().hex}"
        return flow.flow_id, token, flow.flow_data, flow.steps
    flow_id = flow_token = None
    interactive = message.content.interactive
    if interactive is not None:
        action = interactive.get("action") or {}
        parameters = action.get("parameters") or {}
        flow_id = action.get("flow_id") or parameters.get("flow_id")
        flow_token = action.get("flow_token") or parameters.get("flow_token")
    return (
        flow_id or f"{message.id}-flow",
        flow_token or f"flow_{uuid.uuid4().hex}",
        None,
        (),
    )


class PlaybackService:
    """Schedules and executes playback phases on a ``Clock``.

    Every remaining phase (typing start, send, read receipt) gets its own
    timer. When a phase fires, every earlier pending phase runs first, so
    phases due at the same instant never execute out of order.
    """

    def __init__(
        self,
        event_bus: EventBus,
        store: StateStore,
        clock: Clock,
        config: Optional[MessageProcessingConfig] = None,
        auto_restart_delay_ms: Optional[float] = None,
    ):
        self._bus = event_bus
        self._store = store
        self._clock = clock
        self._config = config or MessageProcessingConfig()
        self._auto_restart_delay_ms = auto_restart_delay_ms
        self._timers = TimerSet(clock, "playback")
        self._pending: List[Phase] = []
        self._generation = 0
        self._started_at: Optional[float] = None
        self._elapsed_base = 0.0
        self._segment_start: Optional[float] = None
        self._disposed = False

    # === Queries ===

    @property
    def state(self) -> ps.PlaybackState:
        return self._store.get()

    @property
    def status(self) -> PlaybackStatus:
        return self._store.get().status

    @property
    def pending_timer_count(self) -> int:
        return self._timers.pending_count

    @property
    def pending_phases(self) -> List[Phase]:
        return list(self._pending)

    # === Control ===

    def load(self, conversation: Conversation) -> Result:
        self._ensure_alive("load")
        self._stop_timers()
        try:
            self._store.update(lambda s: ps.load(s, conversation))
        except SimulatorError as e:
            logger.warning("Load rejected: %s", e)
            return Result.fail(e)
        self._started_at = None
        self._reset_elapsed()
        logger.info(
            "Conversation loaded: %s (%d messages)", conversation.id, len(conversation)
        )
        return Result.ok()

    def play(self) -> Result:
        self._ensure_alive("play")
        state = self._store.get()
        status = state.status
        if status == PlaybackStatus.PLAYING:
            return Result.ok()
        if status == PlaybackStatus.IDLE:
            return self._reject("play", NoConversationError())
        if status == PlaybackStatus.ERROR:
            return self._reject("play", InvalidPlaybackStateError("play", status.value))
        if status == PlaybackStatus.PAUSED:
            return self._resume()
        if status == PlaybackStatus.COMPLETED:
            self.reset()

        state = self._store.get()
        index = state.current_message_index
        self._store.update(ps.start)
        self._started_at = self._clock.now()
        self._segment_start = self._started_at
        event = ConversationStarted(
            conversation_id=state.conversation.id,
            timestamp=self._clock.now(),
            total_messages=state.total_messages,
            playback_speed=state.playback_speed,
            start_index=index,
        )
        self._bus.emit(event)
        logger.info(
            "Playback started: %s from message %d at %.1fx",
            state.conversation.id,
            index,
            state.playback_speed,
        )
        if self._store.get().is_playing:
            self._schedule_from(index)
        return Result.ok(event)

    def pause(self) -> Result:
        self._ensure_alive("pause")
        state = self._store.get()
        if state.status != PlaybackStatus.PLAYING:
            return self._reject("pause", InvalidPlaybackStateError("pause", state.status.value))
        self._timers.suspend()
        self._close_segment()
        self._store.update(ps.pause)
        self._sync_times()
        event = ConversationPaused(
            conversation_id=state.conversation.id,
            timestamp=self._clock.now(),
            current_message_index=state.current_message_index,
        )
        self._bus.emit(event)
        logger.info("Playback paused at message %d", state.current_message_index)
        return Result.ok(event)

    def reset(self) -> Result:
        """Rewind to message 0. Emits ``conversation.reset`` on every call."""
        self._ensure_alive("reset")
        self._stop_timers()
        self._store.update(ps.reset)
        self._started_at = None
        self._reset_elapsed()
        state = self._store.get()
        event = ConversationReset(
            conversation_id=state.conversation.id if state.conversation else "",
            timestamp=self._clock.now(),
        )
        self._bus.emit(event)
        logger.info("Playback reset")
        return Result.ok(event)

    def set_speed(self, speed: float) -> Result:
        self._ensure_alive("set_speed")
        state = self._store.get()
        old_speed = state.playback_speed
        try:
            new_state = ps.set_speed(state, speed)
        except SimulatorError as e:
            return self._reject("set_speed", e)
        new_speed = new_state.playback_speed
        if new_speed == old_speed:
            return Result.ok()

        if state.status in (PlaybackStatus.PLAYING, PlaybackStatus.PAUSED) and self._pending:
            self._timers.rescale(old_speed / new_speed)
        self._store.update(lambda s: ps.set_speed(s, new_speed))
        self._sync_times()
        event = ConversationSpeedChanged(
            conversation_id=state.conversation.id if state.conversation else "",
            timestamp=self._clock.now(),
            old_speed=old_speed,
            new_speed=new_speed,
        )
        self._bus.emit(event)
        logger.info("Playback speed: %.1fx -> %.1fx", old_speed, new_speed)
        return Result.ok(event)

    def jump_to(self, index: int) -> Result:
        """Seek to ``index``: earlier messages are settled without events."""
        self._ensure_alive("jump_to")
        state = self._store.get()
        if state.conversation is None:
            return self._reject("jump_to", NoConversationError())
        if not ps.can_jump_to(state, index):
            return self._reject("jump_to", InvalidMessageIndexError(index, state.total_messages))

        was_playing = state.status == PlaybackStatus.PLAYING
        from_index = state.current_message_index
        self._stop_timers()
        self._close_segment()
        read_receipts = state.conversation.settings.show_read_receipts
        self._store.update(lambda s: ps.jump(s, index, read_receipts, self._clock.now()))
        if was_playing:
            self._segment_start = self._clock.now()
            self._schedule_from(index)
        self._sync_times()

        event = ConversationJumped(
            conversation_id=state.conversation.id,
            timestamp=self._clock.now(),
            from_index=from_index,
            to_index=index,
        )
        self._bus.emit(event)
        logger.info("Jumped from message %d to %d", from_index, index)
        return Result.ok(event)

    def next_message(self) -> Result:
        self._ensure_alive("next_message")
        state = self._store.get()
        return self.jump_to(state.current_message_index + 1)

    def previous_message(self) -> Result:
        self._ensure_alive("previous_message")
        state = self._store.get()
        return self.jump_to(state.current_message_index - 1)

    def destroy(self) -> None:
        self._ensure_alive("destroy")
        self._stop_timers()
        self._disposed = True
        logger.info("Playback service destroyed")

    # === Scheduling ===

    def _schedule_from(self, index: int) -> None:
        state = self._store.get()
        conversation = state.conversation
        schedule = compute_schedule(conversation, state.playback_speed, index, self._config)
        self._pending = build_phases(schedule, conversation.settings.show_read_receipts)
        generation = self._generation
        for phase in self._pending:
            self._timers.schedule(
                phase.key, phase.offset, partial(self._on_phase_due, phase, generation)
            )
        logger.debug("Scheduled %d phase(s) from message %d", len(self._pending), index)
        if not self._pending:
            self._complete()

    def _on_phase_due(self, phase: Phase, generation: int) -> None:
        if generation != self._generation:
            return
        try:
            while (
                self._pending
                and self._pending[0].order <= phase.order
                and generation == self._generation
                and self._store.get().is_playing
            ):
                current = self._pending.pop(0)
                if current is not phase:
                    self._timers.cancel(current.key)
                self._execute(current)
        except Exception as e:
            self._fail(e)
            return

        if generation != self._generation:
            return
        if phase in self._pending:
            # halted (step mode / pause from a handler) before reaching this phase
            self._timers.schedule(
                phase.key, 0, partial(self._on_phase_due, phase, generation)
            )
            return
        if not self._pending and self._store.get().is_playing:
            self._complete()

    def _execute(self, phase: Phase) -> None:
        conversation = self._store.get().conversation
        message = conversation.messages[phase.message_index]
        logger.debug("Phase %s for %s", phase.kind.value, message.id)
        if phase.kind == PhaseKind.TYPING_START:
            self._store.update(lambda s: ps.advance(s, phase.message_index))
            self._emit_message(MessageTypingStarted, phase.message_index)
        elif phase.kind == PhaseKind.SEND:
            self._send(phase.message_index)
        elif phase.kind == PhaseKind.READ:
            now = self._clock.now()
            self._store.update(lambda s: ps.mark_read(s, message.id, now))
            self._emit_message(MessageRead, phase.message_index)

    def _send(self, index: int) -> None:
        # a handler may reset, seek or reload mid-send; stop once the generation moves
        generation = self._generation
        message = self._store.get().conversation.messages[index]
        self._emit_message(MessageTypingStopped, index)
        if generation != self._generation:
            return
        now = self._clock.now()
        self._store.update(lambda s: ps.mark_sent(s, message.id, now))
        self._emit_message(MessageSent, index)
        if generation != self._generation:
            return
        self._store.update(lambda s: ps.mark_delivered(s, message.id, now))
        self._emit_message(MessageDelivered, index)
        if generation != self._generation:
            return
        self._store.update(lambda s: ps.advance(s, index + 1))
        self._sync_times()

        if is_flow_trigger(message):
            self._trigger_flow(index)
            if generation != self._generation:
                return

        state = self._store.get()
        if (
            not state.conversation.settings.auto_advance
            and index < state.total_messages - 1
            and state.is_playing
        ):
            logger.debug("Step mode: pausing after message %d", index)
            self.pause()

    def _trigger_flow(self, index: int) -> None:
        state = self._store.get()
        message = state.conversation.messages[index]
        flow_id, flow_token, flow_data, steps = resolve_flow(message)
        event_kwargs = {}
        if flow_data is not None:
            event_kwargs["flow_data"] = flow_data
        self._bus.emit(
            FlowTriggered(
                conversation_id=state.conversation.id,
                timestamp=self._clock.now(),
                flow_id=flow_id,
                flow_token=flow_token,
                message=message,
                message_index=index,
                steps=tuple(steps),
                **event_kwargs,
            )
        )
        logger.info("Flow triggered: %s (%s) by %s", flow_id, flow_token, message.id)

    def _emit_message(self, event_cls, index: int) -> None:
        state = self._store.get()
        self._bus.emit(
            event_cls(
                conversation_id=state.conversation.id,
                timestamp=self._clock.now(),
                message=state.conversation.messages[index],
                message_index=index,
            )
        )

    def _complete(self) -> None:
        self._close_segment()
        self._store.update(ps.complete)
        self._sync_times()
        state = self._store.get()
        started = self._started_at if self._started_at is not None else self._clock.now()
        self._bus.emit(
            ConversationCompleted(
                conversation_id=state.conversation.id,
                timestamp=self._clock.now(),
                total_messages=state.total_messages,
                duration=self._clock.now() - started,
            )
        )
        logger.info("Conversation completed: %s", state.conversation.id)
        if self._auto_restart_delay_ms is not None and not self._disposed:
            self._timers.schedule(
                AUTO_RESTART_KEY, self._auto_restart_delay_ms, self._auto_restart
            )

    def _auto_restart(self) -> None:
        if self._disposed or self._store.get().status != PlaybackStatus.COMPLETED:
            return
        logger.info("Auto-restarting playback")
        self.reset()
        self.play()

    def _resume(self) -> Result:
        state = self._store.get()
        self._store.update(ps.resume)
        self._segment_start = self._clock.now()
        event = ConversationResumed(
            conversation_id=state.conversation.id,
            timestamp=self._clock.now(),
            current_message_index=state.current_message_index,
        )
        self._bus.emit(event)
        logger.info("Playback resumed at message %d", state.current_message_index)
        if self._store.get().is_playing:
            if self._pending:
                self._timers.resume()
            else:
                # timers were dropped while paused (seek)
                self._schedule_from(self._store.get().current_message_index)
        return Result.ok(event)

    def _fail(self, error: Exception) -> None:
        logger.exception("Playback phase failed: %s", error)
        self._stop_timers()
        self._close_segment()
        info = ErrorInfo.from_exception(error)
        self._store.update(lambda s: ps.set_error(s, info))
        state = self._store.get()
        self._bus.emit(
            ConversationError(
                conversation_id=state.conversation.id if state.conversation else "",
                timestamp=self._clock.now(),
                error=info,
            )
        )

    def _stop_timers(self) -> None:
        self._generation += 1
        self._timers.cancel_all()
        self._pending = []

    def _reject(self, action: str, error: SimulatorError) -> Result:
        logger.warning("%s rejected: %s", action, error)
        return Result.fail(error)

    def _ensure_alive(self, action: str) -> None:
        if self._disposed:
            raise DisposedError(action)

    # === Progress times ===

    def _reset_elapsed(self) -> None:
        self._elapsed_base = 0.0
        self._segment_start = None

    def _close_segment(self) -> None:
        if self._segment_start is not None:
            self._elapsed_base += self._clock.now() - self._segment_start
            self._segment_start = None

    def _sync_times(self) -> None:
        elapsed = self._elapsed_base
        if self._segment_start is not None:
            elapsed += self._clock.now() - self._segment_start
        remaining = 0.0
        if self._pending:
            remaining = self._timers.remaining(self._pending[-1].key) or 0.0
        self._store.update(lambda s: ps.with_times(s, elapsed, remaining))
