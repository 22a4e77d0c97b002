"""Simulator control API endpoints.

Handlers are ``async`` so that every engine call runs on the event loop
thread that owns the orchestrator's timers.
"""

from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from wa_simulator.api.schemas import (
    BadgeInfo,
    ControlResponse,
    ErrorInfoSchema,
    ErrorResponse,
    EventsResponse,
    FlowCompleteRequest,
    JumpRequest,
    LoadRequest,
    MessageInfo,
    ProgressInfo,
    ScenarioInfo,
    SpeedRequest,
    StateResponse,
)
from wa_simulator.core.conversation.catalog import ScenarioCatalog
from wa_simulator.core.conversation.models import get_message_display_text, is_flow_trigger
from wa_simulator.core.conversation.template import build_conversation
from wa_simulator.core.errors import DisposedError
from wa_simulator.core.events import event_to_dict
from wa_simulator.core.logging import get_logger
from wa_simulator.core.result import Result
from wa_simulator.services.orchestrator import ConversationOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/simulator", tags=["simulator"])

CONTROL_RESPONSES = {400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    """Orchestrator instance (dependency injection)"""
    orchestrator: ConversationOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_catalog(request: Request) -> ScenarioCatalog:
    """ScenarioCatalog instance (dependency injection)"""
    catalog: ScenarioCatalog = request.app.state.catalog
    return catalog


def _build_state_response(orchestrator: ConversationOrchestrator) -> StateResponse:
    """PlaybackState → StateResponse"""
    state = orchestrator.get_current_state()
    conversation = state.conversation
    messages = []
    if conversation is not None:
        messages = [
            MessageInfo(
                id=m.id,
                index=i,
                sender=m.sender.value,
                type=m.type.value,
                status=m.status.value,
                text=get_message_display_text(m),
                is_flow_trigger=is_flow_trigger(m),
                queue_at=m.timing.queue_at,
                sent_at=m.timing.sent_at,
                delivered_at=m.timing.delivered_at,
                read_at=m.timing.read_at,
            )
            for i, m in enumerate(conversation.messages)
        ]
    badge = orchestrator.active_badge
    return StateResponse(
        status=state.status.value,
        conversation_id=conversation.id if conversation else None,
        title=conversation.metadata.title if conversation else None,
        current_message_index=state.current_message_index,
        total_messages=state.total_messages,
        playback_speed=state.playback_speed,
        progress=ProgressInfo(
            completion_percentage=state.progress.completion_percentage,
            elapsed_time=state.progress.elapsed_time,
            remaining_time=state.progress.remaining_time,
        ),
        typing={sender.value: typing for sender, typing in state.typing_states.items()},
        messages=messages,
        active_badge=BadgeInfo(
            id=badge.id,
            title=badge.title,
            subtitle=badge.subtitle,
            trigger_at_message_index=badge.trigger_at_message_index,
            display_duration=badge.display_duration,
        )
        if badge
        else None,
        error=ErrorInfoSchema(
            code=state.error.code,
            message=state.error.message,
            recoverable=state.error.recoverable,
        )
        if state.error
        else None,
    )


def _run_control(
    orchestrator: ConversationOrchestrator, action: Callable[[], Result]
) -> ControlResponse:
    """Run a control call; failed Result → 400, destroyed engine → 409"""
    try:
        result = action()
    except DisposedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error.message)
    return ControlResponse(
        success=True,
        event=event_to_dict(result.event) if result.event else None,
        state=_build_state_response(orchestrator),
    )


@router.get("/scenarios", response_model=list[ScenarioInfo])
async def list_scenarios(catalog: ScenarioCatalog = Depends(get_catalog)) -> list[ScenarioInfo]:
    """Scenarios available in the catalog."""
    scenarios = []
    for template in catalog.list():
        conversation = build_conversation(template)
        meta = template.metadata
        scenarios.append(
            ScenarioInfo(
                id=meta.id,
                title=meta.title,
                description=meta.description,
                business_name=meta.business_name,
                message_count=len(conversation),
                estimated_duration=conversation.metadata.estimated_duration,
                tags=list(meta.tags),
                category=meta.category,
            )
        )
    return scenarios


@router.post(
    "/load",
    response_model=ControlResponse,
    responses={**CONTROL_RESPONSES, 404: {"model": ErrorResponse}},
)
async def load_conversation(
    request: LoadRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    catalog: ScenarioCatalog = Depends(get_catalog),
) -> ControlResponse:
    """
    Load a conversation

    Either ``scenario_id`` (catalog) or an inline ``template``. The previous
    conversation is stopped and replaced.
    """
    source: Optional[object] = request.template
    if request.scenario_id is not None:
        source = catalog.get(request.scenario_id)
        if source is None:
            raise HTTPException(
                status_code=404, detail=f"Scenario not found: {request.scenario_id}"
            )
    logger.info("Loading conversation (scenario=%s)", request.scenario_id or "inline")
    return _run_control(
        orchestrator,
        lambda: orchestrator.load_conversation(source, autoplay=request.autoplay),
    )


@router.post("/play", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def play(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> ControlResponse:
    return _run_control(orchestrator, orchestrator.play)


@router.post("/pause", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def pause(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> ControlResponse:
    return _run_control(orchestrator, orchestrator.pause)


@router.post("/reset", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def reset(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)) -> ControlResponse:
    return _run_control(orchestrator, orchestrator.reset)


@router.post("/next", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def next_message(
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ControlResponse:
    return _run_control(orchestrator, orchestrator.next_message)


@router.post("/previous", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def previous_message(
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ControlResponse:
    return _run_control(orchestrator, orchestrator.previous_message)


@router.post("/jump", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def jump(
    request: JumpRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ControlResponse:
    return _run_control(orchestrator, lambda: orchestrator.jump_to(request.index))


@router.post("/speed", response_model=ControlResponse, responses=CONTROL_RESPONSES)
async def set_speed(
    request: SpeedRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ControlResponse:
    return _run_control(orchestrator, lambda: orchestrator.set_speed(request.speed))


@router.get("/state", response_model=StateResponse, responses={409: {"model": ErrorResponse}})
async def get_state(
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> StateResponse:
    """Current playback state."""
    try:
        return _build_state_response(orchestrator)
    except DisposedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/events", response_model=EventsResponse)
async def recent_events(
    limit: int = Query(50, ge=1, le=1000),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> EventsResponse:
    """Most recent events, oldest first."""
    return EventsResponse(
        events=[event_to_dict(e) for e in orchestrator.event_log.recent(limit)]
    )


@router.post(
    "/flows/{flow_token}/complete",
    response_model=ControlResponse,
    responses=CONTROL_RESPONSES,
)
async def complete_flow(
    flow_token: str,
    request: FlowCompleteRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ControlResponse:
    """Submit the result of an active flow."""
    return _run_control(
        orchestrator, lambda: orchestrator.complete_flow(flow_token, request.result)
    )
