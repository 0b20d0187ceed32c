from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from support_agent.application.container import AgentContainer
from support_agent.application.dispatcher import TurnDispatcher, TurnReply
from support_agent.domain.orchestration.wizard.state_machine import ConfirmResult, SubmitResult
from support_agent.application.api.schema.requests import (
    ChatRequest, FieldSubmission, HealthResponse, SessionResponse, WizardStartRequest
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/agent")


def get_container(request: Request) -> AgentContainer:
    return request.app.state.container


def get_dispatcher(request: Request) -> TurnDispatcher:
    return request.app.state.dispatcher


# Conversational entry point, routed to the active wizard or to chat
@router.post("/chat", response_model=TurnReply)
async def chat_endpoint(
    body: ChatRequest,
    dispatcher: Annotated[TurnDispatcher, Depends(get_dispatcher)]
):
    return await dispatcher.handle(
        user_id=body.user_id,
        context_id=body.context_id,
        text=body.message,
        user_name=body.user_name,
        metadata=body.metadata,
    )


@router.post("/wizard/{user_id}/start", response_model=SubmitResult)
async def start_wizard(
    user_id: str,
    body: WizardStartRequest,
    container: Annotated[AgentContainer, Depends(get_container)]
):
    try:
        return await container.wizards.start(user_id, body.wizard)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown wizard '{body.wizard}'")


@router.post("/wizard/{user_id}/fields/{field_name}", response_model=SubmitResult)
async def submit_field(
    user_id: str,
    field_name: str,
    body: FieldSubmission,
    container: Annotated[AgentContainer, Depends(get_container)]
):
    return await container.wizards.submit_field(user_id, field_name, body.value)


@router.post("/wizard/{user_id}/confirm", response_model=ConfirmResult)
async def confirm_wizard(
    user_id: str,
    container: Annotated[AgentContainer, Depends(get_container)]
):
    return await container.wizards.confirm(user_id)


@router.post("/wizard/{user_id}/cancel", status_code=204)
async def cancel_wizard(
    user_id: str,
    container: Annotated[AgentContainer, Depends(get_container)]
):
    await container.wizards.cancel(user_id)


# Diagnostics
@router.get("/sessions/{user_id}", response_model=SessionResponse)
async def get_session(
    user_id: str,
    container: Annotated[AgentContainer, Depends(get_container)]
):
    session = container.wizards.get_session(user_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No session for user")
    return SessionResponse(
        user_id=user_id,
        session={key: value for key, value in session.items() if not key.startswith("_")},
        wizard=container.wizards.describe(user_id),
        timer_active=container.timers.is_active(user_id),
    )


@router.delete("/sessions/{user_id}", status_code=204)
async def clear_session(
    user_id: str,
    container: Annotated[AgentContainer, Depends(get_container)]
):
    if not container.wizards.clear_session(user_id):
        raise HTTPException(status_code=404, detail="No session for user")
    logger.info("Session cleared via API", user_id=user_id)


@router.get("/health", response_model=HealthResponse)
async def health(container: Annotated[AgentContainer, Depends(get_container)]):
    return HealthResponse(
        sessions=container.sessions.size(),
        active_timers=container.timers.active_count(),
        tools=list(container.tools.tools.keys()),
    )
