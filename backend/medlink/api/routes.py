"""
Medlink Triage - REST API Routes

Thin HTTP adapter over the SessionOrchestrator. Every endpoint delegates
to the orchestrator, accessed via dependency injection from app.state.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from medlink.config import Settings
from medlink.core.orchestrator import SessionOrchestrator
from medlink.core.types import GuidanceUpdate, HandleResult

from .schemas import (
    CallStateResponse,
    EndCallResponse,
    GreetingResponse,
    GuidanceSchema,
    GuidanceSwitchRequest,
    HealthResponse,
    TriageSnapshotSchema,
    UtteranceRequest,
    UtteranceResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["api"])


# =============================================================================
# Dependencies
# =============================================================================

def get_orchestrator(request: Request) -> SessionOrchestrator:
    """Dependency to get the orchestrator from app state."""
    return request.app.state.orchestrator


def get_settings(request: Request) -> Settings:
    """Dependency to get settings from app state."""
    return request.app.state.settings


# =============================================================================
# Converters (Domain -> API Schema)
# =============================================================================

def guidance_to_schema(update: Optional[GuidanceUpdate]) -> Optional[GuidanceSchema]:
    if update is None:
        return None
    return GuidanceSchema(
        protocol=update.protocol,
        instruction=update.instruction,
        step_index=update.step_index,
        needs_repeat=update.needs_repeat,
    )


def result_to_schema(result: HandleResult) -> UtteranceResponse:
    snapshot = None
    if result.triage_snapshot is not None:
        snapshot = TriageSnapshotSchema(**result.triage_snapshot.to_dict())
    return UtteranceResponse(
        reply_text=result.reply_text,
        triage_snapshot=snapshot,
        guidance=guidance_to_schema(result.guidance),
        retired=result.retired,
    )


# =============================================================================
# Health
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    System health check.

    Reports which collaborator backend is configured for each concern.
    """
    components = {
        "api": "operational",
        "orchestrator": "operational",
        "reply_generator": type(orchestrator.reply_generator).__name__,
        "structured_extractor": (
            type(orchestrator.structured_extractor).__name__
            if orchestrator.structured_extractor else "disabled"
        ),
        "geocoder": type(orchestrator.geocoder).__name__ if orchestrator.geocoder else "disabled",
        "report_sink": "enabled" if settings.enable_report_sink else "disabled",
    }

    return HealthResponse(
        status="healthy",
        components=components,
        active_calls=orchestrator.store.active_count(),
    )


@router.get("/greeting", response_model=GreetingResponse)
async def greeting(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Opening sentence spoken when a call is picked up."""
    return GreetingResponse(text=orchestrator.get_greeting())


# =============================================================================
# Calls
# =============================================================================

@router.post("/calls/{call_id}/utterances", response_model=UtteranceResponse)
async def post_utterance(
    call_id: str,
    request: UtteranceRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Handle one caller utterance.

    Unknown call ids start a new call.
    """
    result = await orchestrator.handle(call_id, request.text)
    return result_to_schema(result)


@router.get("/calls/{call_id}", response_model=CallStateResponse)
async def get_call(
    call_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Facts and active guidance for a call."""
    context = orchestrator.get_context(call_id)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Call not found",
        )
    return CallStateResponse(
        call_id=call_id,
        message_count=context.non_system_count(),
        facts=context.facts.to_dict(),
        guidance=context.guidance.to_dict() if context.guidance else None,
    )


@router.delete("/calls/{call_id}", response_model=EndCallResponse)
async def end_call(
    call_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """End a call and return its closing report."""
    report = await orchestrator.end_call(call_id)
    return EndCallResponse(
        call_id=call_id,
        report=report.to_dict() if report else None,
    )


# =============================================================================
# Guidance
# =============================================================================

@router.put("/calls/{call_id}/guidance", response_model=GuidanceSchema)
async def switch_guidance(
    call_id: str,
    request: GuidanceSwitchRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Switch the call to another guidance protocol."""
    update = await orchestrator.switch_protocol(call_id, request.protocol)
    if update is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Call not found",
        )
    return guidance_to_schema(update)


@router.delete("/calls/{call_id}/guidance", status_code=status.HTTP_204_NO_CONTENT)
async def stop_guidance(
    call_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Stop the active guidance protocol."""
    stopped = await orchestrator.stop_guidance(call_id)
    if not stopped:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active guidance",
        )
    return None
