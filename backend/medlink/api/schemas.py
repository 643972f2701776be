"""
Medlink Triage - API Schemas

Pydantic models for request/response validation.
These define the contract between dispatcher consoles and the backend.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from medlink.core.types import ProtocolKind, ResourceRecommendation, UrgencyTier


# ===========================================
# Request Schemas
# ===========================================

class UtteranceRequest(BaseModel):
    """One caller utterance for a call."""

    text: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Transcribed caller utterance",
    )


class GuidanceSwitchRequest(BaseModel):
    """Explicit switch to another guidance protocol."""

    protocol: ProtocolKind


# ===========================================
# Triage Schemas
# ===========================================

class ClassificationSchema(BaseModel):
    """Urgency classification of a call."""

    tier: UrgencyTier
    priority: str = Field(description="Tier code: P0 | P1 | P2 | P3 | P5")
    score: int = Field(ge=0, le=100)
    matched_criteria: List[str]
    recommended_resource: ResourceRecommendation
    max_response_minutes: Optional[int] = Field(
        default=None,
        description="Dispatch deadline in minutes; null when unbounded",
    )
    confidence: float = Field(ge=0.0, le=1.0)
    escalate_to_physician: bool


class TriageSnapshotSchema(BaseModel):
    """Dispatcher-facing snapshot after one utterance."""

    call_id: str
    classification: ClassificationSchema
    summary: str
    confidence: float = Field(ge=0.0, le=1.0)
    is_partial: bool
    symptoms: List[str] = Field(default_factory=list)
    vital_emergency: bool = False
    address: Optional[str] = None
    address_confirmed: bool = False
    agent_advice: Optional[str] = None
    geo: Optional[Dict[str, Any]] = None
    severity_score: Optional[int] = None
    smart_tier: Optional[UrgencyTier] = None


class GuidanceSchema(BaseModel):
    """Current instruction of the active guidance protocol."""

    protocol: ProtocolKind
    instruction: str
    step_index: int = Field(ge=0)
    needs_repeat: bool = False


# ===========================================
# Response Schemas
# ===========================================

class UtteranceResponse(BaseModel):
    """Result of handling one utterance."""

    reply_text: str
    triage_snapshot: Optional[TriageSnapshotSchema] = None
    guidance: Optional[GuidanceSchema] = None
    retired: bool = False


class CallStateResponse(BaseModel):
    """Facts and guidance collected so far for an active call."""

    call_id: str
    message_count: int
    facts: Dict[str, Any]
    guidance: Optional[Dict[str, Any]] = None


class EndCallResponse(BaseModel):
    """Closing report of an ended call."""

    call_id: str
    report: Optional[Dict[str, Any]] = None


class GreetingResponse(BaseModel):
    text: str


class HealthResponse(BaseModel):
    """System health status."""

    status: str = Field(description="Overall status: healthy | degraded")
    components: Dict[str, str] = Field(
        description="Status of individual components"
    )
    active_calls: int = 0
    version: str = Field(default="0.1.0")
