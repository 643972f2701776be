"""
Medlink Triage - Core Package

Contains the per-call triage logic and domain types:
- types: Internal domain types and type aliases
- extraction: Deterministic fact extraction
- classification: Urgency rule tree and additive severity score
- guidance: Phone-guidance protocol runner
- session_store: Per-call context ownership and serialization
- orchestrator: Session orchestration (import from medlink.core.orchestrator)
"""

from .types import (
    CallId,
    ClassificationResult,
    CollectedFacts,
    ConversationContext,
    ExtractedMedicalData,
    GuidanceState,
    GuidanceUpdate,
    HandleResult,
    ProtocolKind,
    TriageReport,
    TriageSnapshot,
    UrgencyTier,
)
from .extraction import extract_facts
from .classification import classify, severity_score, tier_from_severity_score
from .guidance import advance, select_protocol
from .session_store import CallSessionStore

__all__ = [
    # Types
    "CallId",
    "ClassificationResult",
    "CollectedFacts",
    "ConversationContext",
    "ExtractedMedicalData",
    "GuidanceState",
    "GuidanceUpdate",
    "HandleResult",
    "ProtocolKind",
    "TriageReport",
    "TriageSnapshot",
    "UrgencyTier",
    # Pure components
    "extract_facts",
    "classify",
    "severity_score",
    "tier_from_severity_score",
    "advance",
    "select_protocol",
    # State
    "CallSessionStore",
]
