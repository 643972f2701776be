"""
Medlink Triage - Core Domain Types

Internal type definitions shared by the extraction, classification,
guidance and orchestration layers.

Design Notes:
- These types are the "lingua franca" between core components.
- The API layer converts these to/from Pydantic schemas.
- Tri-state flags (breathing, bleeding) use Optional[bool]: None is "unknown".
- Enums are str-valued so they serialize directly.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NewType, Optional


# =============================================================================
# Type Aliases
# =============================================================================

CallId = NewType("CallId", str)
"""Opaque call identifier supplied by the transport layer."""

FactUpdate = Dict[str, Any]
"""Partial CollectedFacts produced by one extraction pass. Absent keys mean 'no signal'."""


# =============================================================================
# Enums
# =============================================================================

class UrgencyTier(str, Enum):
    """Urgency tiers, most severe first."""
    IMMEDIATE = "immediate"      # P0 - immediate life threat
    POTENTIAL = "potential"      # P1 - potential life threat
    RELATIVE = "relative"        # P2 - relative urgency
    MINOR = "minor"              # P3 - minor
    ADVICE_ONLY = "advice_only"  # P5 - medical advice only

    @property
    def rank(self) -> int:
        """0 for the most severe tier."""
        return TIER_ORDER.index(self)

    @property
    def code(self) -> str:
        return {
            UrgencyTier.IMMEDIATE: "P0",
            UrgencyTier.POTENTIAL: "P1",
            UrgencyTier.RELATIVE: "P2",
            UrgencyTier.MINOR: "P3",
            UrgencyTier.ADVICE_ONLY: "P5",
        }[self]


TIER_ORDER: List[UrgencyTier] = [
    UrgencyTier.IMMEDIATE,
    UrgencyTier.POTENTIAL,
    UrgencyTier.RELATIVE,
    UrgencyTier.MINOR,
    UrgencyTier.ADVICE_ONLY,
]


class ResourceRecommendation(str, Enum):
    """Resources recommended for dispatch."""
    ALS_AND_BLS = "smur+vsav"     # Advanced + basic life support
    ALS = "smur"                  # Advanced life support
    BASIC_AMBULANCE = "ambulance"
    NO_DISPATCH = "advice"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class ConsciousnessState(str, Enum):
    CONSCIOUS = "conscious"
    UNCONSCIOUS = "unconscious"
    CONFUSED = "confused"
    UNKNOWN = "unknown"


class CallerRelation(str, Enum):
    """Who is on the line relative to the patient."""
    PATIENT = "patient"
    WITNESS = "witness"
    UNKNOWN = "unknown"


class MessageRole(str, Enum):
    SYSTEM = "system"
    CALLER = "caller"
    DISPATCHER = "dispatcher"


class ProtocolKind(str, Enum):
    """Phone-guidance protocols."""
    CPR = "cpr"
    CHOKING_RELIEF = "choking_relief"
    BLEEDING_CONTROL = "bleeding_control"


class FacilityKind(str, Enum):
    HOSPITAL = "hospital"
    FIRE_STATION = "fire_station"


# =============================================================================
# Collected Facts
# =============================================================================

_UNKNOWN_VALUES = (
    Gender.UNKNOWN,
    ConsciousnessState.UNKNOWN,
    CallerRelation.UNKNOWN,
)


@dataclass
class CollectedFacts:
    """
    Everything learned about a call so far.

    Facts accumulate monotonically: merge() only overwrites a field when
    an update carries an explicit value for it. None and the UNKNOWN enum
    members never erase a previously collected fact, and symptoms are a
    de-duplicated union.
    """
    # Patient
    age: Optional[int] = None
    gender: Gender = Gender.UNKNOWN
    symptoms: List[str] = field(default_factory=list)
    consciousness: ConsciousnessState = ConsciousnessState.UNKNOWN
    breathing: Optional[bool] = None
    bleeding: Optional[bool] = None
    bleeding_severity: Optional[str] = None  # "massive" when uncontrolled
    convulsions: bool = False
    shock_signs: bool = False
    fever: bool = False
    duration_hours: Optional[float] = None
    fall_height_m: Optional[float] = None
    trauma_mechanism: Optional[str] = None  # "vehicle_collision"

    # Location
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    address_confirmed: bool = False
    address_readback_sent: bool = False

    # Call
    preliminary_urgent: bool = False
    witness_present: bool = False
    caller_relation: CallerRelation = CallerRelation.UNKNOWN

    def merge(self, update: FactUpdate) -> List[str]:
        """
        Apply a partial update in place.

        Returns:
            Names of the fields whose value changed.
        """
        known = {f.name for f in fields(self)}
        changed = []
        for name, value in update.items():
            if name not in known or value is None or value in _UNKNOWN_VALUES:
                continue
            if name == "symptoms":
                added = [s for s in value if s not in self.symptoms]
                if added:
                    self.symptoms.extend(added)
                    changed.append(name)
                continue
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed.append(name)
        return changed

    def has_symptom(self, *fragments: str) -> bool:
        """True if any symptom tag contains any of the fragments."""
        return any(
            fragment in symptom
            for symptom in self.symptoms
            for fragment in fragments
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.value if isinstance(value, Enum) else value
        data["symptoms"] = list(self.symptoms)
        return data


# =============================================================================
# Conversation
# =============================================================================

@dataclass(frozen=True)
class Message:
    """One exchanged message."""
    role: MessageRole
    text: str
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class GuidanceState:
    """
    Progress cursor for an active phone-guidance protocol.

    Attributes:
        protocol: Active protocol
        step_index: Current step (0-based); the last step repeats indefinitely
        started_at: Epoch seconds when the protocol was activated
        needs_repeat: Caller asked for help; re-deliver the current step
        feedback: Feedback keywords received so far
    """
    protocol: ProtocolKind
    step_index: int = 0
    started_at: float = field(default_factory=time.time)
    needs_repeat: bool = False
    feedback: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocol": self.protocol.value,
            "step_index": self.step_index,
            "started_at": self.started_at,
            "needs_repeat": self.needs_repeat,
            "feedback": list(self.feedback),
        }


@dataclass
class ConversationContext:
    """
    Per-call conversational state.

    Owned exclusively by the CallSessionStore; created on the first
    utterance and dropped at end of call.
    """
    call_id: CallId
    messages: List[Message] = field(default_factory=list)
    facts: CollectedFacts = field(default_factory=CollectedFacts)
    guidance: Optional[GuidanceState] = None
    geo: Optional["GeoContext"] = None
    geocoded_address: Optional[str] = None
    extracted: Optional["ExtractedMedicalData"] = None
    last_snapshot: Optional["TriageSnapshot"] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def add_message(self, role: MessageRole, text: str) -> Message:
        message = Message(role=role, text=text)
        self.messages.append(message)
        return message

    def non_system_count(self) -> int:
        return sum(1 for m in self.messages if m.role != MessageRole.SYSTEM)

    def caller_utterances(self) -> List[str]:
        return [m.text for m in self.messages if m.role == MessageRole.CALLER]


# =============================================================================
# Classification
# =============================================================================

@dataclass
class ClassificationResult:
    """
    Urgency classification, recomputed from scratch on every run.

    Attributes:
        tier: Urgency tier
        score: Severity score (0-100)
        matched_criteria: Human-readable labels of the rules that fired
        recommended_resource: Resources to dispatch
        max_response_minutes: Deadline in minutes (0 = dispatch now, None = unbounded)
        confidence: Confidence in the classification (0-1)
        escalate_to_physician: Must be confirmed by a medical regulator
    """
    tier: UrgencyTier
    score: int
    matched_criteria: List[str]
    recommended_resource: ResourceRecommendation
    max_response_minutes: Optional[int]
    confidence: float
    escalate_to_physician: bool

    def __post_init__(self):
        """Validate constraints."""
        if not 0 <= self.score <= 100:
            raise ValueError(f"score must be 0-100, got {self.score}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be 0-1, got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "priority": self.tier.code,
            "score": self.score,
            "matched_criteria": list(self.matched_criteria),
            "recommended_resource": self.recommended_resource.value,
            "max_response_minutes": self.max_response_minutes,
            "confidence": round(self.confidence, 3),
            "escalate_to_physician": self.escalate_to_physician,
        }


@dataclass
class ExtractedMedicalData:
    """
    Structured facts produced by the structured-extraction collaborator.

    Scored by the additive severity path, independently of the rule tree.
    """
    age: Optional[int] = None
    gender: Gender = Gender.UNKNOWN
    symptoms: List[str] = field(default_factory=list)
    medical_history: List[str] = field(default_factory=list)
    is_conscious: Optional[bool] = None
    is_breathing: Optional[bool] = None
    has_bleeding: Optional[bool] = None
    extraction_confidence: float = 0.0

    def has_enough_data(self) -> bool:
        return self.extraction_confidence >= 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "age": self.age,
            "gender": self.gender.value,
            "symptoms": list(self.symptoms),
            "medical_history": list(self.medical_history),
            "is_conscious": self.is_conscious,
            "is_breathing": self.is_breathing,
            "has_bleeding": self.has_bleeding,
            "extraction_confidence": self.extraction_confidence,
        }


# =============================================================================
# Geolocation
# =============================================================================

@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    address: Optional[str] = None


@dataclass(frozen=True)
class Facility:
    """A hospital or fire station near the patient."""
    id: str
    name: str
    address: str
    lat: float
    lng: float
    distance_km: float
    kind: FacilityKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "lat": self.lat,
            "lng": self.lng,
            "distance_km": self.distance_km,
            "kind": self.kind.value,
        }


@dataclass
class GeoContext:
    """Geolocation results attached to a call."""
    location: Location
    nearest_hospital: Optional[Facility] = None
    nearest_fire_station: Optional[Facility] = None
    eta_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patient_location": {
                "lat": self.location.lat,
                "lng": self.location.lng,
                "address": self.location.address,
            },
            "nearest_hospital": self.nearest_hospital.to_dict() if self.nearest_hospital else None,
            "nearest_fire_station": (
                self.nearest_fire_station.to_dict() if self.nearest_fire_station else None
            ),
            "eta_minutes": self.eta_minutes,
        }


# =============================================================================
# Orchestrator Output
# =============================================================================

@dataclass
class TriageSnapshot:
    """
    Dispatcher-facing view of a call after one utterance.

    Partial snapshots (below the final threshold) carry a cheap summary
    and a fixed confidence of 0.5; final snapshots carry a generated
    summary and a confidence of 0.85.
    """
    call_id: CallId
    classification: ClassificationResult
    summary: str
    confidence: float
    is_partial: bool
    symptoms: List[str] = field(default_factory=list)
    vital_emergency: bool = False
    address: Optional[str] = None
    address_confirmed: bool = False
    agent_advice: Optional[str] = None
    geo: Optional[GeoContext] = None
    severity_score: Optional[int] = None
    smart_tier: Optional[UrgencyTier] = None

    @property
    def tier(self) -> UrgencyTier:
        return self.classification.tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "classification": self.classification.to_dict(),
            "summary": self.summary,
            "confidence": self.confidence,
            "is_partial": self.is_partial,
            "symptoms": list(self.symptoms),
            "vital_emergency": self.vital_emergency,
            "address": self.address,
            "address_confirmed": self.address_confirmed,
            "agent_advice": self.agent_advice,
            "geo": self.geo.to_dict() if self.geo else None,
            "severity_score": self.severity_score,
            "smart_tier": self.smart_tier.value if self.smart_tier else None,
        }


@dataclass(frozen=True)
class GuidanceUpdate:
    """The instruction to speak for the active guidance protocol."""
    protocol: ProtocolKind
    instruction: str
    step_index: int
    needs_repeat: bool


@dataclass
class HandleResult:
    """
    Outward payload for one handled utterance.

    retired is True when the call ended while a collaborator call was in
    flight; the context was not mutated after that point.
    """
    reply_text: str
    triage_snapshot: Optional[TriageSnapshot] = None
    guidance: Optional[GuidanceUpdate] = None
    retired: bool = False


@dataclass
class TriageReport:
    """Record handed to the persistence sink. Never read back by the core."""
    call_id: CallId
    tier: UrgencyTier
    summary: str
    confidence: float
    matched_criteria: List[str]
    is_partial: bool
    geo: Optional[GeoContext] = None
    severity_score: Optional[int] = None
    smart_tier: Optional[UrgencyTier] = None
    recorded_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_snapshot(cls, snapshot: TriageSnapshot) -> "TriageReport":
        return cls(
            call_id=snapshot.call_id,
            tier=snapshot.tier,
            summary=snapshot.summary,
            confidence=snapshot.confidence,
            matched_criteria=list(snapshot.classification.matched_criteria),
            is_partial=snapshot.is_partial,
            geo=snapshot.geo,
            severity_score=snapshot.severity_score,
            smart_tier=snapshot.smart_tier,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tier": self.tier.value,
            "summary": self.summary,
            "confidence": self.confidence,
            "matched_criteria": list(self.matched_criteria),
            "is_partial": self.is_partial,
            "geo": self.geo.to_dict() if self.geo else None,
            "severity_score": self.severity_score,
            "smart_tier": self.smart_tier.value if self.smart_tier else None,
            "recorded_at": self.recorded_at.isoformat(),
        }
