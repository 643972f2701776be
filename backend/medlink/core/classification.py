"""
Medlink Triage - Urgency Classifier

Two independent classification paths live here. They serve different
callers and use different tier thresholds, so they are kept apart:

1. Rule tree (classify):
   Evaluates an ordered decision table over CollectedFacts. The first
   rule whose predicate holds decides tier and severity score; confidence
   is then adjusted for missing information. Used on every utterance.

2. Additive score (severity_score / tier_from_severity_score):
   Sums weighted signals from ExtractedMedicalData produced by the
   structured-extraction collaborator and maps the total onto tiers.

Both are pure and deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from medlink.core.types import (
    CallerRelation,
    ClassificationResult,
    CollectedFacts,
    ConsciousnessState,
    ExtractedMedicalData,
    ResourceRecommendation,
    UrgencyTier,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Decision Table
# =============================================================================

Predicate = Callable[[CollectedFacts], bool]


@dataclass(frozen=True)
class RuleOutcome:
    tier: UrgencyTier
    score: int
    criteria: Tuple[str, ...]
    base_confidence: float = 1.0


@dataclass(frozen=True)
class DecisionRule:
    """
    One row of the decision table.

    escalation is an optional (predicate, outcome) pair checked only when
    this rule fires; it replaces the outcome with a more severe one.
    """
    name: str
    predicate: Predicate
    outcome: RuleOutcome
    escalation: Optional[Tuple[Predicate, RuleOutcome]] = None

    def evaluate(self, facts: CollectedFacts) -> Optional[RuleOutcome]:
        if not self.predicate(facts):
            return None
        if self.escalation is not None:
            upgrade_when, upgraded = self.escalation
            if upgrade_when(facts):
                return upgraded
        return self.outcome


def _is_unconscious(facts: CollectedFacts) -> bool:
    return facts.consciousness == ConsciousnessState.UNCONSCIOUS


def _recent_chest_pain(facts: CollectedFacts) -> bool:
    return (
        facts.has_symptom("douleur thoracique")
        and facts.duration_hours is not None
        and facts.duration_hours < 12
    )


def _shock_signs(facts: CollectedFacts) -> bool:
    return facts.shock_signs or facts.has_symptom("pâle", "sueurs")


def _stroke_pattern(facts: CollectedFacts) -> bool:
    return facts.has_symptom("paralysie", "parole", "visage")


def _severe_trauma(facts: CollectedFacts) -> bool:
    return (
        facts.trauma_mechanism == "vehicle_collision"
        or (facts.fall_height_m is not None and facts.fall_height_m > 3)
    )


def _vulnerable_fever(facts: CollectedFacts) -> bool:
    return facts.fever and facts.age is not None and (facts.age < 1 or facts.age > 75)


DECISION_RULES: List[DecisionRule] = [
    DecisionRule(
        "preliminary_urgent",
        lambda f: f.preliminary_urgent,
        RuleOutcome(UrgencyTier.IMMEDIATE, 95, ("automatic vital emergency",)),
    ),
    DecisionRule(
        "cardiac_arrest",
        lambda f: _is_unconscious(f) and f.breathing is False,
        RuleOutcome(UrgencyTier.IMMEDIATE, 100, ("cardiac arrest pattern",)),
    ),
    DecisionRule(
        "unconscious_unknown_breathing",
        lambda f: _is_unconscious(f) and f.breathing is None,
        RuleOutcome(UrgencyTier.IMMEDIATE, 100, ("unconsciousness + unknown breathing",)),
    ),
    DecisionRule(
        "convulsions",
        lambda f: f.convulsions,
        RuleOutcome(UrgencyTier.IMMEDIATE, 90, ("active convulsions",)),
    ),
    DecisionRule(
        "massive_bleeding",
        lambda f: f.bleeding_severity == "massive",
        RuleOutcome(UrgencyTier.IMMEDIATE, 95, ("massive uncontrolled bleeding",)),
    ),
    DecisionRule(
        "recent_chest_pain",
        _recent_chest_pain,
        RuleOutcome(UrgencyTier.POTENTIAL, 80, ("recent chest pain",)),
        escalation=(
            _shock_signs,
            RuleOutcome(UrgencyTier.IMMEDIATE, 95, ("recent chest pain", "+ shock signs")),
        ),
    ),
    DecisionRule(
        "stroke",
        _stroke_pattern,
        RuleOutcome(UrgencyTier.POTENTIAL, 85, ("suspected stroke (FAST)",)),
    ),
    DecisionRule(
        "severe_trauma",
        _severe_trauma,
        RuleOutcome(UrgencyTier.POTENTIAL, 75, ("severe trauma",)),
    ),
    DecisionRule(
        "abdominal_pain",
        lambda f: f.has_symptom("douleur abdominale"),
        RuleOutcome(UrgencyTier.RELATIVE, 60, ("acute abdominal pain",)),
    ),
    DecisionRule(
        "vulnerable_fever",
        _vulnerable_fever,
        RuleOutcome(UrgencyTier.RELATIVE, 55, ("fever in vulnerable patient",)),
    ),
    DecisionRule(
        "default",
        lambda f: True,
        RuleOutcome(UrgencyTier.MINOR, 30, ("no vital criterion detected",), base_confidence=0.6),
    ),
]


RESOURCE_BY_TIER: Dict[UrgencyTier, Tuple[ResourceRecommendation, Optional[int]]] = {
    UrgencyTier.IMMEDIATE: (ResourceRecommendation.ALS_AND_BLS, 0),
    UrgencyTier.POTENTIAL: (ResourceRecommendation.ALS, 20),
    UrgencyTier.RELATIVE: (ResourceRecommendation.BASIC_AMBULANCE, 60),
    UrgencyTier.MINOR: (ResourceRecommendation.NO_DISPATCH, None),
    UrgencyTier.ADVICE_ONLY: (ResourceRecommendation.NO_DISPATCH, None),
}

MISSING_ADDRESS_PENALTY = 0.10
WITNESS_UNKNOWN_CONSCIOUSNESS_PENALTY = 0.15
ESCALATION_CONFIDENCE_THRESHOLD = 0.8


def select_rule(facts: CollectedFacts) -> Tuple[DecisionRule, RuleOutcome]:
    """Return the first rule that fires and its outcome."""
    for rule in DECISION_RULES:
        outcome = rule.evaluate(facts)
        if outcome is not None:
            return rule, outcome
    # The default rule always fires; this is unreachable.
    raise AssertionError("decision table has no default rule")


def adjust_confidence(base: float, facts: CollectedFacts) -> float:
    """Lower confidence for missing address or an unassessed patient seen by a witness."""
    confidence = base
    if not facts.address:
        confidence -= MISSING_ADDRESS_PENALTY
    if (
        facts.consciousness == ConsciousnessState.UNKNOWN
        and facts.caller_relation == CallerRelation.WITNESS
    ):
        confidence -= WITNESS_UNKNOWN_CONSCIOUSNESS_PENALTY
    return round(max(0.0, min(1.0, confidence)), 2)


def classify(facts: CollectedFacts) -> ClassificationResult:
    """
    Classify accumulated facts into an urgency tier.

    Recomputed from scratch on every call.
    """
    rule, outcome = select_rule(facts)
    confidence = adjust_confidence(outcome.base_confidence, facts)
    resource, deadline = RESOURCE_BY_TIER[outcome.tier]

    result = ClassificationResult(
        tier=outcome.tier,
        score=outcome.score,
        matched_criteria=list(outcome.criteria),
        recommended_resource=resource,
        max_response_minutes=deadline,
        confidence=confidence,
        escalate_to_physician=(
            confidence < ESCALATION_CONFIDENCE_THRESHOLD
            or outcome.tier in (UrgencyTier.IMMEDIATE, UrgencyTier.POTENTIAL)
        ),
    )

    logger.debug(
        "Classified: rule=%s tier=%s score=%d confidence=%.2f",
        rule.name,
        result.tier.value,
        result.score,
        result.confidence,
    )
    return result


# =============================================================================
# Additive Severity Score (structured extraction path)
# =============================================================================

CRITICAL_SYMPTOMS = (
    "douleur thoracique", "arrêt cardiaque", "avc", "convulsions",
    "inconscient", "ne respire plus", "hémorragie", "choc",
)

CRITICAL_HISTORY = ("cardiaque", "diabète", "avc", "épilepsie", "asthme")

SEVERITY_THRESHOLDS: List[Tuple[int, UrgencyTier]] = [
    (80, UrgencyTier.IMMEDIATE),
    (50, UrgencyTier.POTENTIAL),
    (30, UrgencyTier.RELATIVE),
    (15, UrgencyTier.MINOR),
]


def severity_score(data: ExtractedMedicalData) -> int:
    """
    Additive severity score over structured extraction output.

    Not clamped: a patient with every signal scores well above 100.
    """
    score = 0

    if data.is_conscious is False:
        score += 50
    if data.is_breathing is False:
        score += 50
    if data.has_bleeding is True:
        score += 30

    if any(cs in s.lower() for s in data.symptoms for cs in CRITICAL_SYMPTOMS):
        score += 40

    if data.age is not None and (data.age > 70 or data.age < 2):
        score += 15

    if any(ch in h.lower() for h in data.medical_history for ch in CRITICAL_HISTORY):
        score += 10

    return score


def tier_from_severity_score(score: int) -> UrgencyTier:
    for threshold, tier in SEVERITY_THRESHOLDS:
        if score >= threshold:
            return tier
    return UrgencyTier.ADVICE_ONLY


def score_extracted_data(data: ExtractedMedicalData) -> Tuple[int, UrgencyTier]:
    """Score structured extraction output and map it to a tier."""
    score = severity_score(data)
    tier = tier_from_severity_score(score)
    logger.debug("Severity score: %d -> %s", score, tier.value)
    return score, tier
