"""
Medlink Triage - Guidance Protocol Engine

Step-by-step phone guidance for bystanders: CPR, choking relief and
bleeding control. The three protocols share one runner and differ only
in their ProtocolDefinition (step texts, activation predicate, feedback
keywords).

State machine (per protocol):
    - step_index runs 0..N-1; the last step is a "sustain" step that
      repeats indefinitely.
    - No feedback: stay on the current step.
    - Affirmative feedback ("oui", "ok", "fait", "je le fais"): advance
      one step, clamped to the last index.
    - Confusion feedback ("comment", "pas compris", "aide"): set
      needs_repeat and stay on the current step. Any other feedback
      clears needs_repeat.
    - Encouragement is recomputed from the start timestamp on every
      call; there is no timer.

advance() never mutates the state it receives.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from medlink.core.exceptions import GuidanceNotApplicableError
from medlink.core.types import (
    ClassificationResult,
    CollectedFacts,
    ConsciousnessState,
    GuidanceState,
    GuidanceUpdate,
    ProtocolKind,
    UrgencyTier,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Feedback Keywords
# =============================================================================

AFFIRMATIVE_KEYWORDS = ("oui", "ok", "okay", "fait", "je le fais", "d'accord", "c'est bon")
CONFUSION_KEYWORDS = ("comment", "pas compris", "comprends pas", "aide", "répétez")

ENCOURAGEMENT_PHRASE = "Vous faites un EXCELLENT travail ! "

DEFAULT_ENCOURAGEMENT_INTERVAL = 120.0
DEFAULT_ENCOURAGEMENT_WINDOW = 10.0


# =============================================================================
# Protocol Definitions
# =============================================================================

Applicability = Callable[[ClassificationResult, CollectedFacts], bool]


@dataclass(frozen=True)
class ProtocolDefinition:
    """
    Everything that distinguishes one guidance protocol from another.

    Attributes:
        kind: Protocol identifier
        steps: Ordered instruction texts; the last one is the sustain step
        applies: Activation predicate over classification and facts
        affirmative_keywords: Feedback that advances one step
        confusion_keywords: Feedback that asks for the step again
        encouragement: Prefix added when encouragement is due
    """
    kind: ProtocolKind
    steps: Tuple[str, ...]
    applies: Applicability
    affirmative_keywords: Tuple[str, ...] = AFFIRMATIVE_KEYWORDS
    confusion_keywords: Tuple[str, ...] = CONFUSION_KEYWORDS
    encouragement: str = ENCOURAGEMENT_PHRASE

    @property
    def last_index(self) -> int:
        return len(self.steps) - 1

    def step(self, index: int) -> str:
        return self.steps[max(0, min(index, self.last_index))]

    def matched_affirmative(self, feedback: str) -> List[str]:
        return _matches(feedback, self.affirmative_keywords)

    def matched_confusion(self, feedback: str) -> List[str]:
        return _matches(feedback, self.confusion_keywords)


def _matches(feedback: str, keywords: Sequence[str]) -> List[str]:
    return [
        k for k in keywords
        if re.search(rf"(?<!\w){re.escape(k)}(?!\w)", feedback, re.IGNORECASE)
    ]


def _cpr_applies(classification: ClassificationResult, facts: CollectedFacts) -> bool:
    return (
        classification.tier == UrgencyTier.IMMEDIATE
        and facts.consciousness == ConsciousnessState.UNCONSCIOUS
        and facts.breathing is False
        and facts.witness_present
    )


def _choking_applies(classification: ClassificationResult, facts: CollectedFacts) -> bool:
    return facts.has_symptom("étouffement")


def _bleeding_applies(classification: ClassificationResult, facts: CollectedFacts) -> bool:
    return facts.has_symptom("hémorragie", "saignement")


CPR = ProtocolDefinition(
    kind=ProtocolKind.CPR,
    steps=(
        "La personne est sur un sol dur, sur le dos ?",
        "Placez le talon de votre main au centre de la poitrine, entre les deux seins.",
        "Mettez votre autre main par-dessus. Bras tendus.",
        "Appuyez FORT et VITE. Comptez avec moi : 1, 2, 3... jusqu'à 30.",
        "Enfoncez de 5 cm à chaque compression. Rythme : 2 compressions PAR seconde.",
        "Vous faites un EXCELLENT travail ! Continuez exactement comme ça.",
        "Parfait, vous gérez très bien. Continuez jusqu'à l'arrivée des secours !",
    ),
    applies=_cpr_applies,
)

CHOKING_RELIEF = ProtocolDefinition(
    kind=ProtocolKind.CHOKING_RELIEF,
    steps=(
        "La personne peut-elle parler ou tousser ?",
        "Penchez-la en avant. Donnez 5 claques FORTES entre les omoplates.",
        "Ça n'a pas marché ? Placez-vous derrière elle.",
        "Poing fermé sous les côtes, l'autre main par-dessus.",
        "Tirez FORT vers vous et vers le haut. 5 fois d'affilée.",
        "Alternez : 5 claques dos, puis 5 compressions Heimlich.",
        "Continuez jusqu'à ce que l'objet sorte ou que les secours arrivent.",
    ),
    applies=_choking_applies,
)

BLEEDING_CONTROL = ProtocolDefinition(
    kind=ProtocolKind.BLEEDING_CONTROL,
    steps=(
        "Prenez un linge propre, une serviette ou un vêtement.",
        "Appuyez TRÈS FORT directement sur la plaie.",
        "Ne relâchez SURTOUT PAS la pression !",
        "Si possible, allongez la personne.",
        "Surélevez la partie qui saigne si vous pouvez.",
        "La personne vous parle-t-elle ? Vérifiez qu'elle reste consciente.",
        "Maintenez la pression forte jusqu'à l'arrivée des secours.",
    ),
    applies=_bleeding_applies,
)

# Highest priority first
PROTOCOL_PRIORITY: List[ProtocolKind] = [
    ProtocolKind.CPR,
    ProtocolKind.CHOKING_RELIEF,
    ProtocolKind.BLEEDING_CONTROL,
]

PROTOCOLS: Dict[ProtocolKind, ProtocolDefinition] = {
    p.kind: p for p in (CPR, CHOKING_RELIEF, BLEEDING_CONTROL)
}


def get_protocol(kind: ProtocolKind) -> ProtocolDefinition:
    return PROTOCOLS[kind]


# =============================================================================
# Selection
# =============================================================================

def select_protocol(
    classification: ClassificationResult,
    facts: CollectedFacts,
) -> Optional[ProtocolKind]:
    """Highest-priority protocol whose activation predicate holds, if any."""
    for kind in PROTOCOL_PRIORITY:
        if PROTOCOLS[kind].applies(classification, facts):
            return kind
    return None


# =============================================================================
# Runner
# =============================================================================

def encouragement_due(
    elapsed_seconds: float,
    interval: float = DEFAULT_ENCOURAGEMENT_INTERVAL,
    window: float = DEFAULT_ENCOURAGEMENT_WINDOW,
) -> bool:
    """Periodic reminder: true during the first `window` seconds of every interval after the first."""
    return elapsed_seconds > interval and (elapsed_seconds % interval) < window


def start(kind: ProtocolKind, now: Optional[float] = None) -> GuidanceState:
    """Fresh state at step 0."""
    return GuidanceState(
        protocol=kind,
        step_index=0,
        started_at=time.time() if now is None else now,
    )


def apply_feedback(state: GuidanceState, feedback: Optional[str]) -> GuidanceState:
    """Transition on caller feedback. Returns a new state."""
    if not feedback:
        return state

    definition = PROTOCOLS[state.protocol]

    confusion = definition.matched_confusion(feedback)
    if confusion:
        return replace(
            state,
            needs_repeat=True,
            feedback=state.feedback + confusion,
        )

    affirmative = definition.matched_affirmative(feedback)
    if affirmative:
        return replace(
            state,
            step_index=min(state.step_index + 1, definition.last_index),
            needs_repeat=False,
            feedback=state.feedback + affirmative,
        )

    if state.needs_repeat:
        return replace(state, needs_repeat=False)
    return state


def instruction_for(
    state: GuidanceState,
    now: Optional[float] = None,
    interval: float = DEFAULT_ENCOURAGEMENT_INTERVAL,
    window: float = DEFAULT_ENCOURAGEMENT_WINDOW,
) -> str:
    """Current step text, prefixed with encouragement when due."""
    definition = PROTOCOLS[state.protocol]
    instruction = definition.step(state.step_index)

    current = time.time() if now is None else now
    if encouragement_due(current - state.started_at, interval, window):
        instruction = definition.encouragement + instruction
    return instruction


def advance(
    state: Optional[GuidanceState],
    classification: ClassificationResult,
    facts: CollectedFacts,
    feedback: Optional[str] = None,
    *,
    now: Optional[float] = None,
    interval: float = DEFAULT_ENCOURAGEMENT_INTERVAL,
    window: float = DEFAULT_ENCOURAGEMENT_WINDOW,
) -> Tuple[str, GuidanceState]:
    """
    Run one guidance turn.

    Args:
        state: Current state, or None to enter the applicable protocol
        classification: Latest classification for the call
        facts: Latest facts for the call
        feedback: Caller utterance to interpret, if any
        now: Clock override (epoch seconds)
        interval: Encouragement period in seconds
        window: Encouragement window in seconds

    Returns:
        Tuple of (instruction, new state)

    Raises:
        GuidanceNotApplicableError: No state and no protocol applies
    """
    if state is None:
        kind = select_protocol(classification, facts)
        if kind is None:
            raise GuidanceNotApplicableError(
                "No guidance protocol applies",
                details={"tier": classification.tier.value},
            )
        # Entry is always at step 0; feedback only moves an existing state
        new_state = start(kind, now)
        logger.info("Guidance started: protocol=%s", kind.value)
    else:
        new_state = apply_feedback(state, feedback)
        if new_state.step_index != state.step_index:
            logger.debug(
                "Guidance advanced: protocol=%s step=%d",
                new_state.protocol.value,
                new_state.step_index,
            )

    instruction = instruction_for(new_state, now, interval, window)
    return instruction, new_state


def to_update(state: GuidanceState, instruction: str) -> GuidanceUpdate:
    return GuidanceUpdate(
        protocol=state.protocol,
        instruction=instruction,
        step_index=state.step_index,
        needs_repeat=state.needs_repeat,
    )
