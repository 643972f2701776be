"""
Medlink Triage - Fact Extractor

Deterministic extraction of medical and location facts from one caller
utterance. Callers are French-speaking, so every keyword table below is
French.

Contract:
    extract_facts(utterance, prior_facts) -> FactUpdate

    Pure, synchronous, never raises. The returned dict only carries the
    fields derived from this utterance; absent keys mean "no signal" and
    must not erase anything already collected (see CollectedFacts.merge).

Ambiguity is resolved by ordering: every scan is an ordered list of
(pattern, outcome) rules and the first rule that matches wins.
"""

from __future__ import annotations

import re
from typing import List, Optional, Pattern, Tuple, TypeVar

from medlink.core.types import (
    CallerRelation,
    CollectedFacts,
    ConsciousnessState,
    FactUpdate,
    Gender,
)

T = TypeVar("T")

Rule = Tuple[Pattern[str], T]


def _rx(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def first_match(text: str, rules: List[Rule]) -> Optional[T]:
    """Return the outcome of the first rule whose pattern matches text."""
    for pattern, outcome in rules:
        if pattern.search(text):
            return outcome
    return None


# =============================================================================
# Immediate-danger phrases
# =============================================================================

CRITICAL_KEYWORDS = (
    "ne respire plus",
    "ne respire pas",
    "pas de respiration",
    "inconscient",
    "ne bouge plus",
    "ne répond plus",
    "hémorragie massive",
    "sang partout",
    "arrêt cardiaque",
    "bleu",
    "cyanos",
    "violet",
    "convulsions",
)


def detect_immediate_danger(utterance: str) -> bool:
    lowered = utterance.lower()
    return any(keyword in lowered for keyword in CRITICAL_KEYWORDS)


# =============================================================================
# Address
# =============================================================================

_STREET_TYPES = (
    r"(?:rue|avenue|av\.?|boulevard|bd\.?|place|pl\.?|chemin|impasse|all[ée]e"
    r"|route|rte\.?|quai|cours|passage|square|voie)"
)

_STOP_WORDS = (
    r"(?:j['’]ai|je|il|elle|on|nous|vous|c['’]est|oui|non|mon|ma|mes"
    r"|accident|douleur|fracture|saigne|malaise|chute)"
)

ADDRESS_PATTERN = _rx(
    r"\b(\d{1,4}\s?(?:bis|ter|quater)?\s+" + _STREET_TYPES + r"\s+[A-Za-zÀ-ÿ0-9'’\-\s]+?)"
    r"(?:\s*,?\s*[A-Za-zÀ-ÿ-]+(?:\s+\d{1,2}(?:ème|er|e)?)?\s*(?:\d{5})?)?"
    r"(?=(?:[.,;:!?]|\n|\b" + _STOP_WORDS + r"\b)|$)"
)

STOP_WORD_PATTERN = _rx(
    r"\b(?:j['’]ai|je\s+suis|j['’]habite|il\s+|elle\s+|on\s+|nous\s+|vous\s+"
    r"|mon\s+|ma\s+|c['’]est|oui|non|accident|douleur|fracture|saigne|malaise|chute)\b"
)

CONFIRMATION_PATTERN = _rx(
    r"\b(?:oui|exact|exactement|c['’]est\s*(?:bien|ça|ca)|correct|d['’]accord|ok)\b"
)

CITY_PATTERN = _rx(
    r"\b(?:Paris|Lyon|Marseille|Toulouse|Nice|Nantes|Montpellier|Strasbourg|Bordeaux|Lille)\b"
    r"(?:\s*\d{1,2}(?:ème|er|e)?)?"
)

POSTAL_CODE_PATTERN = re.compile(r"\b\d{5}\b")

MIN_ADDRESS_LENGTH = 8


def normalize_address(value: str) -> str:
    """Collapse whitespace, drop trailing punctuation, cut at the first stop word."""
    text = re.sub(r"\s+", " ", value).strip()
    text = re.sub(r"[.,;:!?]+$", "", text).strip()
    stop = STOP_WORD_PATTERN.search(text)
    if stop and stop.start() > 0:
        text = text[:stop.start()].strip()
    return text


def extract_street_address(utterance: str) -> Optional[str]:
    match = ADDRESS_PATTERN.search(utterance)
    if not match:
        return None
    address = normalize_address(match.group(0))
    if len(address) < MIN_ADDRESS_LENGTH:
        return None
    return address


def extract_city_and_postal_code(utterance: str) -> Tuple[Optional[str], Optional[str]]:
    city_match = CITY_PATTERN.search(utterance)
    postal_match = POSTAL_CODE_PATTERN.search(utterance)

    city = None
    if city_match:
        city = city_match.group(0).strip()
        city = city[0].upper() + city[1:]

    return city, postal_match.group(0) if postal_match else None


def build_full_address(
    street: str,
    city: Optional[str] = None,
    postal_code: Optional[str] = None,
) -> str:
    """
    Join a street fragment with city and postal code.

    Postal code and city are only appended when not already present in
    the street fragment (case-insensitive, whole word).
    """
    normalized = re.sub(r"\s+", " ", street).strip()
    has_postal = POSTAL_CODE_PATTERN.search(normalized) is not None
    has_city = False
    if city:
        city_rx = r"\s+".join(re.escape(part) for part in city.split())
        has_city = re.search(rf"\b{city_rx}\b", normalized, re.IGNORECASE) is not None

    parts = [normalized]
    if postal_code and not has_postal:
        parts.append(postal_code)
    if city and not has_city:
        parts.append(city)

    return re.sub(r"\s+,", ",", ", ".join(parts)).strip()


# =============================================================================
# Patient state
# =============================================================================

# Unconscious is checked before conscious: negated phrases ("inconscient",
# "ne répond pas") contain the conscious keywords.
CONSCIOUSNESS_KEYWORDS = (
    (ConsciousnessState.UNCONSCIOUS, ("inconscient", "ne répond pas", "ne répond plus",
                                      "ne bouge plus", "inerte", "évanoui")),
    (ConsciousnessState.CONFUSED, ("confus", "désorienté", "bizarre", "incohérent")),
    (ConsciousnessState.CONSCIOUS, ("conscient", "éveillé", "parle", "répond")),
)


def detect_consciousness(utterance: str) -> Optional[ConsciousnessState]:
    lowered = utterance.lower()
    for state, keywords in CONSCIOUSNESS_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return state
    return None


BREATHING_RULES: List[Rule] = [
    (_rx(r"ne\s+respire\s+(?:plus|pas)|respire\s+plus|pas\s+de\s+respiration"
         r"|arrêt\s+respiratoire|apnée"), False),
    (_rx(r"\brespire\b|\brespiration\b|\brespirer\b"), True),
]

BLEEDING_RULES: List[Rule] = [
    (_rx(r"ne\s+saigne\s+(?:pas|plus)|pas\s+de\s+sang|pas\s+de\s+saignement"), False),
    (_rx(r"saign|hémorragie|\bsang\b"), True),
]

MASSIVE_BLEEDING_PATTERN = _rx(
    r"hémorragie\s+massive|sang\s+partout|saigne\s+(?:abondamment|beaucoup|énormément)"
)

SYMPTOM_RULES: List[Rule] = [
    (_rx(r"douleur\s+(?:thoracique|à\s+la\s+poitrine|dans\s+la\s+poitrine)"
         r"|mal\s+(?:à|a)\s+la\s+poitrine|serrement\s+(?:à|dans)\s+la\s+poitrine"), "douleur thoracique"),
    (_rx(r"douleur\s+(?:abdominale|au\s+ventre)|mal\s+(?:au\s+ventre|à\s+l['’]estomac)"),
     "douleur abdominale"),
    (_rx(r"\bdouleur|\bmal\b|souffre"), "douleur"),
    (_rx(r"dyspnée|du\s+mal\s+à\s+respirer|difficulté\s+respiratoire|essouffl"), "dyspnée"),
    (_rx(r"\bchute\b|\btomb[ée]"), "chute"),
    (_rx(r"fractur|\bcass[ée]"), "fracture"),
    (_rx(r"convuls|épilep"), "convulsions"),
    (_rx(r"brûl"), "brûlure"),
    (_rx(r"fièvre|\btempérature\b"), "fièvre"),
    (_rx(r"vomi|nausée"), "nausées/vomissements"),
    (_rx(r"malaise|évanoui"), "malaise"),
    (_rx(r"étouff|avalé\s+de\s+travers|obstruction"), "étouffement"),
    (_rx(r"hémorragie|sang\s+partout|\bsang\b"), "hémorragie"),
    (_rx(r"saign"), "saignement"),
    (_rx(r"\bpâle"), "pâleur"),
    (_rx(r"\bsueurs?\b|transpire"), "sueurs froides"),
    (_rx(r"visage\s+(?:déformé|paralysé|tombe|de\s+travers)|bouche\s+de\s+travers"),
     "visage asymétrique"),
    (_rx(r"paralys|bras\s+(?:ne\s+bouge|faible|lourd)"), "paralysie"),
    (_rx(r"arrive\s+(?:plus|pas)\s+à\s+parler|troubles?\s+de\s+la\s+parole|bafouill|parle\s+mal"),
     "troubles de la parole"),
    (_rx(r"accident|renvers[ée]|percut[ée]|traumatisme|collision"), "traumatisme"),
]

CONVULSIONS_PATTERN = _rx(r"convuls|crise\s+d['’]épilepsie")
FEVER_PATTERN = _rx(r"fièvre|\btempérature\b|\b(?:39|40|41)\s*(?:°|degrés)")
VEHICLE_COLLISION_PATTERN = _rx(
    r"accident\s+de\s+(?:la\s+)?(?:voiture|route|moto|scooter|vélo)"
    r"|renvers[ée]\s+par|percut[ée]|collision|\bavp\b"
)

DURATION_PATTERN = _rx(
    r"depuis\s+(une?|\d+(?:[.,]\d+)?)\s*(heures?|h\b|minutes?|min\b|jours?)"
)
FALL_HEIGHT_PATTERN = _rx(
    r"(?:tomb\w*|chute)\s+(?:d['’]une\s+hauteur\s+)?de\s+(\d+(?:[.,]\d+)?)\s*(?:m\b|mètres?)"
)

AGE_PATTERN = _rx(r"\b(\d{1,3})\s*(?:ans?|années?)\b")
INFANT_AGE_PATTERN = _rx(r"(?:bébé|nourrisson|enfant)\s+(?:de\s+)?\d{1,2}\s*mois")


def _to_number(raw: str) -> float:
    if raw.lower() in ("un", "une"):
        return 1.0
    return float(raw.replace(",", "."))


def extract_duration_hours(utterance: str) -> Optional[float]:
    match = DURATION_PATTERN.search(utterance)
    if not match:
        return None
    amount = _to_number(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith("min"):
        return round(amount / 60.0, 2)
    if unit.startswith("jour"):
        return amount * 24.0
    return amount


def extract_fall_height(utterance: str) -> Optional[float]:
    match = FALL_HEIGHT_PATTERN.search(utterance)
    return _to_number(match.group(1)) if match else None


def extract_age(utterance: str) -> Optional[int]:
    if INFANT_AGE_PATTERN.search(utterance):
        return 0
    match = AGE_PATTERN.search(utterance)
    return int(match.group(1)) if match else None


def extract_symptoms(utterance: str) -> List[str]:
    return [label for pattern, label in SYMPTOM_RULES if pattern.search(utterance)]


# =============================================================================
# Caller
# =============================================================================

GENDER_RULES: List[Rule] = [
    (_rx(r"\bmon\s+(?:père|mari|frère|fils|grand-père|compagnon)\b|\bmonsieur\b"
         r"|\bun\s+homme\b|\bgarçon\b|\bil\s+(?:est|a)\b"), Gender.MALE),
    (_rx(r"\bma\s+(?:mère|femme|s[oœ]ur|fille|grand-mère|compagne)\b|\bmadame\b"
         r"|\bune\s+femme\b|\bfille\b|\belle\s+(?:est|a)\b"), Gender.FEMALE),
]

CALLER_RELATION_RULES: List[Rule] = [
    (_rx(r"\b(?:mon|ma|notre)\s+(?:père|mère|mari|femme|frère|s[oœ]ur|fils|fille|enfant|bébé"
         r"|grand-père|grand-mère|voisin|voisine|ami|amie|collègue|compagnon|compagne)\b"
         r"|\bquelqu['’]un\b|\bune\s+personne\b|\bun\s+(?:homme|monsieur)\b"
         r"|\bune\s+(?:femme|dame)\b|\b(?:il|elle)\s+(?:est|a|ne)\b"), CallerRelation.WITNESS),
    (_rx(r"\bj['’]ai\s+(?:mal|du\s+mal|de\s+la\s+fièvre)|\bje\s+(?:me\s+sens|suis\s+tomb|saigne)"),
     CallerRelation.PATIENT),
]


# =============================================================================
# Entry point
# =============================================================================

def extract_facts(utterance: str, prior_facts: Optional[CollectedFacts] = None) -> FactUpdate:
    """
    Turn one utterance into a partial fact update.

    Args:
        utterance: Raw caller text
        prior_facts: Facts collected so far (read only)

    Returns:
        Dict with only the fields derived from this utterance
    """
    prior = prior_facts or CollectedFacts()
    text = utterance or ""
    lowered = text.lower()
    update: FactUpdate = {}

    if detect_immediate_danger(text):
        update["preliminary_urgent"] = True

    # --- Location ---
    city, postal_code = extract_city_and_postal_code(text)
    if city:
        update["city"] = city
    if postal_code:
        update["postal_code"] = postal_code

    street = extract_street_address(text)
    if street:
        full_address = build_full_address(
            street,
            city or prior.city,
            postal_code or prior.postal_code,
        )
        if full_address != prior.address:
            update["address"] = full_address
            update["address_confirmed"] = False
            update["address_readback_sent"] = False
    elif prior.address and not prior.address_confirmed and CONFIRMATION_PATTERN.search(text):
        update["address_confirmed"] = True

    # --- Patient state ---
    consciousness = detect_consciousness(text)
    if consciousness:
        update["consciousness"] = consciousness

    breathing = first_match(text, BREATHING_RULES)
    if breathing is not None:
        update["breathing"] = breathing

    bleeding = first_match(text, BLEEDING_RULES)
    if bleeding is not None:
        update["bleeding"] = bleeding
    if MASSIVE_BLEEDING_PATTERN.search(text):
        update["bleeding"] = True
        update["bleeding_severity"] = "massive"

    symptoms = extract_symptoms(text)
    if symptoms:
        update["symptoms"] = symptoms
        if "pâleur" in symptoms or "sueurs froides" in symptoms:
            update["shock_signs"] = True

    if CONVULSIONS_PATTERN.search(text):
        update["convulsions"] = True
    if FEVER_PATTERN.search(lowered):
        update["fever"] = True
    if VEHICLE_COLLISION_PATTERN.search(text):
        update["trauma_mechanism"] = "vehicle_collision"

    duration = extract_duration_hours(text)
    if duration is not None:
        update["duration_hours"] = duration

    fall_height = extract_fall_height(text)
    if fall_height is not None:
        update["fall_height_m"] = fall_height

    age = extract_age(text)
    if age is not None:
        update["age"] = age

    # --- Caller ---
    gender = first_match(text, GENDER_RULES)
    if gender:
        update["gender"] = gender

    relation = first_match(text, CALLER_RELATION_RULES)
    if relation:
        update["caller_relation"] = relation
        if relation == CallerRelation.WITNESS:
            update["witness_present"] = True

    return update
