"""
Medlink Triage - Structured Extraction

Extracts ExtractedMedicalData from a whole call transcript. Its output
feeds the additive severity score, not the rule tree.

Implementations:
    - RegexStructuredExtractor: deterministic keyword scan (confidence 0.3)
    - GroqStructuredExtractor: JSON-mode LLM extraction, falling back to
      the regex extractor when the Groq call itself fails
"""

from __future__ import annotations

import json
import logging
import re
from abc import abstractmethod
from typing import Any, Optional, Protocol, runtime_checkable

from groq import AsyncGroq

from medlink.core.exceptions import StructuredExtractionError
from medlink.core.extraction import (
    BLEEDING_RULES,
    BREATHING_RULES,
    GENDER_RULES,
    detect_consciousness,
    extract_age,
    extract_symptoms,
    first_match,
)
from medlink.core.types import ConsciousnessState, ExtractedMedicalData, Gender
from medlink.services.prompts import EXTRACTION_PROMPT

logger = logging.getLogger(__name__)


MIN_TRANSCRIPT_LENGTH = 15
REGEX_CONFIDENCE = 0.3

HISTORY_PATTERN = re.compile(
    r"\b(cardiaque|diabétique|diabète|avc|épilepsie|épileptique|asthme|asthmatique"
    r"|hypertension|insuffisance\s+\w+)\b",
    re.IGNORECASE,
)

_GENDER_ALIASES = {
    "homme": Gender.MALE,
    "male": Gender.MALE,
    "masculin": Gender.MALE,
    "femme": Gender.FEMALE,
    "female": Gender.FEMALE,
    "féminin": Gender.FEMALE,
}

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|```\s*$", re.IGNORECASE)


# =============================================================================
# Protocol
# =============================================================================

@runtime_checkable
class StructuredExtractor(Protocol):
    """Protocol for transcript-level structured extraction. Never raises."""

    @abstractmethod
    async def extract(self, transcript: str) -> ExtractedMedicalData:
        ...


# =============================================================================
# Validation helpers
# =============================================================================

def _validate_age(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0 or value > 150:
        return None
    return int(round(value))


def _validate_gender(value: Any) -> Gender:
    if isinstance(value, str):
        return _GENDER_ALIASES.get(value.strip().lower(), Gender.UNKNOWN)
    return Gender.UNKNOWN


def _validate_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _validate_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, min(1.0, float(value)))


def _string_list(value: Any) -> list:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def parse_extraction_response(raw: str) -> ExtractedMedicalData:
    """
    Parse and validate a JSON extraction payload.

    Markdown fences are stripped. Unparsable content yields an empty
    result with confidence 0.
    """
    cleaned = _FENCE_PATTERN.sub("", raw.strip()).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error("Extraction JSON parse failed: %s", e)
        return ExtractedMedicalData()

    if not isinstance(parsed, dict):
        logger.error("Extraction payload is not an object")
        return ExtractedMedicalData()

    return ExtractedMedicalData(
        age=_validate_age(parsed.get("patientAge")),
        gender=_validate_gender(parsed.get("patientGender")),
        symptoms=_string_list(parsed.get("symptoms")),
        medical_history=_string_list(parsed.get("medicalHistory")),
        is_conscious=_validate_bool(parsed.get("isConscious")),
        is_breathing=_validate_bool(parsed.get("isBreathing")),
        has_bleeding=_validate_bool(parsed.get("hasBleeding")),
        extraction_confidence=_validate_confidence(parsed.get("extractionConfidence")),
    )


# =============================================================================
# Regex Implementation
# =============================================================================

class RegexStructuredExtractor:
    """Keyword-based extraction reusing the fact extractor's tables."""

    async def extract(self, transcript: str) -> ExtractedMedicalData:
        if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_LENGTH:
            return ExtractedMedicalData()
        return self.extract_sync(transcript)

    def extract_sync(self, transcript: str) -> ExtractedMedicalData:
        consciousness = detect_consciousness(transcript)
        is_conscious = None
        if consciousness == ConsciousnessState.UNCONSCIOUS:
            is_conscious = False
        elif consciousness in (ConsciousnessState.CONSCIOUS, ConsciousnessState.CONFUSED):
            is_conscious = True

        history = []
        for match in HISTORY_PATTERN.finditer(transcript):
            label = match.group(1).lower()
            if label not in history:
                history.append(label)

        data = ExtractedMedicalData(
            age=extract_age(transcript),
            gender=first_match(transcript, GENDER_RULES) or Gender.UNKNOWN,
            symptoms=extract_symptoms(transcript),
            medical_history=history,
            is_conscious=is_conscious,
            is_breathing=first_match(transcript, BREATHING_RULES),
            has_bleeding=first_match(transcript, BLEEDING_RULES),
            extraction_confidence=REGEX_CONFIDENCE,
        )
        logger.debug("Regex extraction: %d symptoms", len(data.symptoms))
        return data


# =============================================================================
# Groq Implementation
# =============================================================================

class GroqStructuredExtractor:
    """
    JSON-mode extraction through Groq.

    A failed request falls back to RegexStructuredExtractor; a response
    that arrives but does not parse yields an empty result.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "meta-llama/llama-4-scout-17b-16e-instruct",
        client: Optional[Any] = None,
        fallback: Optional[RegexStructuredExtractor] = None,
    ):
        self.model = model
        self.client = client if client is not None else AsyncGroq(api_key=api_key)
        self.fallback = fallback or RegexStructuredExtractor()

        logger.info("GroqStructuredExtractor initialized: model=%s", self.model)

    async def _request(self, transcript: str) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": EXTRACTION_PROMPT.format(transcript=transcript)}],
                temperature=0.1,
                max_tokens=500,
                response_format={"type": "json_object"},
            )
            content = completion.choices[0].message.content
        except Exception as e:
            raise StructuredExtractionError(f"Groq extraction failed: {e}") from e

        if not content:
            raise StructuredExtractionError("Groq returned an empty extraction")
        return content

    async def extract(self, transcript: str) -> ExtractedMedicalData:
        if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_LENGTH:
            logger.warning("Transcript too short for extraction")
            return ExtractedMedicalData()

        try:
            raw = await self._request(transcript)
        except StructuredExtractionError as e:
            logger.error("%s; using regex fallback", e.message)
            return self.fallback.extract_sync(transcript)

        data = parse_extraction_response(raw)
        logger.info(
            "Structured extraction: symptoms=%d confidence=%.2f",
            len(data.symptoms),
            data.extraction_confidence,
        )
        return data
