"""
Medlink Triage - Session Orchestrator

Single entry point for every caller utterance. Sequences the pure core
components (fact extraction, classification, guidance) and the external
collaborators (reply generator, structured extractor, geocoder, report
sink) for one call.

Processing model for handle(call_id, text):

    1. Look up or create the call's ConversationContext
    2. Extract facts from the utterance and merge them
    3. Append the caller message
    4. Reply: address read-back if one is pending, otherwise the reply
       generator (static fallback on failure); append it
    5. From the partial threshold on: classify and build a snapshot
       (cheap partial summary below the final threshold, generated
       summary and scored structured extraction at or above it)
    6. Geocode each distinct address once; attach facilities and ETA
    7. Drive the guidance protocol when one applies
    8. Hand a report to the sink

Design Principles:
    - Serialized per call: utterances of one call run one at a time
    - Fail-safe: collaborator failures are logged and replaced by a
      fallback, never surfaced to the caller
    - Retirement: a call ended while a collaborator was in flight is
      never written to again; the late result is discarded
    - Privacy-aware: caller text is not logged when anonymize_logs is set
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from typing import Callable, Optional

from medlink.config import Settings
from medlink.core import guidance
from medlink.core.classification import classify, score_extracted_data
from medlink.core.exceptions import ConfigurationError
from medlink.core.extraction import extract_facts
from medlink.core.logging import LogContext, mask_call_id
from medlink.core.session_store import CallSessionStore
from medlink.core.types import (
    ClassificationResult,
    CollectedFacts,
    ConversationContext,
    ExtractedMedicalData,
    FacilityKind,
    GeoContext,
    GuidanceState,
    GuidanceUpdate,
    HandleResult,
    MessageRole,
    ProtocolKind,
    TriageReport,
    TriageSnapshot,
    UrgencyTier,
)
from medlink.services.geocoding import Geocoder
from medlink.services.persistence import NoOpTriageReportSink, TriageReportSink
from medlink.services.reply_generator import (
    SUMMARY_PLACEHOLDER,
    ReplyGenerator,
    StaticReplyGenerator,
    static_reply,
    trim_summary,
)
from medlink.services.structured_extraction import StructuredExtractor

logger = logging.getLogger(__name__)


GREETING = (
    "Bonjour, vous êtes bien au service d'aide médicale urgente. "
    "Quelle est votre urgence ?"
)
READBACK_TEMPLATE = "Je répète : {address}. C'est bien ça ?"

PARTIAL_CONFIDENCE = 0.5
FINAL_CONFIDENCE = 0.85


# =============================================================================
# Progressive summary
# =============================================================================

def read_back(address: str) -> str:
    return READBACK_TEMPLATE.format(address=address)


def progressive_summary(context: ConversationContext) -> str:
    """Cheap summary shown before the generated one is available."""
    caller = context.caller_utterances()
    if context.non_system_count() == 2:
        first = caller[0] if caller else ""
        return f"Appel démarré - {first[:80]}..."
    return f"En cours: {' | '.join(caller)[:150]}..."


# =============================================================================
# Session Orchestrator
# =============================================================================

class SessionOrchestrator:
    """
    Per-call orchestration of extraction, classification and guidance.

    Usage:
        orchestrator = create_orchestrator(get_settings())

        result = await orchestrator.handle("CA1234", "Mon mari ne respire plus")
        print(result.reply_text, result.triage_snapshot.tier)

        await orchestrator.end_call("CA1234")
    """

    def __init__(
        self,
        reply_generator: ReplyGenerator,
        settings: Settings,
        structured_extractor: Optional[StructuredExtractor] = None,
        geocoder: Optional[Geocoder] = None,
        report_sink: Optional[TriageReportSink] = None,
        store: Optional[CallSessionStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the orchestrator with its collaborators.

        Args:
            reply_generator: Dispatcher reply and summary generation
            settings: Application settings
            structured_extractor: Transcript-level extraction (optional)
            geocoder: Address and facility lookup (optional)
            report_sink: Receives one report per snapshot (optional)
            store: Call session store (default: a fresh one)
            clock: Epoch-seconds clock used by guidance timing
        """
        self.reply_generator = reply_generator
        self.settings = settings
        self.structured_extractor = structured_extractor
        self.geocoder = geocoder
        self.report_sink = report_sink or NoOpTriageReportSink()
        self.store = store or CallSessionStore()
        self.clock = clock

        logger.info(
            "SessionOrchestrator initialized: reply=%s, extractor=%s, geocoder=%s, sink=%s",
            type(reply_generator).__name__,
            type(structured_extractor).__name__ if structured_extractor else "disabled",
            type(geocoder).__name__ if geocoder else "disabled",
            type(self.report_sink).__name__,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get_greeting(self) -> str:
        return GREETING

    def get_context(self, call_id: str) -> Optional[ConversationContext]:
        return self.store.get(call_id)

    def get_facts(self, call_id: str) -> Optional[CollectedFacts]:
        context = self.store.get(call_id)
        return context.facts if context else None

    async def handle(self, call_id: str, text: str) -> HandleResult:
        """
        Process one caller utterance.

        Unknown call ids start a new call. Never raises for collaborator
        failures.

        Args:
            call_id: Transport-level call identifier
            text: Caller utterance

        Returns:
            HandleResult with reply, optional snapshot and guidance
        """
        request_id = self._generate_request_id()
        with LogContext(call_id=call_id, request_id=request_id):
            async with self.store.serialize(call_id):
                return await self._handle_serialized(call_id, text or "")

    async def end_call(self, call_id: str) -> Optional[TriageReport]:
        """
        End a call.

        The context is removed before anything is awaited, so in-flight
        utterances for this call are retired. A closing report (with a
        final structured extraction when configured) is sent to the sink.

        Returns:
            The closing report, or None for an unknown call
        """
        context = self.store.delete(call_id)
        if context is None:
            return None

        with LogContext(call_id=call_id):
            if context.last_snapshot is None:
                logger.info("Call ended before any snapshot")
                return None
            snapshot = replace(context.last_snapshot)

            if self.structured_extractor is not None:
                await self._run_structured_extraction(context, snapshot)

            report = TriageReport.from_snapshot(snapshot)
            await self._record(report)
            logger.info(
                "Call ended: tier=%s, messages=%d",
                report.tier.value,
                len(context.messages),
            )
            return report

    async def switch_protocol(self, call_id: str, protocol: ProtocolKind) -> Optional[GuidanceUpdate]:
        """Replace the active guidance with `protocol`, starting at step 0."""
        async with self.store.serialize(call_id):
            context = self.store.get(call_id)
            if context is None:
                return None
            now = self.clock()
            state = guidance.start(protocol, now)
            context.guidance = state
            logger.info("Guidance switched: call=%s protocol=%s", mask_call_id(call_id), protocol.value)
            return guidance.to_update(state, self._instruction(state, now))

    async def stop_guidance(self, call_id: str) -> bool:
        """Discard the active guidance. Returns False if none was active."""
        async with self.store.serialize(call_id):
            context = self.store.get(call_id)
            if context is None or context.guidance is None:
                return False
            logger.info(
                "Guidance stopped: call=%s protocol=%s",
                mask_call_id(call_id),
                context.guidance.protocol.value,
            )
            context.guidance = None
            return True

    async def aclose(self) -> None:
        """Release collaborator resources."""
        closer = getattr(self.geocoder, "aclose", None)
        if closer is not None:
            await closer()

    # -------------------------------------------------------------------------
    # Processing stages
    # -------------------------------------------------------------------------

    async def _handle_serialized(self, call_id: str, text: str) -> HandleResult:
        context = self.store.get_or_create(call_id)
        facts = context.facts

        # --- Facts ---
        update = extract_facts(text, facts)
        changed = facts.merge(update)
        if self.settings.anonymize_logs:
            logger.debug("Utterance (%d chars): changed=%s", len(text), changed)
        else:
            logger.debug("Utterance %r: changed=%s", text, changed)

        context.add_message(MessageRole.CALLER, text)

        # --- Reply ---
        reply = await self._reply(context, text)
        if not self.store.is_current(context):
            return self._retired(reply)
        context.add_message(MessageRole.DISPATCHER, reply)

        message_count = context.non_system_count()
        if message_count < self.settings.partial_snapshot_threshold:
            return HandleResult(reply_text=reply)

        # --- Classification ---
        classification = classify(facts)
        self._log_classification(classification)

        # --- Snapshot ---
        is_final = message_count >= self.settings.final_snapshot_threshold
        if is_final:
            summary = await self._summarize(context)
            if not self.store.is_current(context):
                return self._retired(reply)
        else:
            summary = progressive_summary(context)

        snapshot = TriageSnapshot(
            call_id=context.call_id,
            classification=classification,
            summary=summary,
            confidence=FINAL_CONFIDENCE if is_final else PARTIAL_CONFIDENCE,
            is_partial=not is_final,
            symptoms=list(facts.symptoms),
            vital_emergency=facts.preliminary_urgent or classification.tier == UrgencyTier.IMMEDIATE,
            address=facts.address,
            address_confirmed=facts.address_confirmed,
            agent_advice=reply,
        )

        if is_final and self.structured_extractor is not None:
            extracted = await self._run_structured_extraction(context, snapshot)
            if not self.store.is_current(context):
                return self._retired(reply)
            if extracted is not None:
                context.extracted = extracted

        # --- Geolocation ---
        await self._geolocate(context, classification.tier)
        if not self.store.is_current(context):
            return self._retired(reply)
        snapshot.geo = context.geo

        # --- Guidance ---
        guidance_update = self._guide(context, classification, text)

        context.last_snapshot = snapshot
        await self._record(TriageReport.from_snapshot(snapshot))

        return HandleResult(
            reply_text=reply,
            triage_snapshot=snapshot,
            guidance=guidance_update,
        )

    async def _reply(self, context: ConversationContext, text: str) -> str:
        facts = context.facts
        if facts.address and not facts.address_confirmed and not facts.address_readback_sent:
            facts.address_readback_sent = True
            logger.debug("Address read-back sent")
            return read_back(facts.address)

        try:
            reply = await self.reply_generator.generate_reply(list(context.messages), facts)
        except Exception as e:
            logger.error("Reply generation failed, using static reply: %s", e)
            return static_reply(text)

        if not reply or not reply.strip():
            logger.warning("Empty reply from generator, using static reply")
            return static_reply(text)
        return reply.strip()

    async def _summarize(self, context: ConversationContext) -> str:
        try:
            raw = await self.reply_generator.summarize(list(context.messages))
        except Exception as e:
            logger.error("Summary generation failed: %s", e)
            return SUMMARY_PLACEHOLDER
        return trim_summary(raw, self.settings.summary_max_chars)

    async def _run_structured_extraction(
        self,
        context: ConversationContext,
        snapshot: TriageSnapshot,
    ) -> Optional[ExtractedMedicalData]:
        """Score the transcript onto `snapshot`. Does not touch `context`."""
        transcript = "\n".join(context.caller_utterances())
        try:
            data = await self.structured_extractor.extract(transcript)
        except Exception as e:
            logger.error("Structured extraction failed: %s", e)
            return None

        score, tier = score_extracted_data(data)
        snapshot.severity_score = score
        snapshot.smart_tier = tier
        logger.info(
            "Scored extraction: score=%d smart_tier=%s enough_data=%s",
            score,
            tier.value,
            data.has_enough_data(),
            extra={"data": {
                "severity_score": score,
                "smart_tier": tier.value,
                "symptom_count": len(data.symptoms),
                "extraction_confidence": data.extraction_confidence,
            }},
        )
        return data

    async def _geolocate(self, context: ConversationContext, tier: UrgencyTier) -> None:
        """Refresh context.geo. Leaves a retired context untouched."""
        address = context.facts.address
        if self.geocoder is None or not address:
            return

        if context.geocoded_address != address:
            try:
                geo = await self._lookup(address, tier)
            except Exception as e:
                logger.warning("Geolocation failed, omitting: %s", e)
                geo, address = None, context.geocoded_address
            if not self.store.is_current(context):
                return
            context.geo = geo
            context.geocoded_address = address

        if context.geo is not None:
            context.geo.eta_minutes = self._eta(context.geo, tier)

    async def _lookup(self, address: str, tier: UrgencyTier) -> Optional[GeoContext]:
        location = await self.geocoder.locate(address)
        if location is None:
            return None

        radius = self.settings.facility_radius_km
        hospitals, stations = await asyncio.gather(
            self.geocoder.nearest_facilities(location, radius, FacilityKind.HOSPITAL),
            self.geocoder.nearest_facilities(location, radius, FacilityKind.FIRE_STATION),
        )
        geo = GeoContext(
            location=location,
            nearest_hospital=hospitals[0] if hospitals else None,
            nearest_fire_station=stations[0] if stations else None,
        )
        logger.info(
            "Geolocated: hospitals=%d fire_stations=%d",
            len(hospitals),
            len(stations),
        )
        return geo

    def _eta(self, geo: GeoContext, tier: UrgencyTier) -> Optional[int]:
        origin = geo.nearest_hospital or geo.nearest_fire_station
        if origin is None:
            return None
        return self.geocoder.estimate_arrival(origin.distance_km, tier)

    def _guide(
        self,
        context: ConversationContext,
        classification: ClassificationResult,
        text: str,
    ) -> Optional[GuidanceUpdate]:
        now = self.clock()
        candidate = guidance.select_protocol(classification, context.facts)
        state = context.guidance

        # Active guidance persists until switch_protocol / stop_guidance
        if state is not None and candidate is not None and candidate != state.protocol:
            logger.info(
                "Guidance %s now applicable; keeping %s",
                candidate.value,
                state.protocol.value,
            )

        if state is None:
            if candidate is None:
                return None
            # The activating utterance is not feedback
            instruction, state = guidance.advance(
                None,
                classification,
                context.facts,
                now=now,
                interval=self.settings.encouragement_interval_seconds,
                window=self.settings.encouragement_window_seconds,
            )
        else:
            instruction, state = guidance.advance(
                state,
                classification,
                context.facts,
                feedback=text,
                now=now,
                interval=self.settings.encouragement_interval_seconds,
                window=self.settings.encouragement_window_seconds,
            )

        context.guidance = state
        return guidance.to_update(state, instruction)

    def _instruction(self, state: GuidanceState, now: float) -> str:
        return guidance.instruction_for(
            state,
            now,
            self.settings.encouragement_interval_seconds,
            self.settings.encouragement_window_seconds,
        )

    async def _record(self, report: TriageReport) -> None:
        try:
            await self.report_sink.record(report)
        except Exception as e:
            logger.error("Report sink failed: %s", e)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _retired(self, reply: str) -> HandleResult:
        logger.info("Call ended during processing; discarding late result")
        return HandleResult(reply_text=reply, retired=True)

    def _log_classification(self, classification: ClassificationResult) -> None:
        if classification.tier == UrgencyTier.IMMEDIATE:
            logger.warning(
                "IMMEDIATE tier: score=%d criteria=%s",
                classification.score,
                classification.matched_criteria,
                extra={"data": {
                    "tier": classification.tier.value,
                    "priority": classification.tier.code,
                    "score": classification.score,
                    "resource": classification.recommended_resource.value,
                    "criteria": list(classification.matched_criteria),
                }},
            )
        else:
            logger.info(
                "Classified: tier=%s score=%d confidence=%.2f",
                classification.tier.value,
                classification.score,
                classification.confidence,
            )

    def _generate_request_id(self) -> str:
        return f"utt_{uuid.uuid4().hex[:12]}"


# =============================================================================
# Factory
# =============================================================================

def create_orchestrator(
    settings: Settings,
    report_sink: Optional[TriageReportSink] = None,
) -> SessionOrchestrator:
    """
    Create a SessionOrchestrator with collaborators selected from settings.

    - reply_backend: "static" | "groq"
    - structured_extraction_backend: "regex" | "groq"
    - geocoder_backend: "none" | "osm"

    A Groq backend without an API key degrades to its local counterpart.

    Raises:
        ConfigurationError: Unknown backend name
    """
    from medlink.services.persistence import create_report_sink
    from medlink.services.reply_generator import GroqReplyGenerator
    from medlink.services.structured_extraction import (
        GroqStructuredExtractor,
        RegexStructuredExtractor,
    )

    _check_backend("reply_backend", settings.reply_backend, ("static", "groq"))
    _check_backend(
        "structured_extraction_backend",
        settings.structured_extraction_backend,
        ("regex", "groq"),
    )
    _check_backend("geocoder_backend", settings.geocoder_backend, ("none", "osm"))

    # --- Reply Generator ---
    reply_generator: ReplyGenerator = StaticReplyGenerator(settings.summary_max_chars)
    if settings.reply_backend.lower() == "groq":
        if not settings.groq_api_key:
            logger.error("reply_backend=groq but GROQ_API_KEY is not set. Falling back to StaticReplyGenerator.")
        else:
            try:
                reply_generator = GroqReplyGenerator(
                    api_key=settings.groq_api_key,
                    model=settings.groq_model,
                    summary_model=settings.summary_model,
                    temperature=settings.groq_temperature,
                    max_tokens=settings.groq_max_tokens,
                    summary_max_chars=settings.summary_max_chars,
                )
            except Exception as e:
                logger.error(
                    "Failed to initialize GroqReplyGenerator: %s. Falling back to StaticReplyGenerator.",
                    str(e),
                )

    # --- Structured Extraction ---
    structured_extractor: StructuredExtractor = RegexStructuredExtractor()
    if settings.structured_extraction_backend.lower() == "groq":
        if not settings.groq_api_key:
            logger.error(
                "structured_extraction_backend=groq but GROQ_API_KEY is not set. "
                "Falling back to RegexStructuredExtractor."
            )
        else:
            try:
                structured_extractor = GroqStructuredExtractor(
                    api_key=settings.groq_api_key,
                    model=settings.extraction_model,
                )
            except Exception as e:
                logger.error(
                    "Failed to initialize GroqStructuredExtractor: %s. "
                    "Falling back to RegexStructuredExtractor.",
                    str(e),
                )

    # --- Geocoder ---
    geocoder: Optional[Geocoder] = None
    if settings.geocoder_backend.lower() == "osm":
        from medlink.services.geocoding import OsmGeocoder

        geocoder = OsmGeocoder(
            nominatim_url=settings.nominatim_url,
            overpass_url=settings.overpass_url,
            user_agent=settings.geocoder_user_agent,
            timeout_seconds=settings.geocoder_timeout_seconds,
        )

    # --- Report Sink ---
    if report_sink is None:
        report_sink = create_report_sink(settings)

    logger.info(
        "Orchestrator configured: reply=%s, extractor=%s, geocoder=%s, sink=%s",
        type(reply_generator).__name__,
        type(structured_extractor).__name__,
        type(geocoder).__name__ if geocoder else "disabled",
        type(report_sink).__name__,
    )

    return SessionOrchestrator(
        reply_generator=reply_generator,
        settings=settings,
        structured_extractor=structured_extractor,
        geocoder=geocoder,
        report_sink=report_sink,
    )


def _check_backend(name: str, value: str, allowed: tuple) -> None:
    if value.lower() not in allowed:
        raise ConfigurationError(
            f"Unknown {name}: {value!r}",
            details={"allowed": list(allowed)},
        )
