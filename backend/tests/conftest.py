"""
Medlink Triage - Test Configuration and Fixtures

Shared fixtures for all test modules.
"""

import asyncio
import os
import sys
from types import SimpleNamespace
from typing import Generator, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

# Ensure backend package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from medlink.config import Settings
from medlink.core.exceptions import GeocodingError, ReplyGeneratorError
from medlink.core.orchestrator import SessionOrchestrator
from medlink.core.types import (
    CollectedFacts,
    Facility,
    FacilityKind,
    Location,
    Message,
    MessageRole,
    UrgencyTier,
)
from medlink.services.geocoding import calculate_eta
from medlink.services.persistence import InMemoryTriageReportSink
from medlink.services.structured_extraction import RegexStructuredExtractor


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests requiring external dependencies")


# =============================================================================
# Fake Collaborators
# =============================================================================

class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeReplyGenerator:
    """
    Scriptable reply generator.

    gate: when set, generate_reply waits on it before answering.
    """

    def __init__(
        self,
        reply: str = "Quelle est votre adresse exacte ?",
        summary: str = "Patient 45 ans, douleur thoracique, à domicile",
        fail_reply: bool = False,
        fail_summary: bool = False,
    ):
        self.reply = reply
        self.summary = summary
        self.fail_reply = fail_reply
        self.fail_summary = fail_summary
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.reply_calls: List[List[Message]] = []
        self.summary_calls = 0

    async def generate_reply(
        self,
        messages: Sequence[Message],
        facts: Optional[CollectedFacts] = None,
    ) -> str:
        self.reply_calls.append(list(messages))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail_reply:
            raise ReplyGeneratorError("reply generator unavailable")
        return self.reply

    async def summarize(self, messages: Sequence[Message]) -> str:
        self.summary_calls += 1
        if self.fail_summary:
            raise ReplyGeneratorError("summary unavailable")
        return self.summary


class FakeGeocoder:
    """
    Geocoder answering from fixed data.

    gate: when set, locate waits on it before answering.
    """

    def __init__(self, hospital_km: float = 10.0, station_km: float = 3.0, fail: bool = False):
        self.hospital_km = hospital_km
        self.station_km = station_km
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.locate_calls: List[str] = []

    async def locate(self, address: str) -> Optional[Location]:
        self.locate_calls.append(address)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise GeocodingError("nominatim down")
        return Location(lat=48.8566, lng=2.3522, address=address)

    async def nearest_facilities(
        self,
        location: Location,
        radius_km: float,
        kind: FacilityKind,
    ) -> List[Facility]:
        distance = self.hospital_km if kind == FacilityKind.HOSPITAL else self.station_km
        return [
            Facility(
                id=f"osm-{kind.value}-1",
                name="Hôpital Test" if kind == FacilityKind.HOSPITAL else "Caserne Test",
                address="1 rue de Test 75001 Paris",
                lat=48.86,
                lng=2.35,
                distance_km=distance,
                kind=kind,
            )
        ]

    def estimate_arrival(self, distance_km: float, tier: UrgencyTier) -> int:
        return calculate_eta(distance_km, tier)


class FakeCompletions:
    """Stand-in for groq's `client.chat.completions`."""

    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls: List[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_groq_client(content: Optional[str] = None, error: Optional[Exception] = None):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content, error)))


def make_messages(*pairs) -> List[Message]:
    """Build a history from (role, text) pairs."""
    return [Message(role=role, text=text) for role, text in pairs]


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Test settings with local backends only."""
    return Settings(
        app_env="testing",
        app_debug=True,
        app_log_level="WARNING",
        reply_backend="static",
        structured_extraction_backend="regex",
        geocoder_backend="none",
        groq_api_key=None,
        anonymize_logs=True,
        report_sink_max_reports=100,
    )


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reply_generator() -> FakeReplyGenerator:
    return FakeReplyGenerator()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def report_sink() -> InMemoryTriageReportSink:
    return InMemoryTriageReportSink(max_reports=100)


@pytest.fixture
def caller_history() -> List[Message]:
    return make_messages(
        (MessageRole.CALLER, "Mon père a une douleur thoracique depuis 2 heures"),
        (MessageRole.DISPATCHER, "Quelle est votre adresse exacte ?"),
    )


# =============================================================================
# Orchestrator Fixtures
# =============================================================================

@pytest.fixture
def orchestrator(
    test_settings: Settings,
    reply_generator: FakeReplyGenerator,
    geocoder: FakeGeocoder,
    report_sink: InMemoryTriageReportSink,
    fake_clock: FakeClock,
) -> SessionOrchestrator:
    """Orchestrator wired to fake collaborators and a fake clock."""
    return SessionOrchestrator(
        reply_generator=reply_generator,
        settings=test_settings,
        structured_extractor=RegexStructuredExtractor(),
        geocoder=geocoder,
        report_sink=report_sink,
        clock=fake_clock,
    )


# =============================================================================
# FastAPI App Fixture
# =============================================================================

@pytest.fixture
def app():
    """Create a FastAPI app instance with default (local) backends."""
    # Import here so sys.path is set up first
    from main import create_app

    return create_app()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    with TestClient(app) as c:
        yield c
