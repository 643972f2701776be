"""
Medlink Triage - Services Package

Contains collaborator interfaces and implementations for:
- Dispatcher reply and call summary generation
- Structured (transcript-level) medical data extraction
- Geocoding and nearest-facility lookup
- Triage report persistence

Design Pattern:
    Each service defines a Protocol (interface) and one or more implementations.
    The orchestrator is configured with concrete implementations at startup,
    so collaborators can be swapped or faked in tests.
"""

from .reply_generator import (
    ReplyGenerator,
    StaticReplyGenerator,
    GroqReplyGenerator,
)
from .structured_extraction import (
    StructuredExtractor,
    RegexStructuredExtractor,
    GroqStructuredExtractor,
)
from .geocoding import (
    Geocoder,
    OsmGeocoder,
    calculate_eta,
)
from .persistence import (
    TriageReportSink,
    InMemoryTriageReportSink,
    NoOpTriageReportSink,
    create_report_sink,
)

__all__ = [
    # Reply
    "ReplyGenerator",
    "StaticReplyGenerator",
    "GroqReplyGenerator",
    # Structured extraction
    "StructuredExtractor",
    "RegexStructuredExtractor",
    "GroqStructuredExtractor",
    # Geocoding
    "Geocoder",
    "OsmGeocoder",
    "calculate_eta",
    # Persistence
    "TriageReportSink",
    "InMemoryTriageReportSink",
    "NoOpTriageReportSink",
    "create_report_sink",
]
