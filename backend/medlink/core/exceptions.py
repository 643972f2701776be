"""
Medlink Triage - Exception Hierarchy

Structured exceptions for consistent error handling across the system.
All exceptions carry an error code for logs and API responses.

Nothing in the pure core (extraction, classification, guidance) raises
during normal operation; these are raised by collaborators and caught
by the orchestrator, which always falls back to a best-effort result.
"""

from typing import Optional


class MedlinkError(Exception):
    """Base exception for all Medlink errors."""

    code: str = "UNKNOWN_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Collaborator Errors
# =============================================================================

class CollaboratorError(MedlinkError):
    """An external collaborator was unavailable or answered badly."""
    code = "COLLABORATOR_ERROR"
    status_code = 502


class ReplyGeneratorError(CollaboratorError):
    """Error while generating a dispatcher reply or a call summary."""
    code = "REPLY_GENERATOR_ERROR"


class GeocodingError(CollaboratorError):
    """Error during geocoding or facility lookup."""
    code = "GEOCODING_ERROR"


class StructuredExtractionError(CollaboratorError):
    """Error during structured (LLM) data extraction."""
    code = "STRUCTURED_EXTRACTION_ERROR"


# =============================================================================
# Guidance Errors
# =============================================================================

class GuidanceError(MedlinkError):
    """Error in the guidance protocol engine."""
    code = "GUIDANCE_ERROR"
    status_code = 400


class GuidanceNotApplicableError(GuidanceError):
    """No guidance state exists and no protocol applies to the call."""
    code = "GUIDANCE_NOT_APPLICABLE"
    status_code = 409


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(MedlinkError):
    """Configuration error."""
    code = "CONFIGURATION_ERROR"
    status_code = 500
