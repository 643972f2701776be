"""
Medlink Triage - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and environment-specific values are loaded from environment variables.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Hierarchy (highest to lowest priority):
    1. Environment variables
    2. .env file
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: str = "development"
    app_debug: bool = True
    app_log_level: str = "INFO"
    log_json: bool = False
    anonymize_logs: bool = True  # If True, caller text never reaches the logs

    # --- Server ---
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # --- Reply Generator ---
    # "static" = fixed fallback replies (default, no API key needed)
    # "groq" = Groq chat completions
    reply_backend: str = "static"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"
    groq_temperature: float = 0.3
    groq_max_tokens: int = 150
    summary_model: str = "llama-3.3-70b-versatile"
    summary_max_chars: int = 100

    # --- Structured Extraction ---
    # "regex" = deterministic keyword extraction
    # "groq" = JSON-mode LLM extraction with regex fallback
    structured_extraction_backend: str = "regex"
    extraction_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"

    # --- Geocoding / Facility Lookup ---
    # "none" = geolocation disabled
    # "osm" = OpenStreetMap Nominatim + Overpass
    geocoder_backend: str = "none"
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    geocoder_user_agent: str = "Medlink-SAMU/1.0"
    geocoder_timeout_seconds: float = 10.0
    facility_radius_km: float = 15.0

    # --- Orchestration ---
    partial_snapshot_threshold: int = 2   # Non-system messages before the first snapshot
    final_snapshot_threshold: int = 4     # Non-system messages before an LLM summary

    # --- Guidance ---
    encouragement_interval_seconds: float = 120.0
    encouragement_window_seconds: float = 10.0

    # --- Persistence Sink ---
    enable_report_sink: bool = True
    report_sink_max_reports: int = 10000

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.

    Use dependency injection in routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()


# Convenience export
settings = get_settings()
