"""
Medlink Triage - Backend Entrypoint

FastAPI application factory and server configuration.
Run with: uvicorn main:app --reload (from the backend/ directory)
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medlink import __version__
from medlink.config import settings
from medlink.api import routes
from medlink.core.logging import setup_structured_logging
from medlink.core.orchestrator import create_orchestrator

setup_structured_logging(settings.app_log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Create the session orchestrator and its collaborators

    Shutdown:
        - Close collaborator HTTP clients
    """
    # === Startup ===
    logger.info("Medlink Triage starting in %s mode", settings.app_env)

    orchestrator = create_orchestrator(settings)

    # Store orchestrator in app state for dependency injection
    app.state.orchestrator = orchestrator
    app.state.settings = settings

    logger.info(
        "Backends: reply=%s, extraction=%s, geocoder=%s, anonymize_logs=%s",
        settings.reply_backend,
        settings.structured_extraction_backend,
        settings.geocoder_backend,
        settings.anonymize_logs,
    )

    yield

    # === Shutdown ===
    logger.info("Medlink Triage shutting down (%d active calls)", orchestrator.store.active_count())
    await orchestrator.aclose()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""

    app = FastAPI(
        title="Medlink Triage",
        description="Emergency medical call triage: fact extraction, urgency classification and phone guidance",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Routes ---
    app.include_router(routes.router, prefix="/api")

    # --- Health check at root ---
    @app.get("/")
    async def root():
        """Root health check."""
        return {
            "service": "Medlink Triage",
            "status": "operational",
            "version": __version__,
        }

    return app


# Create app instance
app = create_app()
