"""
Composed FastAPI Dependencies

The orchestrator (and through it the session store) is created once in the
application lifespan and kept on app.state.  Route handlers import the
aliases from here, never app.state directly, so tests can swap the whole
pipeline with app.dependency_overrides.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from semsim.core.config import Settings
from semsim.services.orchestrator import ProcessingOrchestrator


def get_orchestrator(request: Request) -> ProcessingOrchestrator:
    """Return the application-wide ProcessingOrchestrator."""
    return request.app.state.orchestrator


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with (see create_app)."""
    return request.app.state.settings


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Orchestrator = Annotated[ProcessingOrchestrator, Depends(get_orchestrator)]
AppSettings  = Annotated[Settings,               Depends(get_app_settings)]
