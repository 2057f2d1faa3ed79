# =============================================================================
# API Dependencies — Process-Wide Collaborators via FastAPI DI
# =============================================================================
#
# The snapshot provider, LLM provider and orchestrator are built once in the
# application lifespan (app/main.py) and parked on `app.state`. Route
# handlers receive them through these dependencies, which tests replace via
# `app.dependency_overrides`.
# =============================================================================

from __future__ import annotations

from fastapi import HTTPException, Request

from app.agents.orchestrator import Orchestrator
from app.services.snapshot import SnapshotProvider


def _from_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail=f"Service not ready: {name} is not configured",
        )
    return value


def get_orchestrator(request: Request) -> Orchestrator:
    """The shared Orchestrator built at startup."""
    return _from_state(request, "orchestrator")


def get_snapshot_provider(request: Request) -> SnapshotProvider:
    """The shared snapshot provider built at startup."""
    return _from_state(request, "snapshot_provider")
