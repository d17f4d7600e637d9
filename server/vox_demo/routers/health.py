"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from .. import __version__
from ..app_state import GatewayState
from ..deps import get_state

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(state: GatewayState = Depends(get_state)) -> dict:
    """Report gateway health and whether admin operations are available."""
    return {
        "status": "ok" if state.has_admin_key else "degraded",
        "version": __version__,
        "adminKeyConfigured": state.has_admin_key,
        "demoEmail": state.config.demo_email,
    }
