"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException

from .app_state import GatewayState, state


async def get_state() -> GatewayState:
    return state


async def get_admin_state() -> GatewayState:
    """Gateway state, provided an admin API key is configured."""
    if not state.has_admin_key:
        raise HTTPException(status_code=503, detail="Backend admin key is not configured")
    return state
