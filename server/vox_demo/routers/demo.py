"""Demo account maintenance endpoints.

``reset-preferences`` acts as the caller (JWT from the app); the other routes
act with the backend admin key and require the gateway API key.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from ..app_state import GatewayState
from ..auth import require_auth
from ..deps import get_admin_state, get_state
from ..models.requests import AdminResetRequest, CleanupRequest
from ..services.backend import BackendError
from ..services.preferences import AccountPrefs, PreferenceResetExecutor
from ..services.recorder import is_demo_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/demo", tags=["demo"])


@router.post("/reset-preferences")
async def reset_preferences(
    x_appwrite_jwt: str | None = Header(default=None),
    state: GatewayState = Depends(get_state),
) -> dict:
    """Reset the caller's preference bag, provided the caller is the demo account."""
    if not x_appwrite_jwt:
        raise HTTPException(status_code=401, detail="No JWT provided")

    client = state.jwt_client(x_appwrite_jwt)
    try:
        try:
            user = await client.account.get()
        except BackendError as exc:
            raise HTTPException(status_code=502, detail=f"Could not verify account: {exc}")

        email = user.get("email", "")
        if not is_demo_user(email, state.config.demo_email):
            logger.info("User %s is not the demo account, skipping preferences reset", email)
            raise HTTPException(status_code=403, detail="Not a demo user account")

        ok = await PreferenceResetExecutor(AccountPrefs(client.account)).reset_preferences()
    finally:
        await client.aclose()

    if not ok:
        raise HTTPException(status_code=502, detail="Preference reset failed")
    return {"success": True, "message": "Demo user preferences successfully reset"}


@router.post("/cleanup", dependencies=[Depends(require_auth)])
async def cleanup(body: CleanupRequest | None = None, state: GatewayState = Depends(get_admin_state)) -> dict:
    """Purge tracking records older than the retention window."""
    days = state.config.retention_days
    if body is not None and body.retention_days is not None:
        days = body.retention_days
    try:
        report = await state.housekeeping().purge_stale_changes(days)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {"success": report.failed == 0, "report": report.model_dump()}


@router.post("/reset", dependencies=[Depends(require_auth)])
async def admin_reset(
    body: AdminResetRequest | None = None, state: GatewayState = Depends(get_admin_state)
) -> dict:
    """Force a full demo reset without a demo session."""
    sweep = body.sweep if body is not None else True
    try:
        report = await state.housekeeping().admin_reset_demo_user(sweep=sweep)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    if not report.found:
        raise HTTPException(status_code=404, detail="Demo user not found")
    return {"success": True, "report": report.model_dump()}


@router.post("/setup-tracking", dependencies=[Depends(require_auth)])
async def setup_tracking(state: GatewayState = Depends(get_admin_state)) -> dict:
    """Create the tracking collection and its schema if missing."""
    try:
        created = await state.housekeeping().setup_tracking_store()
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {"success": True, "created": created}
