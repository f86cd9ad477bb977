"""
Session endpoints.

- GET  /api/auth/session  who is signed in (never 401s; anonymous is a valid answer)
- POST /api/auth/logout   revoke the session and expire its cookies
"""

import logging
from typing import Any

from fastapi import APIRouter, Request

from viso.auth.guard import bind_request_session
from viso.auth.role_override import ROLE_OVERRIDE_COOKIE
from viso.services.supabase_client import AuthSessionError

logger = logging.getLogger("viso")

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("/session")
async def get_session(request: Request) -> dict[str, Any]:
    client = bind_request_session(request)
    if client is None:
        return {"authenticated": False, "configured": False}

    try:
        user = (await client.get_current_user()).user
    except AuthSessionError as e:
        logger.debug(f"[AUTH] Session check failed: {e}")
        user = None

    if not user:
        return {"authenticated": False, "configured": True}

    return {
        "authenticated": True,
        "configured": True,
        "user": {"id": user.id, "email": user.email, "name": user.name},
    }


@router.post("/logout")
async def logout(request: Request) -> dict[str, Any]:
    client = bind_request_session(request)

    if client is not None:
        await client.sign_out()

    # Session cookies not written by this client (other project refs, stale chunks)
    jar = request.state.cookie_jar
    jar.stage_session_clear()
    jar.stage_deletion(ROLE_OVERRIDE_COOKIE)

    logger.info("[AUTH] Signed out")
    return {"success": True}
