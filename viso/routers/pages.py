"""
Page routes.

Rendering lives in the frontend; these endpoints only run the access guard and
hand back the context a page needs to render for the current user.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from viso.auth.guard import AppAccess, Authorized
from viso.auth.sso import build_shell_login_url, safe_relative_return_to
from viso.config import get_settings

logger = logging.getLogger("viso")

router = APIRouter(tags=["pages"])

NO_ACCESS_MESSAGE = "Tu usuario esta autenticado, pero no tiene acceso a este modulo."


def _page_context(page: str, access: Authorized) -> dict[str, Any]:
    user = access.user
    return {
        "app": get_settings().APP_ID,
        "page": page,
        "user": {"id": user.id, "email": user.email, "name": user.name},
    }


@router.get("/")
async def home(access: Authorized = Depends(AppAccess())) -> dict[str, Any]:
    return _page_context("home", access)


@router.get("/businesses")
async def businesses(access: Authorized = Depends(AppAccess())) -> dict[str, Any]:
    return _page_context("businesses", access)


@router.get("/staff")
async def staff(access: Authorized = Depends(AppAccess())) -> dict[str, Any]:
    return _page_context("staff", access)


@router.get("/pass-users")
async def pass_users(access: Authorized = Depends(AppAccess())) -> dict[str, Any]:
    return _page_context("pass-users", access)


# =============================================================================
# PUBLIC PAGES (excluded from the edge gate or reached after a redirect)
# =============================================================================

@router.get("/login")
async def login(request: Request, returnTo: str | None = Query(default=None)) -> RedirectResponse:
    """Forward to the platform shell login."""
    target = build_shell_login_url(returnTo, request.headers, get_settings().shell_login_url)
    return RedirectResponse(target, status_code=307)


@router.get("/no-access")
async def no_access(
    returnTo: str | None = Query(default=None),
    reason: str | None = Query(default=None),
    permission: str | None = Query(default=None),
) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={
            "error": "No tienes permisos",
            "message": NO_ACCESS_MESSAGE,
            "reason": reason,
            "permission": permission,
            "returnTo": safe_relative_return_to(returnTo),
            "hubUrl": get_settings().HUB_URL,
        },
    )
