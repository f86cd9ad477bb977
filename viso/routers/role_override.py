"""
Role override API.

Lets owners and general managers switch the role the app is previewed as.
The choice is stored in the nexo_role_override cookie; the guard reads it on
every fine-grained permission check.

Endpoints (all under /api/role-override, so the edge gate does not apply and
authentication is done here):
- GET    current actual role, active override and the role catalog
- PUT    set the override
- DELETE clear the override
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from viso.auth.guard import Authorized, require_api_session
from viso.auth.role_override import (
    KNOWN_ROLES,
    ROLE_OPTIONS,
    ROLE_OVERRIDE_COOKIE,
    ROLE_OVERRIDE_MAX_AGE,
    can_use_role_override,
    get_role_override,
    load_employee_identity,
)
from viso.config import get_settings

logger = logging.getLogger("viso")

router = APIRouter(prefix="/api/role-override", tags=["role-override"])


class RoleOverrideRequest(BaseModel):
    role: str


def _catalog() -> list[dict[str, str]]:
    return [{"value": o.value, "label": o.label} for o in ROLE_OPTIONS]


@router.get("")
async def get_override(
    request: Request,
    access: Authorized = Depends(require_api_session),
) -> dict[str, Any]:
    employee = await load_employee_identity(access.client, access.user.id)
    override = get_role_override(request.cookies)
    return {
        "role": employee.role,
        "override": override,
        "active": can_use_role_override(employee.role, override),
        "canOverride": employee.is_privileged,
        "roles": _catalog() if employee.is_privileged else [],
    }


@router.put("")
async def set_override(
    body: RoleOverrideRequest,
    response: Response,
    access: Authorized = Depends(require_api_session),
) -> dict[str, Any]:
    role = body.role.strip()
    if role not in KNOWN_ROLES:
        raise HTTPException(status_code=400, detail={"error": f"Rol desconocido: {role}"})

    employee = await load_employee_identity(access.client, access.user.id)
    if not employee.is_privileged:
        logger.warning(f"[OVERRIDE] {access.user.email} ({employee.role or 'no role'}) tried to override to {role}")
        raise HTTPException(status_code=403, detail={"error": "Sin permisos para cambiar de rol"})

    response.set_cookie(
        key=ROLE_OVERRIDE_COOKIE,
        value=role,
        max_age=ROLE_OVERRIDE_MAX_AGE,
        path="/",
        samesite="lax",
        domain=get_settings().cookie_domain,
    )
    logger.info(f"[OVERRIDE] {access.user.email} now previewing as {role}")
    return {"role": employee.role, "override": role, "active": True}


@router.delete("")
async def clear_override(
    response: Response,
    access: Authorized = Depends(require_api_session),
) -> dict[str, Any]:
    response.set_cookie(
        key=ROLE_OVERRIDE_COOKIE,
        value="",
        max_age=0,
        path="/",
        domain=get_settings().cookie_domain,
    )
    logger.info(f"[OVERRIDE] {access.user.email} cleared role override")
    return {"override": None, "active": False}
