"""
Access guard: the single entry point every protected page calls.

require_app_access() is pure with respect to HTTP: it returns either
Authorized(client, user) or Redirect(location). The FastAPI layer (AppAccess)
turns a Redirect into a GuardRedirect exception, which the application's
exception handler answers with a 303.

Steps:
1. No authenticated user            -> /login?returnTo=...
2. has_permission('<app>.access')   -> /no-access?...&reason=no_access
3. Fine-grained codes (optional), all evaluated concurrently, first failure
   reported in list order:
   - usable role override           -> rule table of the override role,
                                       scoped to the employee's default site
                                       -> reason=role_override
   - otherwise                      -> has_permission per code
                                       -> reason=no_permission
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union
from urllib.parse import urlencode

from fastapi import HTTPException, Request

from viso.auth.cookies import CookieJar
from viso.auth.permissions import (
    PermissionContext,
    QueryClient,
    is_permission_allowed_for_role,
    normalize_permission_code,
)
from viso.auth.role_override import (
    can_use_role_override,
    get_role_override,
    load_employee_identity,
)
from viso.config import get_settings
from viso.services.supabase_client import (
    AuthSessionError,
    AuthUser,
    UserResult,
    resolve_client_factory,
)

logger = logging.getLogger("viso")

LOGIN_PATH = "/login"
NO_ACCESS_PATH = "/no-access"


class SessionClient(QueryClient, Protocol):
    async def get_current_user(self) -> UserResult: ...


class DenialReason(str, Enum):
    NO_ACCESS = "no_access"
    ROLE_OVERRIDE = "role_override"
    NO_PERMISSION = "no_permission"


@dataclass(frozen=True)
class Authorized:
    client: Any
    user: AuthUser


@dataclass(frozen=True)
class Redirect:
    location: str
    reason: DenialReason | None = None
    permission: str | None = None


GuardResult = Union[Authorized, Redirect]


def login_redirect(return_to: str) -> Redirect:
    return Redirect(location=f"{LOGIN_PATH}?{urlencode({'returnTo': return_to})}")


def no_access_redirect(
    return_to: str,
    reason: DenialReason,
    permission: str | None = None,
) -> Redirect:
    params = {"returnTo": return_to, "reason": reason.value}
    if permission is not None:
        params["permission"] = permission
    return Redirect(
        location=f"{NO_ACCESS_PATH}?{urlencode(params)}",
        reason=reason,
        permission=permission,
    )


def _as_code_list(permission_code: str | list[str] | None) -> list[str]:
    if not permission_code:
        return []
    if isinstance(permission_code, str):
        return [permission_code]
    return [code for code in permission_code if code]


def _first_denied(codes: list[str], allowed: list[bool]) -> str | None:
    for code, ok in zip(codes, allowed):
        if not ok:
            return code
    return None


async def require_app_access(
    client: SessionClient,
    cookies: Mapping[str, str],
    app_id: str,
    return_to: str,
    permission_code: str | list[str] | None = None,
) -> GuardResult:
    try:
        user = (await client.get_current_user()).user
    except AuthSessionError as e:
        logger.info(f"[GUARD] Session rejected ({e.code}), sending to login")
        user = None

    if not user:
        return login_redirect(return_to)

    access = await client.rpc("has_permission", {"p_permission_code": f"{app_id}.access"})
    if access.error or not access.data:
        logger.info(f"[GUARD] {user.email} has no access to {app_id}")
        return no_access_redirect(return_to, DenialReason.NO_ACCESS)

    codes = [normalize_permission_code(app_id, code) for code in _as_code_list(permission_code)]
    if not codes:
        return Authorized(client=client, user=user)

    override_role = get_role_override(cookies)
    can_override = False
    default_site_id = None

    if override_role:
        employee = await load_employee_identity(client, user.id)
        default_site_id = employee.site_id
        can_override = can_use_role_override(employee.role, override_role)

    if can_override:
        context = PermissionContext(site_id=default_site_id)
        allowed = await asyncio.gather(*(
            is_permission_allowed_for_role(client, override_role, app_id, code, context)
            for code in codes
        ))
        denied = _first_denied(codes, list(allowed))
        if denied:
            logger.info(f"[GUARD] Override role {override_role} denied {denied} for {user.email}")
            return no_access_redirect(return_to, DenialReason.ROLE_OVERRIDE, denied)
    else:
        results = await asyncio.gather(*(
            client.rpc("has_permission", {"p_permission_code": code})
            for code in codes
        ))
        denied = _first_denied(codes, [not r.error and bool(r.data) for r in results])
        if denied:
            logger.info(f"[GUARD] {user.email} denied {denied}")
            return no_access_redirect(return_to, DenialReason.NO_PERMISSION, denied)

    return Authorized(client=client, user=user)


# =============================================================================
# FASTAPI INTEGRATION
# =============================================================================

class GuardRedirect(Exception):
    """Raised by AppAccess to end the request with a redirect."""

    def __init__(self, redirect: Redirect):
        super().__init__(redirect.location)
        self.redirect = redirect


def _return_to(request: Request) -> str:
    if request.url.query:
        return f"{request.url.path}?{request.url.query}"
    return request.url.path


def bind_request_session(request: Request):
    """
    Create the Supabase session for this request.

    The jar is kept on request.state so the session middleware can flush
    whatever the provider staged. Returns None when Supabase is not configured.
    """
    settings = get_settings()
    jar = CookieJar.from_request(request, cookie_domain=settings.cookie_domain)
    request.state.cookie_jar = jar
    return resolve_client_factory(request).create_session(jar)


class AppAccess:
    """
    Dependency guarding a page.

    Usage:
        @router.get("/staff")
        async def staff(access: Authorized = Depends(AppAccess())):
            ...

        @router.get("/reports")
        async def reports(access: Authorized = Depends(AppAccess(permission_code="reports.view"))):
            ...
    """

    def __init__(self, app_id: str | None = None, permission_code: str | list[str] | None = None):
        self.app_id = app_id
        self.permission_code = permission_code

    async def __call__(self, request: Request) -> Authorized:
        app_id = self.app_id or get_settings().APP_ID
        return_to = _return_to(request)

        client = bind_request_session(request)
        if client is None:
            # Missing configuration is treated as anonymous
            raise GuardRedirect(login_redirect(return_to))

        result = await require_app_access(
            client,
            request.cookies,
            app_id=app_id,
            return_to=return_to,
            permission_code=self.permission_code,
        )
        if isinstance(result, Redirect):
            raise GuardRedirect(result)
        return result


async def require_api_session(request: Request) -> Authorized:
    """
    Authentication for API routes, which the edge gate does not cover.

    Raises 401 instead of redirecting.
    """
    client = bind_request_session(request)
    if client is None:
        raise HTTPException(status_code=500, detail={"error": "Supabase not configured"})

    try:
        user = (await client.get_current_user()).user
    except AuthSessionError:
        user = None

    if not user:
        raise HTTPException(status_code=401, detail={"error": "No autorizado", "requiresAuth": True})

    return Authorized(client=client, user=user)
