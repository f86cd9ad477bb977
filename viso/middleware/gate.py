"""
Edge gate: bounce anonymous requests to /login before any page code runs.

Order of checks:
1. No sb-* cookie at all        -> /login (no call to Supabase)
2. Supabase not configured      -> /login
3. Session lookup raises        -> /login, session cookies expired
4. No user behind the session   -> /login, session cookies expired
5. Otherwise the request continues with refreshed cookies attached

API routes, static assets and the login page are excluded; API routes
authenticate themselves.

With DEBUG_AUTH=1 every gated response carries x-vento-* diagnostic headers.
They describe what the gate saw and are never used for decisions.
"""

import logging
from urllib.parse import urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from viso.auth.cookies import CookieJar
from viso.config import get_settings
from viso.services.supabase_client import AuthSessionError, resolve_client_factory

logger = logging.getLogger("viso")

DEBUG_COOKIE_NAMES_MAX = 512


def build_login_redirect(request: Request) -> RedirectResponse:
    return RedirectResponse(f"/login?{urlencode({'returnTo': str(request.url)})}", status_code=307)


def with_debug_headers(response: Response, request: Request, status: str) -> Response:
    if not get_settings().debug_auth:
        return response

    cookie_names = list(request.cookies)
    response.headers["x-vento-auth-debug"] = "1"
    response.headers["x-vento-auth-status"] = status
    response.headers["x-vento-host"] = request.headers.get("host", "")
    response.headers["x-vento-path"] = request.url.path
    response.headers["x-vento-cookie-count"] = str(len(cookie_names))
    response.headers["x-vento-cookie-names"] = ",".join(cookie_names)[:DEBUG_COOKIE_NAMES_MAX]
    return response


class EdgeGateMiddleware(BaseHTTPMiddleware):
    """
    Usage:
        app.add_middleware(EdgeGateMiddleware)
        app.add_middleware(EdgeGateMiddleware, excluded_prefixes=("api", "health"))
    """

    def __init__(self, app, excluded_prefixes: tuple[str, ...] | None = None):
        super().__init__(app)
        self.excluded_prefixes = excluded_prefixes

    def _is_excluded(self, path: str) -> bool:
        prefixes = self.excluded_prefixes or get_settings().excluded_prefixes
        return path[1:].startswith(tuple(prefixes))

    async def dispatch(self, request: Request, call_next) -> Response:
        if self._is_excluded(request.url.path):
            return await call_next(request)

        jar = CookieJar.from_request(request, cookie_domain=get_settings().cookie_domain)
        if not jar.has_session_cookies():
            return with_debug_headers(build_login_redirect(request), request, "no-cookies")

        session = resolve_client_factory(request).create_session(jar)
        if session is None:
            return with_debug_headers(build_login_redirect(request), request, "no-config")

        try:
            user = (await session.get_current_user()).user
        except AuthSessionError as e:
            logger.info(f"[GATE] Session error ({e.code}) on {request.url.path}, clearing cookies")
            redirect = build_login_redirect(request)
            jar.clear_session_cookies(redirect)
            return with_debug_headers(redirect, request, "auth-error")

        if not user:
            redirect = build_login_redirect(request)
            jar.clear_session_cookies(redirect)
            return with_debug_headers(redirect, request, "no-user")

        request.state.auth_user = user
        jar.flush_to_request(request.scope)
        response = await call_next(request)
        jar.flush_to_response(response)
        return with_debug_headers(response, request, "ok")
