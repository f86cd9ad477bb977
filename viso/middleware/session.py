"""
Session cookie synchronizer.

Keeps the Supabase session cookies of the browser and the server in step:
every request that carries `sb-*` cookies gets its session refreshed, and the
refreshed cookies are written both into the request (for handlers running in
this same cycle) and onto the response.

Failure policy:
- Supabase not configured      -> pass through untouched
- No session cookies           -> pass through, no call to Supabase
- refresh_token_not_found      -> expire every sb-* cookie on the response,
                                  so a dead cookie can't cause a login loop
- any other auth error         -> pass through, never block the app
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from viso.auth.cookies import CookieJar
from viso.config import get_settings
from viso.services.supabase_client import AuthSessionError, resolve_client_factory

logger = logging.getLogger("viso")


def flush_request_jar(request: Request, response: Response) -> Response:
    """Write cookies staged by the guard's session (request.state.cookie_jar)."""
    jar = getattr(request.state, "cookie_jar", None)
    if jar is not None:
        jar.flush_to_response(response)
    return response


class SessionSyncMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        factory = resolve_client_factory(request)
        if not factory.is_configured:
            return flush_request_jar(request, await call_next(request))

        jar = CookieJar.from_request(request, cookie_domain=get_settings().cookie_domain)
        if not jar.has_session_cookies():
            return flush_request_jar(request, await call_next(request))

        # The edge gate already refreshed this request
        if getattr(request.state, "auth_user", None) is not None:
            return flush_request_jar(request, await call_next(request))

        session = factory.create_session(jar)
        try:
            await session.get_current_user()
        except AuthSessionError as e:
            if e.refresh_token_missing:
                logger.info(f"[SESSION] Refresh token not found, clearing session cookies for {request.url.path}")
                response = flush_request_jar(request, await call_next(request))
                jar.clear_session_cookies(response)
                return response

            logger.warning(f"[SESSION] Session refresh failed ({e.code}), continuing: {e}")
            return flush_request_jar(request, await call_next(request))

        jar.flush_to_request(request.scope)
        response = await call_next(request)
        jar.flush_to_response(response)
        return flush_request_jar(request, response)
