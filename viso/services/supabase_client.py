"""
Supabase client wrapper for VISO.

Two layers:

- SupabaseClientFactory: one per process, built lazily by get_client_factory().
  It holds the settings and knows how to construct clients. It never holds a
  user session, so it is safe to share.
- SupabaseSession: one per request, bound to that request's CookieJar. It is
  the identity provider (get_current_user / sign_out) and the query/RPC client
  (rpc / select) for the authenticated user.

The Supabase SDK is synchronous; every network call runs in a worker thread.
Auth calls also carry a timeout so a slow auth service cannot hang the event
loop; queries and RPCs rely on the HTTP client's own limits.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
from starlette.requests import Request
from supabase import AuthError, Client, ClientOptions, create_client

from viso.auth.cookies import CookieJar, read_session_cookie, session_storage_key, write_session_cookie
from viso.config import Settings, get_settings

logger = logging.getLogger("viso")

REFRESH_TOKEN_NOT_FOUND = "refresh_token_not_found"

# Refresh a little before the access token actually expires
EXPIRY_MARGIN_SECONDS = 10


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class AuthUser:
    """Authenticated user as returned by Supabase Auth."""
    id: str
    email: str
    user_metadata: dict[str, Any] | None = None

    @property
    def name(self) -> str:
        if self.user_metadata:
            return self.user_metadata.get("name") or self.user_metadata.get("full_name") or ""
        return ""


@dataclass(frozen=True)
class UserResult:
    user: AuthUser | None = None


@dataclass(frozen=True)
class QueryResult:
    """Outcome of a query or RPC call. Exactly one of data/error is meaningful."""
    data: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AuthSessionError(Exception):
    """Supabase Auth rejected or could not process the session."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code

    @property
    def refresh_token_missing(self) -> bool:
        return self.code == REFRESH_TOKEN_NOT_FOUND


# =============================================================================
# PER-REQUEST SESSION
# =============================================================================

class SupabaseSession:
    """
    Supabase client bound to one request's cookie jar.

    Reads the session from the jar, refreshes it when the access token is
    about to expire, and stages the refreshed session back onto the jar.
    """

    def __init__(self, client: Client, jar: CookieJar, storage_key: str, timeout: float = 5.0):
        self._client = client
        self.jar = jar
        self.storage_key = storage_key
        self.timeout = timeout
        self._access_token: str | None = None

    async def _run(self, func, *args):
        """Auth calls: abandoned after `timeout` seconds."""
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    async def _run_query(self, func):
        """Queries and RPCs: no timeout beyond the HTTP client's own."""
        return await asyncio.to_thread(func)

    def _bind_access_token(self, access_token: str) -> None:
        self._access_token = access_token
        self._client.postgrest.auth(access_token)

    # =========================================================================
    # IDENTITY PROVIDER
    # =========================================================================

    async def get_current_user(self) -> UserResult:
        """
        Resolve the user behind the session cookie.

        Returns an empty result when there is no usable session. Raises
        AuthSessionError when Supabase rejects the token or the refresh.
        """
        session = read_session_cookie(self.jar, self.storage_key)
        if not session:
            return UserResult()

        access_token = session.get("access_token")
        refresh_token = session.get("refresh_token")
        expires_at = session.get("expires_at") or 0

        try:
            if access_token and expires_at - EXPIRY_MARGIN_SECONDS > time.time():
                response = await self._run(self._client.auth.get_user, access_token)
                user = response.user if response else None
                if user:
                    self._bind_access_token(access_token)
            elif refresh_token:
                logger.debug("[AUTH] Access token expired, refreshing session")
                response = await self._run(self._client.auth.refresh_session, refresh_token)
                user = response.user
                if response.session:
                    write_session_cookie(
                        self.jar,
                        self.storage_key,
                        response.session.model_dump(mode="json"),
                    )
                    self._bind_access_token(response.session.access_token)
            else:
                return UserResult()
        except asyncio.TimeoutError:
            logger.warning(f"[AUTH] Supabase auth timeout after {self.timeout}s")
            raise AuthSessionError("Auth service timeout", code="timeout")
        except AuthError as e:
            code = getattr(e, "code", None)
            logger.debug(f"[AUTH] Session rejected ({code}): {e}")
            raise AuthSessionError(str(e), code=code) from e
        except httpx.HTTPError as e:
            logger.warning(f"[AUTH] Supabase auth unreachable: {e}")
            raise AuthSessionError(str(e) or type(e).__name__, code="network") from e

        if not user:
            return UserResult()

        return UserResult(
            user=AuthUser(
                id=user.id,
                email=user.email or "",
                user_metadata=user.user_metadata,
            )
        )

    async def sign_out(self) -> None:
        """Revoke the session server-side and expire the session cookies."""
        session = read_session_cookie(self.jar, self.storage_key)
        access_token = (session or {}).get("access_token")

        if access_token:
            try:
                await self._run(self._client.auth.admin.sign_out, access_token)
            except asyncio.TimeoutError:
                logger.warning("[AUTH] Sign-out timed out, clearing cookies anyway")
            except AuthError as e:
                logger.warning(f"[AUTH] Sign-out rejected: {e}")
            except httpx.HTTPError as e:
                logger.warning(f"[AUTH] Sign-out request failed, clearing cookies anyway: {e}")

        write_session_cookie(self.jar, self.storage_key, None)
        self._access_token = None

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def rpc(self, name: str, params: dict[str, Any]) -> QueryResult:
        try:
            response = await self._run_query(lambda: self._client.rpc(name, params).execute())
            return QueryResult(data=response.data)
        except Exception as e:
            logger.debug(f"[RPC] {name} failed: {e}")
            return QueryResult(error=str(e) or type(e).__name__)

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        single: bool = False,
    ) -> QueryResult:
        """
        Select `columns` from `table` with equality filters.

        With single=True data is one row or None instead of a list.
        """
        def _execute():
            query = self._client.table(table).select(columns)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if single:
                query = query.maybe_single()
            return query.execute()

        try:
            response = await self._run_query(_execute)
        except Exception as e:
            logger.debug(f"[QUERY] {table} select failed: {e}")
            return QueryResult(error=str(e) or type(e).__name__)

        # maybe_single() yields no response at all when the row is missing
        return QueryResult(data=response.data if response is not None else None)


# =============================================================================
# PROCESS-WIDE FACTORY
# =============================================================================

class SupabaseClientFactory:
    """Builds per-request Supabase sessions from settings."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def is_configured(self) -> bool:
        return self.settings.supabase_configured

    @property
    def storage_key(self) -> str | None:
        if not self.settings.supabase_url:
            return None
        return session_storage_key(self.settings.supabase_url)

    def create_session(self, jar: CookieJar) -> SupabaseSession | None:
        """
        Create a session bound to `jar`.

        Returns None if URL or key are not configured; callers decide whether
        that fails open or closed.

        Each session gets its own SDK client, since the access token is bound
        on the client. Its HTTP connections are not closed explicitly and are
        released when the session is garbage collected.
        """
        if not self.is_configured:
            logger.warning("[Supabase] Client not configured - missing URL or key")
            return None

        client = create_client(
            self.settings.supabase_url,
            self.settings.supabase_key,
            options=ClientOptions(auto_refresh_token=False, persist_session=False),
        )
        return SupabaseSession(
            client,
            jar,
            storage_key=self.storage_key,
            timeout=self.settings.SUPABASE_AUTH_TIMEOUT,
        )


@lru_cache
def get_client_factory() -> SupabaseClientFactory:
    """Get the process-wide factory, creating it on first use."""
    factory = SupabaseClientFactory(get_settings())
    logger.info(f"[Supabase] Client factory ready (configured: {factory.is_configured})")
    return factory


def reset_client_factory() -> None:
    """Drop the cached factory (credential rotation, tests)."""
    get_client_factory.cache_clear()
    logger.info("[Supabase] Client factory reset")


def resolve_client_factory(request: Request) -> SupabaseClientFactory:
    """
    Factory for this request.

    An application can inject its own through `app.state.client_factory`;
    otherwise the process-wide one is used.
    """
    app = request.scope.get("app")
    injected = getattr(getattr(app, "state", None), "client_factory", None)
    return injected or get_client_factory()
