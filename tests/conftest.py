"""
Pytest configuration and fixtures for testing.

This module provides:
- Test client for FastAPI with an in-memory Supabase injected
- Fakes for the identity provider and the query/RPC client
- Row builders for the tables the permission code reads
"""

import os
from typing import Any, Generator

import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["SUPABASE_URL"] = "https://testproj.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "test-anon-key"
for _name in (
    "NEXT_PUBLIC_SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "NEXT_PUBLIC_COOKIE_DOMAIN",
    "COOKIE_DOMAIN",
    "NEXT_PUBLIC_DEBUG_AUTH",
    "DEBUG_AUTH",
    "AUTH_EXCLUDED_PREFIXES",
):
    os.environ.pop(_name, None)

from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from viso.auth.cookies import CookieJar, write_session_cookie
from viso.config import get_settings
from viso.main import app
from viso.services.supabase_client import (
    AuthSessionError,
    AuthUser,
    QueryResult,
    UserResult,
    reset_client_factory,
)

SESSION_COOKIE = "sb-testproj-auth-token"


# =============================================================================
# FAKE SUPABASE
# =============================================================================


class FakeSupabase:
    """
    In-memory stand-in for one Supabase project.

    - user / user_error: what get_current_user() answers (or raises)
    - refreshed_session: when set, get_current_user() stages it on the jar
      like a token refresh would
    - permissions: permission code -> bool, or a string to fail the RPC
    - tables: table -> rows; select() filters them by equality
    - table_errors: table -> error message
    """

    def __init__(self):
        self.user: AuthUser | None = None
        self.user_error: AuthSessionError | None = None
        self.refreshed_session: dict[str, Any] | None = None
        self.permissions: dict[str, Any] = {}
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.table_errors: dict[str, str] = {}

        self.get_user_calls = 0
        self.sign_out_calls = 0
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.seen_session_cookies: list[str | None] = []
        self.select_calls: list[tuple[str, dict[str, Any]]] = []

    def session(self, jar: CookieJar | None = None) -> "FakeSession":
        return FakeSession(self, jar or CookieJar({}))


class FakeSession:
    def __init__(self, backend: FakeSupabase, jar: CookieJar):
        self.backend = backend
        self.jar = jar

    async def get_current_user(self) -> UserResult:
        self.backend.get_user_calls += 1
        self.backend.seen_session_cookies.append(self.jar.get(SESSION_COOKIE))
        if self.backend.user_error:
            raise self.backend.user_error
        if self.backend.refreshed_session:
            write_session_cookie(self.jar, SESSION_COOKIE, self.backend.refreshed_session)
        return UserResult(user=self.backend.user)

    async def sign_out(self) -> None:
        self.backend.sign_out_calls += 1
        write_session_cookie(self.jar, SESSION_COOKIE, None)

    async def rpc(self, name: str, params: dict[str, Any]) -> QueryResult:
        self.backend.rpc_calls.append((name, params))
        value = self.backend.permissions.get(params.get("p_permission_code"), False)
        if isinstance(value, str):
            return QueryResult(error=value)
        return QueryResult(data=value)

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        single: bool = False,
    ) -> QueryResult:
        filters = filters or {}
        self.backend.select_calls.append((table, filters))
        if table in self.backend.table_errors:
            return QueryResult(error=self.backend.table_errors[table])

        rows = [
            row for row in self.backend.tables.get(table, [])
            if all(row.get(column) == value for column, value in filters.items())
        ]
        if single:
            return QueryResult(data=rows[0] if rows else None)
        return QueryResult(data=rows)


class FakeFactory:
    def __init__(self, backend: FakeSupabase, configured: bool = True):
        self.backend = backend
        self.configured = configured

    @property
    def is_configured(self) -> bool:
        return self.configured

    def create_session(self, jar: CookieJar) -> FakeSession | None:
        if not self.configured:
            return None
        return FakeSession(self.backend, jar)


# =============================================================================
# ROW BUILDERS
# =============================================================================


def rule_row(role: str, code: str, scope_type: str | None = None, app: str = "viso", **scope) -> dict[str, Any]:
    """A role_permissions row as returned with the nested permission/app join."""
    return {
        "role": role,
        "is_allowed": True,
        "scope_type": scope_type,
        "scope_site_id": scope.get("site_id"),
        "scope_area_id": scope.get("area_id"),
        "scope_site_type": scope.get("site_type"),
        "scope_area_kind": scope.get("area_kind"),
        "permission": {"code": code, "app": {"code": app}},
    }


def employee_row(user_id: str, role: str, site_id: str | None = None) -> dict[str, Any]:
    return {"id": user_id, "role": role, "site_id": site_id}


def session_cookie_header(*extra: str) -> dict[str, str]:
    """Cookie header carrying a session cookie plus any `name=value` extras."""
    return {"cookie": "; ".join((f"{SESSION_COOKIE}=base64-e30",) + extra)}


def set_cookie_headers(response) -> list[str]:
    return response.headers.get_list("set-cookie")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def mock_user() -> AuthUser:
    return AuthUser(
        id="user-123",
        email="owner@example.com",
        user_metadata={"full_name": "Test Owner"},
    )


@pytest.fixture
def signed_in(supabase: FakeSupabase, mock_user: AuthUser) -> FakeSupabase:
    """A project where the session cookie resolves to mock_user with app access."""
    supabase.user = mock_user
    supabase.permissions["viso.access"] = True
    return supabase


@pytest.fixture
def client(supabase: FakeSupabase) -> Generator[TestClient, None, None]:
    """Synchronous test client with the fake project injected."""
    app.state.client_factory = FakeFactory(supabase)
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client
    del app.state.client_factory


@pytest.fixture
def unconfigured_client(supabase: FakeSupabase) -> Generator[TestClient, None, None]:
    app.state.client_factory = FakeFactory(supabase, configured=False)
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client
    del app.state.client_factory


@pytest.fixture
async def async_client(supabase: FakeSupabase) -> AsyncClient:
    """Async test client for the FastAPI app."""
    app.state.client_factory = FakeFactory(supabase)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del app.state.client_factory


# =============================================================================
# CLEANUP FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_caches():
    """Fresh settings and client factory for every test."""
    get_settings.cache_clear()
    reset_client_factory()
    yield
    get_settings.cache_clear()
    reset_client_factory()
    app.dependency_overrides.clear()
