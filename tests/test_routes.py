"""
Tests for the API and public page routes.
"""

from fastapi.testclient import TestClient
from httpx import AsyncClient

from viso.auth.role_override import ROLE_OPTIONS, ROLE_OVERRIDE_COOKIE, ROLE_OVERRIDE_MAX_AGE

from tests.conftest import SESSION_COOKIE, employee_row, session_cookie_header, set_cookie_headers


class TestHealth:

    def test_health(self, client: TestClient):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "service": "viso",
            "supabase": True,
            "environment": "test",
        }

    def test_security_headers(self, client: TestClient):
        response = client.get("/api/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "SAMEORIGIN"


class TestRoleOverrideAPI:
    """Test suite for /api/role-override."""

    def test_requires_auth(self, client: TestClient):
        response = client.get("/api/role-override")

        assert response.status_code == 401
        assert response.json()["detail"] == {"error": "No autorizado", "requiresAuth": True}

    def test_unconfigured_is_server_error(self, unconfigured_client: TestClient):
        response = unconfigured_client.get("/api/role-override", headers=session_cookie_header())

        assert response.status_code == 500

    def test_get_for_owner(self, client: TestClient, signed_in, mock_user):
        signed_in.tables["employees"] = [employee_row(mock_user.id, "propietario", "site-1")]

        response = client.get(
            "/api/role-override",
            headers=session_cookie_header(f"{ROLE_OVERRIDE_COOKIE}=cajero"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "propietario"
        assert body["override"] == "cajero"
        assert body["active"] is True
        assert body["canOverride"] is True
        assert len(body["roles"]) == len(ROLE_OPTIONS)

    def test_get_for_regular_employee(self, client: TestClient, signed_in, mock_user):
        signed_in.tables["employees"] = [employee_row(mock_user.id, "cajero")]

        response = client.get(
            "/api/role-override",
            headers=session_cookie_header(f"{ROLE_OVERRIDE_COOKIE}=gerente"),
        )

        body = response.json()
        assert body["active"] is False
        assert body["canOverride"] is False
        assert body["roles"] == []

    def test_set_override(self, client: TestClient, signed_in, mock_user):
        signed_in.tables["employees"] = [employee_row(mock_user.id, "gerente_general")]

        response = client.put("/api/role-override", json={"role": "barista"}, headers=session_cookie_header())

        assert response.status_code == 200
        assert response.json()["override"] == "barista"
        cookie = next(c for c in set_cookie_headers(response) if c.startswith(ROLE_OVERRIDE_COOKIE))
        assert cookie.startswith(f"{ROLE_OVERRIDE_COOKIE}=barista")
        assert f"Max-Age={ROLE_OVERRIDE_MAX_AGE}" in cookie
        assert "Path=/" in cookie

    def test_set_override_forbidden_for_regular_employee(self, client: TestClient, signed_in, mock_user):
        signed_in.tables["employees"] = [employee_row(mock_user.id, "gerente")]

        response = client.put("/api/role-override", json={"role": "cajero"}, headers=session_cookie_header())

        assert response.status_code == 403
        assert not any(c.startswith(ROLE_OVERRIDE_COOKIE) for c in set_cookie_headers(response))

    def test_set_unknown_role(self, client: TestClient, signed_in, mock_user):
        signed_in.tables["employees"] = [employee_row(mock_user.id, "propietario")]

        response = client.put("/api/role-override", json={"role": "superadmin"}, headers=session_cookie_header())

        assert response.status_code == 400

    def test_clear_override(self, client: TestClient, signed_in):
        response = client.delete(
            "/api/role-override",
            headers=session_cookie_header(f"{ROLE_OVERRIDE_COOKIE}=cajero"),
        )

        assert response.status_code == 200
        cookie = next(c for c in set_cookie_headers(response) if c.startswith(ROLE_OVERRIDE_COOKIE))
        assert "Max-Age=0" in cookie


class TestSessionAPI:

    async def test_anonymous_session(self, async_client: AsyncClient):
        response = await async_client.get("/api/auth/session")

        assert response.status_code == 200
        assert response.json() == {"authenticated": False, "configured": True}

    async def test_signed_in_session(self, async_client: AsyncClient, signed_in, mock_user):
        response = await async_client.get("/api/auth/session", headers=session_cookie_header())

        assert response.json()["user"]["email"] == mock_user.email

    def test_logout_expires_session_and_override(self, client: TestClient, signed_in):
        response = client.post(
            "/api/auth/logout",
            headers=session_cookie_header(f"{ROLE_OVERRIDE_COOKIE}=cajero", "sb-other-auth-token.0=x"),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert signed_in.sign_out_calls == 1

        cookies = set_cookie_headers(response)
        cleared = sorted(c.split("=", 1)[0] for c in cookies if "Max-Age=0" in c)
        assert cleared == sorted([SESSION_COOKIE, "sb-other-auth-token.0", ROLE_OVERRIDE_COOKIE])


class TestPublicPages:

    def test_login_forwards_to_shell(self, client: TestClient):
        response = client.get(
            "/login?returnTo=/staff",
            headers={"x-forwarded-host": "viso.example.com", "x-forwarded-proto": "https"},
        )

        assert response.status_code == 307
        assert response.headers["location"] == (
            "https://os.ventogroup.co/login?returnTo=https%3A%2F%2Fviso.example.com%2Fstaff"
        )

    def test_no_access_describes_denial(self, client: TestClient, signed_in):
        response = client.get(
            "/no-access?returnTo=/staff&reason=no_permission&permission=viso.staff.view",
            headers=session_cookie_header(),
        )

        assert response.status_code == 403
        body = response.json()
        assert body["reason"] == "no_permission"
        assert body["permission"] == "viso.staff.view"
        assert body["returnTo"] == "/staff"
        assert body["hubUrl"] == "https://os.ventogroup.co"

    def test_no_access_drops_absolute_return_to(self, client: TestClient, signed_in):
        response = client.get("/no-access?returnTo=https://evil.example.com", headers=session_cookie_header())

        assert response.json()["returnTo"] == ""
