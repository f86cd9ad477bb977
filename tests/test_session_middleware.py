"""
Tests for the session cookie synchronizer.

/api/health is used as the downstream handler: the edge gate skips it and it
makes no Supabase calls of its own, so every call counted here comes from the
synchronizer.
"""

from fastapi.testclient import TestClient

from viso.services.supabase_client import AuthSessionError

from tests.conftest import SESSION_COOKIE, session_cookie_header, set_cookie_headers


class TestSessionSync:

    def test_no_session_cookies_no_provider_call(self, client: TestClient, supabase):
        response = client.get("/api/health", headers={"cookie": "theme=dark"})

        assert response.status_code == 200
        assert supabase.get_user_calls == 0
        assert set_cookie_headers(response) == []

    def test_valid_session_is_checked_once(self, client: TestClient, signed_in):
        response = client.get("/api/health", headers=session_cookie_header())

        assert response.status_code == 200
        assert signed_in.get_user_calls == 1
        assert set_cookie_headers(response) == []

    def test_refreshed_session_written_to_response(self, client: TestClient, signed_in):
        signed_in.refreshed_session = {"access_token": "new-token", "refresh_token": "rt"}

        response = client.get("/api/health", headers=session_cookie_header())

        cookies = set_cookie_headers(response)
        assert len(cookies) == 1
        assert cookies[0].startswith(f"{SESSION_COOKIE}=base64-")

    def test_refreshed_session_visible_downstream(self, client: TestClient, signed_in):
        """Handlers in the same request read the refreshed cookie, not the stale one."""
        signed_in.refreshed_session = {"access_token": "new-token", "refresh_token": "rt"}

        response = client.get("/api/auth/session", headers=session_cookie_header())

        assert response.json()["authenticated"] is True
        synchronizer_saw, handler_saw = signed_in.seen_session_cookies
        assert synchronizer_saw == "base64-e30"
        assert handler_saw.startswith("base64-")
        assert handler_saw != synchronizer_saw

    def test_refresh_token_not_found_clears_every_session_cookie(self, client: TestClient, supabase):
        supabase.user_error = AuthSessionError(
            "Invalid Refresh Token: Refresh Token Not Found",
            code="refresh_token_not_found",
        )

        response = client.get(
            "/api/health",
            headers={"cookie": f"{SESSION_COOKIE}.0=a; {SESSION_COOKIE}.1=b; sb-other-auth-token=c; theme=dark"},
        )

        assert response.status_code == 200
        cookies = set_cookie_headers(response)
        cleared = sorted(c.split("=", 1)[0] for c in cookies)
        assert cleared == sorted([f"{SESSION_COOKIE}.0", f"{SESSION_COOKIE}.1", "sb-other-auth-token"])
        assert all("Max-Age=0" in c and "Path=/" in c for c in cookies)

    def test_other_errors_pass_through(self, client: TestClient, supabase):
        supabase.user_error = AuthSessionError("Auth service timeout", code="timeout")

        response = client.get("/api/health", headers=session_cookie_header())

        assert response.status_code == 200
        assert set_cookie_headers(response) == []

    def test_unconfigured_passes_through(self, unconfigured_client: TestClient, supabase):
        response = unconfigured_client.get("/api/health", headers=session_cookie_header())

        assert response.status_code == 200
        assert supabase.get_user_calls == 0
