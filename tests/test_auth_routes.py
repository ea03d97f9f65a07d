"""
tests/test_auth_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> request validation ->
auth dependencies -> SessionService -> SQLite, and the mapping of AuthFailure
codes to HTTP status and the ErrorResponse envelope.

Coverage:
  - register / verify-email / login happy path and failure statuses
  - identical 401 body for unknown email and wrong password
  - refresh rotation via body and via cookie, old token rejected
  - logout always 200, logout-all revokes every session
  - forgot-password gives the same response either way; reset-password flow
  - passwords taken verbatim (no whitespace stripping); change-password flow
  - GET /me and admin-only deactivation with 401/403 guards
  - Cache-Control: no-store on auth responses

Fixtures used (from conftest.py):
  - api_client: (client, mailer) -- one TestClient per module. Every test uses
    its own email address so accounts never collide.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.models import Role
from tests.conftest import PASSWORD, RecordingMailer

ApiClient = tuple[TestClient, RecordingMailer]


def _register(client: TestClient, email: str, password: str = PASSWORD):
    return client.post("/api/v1/auth/register", json={"email": email, "password": password, "name": "Test User"})


def _register_verified_login(client: TestClient, mailer: RecordingMailer, email: str) -> dict:
    """Register, verify and log in. Returns the login response body."""
    assert _register(client, email).status_code == 201
    token = mailer.verification_token_for(email)
    assert client.get(f"/api/v1/auth/verify-email/{token}").status_code == 200
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterRoute:
    def test_register_returns_201_with_tokens(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = _register(client, "route-register@example.com")
        assert resp.status_code == 201
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"] and data["refresh_token"]
        assert data["expires_in"] > 0
        assert data["user"]["email"] == "route-register@example.com"
        assert data["user"]["email_verified"] is False
        assert data["user"]["role"] == "USER"
        assert "password_hash" not in data["user"]
        assert "password" not in data["user"]

    def test_register_sets_http_only_refresh_cookie(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = _register(client, "route-cookie@example.com")
        set_cookie = resp.headers["set-cookie"]
        assert "refresh_token=" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "Path=/api/v1/auth" in set_cookie
        assert "samesite=strict" in set_cookie.lower()

    def test_register_response_not_cacheable(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = _register(client, "route-nostore@example.com")
        assert resp.headers["cache-control"] == "no-store"

    def test_duplicate_register_is_409(self, api_client: ApiClient) -> None:
        client, _ = api_client
        assert _register(client, "route-dup@example.com").status_code == 201
        resp = _register(client, "Route-Dup@Example.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_weak_password_is_422(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = _register(client, "route-weak@example.com", password="password")
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "invalid_input"
        assert "uppercase" in error["detail"]

    def test_missing_field_is_422_without_echoing_input(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/register", json={"password": "Secret123!"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"]["code"] == "validation_error"
        assert "Secret123!" not in resp.text


class TestLoginRoute:
    def test_unverified_login_is_403(self, api_client: ApiClient) -> None:
        client, _ = api_client
        _register(client, "route-unverified@example.com")
        resp = client.post("/api/v1/auth/login", json={"email": "route-unverified@example.com", "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "email_not_verified"

    def test_verified_login_is_200(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-login@example.com")
        assert data["user"]["email_verified"] is True
        assert data["user"]["last_login"] is not None

    def test_unknown_email_and_wrong_password_identical(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        _register_verified_login(client, mailer, "route-enum@example.com")
        wrong = client.post("/api/v1/auth/login", json={"email": "route-enum@example.com", "password": "Wrong123!"})
        unknown = client.post("/api/v1/auth/login", json={"email": "route-ghost@example.com", "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"


class TestRefreshRoute:
    def test_refresh_rotates_and_rejects_old_token(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        r1 = _register_verified_login(client, mailer, "route-refresh@example.com")["refresh_token"]

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": r1})
        assert resp.status_code == 200
        r2 = resp.json()["refresh_token"]
        assert r2 != r1

        replay = client.post("/api/v1/auth/refresh", json={"refresh_token": r1})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "invalid_refresh_token"

        assert client.post("/api/v1/auth/refresh", json={"refresh_token": r2}).status_code == 200

    def test_refreshed_access_token_authenticates(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        r1 = _register_verified_login(client, mailer, "route-refresh-me@example.com")["refresh_token"]
        access = client.post("/api/v1/auth/refresh", json={"refresh_token": r1}).json()["access_token"]
        resp = client.get("/api/v1/auth/me", headers=_bearer(access))
        assert resp.status_code == 200
        assert resp.json()["email"] == "route-refresh-me@example.com"

    def test_refresh_from_cookie(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        r1 = _register_verified_login(client, mailer, "route-refresh-cookie@example.com")["refresh_token"]
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh", headers={"Cookie": f"refresh_token={r1}"})
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != r1

    def test_refresh_without_token_is_401(self, api_client: ApiClient) -> None:
        client, _ = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_unknown_refresh_token_is_401(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": "not-a-real-token"})
        assert resp.status_code == 401
        assert resp.headers["cache-control"] == "no-store"


class TestLogoutRoutes:
    def test_logout_revokes_refresh_token(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        token = _register_verified_login(client, mailer, "route-logout@example.com")["refresh_token"]
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": token})
        assert resp.status_code == 200
        assert client.post("/api/v1/auth/refresh", json={"refresh_token": token}).status_code == 401

    def test_logout_is_always_200(self, api_client: ApiClient) -> None:
        client, _ = api_client
        client.cookies.clear()
        assert client.post("/api/v1/auth/logout").status_code == 200
        assert client.post("/api/v1/auth/logout", json={"refresh_token": "unknown"}).status_code == 200

    def test_logout_all_requires_auth(self, api_client: ApiClient) -> None:
        client, _ = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/auth/logout-all")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_logout_all_revokes_every_session(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        first = _register_verified_login(client, mailer, "route-logout-all@example.com")
        second = client.post(
            "/api/v1/auth/login", json={"email": "route-logout-all@example.com", "password": PASSWORD}
        ).json()

        resp = client.post("/api/v1/auth/logout-all", headers=_bearer(second["access_token"]))
        assert resp.status_code == 200
        for token in (first["refresh_token"], second["refresh_token"]):
            assert client.post("/api/v1/auth/refresh", json={"refresh_token": token}).status_code == 401


class TestPasswordResetRoutes:
    def test_forgot_password_same_response_either_way(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        _register_verified_login(client, mailer, "route-forgot@example.com")
        known = client.post("/api/v1/auth/forgot-password", json={"email": "route-forgot@example.com"})
        unknown = client.post("/api/v1/auth/forgot-password", json={"email": "route-nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_password_flow(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        old_refresh = _register_verified_login(client, mailer, "route-reset@example.com")["refresh_token"]
        client.post("/api/v1/auth/forgot-password", json={"email": "route-reset@example.com"})
        token = mailer.reset_token_for("route-reset@example.com")

        resp = client.post(f"/api/v1/auth/reset-password/{token}", json={"password": "NewSecure456!"})
        assert resp.status_code == 200

        assert client.post("/api/v1/auth/refresh", json={"refresh_token": old_refresh}).status_code == 401
        old_login = client.post("/api/v1/auth/login", json={"email": "route-reset@example.com", "password": PASSWORD})
        assert old_login.status_code == 401
        new_login = client.post(
            "/api/v1/auth/login", json={"email": "route-reset@example.com", "password": "NewSecure456!"}
        )
        assert new_login.status_code == 200

        reuse = client.post(f"/api/v1/auth/reset-password/{token}", json={"password": "Another789!"})
        assert reuse.status_code == 400
        assert reuse.json()["error"]["code"] == "invalid_reset_token"

    def test_reset_with_unknown_token_is_400(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/reset-password/bogus", json={"password": "NewSecure456!"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_reset_token"


class TestPasswordsTakenVerbatim:
    """Surrounding whitespace is part of a password at every route."""

    def test_register_then_login_with_padded_password(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        email = "route-padded-register@example.com"
        assert _register(client, email, password=" Padded123! ").status_code == 201
        client.get(f"/api/v1/auth/verify-email/{mailer.verification_token_for(email)}")

        padded = client.post("/api/v1/auth/login", json={"email": email, "password": " Padded123! "})
        assert padded.status_code == 200
        stripped = client.post("/api/v1/auth/login", json={"email": email, "password": "Padded123!"})
        assert stripped.status_code == 401

    def test_reset_then_login_with_padded_password(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        email = "route-padded-reset@example.com"
        _register_verified_login(client, mailer, email)
        client.post("/api/v1/auth/forgot-password", json={"email": email})
        token = mailer.reset_token_for(email)

        resp = client.post(f"/api/v1/auth/reset-password/{token}", json={"password": "NewSecure456! "})
        assert resp.status_code == 200

        login = client.post("/api/v1/auth/login", json={"email": email, "password": "NewSecure456! "})
        assert login.status_code == 200, login.text

    def test_email_still_normalized_at_login(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        _register_verified_login(client, mailer, "route-padded-email@example.com")
        resp = client.post(
            "/api/v1/auth/login", json={"email": "  Route-Padded-Email@Example.com ", "password": PASSWORD}
        )
        assert resp.status_code == 200


class TestChangePasswordRoute:
    def test_requires_auth(self, api_client: ApiClient) -> None:
        client, _ = api_client
        client.cookies.clear()
        resp = client.post(
            "/api/v1/auth/change-password", json={"current_password": PASSWORD, "new_password": "NewSecure456!"}
        )
        assert resp.status_code == 401

    def test_change_password_revokes_sessions(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        email = "route-change@example.com"
        data = _register_verified_login(client, mailer, email)

        resp = client.post(
            "/api/v1/auth/change-password",
            json={"current_password": PASSWORD, "new_password": "NewSecure456!"},
            headers=_bearer(data["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"

        assert client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]}).status_code == 401
        assert client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD}).status_code == 401
        assert client.post("/api/v1/auth/login", json={"email": email, "password": "NewSecure456!"}).status_code == 200

    def test_wrong_current_password_is_401(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-change-wrong@example.com")
        resp = client.post(
            "/api/v1/auth/change-password",
            json={"current_password": "Wrong123!", "new_password": "NewSecure456!"},
            headers=_bearer(data["access_token"]),
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"

    def test_weak_new_password_is_422(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-change-weak@example.com")
        resp = client.post(
            "/api/v1/auth/change-password",
            json={"current_password": PASSWORD, "new_password": "weak"},
            headers=_bearer(data["access_token"]),
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "invalid_input"


class TestVerifyEmailRoute:
    def test_verification_token_works_once(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        _register(client, "route-verify@example.com")
        token = mailer.verification_token_for("route-verify@example.com")
        assert client.get(f"/api/v1/auth/verify-email/{token}").status_code == 200
        second = client.get(f"/api/v1/auth/verify-email/{token}")
        assert second.status_code == 400
        assert second.json()["error"]["code"] == "invalid_verification_token"


class TestMeRoute:
    def test_me_with_bearer(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-me@example.com")
        resp = client.get("/api/v1/auth/me", headers=_bearer(data["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["id"] == data["user"]["id"]
        assert "password_hash" not in resp.json()

    def test_me_without_credential_is_401(self, api_client: ApiClient) -> None:
        client, _ = api_client
        client.cookies.clear()
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json()["error"]["message"] == "No access credential supplied."

    def test_me_with_garbage_token_is_401(self, api_client: ApiClient) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("not.a.jwt"))
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Access credential is invalid or expired."

    def test_access_token_is_only_read_from_authorization_header(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-me-cookie@example.com")
        client.cookies.clear()
        resp = client.get("/api/v1/auth/me", headers={"Cookie": f"access_token={data['access_token']}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "No access credential supplied."

    def test_refresh_token_is_not_an_access_credential(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-me-refresh@example.com")
        assert client.get("/api/v1/auth/me", headers=_bearer(data["refresh_token"])).status_code == 401


class TestDeactivateRoute:
    def _admin_token(self, client: TestClient, mailer: RecordingMailer, email: str) -> tuple[str, int]:
        data = _register_verified_login(client, mailer, email)
        client.app.state.user_store.update_user(data["user"]["id"], role=Role.ADMIN)
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
        return resp.json()["access_token"], data["user"]["id"]

    def test_non_admin_is_403(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        data = _register_verified_login(client, mailer, "route-deact-user@example.com")
        resp = client.post("/api/v1/auth/users/1/deactivate", headers=_bearer(data["access_token"]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_deactivates_user(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        admin_token, _ = self._admin_token(client, mailer, "route-deact-admin@example.com")
        target = _register_verified_login(client, mailer, "route-deact-target@example.com")

        resp = client.post(f"/api/v1/auth/users/{target['user']['id']}/deactivate", headers=_bearer(admin_token))
        assert resp.status_code == 200

        login = client.post(
            "/api/v1/auth/login", json={"email": "route-deact-target@example.com", "password": PASSWORD}
        )
        assert login.status_code == 403
        assert login.json()["error"]["code"] == "account_deactivated"
        refresh = client.post("/api/v1/auth/refresh", json={"refresh_token": target["refresh_token"]})
        assert refresh.status_code == 401

    def test_admin_cannot_deactivate_self(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        admin_token, admin_id = self._admin_token(client, mailer, "route-deact-self@example.com")
        resp = client.post(f"/api/v1/auth/users/{admin_id}/deactivate", headers=_bearer(admin_token))
        assert resp.status_code == 400

    def test_unknown_user_is_404(self, api_client: ApiClient) -> None:
        client, mailer = api_client
        admin_token, _ = self._admin_token(client, mailer, "route-deact-404@example.com")
        resp = client.post("/api/v1/auth/users/999999/deactivate", headers=_bearer(admin_token))
        assert resp.status_code == 404
