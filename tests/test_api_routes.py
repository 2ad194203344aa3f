"""
tests/test_api_routes.py -- Integration tests for the /api/v1 auth routes.

These tests exercise the full stack: FastAPI routing -> request validation ->
auth dependency injection -> AuthService -> IdentityStore/SessionStore ->
response model serialization and the AuthError -> status mapping in
api/main.py. Unit testing individual route functions would miss middleware,
dependency injection and the exception handlers -- integration tests are the
right tool here.

Coverage:
  - Auth failures: 401 on GET /me and POST /auth/revoke-all without or with a bad token
  - Register: 201 envelope, no-store header, 409 conflicts, 400 short password, 422 bad input
    (including passwords over 72 UTF-8 bytes)
  - Login: 200, indistinguishable 401s, 403 for a disabled account
  - Refresh: 200 rotation, 401 on reuse
  - Logout: 200, token dead afterwards, 401 on a mismatched pair
  - Refresh tokens refused as bearer tokens on /me and /auth/revoke-all
  - Revoke-all: every session of the caller dies, others survive
  - Deadline: an overrunning service call answers 504

Fixtures used (from conftest.py):
  - api_client: (client, token, identity_id) -- the fixture registers
    testadmin@x.com / testpass123 before the client starts.
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

import api.routes.v1.auth as auth_routes
from auth.models import IdentityStatus

Client = tuple[TestClient, str, str]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, **overrides):
    body = {
        "organization_id": "org-1",
        "role_id": "role-member",
        "name": "Route User",
        "username": "routeuser",
        "email": "route@x.com",
        "password": "longenough1",
    }
    body.update(overrides)
    return client.post("/api/v1/auth/register", json=body)


def _login(client: TestClient, email: str, password: str):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


class TestApiAuthFailure:
    """Unauthenticated requests to protected routes must return 401."""

    def test_get_me_unauthenticated(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_get_me_garbage_token(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/me", headers=_bearer("not-a-token"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_get_me_wrong_scheme(self, api_client: Client) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/me", headers={"Authorization": f"Basic {token}"})
        assert resp.status_code == 401

    def test_revoke_all_unauthenticated(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        assert client.post("/api/v1/auth/revoke-all").status_code == 401


class TestMe:
    def test_get_me(self, api_client: Client) -> None:
        client, token, uid = api_client
        resp = client.get("/api/v1/me", headers=_bearer(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["id"] == uid
        assert data["email"] == "testadmin@x.com"
        assert data["username"] == "testadmin"
        assert "password_hash" not in data


class TestRegisterRoute:
    def test_register_then_conflicts(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        resp = _register(client, email="a@x.com", username="alice")
        assert resp.status_code == 201, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["user"]["email"] == "a@x.com"
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] == 900
        assert data["access_token"] and data["refresh_token"]

        dup_email = _register(client, email="a@x.com", username="alice")
        assert dup_email.status_code == 409
        assert dup_email.json()["error"]["code"] == "email_taken"

        dup_username = _register(client, email="a2@x.com", username="alice")
        assert dup_username.status_code == 409
        assert dup_username.json()["error"]["code"] == "username_taken"

    def test_short_password(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        resp = _register(client, email="short@x.com", username="shortpw", password="short")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_too_short"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"email": "not-an-email"},
            {"username": "has space"},
            {"username": "ab"},
            {"name": "x"},
            {"organization_id": ""},
            {"password": "p" * 73},
            {"password": "é" * 40},
        ],
    )
    def test_invalid_body(self, api_client: Client, overrides: dict) -> None:
        client, _token, _uid = api_client
        resp = _register(client, **overrides)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLoginRoute:
    def test_login(self, api_client: Client) -> None:
        client, _token, uid = api_client
        resp = _login(client, "testadmin@x.com", "testpass123")
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["user"]["id"] == uid
        me = client.get("/api/v1/me", headers=_bearer(data["access_token"]))
        assert me.json()["id"] == uid

    def test_failures_look_the_same(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        wrong = _login(client, "testadmin@x.com", "wrong-password")
        unknown = _login(client, "nobody@x.com", "testpass123")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_multibyte_password_over_72_bytes(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        resp = _login(client, "testadmin@x.com", "é" * 40)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_disabled_account(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        created = _register(client, email="disabled@x.com", username="disabled").json()
        client.app.state.identity_store.update_status(created["user"]["id"], IdentityStatus.inactive)

        resp = _login(client, "disabled@x.com", "longenough1")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "user_disabled"
        assert _login(client, "disabled@x.com", "wrong-password").status_code == 401


class TestSessionRoutes:
    def test_refresh_is_single_use(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        first = _login(client, "testadmin@x.com", "testpass123").json()

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]
        assert client.get("/api/v1/me", headers=_bearer(second["access_token"])).status_code == 200

        again = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert again.status_code == 401
        assert again.json()["error"]["code"] == "token_expired"

        old = client.get("/api/v1/me", headers=_bearer(first["access_token"]))
        assert old.status_code == 401
        assert old.json()["error"]["code"] == "token_revoked"

    def test_refresh_unknown_token(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": "never-issued"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_logout(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        pair = _login(client, "testadmin@x.com", "testpass123").json()
        other = _login(client, "testadmin@x.com", "testpass123").json()

        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": pair["refresh_token"]},
            headers=_bearer(pair["access_token"]),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"message": "Successfully logged out."}

        me = client.get("/api/v1/me", headers=_bearer(pair["access_token"]))
        assert me.status_code == 401
        assert me.json()["error"]["code"] == "token_revoked"
        assert client.get("/api/v1/me", headers=_bearer(other["access_token"])).status_code == 200

    def test_logout_mismatched_pair(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        pair = _login(client, "testadmin@x.com", "testpass123").json()
        other = _login(client, "testadmin@x.com", "testpass123").json()

        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": pair["refresh_token"]},
            headers=_bearer(other["access_token"]),
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

        no_header = client.post("/api/v1/auth/logout", json={"refresh_token": pair["refresh_token"]})
        assert no_header.status_code == 401
        assert client.get("/api/v1/me", headers=_bearer(pair["access_token"])).status_code == 200

    def test_logged_out_refresh_token_cannot_call_me(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        pair = _login(client, "testadmin@x.com", "testpass123").json()
        client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": pair["refresh_token"]},
            headers=_bearer(pair["access_token"]),
        )

        resp = client.get("/api/v1/me", headers=_bearer(pair["refresh_token"]))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_revoked"
        assert client.post("/api/v1/auth/revoke-all", headers=_bearer(pair["refresh_token"])).status_code == 401

    def test_live_refresh_token_cannot_call_me(self, api_client: Client) -> None:
        client, _token, _uid = api_client
        pair = _login(client, "testadmin@x.com", "testpass123").json()
        resp = client.get("/api/v1/me", headers=_bearer(pair["refresh_token"]))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_revoke_all(self, api_client: Client) -> None:
        client, token, _uid = api_client
        created = _register(client, email="many@x.com", username="many").json()
        second = _login(client, "many@x.com", "longenough1").json()

        resp = client.post("/api/v1/auth/revoke-all", headers=_bearer(second["access_token"]))
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"message": "All sessions revoked.", "revoked": 2}

        for pair in (created, second):
            assert client.get("/api/v1/me", headers=_bearer(pair["access_token"])).status_code == 401
        # Another user's session is untouched.
        assert client.get("/api/v1/me", headers=_bearer(token)).status_code == 200


class TestDeadline:
    def test_slow_backend_returns_504(self, api_client: Client, monkeypatch) -> None:
        client, _token, _uid = api_client
        service = client.app.state.auth_service

        def slow_login(email: str, password: str):
            time.sleep(0.5)

        monkeypatch.setattr(service, "login", slow_login)
        monkeypatch.setattr(auth_routes._settings, "auth_timeout_seconds", 0.05)

        resp = _login(client, "testadmin@x.com", "testpass123")
        assert resp.status_code == 504
        assert resp.json()["error"]["code"] == "timeout"
