"""
Request authenticator and the error envelope.
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from factories import create_user
from internmatch.core.auth import CurrentUser, RequestAuthenticator, get_current_user, is_public_route
from internmatch.core.security import issue_token
from internmatch.main import app


class TestPublicRoutes:
    @pytest.mark.parametrize("path, method", [
        ("/api/auth/login", "POST"),
        ("/api/auth/register", "POST"),
        ("/api/auth/verify-email", "POST"),
        ("/api/auth/forgot-password", "POST"),
        ("/api/auth/reset-password", "PUT"),
        ("/api/payway/return", "POST"),
        ("/api/job", "GET"),
        ("/api/company", "GET"),
        ("/api/students", "GET"),
    ])
    def test_public(self, path, method):
        assert is_public_route(path, method)

    @pytest.mark.parametrize("path, method", [
        ("/api/job", "POST"),
        ("/api/job/abc", "GET"),
        ("/api/students/resume", "GET"),
        ("/api/auth/me", "GET"),
        ("/api/user/plan", "GET"),
    ])
    def test_protected(self, path, method):
        assert not is_public_route(path, method)


class TestAuthenticator:
    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authentication required"}

    def test_malformed_header_same_as_missing(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Token abc"})
        assert response.status_code == 401
        assert response.json() == client.get("/api/auth/me").json()

    def test_expired_token_same_as_missing(self, client):
        old = datetime.now(timezone.utc) - timedelta(days=8)
        token = issue_token("u", "a@example.com", "student", True, now=old)
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"] == "Authentication required"

    def test_valid_token_reaches_handler(self, client):
        user = create_user()
        response = client.get("/api/auth/me", headers=user["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "student@example.com"

    def test_non_ascii_email_round_trips(self):
        identity_app = FastAPI()
        identity_app.add_middleware(RequestAuthenticator)

        @identity_app.get("/api/whoami")
        async def whoami(user: CurrentUser = Depends(get_current_user)):
            return {"email": user.email}

        token = issue_token("u-1", "jürgen+cv@example.com", "student", True)
        response = TestClient(identity_app).get("/api/whoami", headers={"Authorization": f"Bearer {token}"})
        assert response.json() == {"email": "jürgen+cv@example.com"}

    def test_spoofed_identity_headers_dropped(self, client):
        """x-user-* headers from the client never reach the handlers."""
        response = client.get("/api/auth/me", headers={"x-user-id": "admin-1", "x-user-role": "admin"})
        assert response.status_code == 401

    def test_spoofed_headers_do_not_override_token(self, client):
        user = create_user()
        response = client.get("/api/auth/me", headers={**user["headers"], "x-user-role": "admin"})
        assert response.json()["data"]["role"] == "student"

    def test_browsing_list_is_public(self, client):
        response = client.get("/api/job?limit=5")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_health_outside_api(self, client, monkeypatch):
        monkeypatch.setattr("internmatch.main.test_mongo_connection", lambda: False)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["postgres"] == "connected"


class TestErrorEnvelope:
    def test_request_validation_is_400(self, client):
        response = client.post("/api/auth/login", json={"email": "not-an-email"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]

    def test_unknown_route_is_enveloped(self, client):
        user = create_user()
        response = client.get("/api/nothing-here", headers=user["headers"])
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found"}

    def test_role_mismatch_is_403(self, client):
        company = create_user(role="company")
        response = client.post("/api/job/x/apply", json={}, headers=company["headers"])
        assert response.status_code == 403

    def test_bad_query_value_is_400(self, client):
        response = client.get("/api/job?status=archived")
        assert response.status_code == 400
        assert "Invalid status" in response.json()["error"]

    def test_unexpected_error_hides_details(self, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("db password is hunter2")

        monkeypatch.setattr("internmatch.api.routes.user_routes.get_all_usage", boom)
        user = create_user()
        response = TestClient(app, raise_server_exceptions=False).get("/api/user/usage", headers=user["headers"])
        assert response.status_code == 500
        assert "hunter2" not in response.text
        assert response.json()["success"] is False
