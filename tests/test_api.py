"""HTTP translation of the auth operations."""
from datetime import timedelta

import pytest

from sessionguard.api.errors import REFRESH_FAILED_MESSAGE
from sessionguard.core.auth_events import AuthEventType
from sessionguard.core.security import create_access_token
from sessionguard.db.base import utcnow


def login(client, username, password):
    response = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def bearer(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.fixture
def admin_headers(client, admin_user, password):
    return bearer(login(client, "root", password))


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


class TestAuthRoutes:
    def test_login(self, client, user, password):
        body = login(client, "alice", password)

        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 900
        assert body["id"] == user.id
        assert body["username"] == "alice"
        assert body["email"] == "alice@example.com"
        assert body["roles"] == ["user"]
        assert body["access_token"] and body["refresh_token"]

    def test_login_bad_password(self, client, user):
        response = client.post("/api/v1/auth/login", json={"username": "alice", "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {
            "error": "invalid_credentials",
            "message": "Invalid username or password",
            "status": 401,
        }

    def test_login_unknown_user_looks_like_bad_password(self, client, password):
        response = client.post("/api/v1/auth/login", json={"username": "ghost", "password": password})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid username or password"

    def test_login_deactivated(self, client, make_user, password):
        make_user("bob", is_active=False)
        response = client.post("/api/v1/auth/login", json={"username": "bob", "password": password})
        assert response.status_code == 403
        assert response.json()["error"] == "account_deactivated"

    def test_login_locked(self, client, make_user, password):
        make_user("carol", locked_until=utcnow() + timedelta(hours=1))
        response = client.post("/api/v1/auth/login", json={"username": "carol", "password": password})
        assert response.status_code == 423
        assert response.json()["error"] == "account_locked"

    def test_login_validation(self, client):
        response = client.post("/api/v1/auth/login", json={"username": "alice"})
        assert response.status_code == 422

    def test_refresh(self, client, user, password):
        first = login(client, "alice", password)
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})

        assert response.status_code == 200
        body = response.json()
        assert body["refresh_token"] != first["refresh_token"]
        assert body["username"] == "alice"

    def test_refresh_reuse_gets_generic_error(self, client, user, password):
        first = login(client, "alice", password)
        client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert response.status_code == 403
        assert response.json() == {
            "error": "token_refresh_failed",
            "message": REFRESH_FAILED_MESSAGE,
            "status": 403,
        }

    def test_refresh_unknown_token_gets_same_error(self, client):
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": "no-such-token"})
        assert response.status_code == 403
        assert response.json()["message"] == REFRESH_FAILED_MESSAGE

    def test_logout(self, client, user, password):
        tokens = login(client, "alice", password)
        response = client.post(
            "/api/v1/auth/logout",
            json={"username": "alice"},
            headers=bearer(tokens),
        )
        assert response.json() == {"success": True, "message": "Logout successful"}

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 403

    def test_logout_requires_token(self, client, user, password):
        tokens = login(client, "alice", password)
        response = client.post("/api/v1/auth/logout", json={"username": "alice"})
        assert response.status_code == 401

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200

    def test_logout_of_another_user_forbidden(self, client, user, make_user, password):
        victim = login(client, "alice", password)
        make_user("mallory")
        attacker = login(client, "mallory", password)

        response = client.post(
            "/api/v1/auth/logout",
            json={"username": "alice"},
            headers=bearer(attacker),
        )
        assert response.status_code == 403

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": victim["refresh_token"]})
        assert response.status_code == 200

    def test_admin_can_log_out_unknown_user(self, client, admin_headers):
        response = client.post("/api/v1/auth/logout", json={"username": "ghost"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_revoke(self, client, user, password):
        tokens = login(client, "alice", password)
        payload = {"token": tokens["refresh_token"], "reason": "Lost phone"}

        first = client.post("/api/v1/auth/revoke", json=payload, headers=bearer(tokens)).json()
        second = client.post("/api/v1/auth/revoke", json=payload, headers=bearer(tokens)).json()

        assert first == {"success": True, "message": "Token successfully revoked"}
        assert second == {"success": False, "message": "Token was already revoked"}

    def test_revoke_requires_token(self, client, user, password):
        tokens = login(client, "alice", password)
        response = client.post("/api/v1/auth/revoke", json={"token": tokens["refresh_token"]})
        assert response.status_code == 401

    def test_revoke_of_another_users_token_is_not_found(self, client, user, make_user, password):
        victim = login(client, "alice", password)
        make_user("mallory")
        attacker = login(client, "mallory", password)

        response = client.post(
            "/api/v1/auth/revoke",
            json={"token": victim["refresh_token"]},
            headers=bearer(attacker),
        )
        assert response.json() == {"success": False, "message": "Token not found"}

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": victim["refresh_token"]})
        assert response.status_code == 200

    def test_client_ip_from_forwarded_header(self, client, publisher, audit, user, password):
        client.post(
            "/api/v1/auth/login",
            json={"username": "alice", "password": password},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )
        publisher.shutdown(wait=True)
        assert audit.kinds() == [AuthEventType.LOGIN_SUCCESS]
        assert audit.events[0].ip_address == "203.0.113.7"


class TestAdminRoutes:
    def test_requires_token(self, client):
        assert client.get("/api/v1/admin/tokens").status_code == 401

    def test_rejects_invalid_token(self, client):
        response = client.get("/api/v1/admin/tokens", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json()["error"] == "token_invalid"

    def test_requires_admin_role(self, client, user, password):
        tokens = login(client, "alice", password)
        response = client.get(
            "/api/v1/admin/tokens",
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        assert response.status_code == 403

    def test_admin_check_is_stateless(self, client):
        token = create_access_token({"sub": "ops", "user_id": 999, "email": "ops@example.com", "roles": ["admin"]})
        response = client.get("/api/v1/admin/tokens", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json() == []

    def test_list_tokens(self, client, admin_headers, user, password):
        login(client, "alice", password)
        login(client, "alice", password)

        everything = client.get("/api/v1/admin/tokens", headers=admin_headers).json()
        active = client.get("/api/v1/admin/tokens", params={"active_only": True}, headers=admin_headers).json()

        assert len(everything) == 3
        assert sorted(t["username"] for t in active) == ["alice", "root"]
        assert all(t["active"] for t in active)
        assert "token" not in everything[0]

    def test_admin_revoke(self, client, admin_headers, user, password):
        tokens = login(client, "alice", password)
        response = client.post(
            "/api/v1/admin/tokens/revoke",
            json={"token": tokens["refresh_token"]},
            headers=admin_headers,
        )
        assert response.json() == {"success": True, "message": "Token successfully revoked"}

        listed = client.get("/api/v1/admin/tokens", headers=admin_headers).json()
        alice_rows = [t for t in listed if t["username"] == "alice"]
        assert alice_rows[0]["reason_revoked"] == "Admin revocation: No reason provided"

    def test_revoke_all_for_user(self, client, admin_headers, user, password):
        login(client, "alice", password)
        response = client.post(
            "/api/v1/admin/users/alice/revoke-tokens",
            params={"reason": "offboarding"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["revoked"] == 1

    def test_revoke_all_for_unknown_user(self, client, admin_headers):
        response = client.post("/api/v1/admin/users/ghost/revoke-tokens", headers=admin_headers)
        assert response.status_code == 404
        assert response.json() == {"detail": "User not found"}

    def test_purge(self, client, admin_headers, user, make_token):
        make_token(user, expires_in=timedelta(seconds=-1))
        response = client.post("/api/v1/admin/tokens/purge", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["deleted"] == 1
