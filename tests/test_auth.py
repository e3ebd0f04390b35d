"""Tests for bearer-token verification and the admin role guard."""

from datetime import timedelta

from flask_jwt_extended import create_access_token, decode_token

from cyclestore import create_app
from cyclestore.auth import issue_access_token


class TestTokenVerifier:
    def test_missing_header_is_unauthenticated(self, client):
        response = client.get("/user")

        assert response.status_code == 401
        assert response.get_json() == {"message": "UnAuthorized Access"}

    def test_non_bearer_scheme_is_unauthenticated(self, client):
        response = client.get("/user", headers={"Authorization": "Basic abc123"})

        assert response.status_code == 401

    def test_token_signed_with_other_secret_is_forbidden(self, client, store, payments):
        other_app = create_app(
            {"TESTING": True, "JWT_SECRET_KEY": "a-completely-different-secret-value-xyz"},
            store=store,
            payments=payments,
        )
        with other_app.app_context():
            forged = issue_access_token("rider@example.com")

        response = client.get("/user", headers={"Authorization": f"Bearer {forged}"})

        assert response.status_code == 403
        assert response.get_json() == {"message": "Forbidden Access"}

    def test_garbage_token_is_forbidden(self, client):
        response = client.get("/user", headers={"Authorization": "Bearer not.a.jwt"})

        assert response.status_code == 403

    def test_expired_token_is_forbidden(self, app, client):
        with app.app_context():
            expired = create_access_token(
                identity="rider@example.com", expires_delta=timedelta(seconds=-30)
            )

        response = client.get("/user", headers={"Authorization": f"Bearer {expired}"})

        assert response.status_code == 403
        assert response.get_json() == {"message": "Forbidden Access"}

    def test_issued_token_carries_email_and_one_day_expiry(self, app):
        with app.app_context():
            token = issue_access_token("  Rider@Example.com ")
            claims = decode_token(token)

        assert claims["sub"] == "rider@example.com"
        assert claims["email"] == "rider@example.com"
        assert claims["exp"] - claims["iat"] == 24 * 60 * 60

    def test_valid_token_is_accepted(self, client, user_headers):
        response = client.get("/user", headers=user_headers)

        assert response.status_code == 200


class TestRoleGuard:
    def test_non_admin_is_forbidden(self, client, store, user_headers):
        store.users.insert_one({"email": "target@example.com", "role": "user"})

        response = client.put("/user/admin/target@example.com", headers=user_headers)

        assert response.status_code == 403
        assert store.users.find_one({"email": "target@example.com"})["role"] == "user"

    def test_caller_without_user_record_is_forbidden(self, client, auth_headers):
        headers = auth_headers("ghost@example.com")

        response = client.put("/user/admin/ghost@example.com", headers=headers)

        assert response.status_code == 403
        assert response.get_json() == {"message": "Forbidden access"}

    def test_admin_passes(self, client, store, admin_headers):
        store.users.insert_one({"email": "target@example.com", "role": "user"})

        response = client.put("/user/admin/target@example.com", headers=admin_headers)

        assert response.status_code == 200
        assert store.users.find_one({"email": "target@example.com"})["role"] == "admin"

    def test_guard_runs_after_token_check(self, client):
        response = client.delete("/product/0123456789abcdef01234567")

        assert response.status_code == 401
