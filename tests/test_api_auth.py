#!/usr/bin/env python3
"""Tests for the /auth, /user and /management blueprints."""

from cams import constants as C
from cams.services import role_service
from tests.conftest import TEST_PASSWORD


def _login(client, username="alice", password=TEST_PASSWORD):
    return client.post("/auth/authenticate",
                       json={"username": username, "password": password})


class TestAuthApi:

    def test_authenticate_and_validate(self, client, regular_user):
        resp = _login(client)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["username"] == "alice"

        resp = client.get("/auth/validate",
                          headers={"Authorization": f"Bearer {body['token']}"})
        assert resp.status_code == 200
        assert resp.get_json()["roles"] == [C.ROLE_USER]

    def test_bad_credentials(self, client, regular_user):
        resp = _login(client, password="wrong-password")
        assert resp.status_code == 401
        assert resp.get_json() == {"error": C.INVALID_CREDENTIALS, "code": "UNAUTHORIZED"}

    def test_missing_fields(self, client):
        resp = client.post("/auth/authenticate", json={"username": "alice"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_refresh_and_logout(self, client, regular_user):
        tokens = _login(client).get_json()
        resp = client.post("/auth/refresh-token", json={
            "token": tokens["token"], "refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        fresh = resp.get_json()

        headers = {"Authorization": f"Bearer {fresh['token']}"}
        assert client.post("/auth/logout", headers=headers).get_json() == {
            "message": C.LOGGED_OUT}
        resp = client.post("/auth/refresh-token", json={
            "token": fresh["token"], "refresh_token": fresh["refresh_token"]})
        assert resp.status_code == 401

    def test_register(self, client):
        resp = client.post("/auth/register", json={
            "username": "erin", "email": "erin@example.com",
            "password": TEST_PASSWORD, "confirm_password": TEST_PASSWORD})
        assert resp.status_code == 201
        assert resp.get_json()["roles"] == [C.DEFAULT_ROLE]
        assert _login(client, "erin").status_code == 200

    def test_register_validation_lists_errors(self, client):
        resp = client.post("/auth/register", json={
            "username": "x", "email": "nope", "password": "1",
            "confirm_password": "1"})
        assert resp.status_code == 400
        assert len(resp.get_json()["errors"]) == 3

    def test_register_duplicate(self, client, regular_user):
        resp = client.post("/auth/register", json={
            "username": "alice", "email": "new@example.com",
            "password": TEST_PASSWORD, "confirm_password": TEST_PASSWORD})
        assert resp.status_code == 409


class TestUserApi:

    def test_profile_round_trip(self, client, user_headers):
        resp = client.put("/user/profile", headers=user_headers,
                          json={"first_name": "Alice", "last_name": "L"})
        assert resp.status_code == 200
        profile = client.get("/user/profile", headers=user_headers).get_json()
        assert profile["first_name"] == "Alice"
        assert "password_hash" not in profile

    def test_summary(self, client, user_headers):
        resp = client.get("/user/profile/summary", headers=user_headers)
        assert resp.get_json()["application_count"] == 0

    def test_change_password(self, client, user_headers, regular_user):
        resp = client.post("/user/change-password", headers=user_headers, json={
            "current_password": TEST_PASSWORD, "new_password": "NewPass1",
            "confirm_password": "NewPass1"})
        assert resp.get_json() == {"message": C.PASSWORD_CHANGED}
        assert _login(client, password="NewPass1").status_code == 200

    def test_change_password_wrong_current(self, client, user_headers):
        resp = client.post("/user/change-password", headers=user_headers, json={
            "current_password": "bad-password", "new_password": "NewPass1",
            "confirm_password": "NewPass1"})
        assert resp.status_code == 401

    def test_validate_password(self, client, user_headers):
        ok = client.post("/user/validate-password", headers=user_headers,
                         json={"password": TEST_PASSWORD})
        bad = client.post("/user/validate-password", headers=user_headers,
                          json={"password": "nope"})
        assert ok.get_json() == {"is_valid": True}
        assert bad.get_json() == {"is_valid": False}

    def test_check_email(self, client, user_headers, other_user):
        resp = client.get("/user/check-email/bob@example.com", headers=user_headers)
        assert resp.get_json()["is_available"] is False

    def test_deactivate_blocks_login(self, client, user_headers):
        resp = client.post("/user/deactivate", headers=user_headers,
                           json={"password": TEST_PASSWORD})
        assert resp.get_json() == {"message": C.ACCOUNT_DEACTIVATED}
        assert _login(client).status_code == 401


class TestManagementApi:

    def test_regular_user_forbidden(self, client, user_headers):
        resp = client.get("/management/users", headers=user_headers)
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "FORBIDDEN"

    def test_admin_can_list_but_not_create_users(self, client, admin_headers, regular_user):
        listed = client.get("/management/users?search=ali", headers=admin_headers)
        assert listed.status_code == 200
        assert [u["username"] for u in listed.get_json()["items"]] == ["alice"]

        resp = client.post("/management/users", headers=admin_headers, json={
            "username": "frank", "email": "frank@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 403

    def test_platform_admin_creates_user_with_roles(self, client, platform_admin_headers):
        resp = client.post("/management/users", headers=platform_admin_headers, json={
            "username": "frank", "email": "frank@example.com", "password": TEST_PASSWORD,
            "roles": [C.ROLE_ADMIN]})
        assert resp.status_code == 201
        assert resp.get_json()["roles"] == [C.ROLE_ADMIN]

    def test_validate_username(self, client, admin_headers, regular_user):
        resp = client.post("/management/users/validate-username", headers=admin_headers,
                           json={"username": "alice"})
        assert resp.get_json()["is_available"] is False
        resp = client.post("/management/users/validate-username", headers=admin_headers,
                           json={"username": "no spaces"})
        body = resp.get_json()
        assert body["is_available"] is False
        assert body["errors"]

    def test_role_lifecycle(self, client, platform_admin_headers, regular_user):
        created = client.post("/management/roles", headers=platform_admin_headers,
                              json={"name": "Auditor", "description": "Reads logs"})
        assert created.status_code == 201
        role_id = created.get_json()["id"]

        assigned = client.post(f"/management/roles/{role_id}/assign/{regular_user['id']}",
                               headers=platform_admin_headers)
        assert assigned.get_json()["changed"] is True

        blocked = client.delete(f"/management/roles/{role_id}",
                                headers=platform_admin_headers)
        assert blocked.status_code == 400

        removed = client.delete(f"/management/roles/{role_id}/remove/{regular_user['id']}",
                                headers=platform_admin_headers)
        assert removed.get_json()["changed"] is True

        deleted = client.delete(f"/management/roles/{role_id}",
                                headers=platform_admin_headers)
        assert deleted.get_json() == {"message": C.ROLE_DELETED}

    def test_duplicate_role_conflict(self, client, platform_admin_headers):
        resp = client.post("/management/roles", headers=platform_admin_headers,
                           json={"name": C.ROLE_ADMIN})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == C.ROLE_NAME_TAKEN

    def test_roles_require_platform_admin(self, client, admin_headers):
        assert client.get("/management/roles", headers=admin_headers).status_code == 403

    def test_hierarchy_and_missing_role(self, client, platform_admin_headers, cams_db):
        hierarchy = client.get("/management/roles/hierarchy",
                               headers=platform_admin_headers).get_json()
        assert [r["name"] for r in hierarchy["items"]] == list(C.ROLE_HIERARCHY)
        resp = client.get("/management/roles/does-not-exist",
                          headers=platform_admin_headers)
        assert resp.status_code == 404

    def test_toggle_requires_flag(self, client, platform_admin_headers, cams_db):
        role = role_service.create_role("Temp", db_path=cams_db)
        resp = client.patch(f"/management/roles/{role['id']}/toggle-status",
                            headers=platform_admin_headers, json={})
        assert resp.status_code == 400
        resp = client.patch(f"/management/roles/{role['id']}/toggle-status",
                            headers=platform_admin_headers, json={"is_active": False})
        assert resp.get_json()["is_active"] is False
