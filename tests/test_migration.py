#!/usr/bin/env python3
"""Tests for cams.migration -- bulk import of users, roles and applications."""

import json
from unittest.mock import patch

import pytest

from cams import constants as C
from cams.errors import ValidationError
from cams.migration import migration_service
from cams.models import MigrationRequest
from cams.services import application_service, role_service, user_service
from tests.conftest import TEST_PASSWORD


def _request(migration_type, data, **kwargs):
    return MigrationRequest(migration_type=migration_type, data=data, **kwargs)


USERS = [
    {"username": "carol", "email": "carol@example.com", "roles": ["Admin"]},
    {"username": "dave", "email": "dave@example.com", "password": "Dave1234",
     "first_name": "Dave"},
]


class TestValidation:

    def test_valid_users(self, cams_db):
        result = migration_service.validate_migration_data(_request("users", USERS),
                                                           db_path=cams_db)
        assert result["is_valid"] is True
        assert result["total_records"] == 2
        assert result["validation_summary"]["new_records"] == 2

    def test_json_string_and_wrapped_payloads(self, cams_db):
        for data in (json.dumps(USERS), {"users": USERS}):
            result = migration_service.validate_migration_data(_request("USERS", data),
                                                               db_path=cams_db)
            assert result["total_records"] == 2

    def test_malformed_json(self, cams_db):
        result = migration_service.validate_migration_data(_request("users", "{not json"),
                                                           db_path=cams_db)
        assert result["errors"] == [C.INVALID_MIGRATION_JSON]

    def test_unsupported_type(self, cams_db):
        result = migration_service.validate_migration_data(_request("widgets", []),
                                                           db_path=cams_db)
        assert not result["is_valid"]
        assert "Unsupported migration type" in result["errors"][0]

    def test_duplicates_and_invalid_records(self, cams_db):
        data = [
            {"username": "carol", "email": "carol@example.com"},
            {"username": "Carol", "email": "other@example.com"},
            {"username": "x", "email": "bad"},
        ]
        result = migration_service.validate_migration_data(_request("users", data),
                                                           db_path=cams_db)
        assert result["invalid_records"] == 2
        assert any("duplicate username" in e for e in result["errors"])

    def test_existing_users_and_unknown_roles_warn(self, cams_db, regular_user):
        data = [{"username": "alice", "email": "alice@example.com", "roles": ["Ghost"]}]
        result = migration_service.validate_migration_data(_request("users", data),
                                                           db_path=cams_db)
        assert result["is_valid"] is True
        assert any("already exists and will be skipped" in w for w in result["warnings"])
        assert any("role 'Ghost' does not exist" in w for w in result["warnings"])


class TestImportUsers:

    def test_imports_with_default_password_and_roles(self, cams_db, platform_admin):
        result = migration_service.import_users(_request("users", USERS),
                                                actor_id=platform_admin["id"],
                                                db_path=cams_db)
        assert result["success"] is True
        assert result["successful_records"] == 2
        assert result["message"] == "Successfully imported 2 users"

        carol = user_service.get_user_by_username("carol", db_path=cams_db)
        assert user_service.verify_password(carol["password_hash"], C.DEFAULT_IMPORT_PASSWORD)
        assert role_service.user_has_role(carol["id"], "Admin", db_path=cams_db)

    def test_existing_users_skipped_unless_overwrite(self, cams_db, regular_user):
        data = [{"username": "alice", "email": "alice@example.com", "first_name": "Al"}]
        skipped = migration_service.import_users(_request("users", data), db_path=cams_db)
        assert skipped["skipped_records"] == 1

        updated = migration_service.import_users(
            _request("users", data, overwrite_existing=True), db_path=cams_db)
        assert updated["successful_records"] == 1
        assert user_service.get_user(regular_user["id"], db_path=cams_db)["first_name"] == "Al"

    def test_failed_record_does_not_stop_the_rest(self, cams_db, regular_user):
        user_service.deactivate_account(regular_user["id"], TEST_PASSWORD, db_path=cams_db)
        data = [{"username": "alice", "email": "alice@example.com"}, USERS[0]]
        result = migration_service.import_users(_request("users", data), db_path=cams_db)

        assert result["success"] is False
        assert result["failed_records"] == 1
        assert result["successful_records"] == 1
        assert result["errors"] == [
            f"Failed to import user 'alice': {C.USERNAME_TAKEN}"]
        assert result["message"] == "Completed with 1 errors. 1 users imported successfully"
        assert user_service.get_user_by_username("carol", db_path=cams_db) is not None

    def test_validate_only_writes_nothing(self, cams_db):
        result = migration_service.import_users(
            _request("users", USERS, validate_only=True), db_path=cams_db)
        assert result["success"] is True
        assert result["message"] == "Validation completed successfully"
        assert user_service.get_user_by_username("carol", db_path=cams_db) is None

    def test_invalid_payload_fails_validation(self, cams_db):
        result = migration_service.import_users(_request("users", [{"username": "x"}]),
                                                db_path=cams_db)
        assert result["success"] is False
        assert result["message"] == "Validation failed"
        assert result["failed_records"] == 1

    def test_endpoint_type_overrides_request_type(self, cams_db):
        result = migration_service.import_users(_request("roles", USERS), db_path=cams_db)
        assert result["successful_records"] == 2

    @patch("cams.migration.migration_service.emit_progress")
    def test_progress_is_emitted(self, mock_emit, cams_db):
        result = migration_service.import_users(
            _request("users", USERS, progress_id="abc"), db_path=cams_db)
        assert result["progress_id"] == "abc"
        final = mock_emit.call_args_list[-1].args
        assert final[0] == "abc"
        assert final[1]["is_completed"] is True
        assert final[1]["percentage"] == 100


class TestImportRolesAndApplications:

    def test_roles(self, cams_db):
        data = [{"name": "Auditor", "description": "Reads logs"}, {"name": "User"}]
        result = migration_service.import_roles(_request("roles", data), db_path=cams_db)
        assert result["successful_records"] == 1
        assert result["skipped_records"] == 1
        assert role_service.get_role_by_name("Auditor", db_path=cams_db)

    def test_system_roles_never_overwritten(self, cams_db):
        result = migration_service.import_roles(
            _request("roles", [{"name": "Admin", "description": "changed"}],
                     overwrite_existing=True), db_path=cams_db)
        assert result["skipped_records"] == 1
        assert any("cannot be modified" in w for w in result["warnings"])

    def test_applications_owned_by_named_user(self, cams_db, regular_user, platform_admin):
        data = [{"name": "Billing", "owner_username": "alice"}, {"name": "Reports"}]
        result = migration_service.import_applications(
            _request("applications", data), actor_id=platform_admin["id"], db_path=cams_db)
        assert result["successful_records"] == 2
        mine = application_service.list_applications(regular_user["id"], db_path=cams_db)
        admins = application_service.list_applications(platform_admin["id"], db_path=cams_db)
        assert [a["name"] for a in mine["items"]] == ["Billing"]
        assert [a["name"] for a in admins["items"]] == ["Reports"]

    def test_unknown_owner_is_a_validation_error(self, cams_db):
        result = migration_service.import_applications(
            _request("applications", [{"name": "Billing", "owner_username": "ghost"}]),
            db_path=cams_db)
        assert result["success"] is False
        assert "owner 'ghost' does not exist" in result["errors"][0]


class TestTemplates:

    @pytest.mark.parametrize("kind", ["users", "ROLES", "Applications"])
    def test_templates(self, kind):
        template = migration_service.get_migration_template(kind)
        assert template["migration_type"] == kind.upper()
        assert template["example"]
        assert template["fields"]

    def test_unknown_template(self):
        with pytest.raises(ValidationError):
            migration_service.get_migration_template("widgets")
