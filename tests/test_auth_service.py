#!/usr/bin/env python3
"""Tests for cams.services.auth_service -- JWT issue, refresh and validation."""

import logging
from datetime import timedelta
from unittest.mock import patch

import jwt
import pytest

from cams import constants as C
from cams.config import get_jwt_secret
from cams.db.cams_db import utcnow
from cams.errors import ConflictError, UnauthorizedError, ValidationError
from cams.services import auth_service, log_service, user_service
from tests.conftest import TEST_PASSWORD


class TestAuthenticate:

    def test_success_issues_token_pair(self, cams_db, regular_user):
        result = auth_service.authenticate("alice", TEST_PASSWORD, ip_address="10.0.0.1",
                                           db_path=cams_db)
        assert result["user_id"] == regular_user["id"]
        assert result["roles"] == [C.ROLE_USER]
        assert result["refresh_token"]
        assert result["expires_at"].endswith("Z")

        claims = auth_service.validate_token(result["token"])
        assert claims["sub"] == regular_user["id"]
        assert claims["name"] == "alice"
        assert claims["roles"] == [C.ROLE_USER]

    def test_username_is_case_insensitive(self, cams_db, regular_user):
        assert auth_service.authenticate("ALICE", TEST_PASSWORD,
                                         db_path=cams_db)["username"] == "alice"

    def test_wrong_password_logs_failure(self, cams_db, regular_user):
        with pytest.raises(UnauthorizedError, match=C.INVALID_CREDENTIALS):
            auth_service.authenticate("alice", "nope", ip_address="10.0.0.9",
                                      db_path=cams_db)
        logs = log_service.get_security_logs(event_type="Login", status="Failure",
                                             db_path=cams_db)
        assert logs["total_count"] == 1
        assert logs["items"][0]["failure_reason"] == "Invalid password"
        assert logs["items"][0]["severity"] == "Warning"

    def test_failed_login_log_line_cannot_be_forged(self, cams_db, caplog):
        with caplog.at_level(logging.WARNING, logger="cams.auth"):
            with pytest.raises(UnauthorizedError):
                auth_service.authenticate("evil\nINFO forged entry", "x", db_path=cams_db)
        messages = [r.getMessage() for r in caplog.records if r.name == "cams.auth"]
        assert messages == ["Failed login for evil INFO forged entry from "]

    def test_unknown_and_inactive_users_share_the_message(self, cams_db, regular_user):
        user_service.deactivate_account(regular_user["id"], TEST_PASSWORD, db_path=cams_db)
        for username in ("alice", "nobody"):
            with pytest.raises(UnauthorizedError) as exc_info:
                auth_service.authenticate(username, TEST_PASSWORD, db_path=cams_db)
            assert exc_info.value.message == C.INVALID_CREDENTIALS


class TestRefresh:

    def test_refresh_rotates_refresh_token(self, cams_db, regular_user):
        first = auth_service.authenticate("alice", TEST_PASSWORD, db_path=cams_db)
        second = auth_service.refresh_token(first["token"], first["refresh_token"],
                                            db_path=cams_db)
        assert second["refresh_token"] != first["refresh_token"]
        with pytest.raises(UnauthorizedError):
            auth_service.refresh_token(first["token"], first["refresh_token"],
                                       db_path=cams_db)

    def test_expired_access_token_can_still_be_refreshed(self, cams_db, regular_user):
        first = auth_service.authenticate("alice", TEST_PASSWORD, db_path=cams_db)
        with patch("cams.services.auth_service.utcnow",
                   return_value=utcnow() - timedelta(days=1)):
            stale = auth_service.generate_access_token(regular_user, [C.ROLE_USER])
        result = auth_service.refresh_token(stale["token"], first["refresh_token"],
                                            db_path=cams_db)
        assert result["user_id"] == regular_user["id"]

    def test_wrong_refresh_token(self, cams_db, regular_user):
        first = auth_service.authenticate("alice", TEST_PASSWORD, db_path=cams_db)
        with pytest.raises(UnauthorizedError, match=C.INVALID_REFRESH_TOKEN):
            auth_service.refresh_token(first["token"], "not-the-token", db_path=cams_db)

    def test_logout_revokes_refresh_token(self, cams_db, regular_user):
        first = auth_service.authenticate("alice", TEST_PASSWORD, db_path=cams_db)
        auth_service.logout(regular_user["id"], db_path=cams_db)
        with pytest.raises(UnauthorizedError):
            auth_service.refresh_token(first["token"], first["refresh_token"],
                                       db_path=cams_db)


class TestValidateToken:

    def test_tampered_signature(self, regular_user):
        token = jwt.encode({"sub": regular_user["id"]}, "another-secret-of-decent-length!!",
                           algorithm="HS256")
        with pytest.raises(UnauthorizedError, match=C.INVALID_TOKEN):
            auth_service.validate_token(token)

    def test_expired(self, regular_user):
        with patch("cams.services.auth_service.utcnow",
                   return_value=utcnow() - timedelta(days=1)):
            stale = auth_service.generate_access_token(regular_user, [])
        with pytest.raises(UnauthorizedError):
            auth_service.validate_token(stale["token"])

    def test_wrong_audience(self, regular_user):
        token = jwt.encode({"sub": regular_user["id"], "aud": "someone-else",
                            "iss": "cams"}, get_jwt_secret(), algorithm="HS256")
        with pytest.raises(UnauthorizedError):
            auth_service.validate_token(token)

    def test_empty(self):
        with pytest.raises(UnauthorizedError):
            auth_service.validate_token("")


class TestRegister:

    def test_registration_assigns_default_role(self, cams_db):
        user = auth_service.register_user("dave", "dave@example.com", TEST_PASSWORD,
                                          TEST_PASSWORD, db_path=cams_db)
        assert user["roles"] == [C.DEFAULT_ROLE]

    def test_confirmation_must_match(self, cams_db):
        with pytest.raises(ValidationError, match=C.PASSWORD_MISMATCH):
            auth_service.register_user("dave", "dave@example.com", TEST_PASSWORD,
                                       "different", db_path=cams_db)

    def test_duplicate_is_logged_and_raised(self, cams_db, regular_user):
        with pytest.raises(ConflictError):
            auth_service.register_user("alice", "other@example.com", TEST_PASSWORD,
                                       TEST_PASSWORD, db_path=cams_db)
        logs = log_service.get_security_logs(event_type="Registration", status="Failure",
                                             db_path=cams_db)
        assert logs["total_count"] == 1
