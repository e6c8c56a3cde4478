#!/usr/bin/env python3
"""Tests for cams.validators -- user, role, application and connection rules."""

from cams.models import ConnectionDetails, DatabaseType
from cams.validators import (
    is_valid_email,
    validate_application,
    validate_connection,
    validate_password,
    validate_role,
    validate_user,
    validate_username,
)


class TestUserValidation:

    def test_valid_user(self):
        assert validate_user("alice", "alice@example.com", "secret1") == []

    def test_username_rules(self):
        assert validate_username("") == ["Username is required"]
        assert any("between" in e for e in validate_username("ab"))
        assert any("only contain" in e for e in validate_username("bad name"))
        assert validate_username("first.last-1_x") == []

    def test_email_format(self):
        assert is_valid_email("a.b+c@example.co.uk")
        assert not is_valid_email("not-an-email")
        assert not is_valid_email(None)

    def test_password_length(self):
        assert validate_password("") == ["Password is required"]
        assert validate_password("12345")
        assert validate_password("x" * 101)
        assert validate_password("123456") == []

    def test_password_optional_when_not_required(self):
        assert validate_user("alice", "alice@example.com", None, require_password=False) == []


class TestRoleAndApplicationValidation:

    def test_role_name_required_and_bounded(self):
        assert "Role name is required" in validate_role("  ")
        assert validate_role("x" * 51)
        assert validate_role("Auditor", "Reads logs") == []

    def test_application_limits(self):
        errors = validate_application("", description="d" * 1001, version="v" * 51)
        assert "Application name is required" in errors
        assert any("Description" in e for e in errors)
        assert any("Version" in e for e in errors)
        assert validate_application("Billing") == []


class TestConnectionValidation:
    """Per-type connection requirements."""

    def test_relational_requires_server_database_and_credentials(self):
        errors = validate_connection(ConnectionDetails(name="db", type=DatabaseType.POSTGRESQL))
        assert "Server is required" in errors
        assert "Database name is required" in errors
        assert "Username is required" in errors
        assert "Password is required" in errors

    def test_connection_string_satisfies_server_requirements(self):
        details = ConnectionDetails(name="db", type=DatabaseType.POSTGRESQL,
                                    connection_string="Host=h;Database=d")
        assert validate_connection(details) == []

    def test_update_allows_missing_secrets(self):
        details = ConnectionDetails(name="db", type=DatabaseType.MYSQL, server="h",
                                    database="d")
        assert validate_connection(details, is_create=False) == []

    def test_sqlite_requires_path(self):
        errors = validate_connection(ConnectionDetails(name="lite", type=DatabaseType.SQLITE))
        assert errors == ["Database file path is required for SQLite"]

    def test_api_url_must_be_http_or_ws(self):
        bad = ConnectionDetails(name="api", type=DatabaseType.REST_API,
                                api_base_url="ftp://example.com")
        good = ConnectionDetails(name="api", type=DatabaseType.WEBSOCKET,
                                 api_base_url="wss://example.com/socket")
        assert validate_connection(bad)
        assert validate_connection(good) == []

    def test_github_requires_token_on_create(self):
        details = ConnectionDetails(name="gh", type=DatabaseType.GITHUB_API)
        assert validate_connection(details)
        assert validate_connection(details, is_create=False) == []

    def test_port_range(self):
        details = ConnectionDetails(name="r", type=DatabaseType.REDIS, server="h", port=70000)
        assert "Port must be between 1 and 65535" in validate_connection(details)

    def test_name_required(self):
        details = ConnectionDetails(type=DatabaseType.CUSTOM, connection_string="x=y")
        assert validate_connection(details) == ["Connection name is required"]
