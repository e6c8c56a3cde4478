#!/usr/bin/env python3
"""Tests for cams.connections.connection_string."""

import pytest

from cams.connections.connection_string import (
    build_connection_string,
    mask_connection_string,
    parse_connection_string,
    validate_connection_string,
)
from cams.errors import ValidationError
from cams.models import ConnectionDetails, DatabaseType


def _details(db_type, **kwargs):
    return ConnectionDetails(name="c", type=db_type, **kwargs)


class TestBuildConnectionString:

    def test_sql_server_default_port_with_credentials(self):
        text = build_connection_string(_details(
            DatabaseType.SQL_SERVER, server="db", port=1433, database="app",
            username="sa", password="pw"))
        assert text == "Server=db;Database=app;User Id=sa;Password=pw"

    def test_sql_server_custom_port_integrated_security(self):
        text = build_connection_string(_details(
            DatabaseType.SQL_SERVER, server="db", port=1500, database="app"))
        assert text == "Server=db,1500;Database=app;Integrated Security=true"

    def test_postgres_defaults_port_and_appends_settings(self):
        text = build_connection_string(_details(
            DatabaseType.POSTGRESQL, server="pg", database="d", username="u",
            password="p", additional_settings="SSL Mode=Require;"))
        assert text == "Host=pg;Port=5432;Database=d;Username=u;Password=p;SSL Mode=Require"

    def test_oracle_service_name(self):
        text = build_connection_string(_details(
            DatabaseType.ORACLE, server="ora", database="XE", username="u", password="p"))
        assert text == "Data Source=ora:1521/XE;User Id=u;Password=p"

    def test_sqlite_and_rest(self):
        assert build_connection_string(_details(DatabaseType.SQLITE, database="/tmp/a.db")) \
            == "Data Source=/tmp/a.db"
        assert build_connection_string(_details(
            DatabaseType.REST_API, api_base_url="https://api.example.com")) == \
            "https://api.example.com"

    def test_unsupported_type_raises(self):
        with pytest.raises(ValidationError, match="MongoDB"):
            build_connection_string(_details(DatabaseType.MONGODB, server="m"))


class TestValidateConnectionString:

    def test_parse_lowercases_keys(self):
        assert parse_connection_string("Host=h; Port = 5432 ;junk") == {
            "host": "h", "port": "5432"}

    def test_valid_postgres_masks_password(self):
        result = validate_connection_string(DatabaseType.POSTGRESQL,
                                            "Host=h;Database=d;Password=secret")
        assert result["is_valid"]
        assert result["parsed"]["password"] == "***"

    def test_missing_required_key(self):
        result = validate_connection_string(DatabaseType.POSTGRESQL, "Database=d")
        assert not result["is_valid"]
        assert result["errors"] == ["Connection string is missing 'Host' or 'Server'"]

    def test_bad_port(self):
        result = validate_connection_string(DatabaseType.MYSQL, "Server=s;Port=99999")
        assert "Port must be between 1 and 65535" in result["errors"]

    def test_api_types_require_url(self):
        assert not validate_connection_string(DatabaseType.REST_API, "not a url")["is_valid"]
        assert validate_connection_string(DatabaseType.GRAPHQL,
                                          "https://x.example.com/graphql")["is_valid"]

    def test_empty_string(self):
        assert validate_connection_string(DatabaseType.MYSQL, "  ")["errors"] == [
            "Connection string is required"]


class TestMaskConnectionString:

    def test_password_and_api_key_masked(self):
        masked = mask_connection_string("Server=x;Password=hunter2;ApiKey=abc123")
        assert "hunter2" not in masked
        assert "abc123" not in masked
        assert "Server=x" in masked

    def test_empty(self):
        assert mask_connection_string(None) == ""
