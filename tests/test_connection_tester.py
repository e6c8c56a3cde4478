#!/usr/bin/env python3
"""Tests for cams.connections.tester -- live tests with network calls mocked."""

import socket
import sqlite3
from unittest.mock import MagicMock, patch

import psycopg2
import requests

from cams.connections.tester import run_connection_test
from cams.models import ConnectionDetails, DatabaseType


def _details(db_type, **kwargs):
    return ConnectionDetails(name="c", type=db_type, **kwargs)


class TestSqlite:

    def test_existing_file_succeeds(self, tmp_path):
        path = tmp_path / "target.db"
        sqlite3.connect(str(path)).close()
        result = run_connection_test(_details(DatabaseType.SQLITE, database=str(path)))
        assert result.is_successful
        assert result.metadata["server_version"]
        assert result.tested_at.endswith("Z")

    def test_missing_file_fails(self, tmp_path):
        result = run_connection_test(_details(DatabaseType.SQLITE,
                                              database=str(tmp_path / "nope.db")))
        assert not result.is_successful
        assert result.error_code == "INVALID_CONFIG"


class TestPostgres:

    @patch("cams.connections.tester.psycopg2.connect")
    def test_success_reports_version(self, mock_connect):
        cursor = mock_connect.return_value.cursor.return_value.__enter__.return_value
        cursor.fetchone.return_value = ("PostgreSQL 16.2",)
        result = run_connection_test(_details(
            DatabaseType.POSTGRESQL, server="pg", database="d", username="u", password="p"))
        assert result.is_successful
        assert result.metadata["server_version"] == "PostgreSQL 16.2"
        assert mock_connect.call_args.kwargs["port"] == 5432

    @patch("cams.connections.tester.psycopg2.connect")
    def test_failure_masks_password(self, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError(
            "could not connect: password=topsecret rejected")
        result = run_connection_test(_details(
            DatabaseType.POSTGRESQL, server="pg", database="d", username="u",
            password="topsecret"))
        assert not result.is_successful
        assert result.error_code == "POSTGRESQL_ERROR"
        assert "topsecret" not in (result.error_details or "")

    @patch("cams.connections.tester.psycopg2.connect")
    def test_cloud_sql_on_postgres_port_uses_driver(self, mock_connect):
        mock_connect.return_value.cursor.return_value.__enter__.return_value \
            .fetchone.return_value = ("PostgreSQL 15",)
        result = run_connection_test(_details(
            DatabaseType.GOOGLE_CLOUDSQL, server="gcp", database="d", username="u",
            password="p"))
        assert result.is_successful
        mock_connect.assert_called_once()


class TestHttpApis:

    @patch("cams.connections.tester.requests.get")
    def test_rest_ok(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200)
        result = run_connection_test(_details(
            DatabaseType.REST_API, api_base_url="https://api.example.com", api_key="k"))
        assert result.is_successful
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer k"

    @patch("cams.connections.tester.requests.get")
    def test_rest_unauthorized(self, mock_get):
        mock_get.return_value = MagicMock(status_code=401)
        result = run_connection_test(_details(
            DatabaseType.REST_API, api_base_url="https://api.example.com"))
        assert result.error_code == "UNAUTHORIZED"

    @patch("cams.connections.tester.requests.get")
    def test_rest_timeout(self, mock_get):
        mock_get.side_effect = requests.Timeout()
        result = run_connection_test(_details(
            DatabaseType.REST_API, api_base_url="https://api.example.com"))
        assert result.error_code == "TIMEOUT"

    @patch("cams.connections.tester.requests.post")
    def test_graphql_posts_typename_query(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)
        result = run_connection_test(_details(
            DatabaseType.GRAPHQL, api_base_url="https://api.example.com/graphql"))
        assert result.is_successful
        assert mock_post.call_args.kwargs["json"] == {"query": "{ __typename }"}


class TestGitHub:

    @patch("cams.connections.tester.requests.get")
    def test_valid_token(self, mock_get):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {"login": "octocat"}
        result = run_connection_test(_details(DatabaseType.GITHUB_API, github_token="ghp_x"))
        assert result.is_successful
        assert result.metadata["login"] == "octocat"
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "token ghp_x"

    @patch("cams.connections.tester.requests.get")
    def test_rejected_token(self, mock_get):
        mock_get.return_value = MagicMock(status_code=401)
        result = run_connection_test(_details(DatabaseType.GITHUB_API, github_token="bad"))
        assert result.error_code == "GITHUB_UNAUTHORIZED"

    def test_missing_token(self):
        result = run_connection_test(_details(DatabaseType.GITHUB_API))
        assert result.error_code == "GITHUB_NO_TOKEN"


class TestTcpReachability:

    @patch("cams.connections.tester.socket.create_connection")
    def test_reachable_uses_default_port(self, mock_create):
        result = run_connection_test(_details(DatabaseType.MYSQL, server="mysql.local"))
        assert result.is_successful
        mock_create.assert_called_once_with(("mysql.local", 3306), timeout=10)

    @patch("cams.connections.tester.socket.create_connection")
    def test_unreachable(self, mock_create):
        mock_create.side_effect = OSError("Connection refused")
        result = run_connection_test(_details(DatabaseType.MYSQL, server="mysql.local"))
        assert result.error_code == "MYSQL_ERROR"

    @patch("cams.connections.tester.socket.create_connection")
    def test_timeout(self, mock_create):
        mock_create.side_effect = socket.timeout()
        result = run_connection_test(_details(DatabaseType.REDIS, server="cache"))
        assert result.error_code == "TIMEOUT"


class TestUnsupported:

    def test_no_server_for_cloud_type(self):
        result = run_connection_test(_details(DatabaseType.AWS_S3))
        assert result.error_code == "INVALID_CONFIG"

    @patch("cams.connections.tester._test_http", side_effect=RuntimeError("boom"))
    def test_unexpected_errors_are_contained(self, _mock):
        result = run_connection_test(_details(
            DatabaseType.REST_API, api_base_url="https://api.example.com"))
        assert not result.is_successful
        assert result.message == "Connection test failed"
        assert result.response_time_ms >= 0
