#!/usr/bin/env python3
"""Tests for cams.connections.connection_service -- stored connections."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from cams import constants as C
from cams.connections import connection_service
from cams.connections.tester import ConnectionTestResult
from cams.db.cams_db import get_cams_connection, utcnow
from cams.errors import NotFoundError, UnauthorizedError, ValidationError
from cams.models import ConnectionDetails, ConnectionTestRequest, DatabaseType


def _pg(application_id=None, **kwargs):
    values = dict(name="warehouse", type=DatabaseType.POSTGRESQL, server="pg.local",
                  database="dw", username="etl", password="s3cret")
    values.update(kwargs)
    return ConnectionDetails(application_id=application_id, **values)


class TestConnectionCrud:

    def test_secrets_are_encrypted_and_flagged(self, cams_db, regular_user, make_app):
        app = make_app(regular_user)
        created = connection_service.create_connection(regular_user["id"], _pg(app["id"]),
                                                       db_path=cams_db)
        assert created["has_password"] is True
        assert created["has_api_key"] is False
        assert created["database"] == "dw"
        assert created["status"] == "Untested"
        assert "password" not in created

        conn = get_cams_connection(cams_db)
        try:
            row = conn.execute("SELECT password_enc FROM database_connections WHERE id = ?",
                               (created["id"],)).fetchone()
        finally:
            conn.close()
        assert row["password_enc"] != "s3cret"

    def test_application_is_required(self, cams_db, regular_user):
        with pytest.raises(ValidationError, match="Application is required"):
            connection_service.create_connection(regular_user["id"], _pg(), db_path=cams_db)

    def test_cannot_attach_to_foreign_application(self, cams_db, regular_user, other_user,
                                                  make_app):
        app = make_app(other_user)
        with pytest.raises(UnauthorizedError, match=C.APPLICATION_ACCESS_DENIED):
            connection_service.create_connection(regular_user["id"], _pg(app["id"]),
                                                 db_path=cams_db)

    def test_update_keeps_stored_secret_when_blank(self, cams_db, regular_user, make_app):
        app = make_app(regular_user)
        created = connection_service.create_connection(regular_user["id"], _pg(app["id"]),
                                                       db_path=cams_db)
        connection_service.update_connection(
            created["id"], regular_user["id"], _pg(app["id"], password=None, server="pg2"),
            db_path=cams_db)

        conn = get_cams_connection(cams_db)
        try:
            row = conn.execute("SELECT * FROM database_connections WHERE id = ?",
                               (created["id"],)).fetchone()
        finally:
            conn.close()
        details = connection_service.details_from_row(row)
        assert details.server == "pg2"
        assert details.password == "s3cret"

    def test_ownership_enforced(self, cams_db, regular_user, other_user, make_app,
                                make_connection):
        connection = make_connection(regular_user, make_app(regular_user))
        with pytest.raises(NotFoundError):
            connection_service.get_connection(connection["id"], other_user["id"],
                                              db_path=cams_db)
        assert connection_service.get_connections(other_user["id"], db_path=cams_db) == []

    def test_toggle_and_delete(self, cams_db, regular_user, make_app, make_connection):
        connection = make_connection(regular_user, make_app(regular_user))
        toggled = connection_service.toggle_connection(connection["id"], regular_user["id"],
                                                       False, db_path=cams_db)
        assert toggled["is_active"] is False
        connection_service.delete_connection(connection["id"], regular_user["id"],
                                             db_path=cams_db)
        assert connection_service.get_connections(regular_user["id"], db_path=cams_db) == []


class TestConnectionTesting:

    def test_stored_test_records_status(self, cams_db, regular_user, make_app,
                                        make_connection):
        connection = make_connection(regular_user, make_app(regular_user))
        result = connection_service.test_connection(
            regular_user["id"], ConnectionTestRequest(connection_id=connection["id"]),
            db_path=cams_db)
        assert result["is_successful"] is True
        health = connection_service.get_connection_health(connection["id"],
                                                          regular_user["id"], db_path=cams_db)
        assert health["is_healthy"] is True
        assert health["status"] == "Connected"
        assert health["error_message"] is None

    @patch("cams.connections.connection_service.run_connection_test")
    def test_failed_test_marks_connection_failed(self, mock_test, cams_db, regular_user,
                                                 make_app, make_connection):
        mock_test.return_value = ConnectionTestResult(
            is_successful=False, message="Connection refused", response_time_ms=12,
            tested_at="2024-01-01T00:00:00Z", error_code="POSTGRESQL_ERROR")
        connection = make_connection(regular_user, make_app(regular_user))
        connection_service.run_stored_test(connection["id"], regular_user["id"],
                                           db_path=cams_db)
        health = connection_service.get_connection_health(connection["id"],
                                                          regular_user["id"], db_path=cams_db)
        assert health["status"] == "Failed"
        assert health["error_message"] == "Connection refused"
        assert health["response_time_ms"] == 12

    def test_inline_details(self, regular_user, sqlite_target, cams_db):
        request = ConnectionTestRequest(connection_details=ConnectionDetails(
            name="inline", type=DatabaseType.SQLITE, database=sqlite_target))
        result = connection_service.test_connection(regular_user["id"], request,
                                                    db_path=cams_db)
        assert result["is_successful"] is True

    def test_requires_id_or_details(self, regular_user, cams_db):
        with pytest.raises(ValidationError):
            connection_service.test_connection(regular_user["id"], ConnectionTestRequest(),
                                               db_path=cams_db)

    @patch("cams.connections.connection_service.run_connection_test",
           side_effect=RuntimeError("driver exploded"))
    def test_unexpected_errors_return_generic_failure(self, _mock, regular_user,
                                                      sqlite_target, cams_db):
        request = ConnectionTestRequest(connection_details=ConnectionDetails(
            name="inline", type=DatabaseType.SQLITE, database=sqlite_target))
        result = connection_service.test_connection(regular_user["id"], request,
                                                    db_path=cams_db)
        assert result["is_successful"] is False
        assert result["message"] == C.CONNECTION_TEST_FAILED
        assert "exploded" not in (result["error_details"] or "")

    def test_untested_health(self, cams_db, regular_user, make_app, make_connection):
        connection = make_connection(regular_user, make_app(regular_user))
        health = connection_service.get_connection_health(connection["id"],
                                                          regular_user["id"], db_path=cams_db)
        assert health["is_healthy"] is False
        assert health["error_message"] == "Connection has not been tested"


class TestBulkAndUsage:

    def test_bulk_toggle_reports_unowned(self, cams_db, regular_user, other_user, make_app,
                                         make_connection):
        mine = make_connection(regular_user, make_app(regular_user))
        theirs = make_connection(other_user, make_app(other_user))
        result = connection_service.bulk_toggle(regular_user["id"],
                                                [mine["id"], theirs["id"]], False,
                                                db_path=cams_db)
        assert result["successful"] == [mine["id"]]
        assert result["failed"] == [{"id": theirs["id"],
                                     "error": C.CONNECTION_ACCESS_DENIED}]
        assert "1 successful, 1 failed" in result["message"]

    def test_bulk_delete(self, cams_db, regular_user, make_app, make_connection):
        app = make_app(regular_user)
        ids = [make_connection(regular_user, app, f"c{i}")["id"] for i in range(3)]
        result = connection_service.bulk_delete(regular_user["id"], ids, db_path=cams_db)
        assert sorted(result["successful"]) == sorted(ids)
        assert connection_service.get_connections(regular_user["id"], db_path=cams_db) == []

    def test_usage_stats_count_access_events(self, cams_db, regular_user, make_app,
                                             make_connection):
        connection = make_connection(regular_user, make_app(regular_user))
        for _ in range(2):
            connection_service.record_access(connection["id"], regular_user["id"],
                                             db_path=cams_db)
        stats = connection_service.get_usage_stats(connection["id"], regular_user["id"],
                                                   db_path=cams_db)
        assert stats["usage_frequency"] == {"daily": 2, "weekly": 2, "monthly": 2}
        assert stats["last_used"]

        later = connection_service.get_usage_stats(connection["id"], regular_user["id"],
                                                   now=utcnow() + timedelta(days=3),
                                                   db_path=cams_db)
        assert later["usage_frequency"] == {"daily": 0, "weekly": 2, "monthly": 2}


class TestTypesAndStrings:

    def test_types_catalogue(self):
        types = connection_service.get_types()
        postgres = next(t for t in types if t["value"] == int(DatabaseType.POSTGRESQL))
        assert postgres["default_port"] == 5432

    def test_build_and_validate(self):
        built = connection_service.build_string(_pg())
        assert built["connection_string"].startswith("Host=pg.local;Port=5432")
        assert connection_service.validate_string(
            DatabaseType.POSTGRESQL, built["connection_string"])["is_valid"]
        with pytest.raises(ValidationError):
            connection_service.validate_string(DatabaseType.POSTGRESQL, "")

    def test_summary(self, cams_db, regular_user, make_app, make_connection):
        app = make_app(regular_user, "Billing")
        connection = make_connection(regular_user, app)
        summary = connection_service.get_connection_summary(
            connection["id"], regular_user["id"], db_path=cams_db)
        assert summary["application_name"] == "Billing"
        assert summary["type_name"] == "SQLite"
        assert len(connection_service.get_connections_summary(regular_user["id"],
                                                              db_path=cams_db)) == 1
