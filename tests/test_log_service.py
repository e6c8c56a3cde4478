#!/usr/bin/env python3
"""Tests for cams.services.log_service -- persisted log streams."""

import sqlite3
from datetime import timedelta
from unittest.mock import patch

import pytest

from cams.db.cams_db import utcnow
from cams.errors import ValidationError
from cams.services import log_service


class TestWriters:

    def test_audit_values_round_trip_as_json(self, cams_db):
        log_service.log_audit("u1", "Update", "Application", entity_id="a1",
                              old_values={"name": "old"}, new_values={"name": "new"},
                              db_path=cams_db)
        item = log_service.get_audit_logs(db_path=cams_db)["items"][0]
        assert item["old_values"] == {"name": "old"}
        assert item["new_values"] == {"name": "new"}
        assert item["timestamp"].endswith("Z")

    def test_security_failures_default_to_warning(self, cams_db):
        log_service.log_security_event("Login", status="Failure", username="eve",
                                       db_path=cams_db)
        item = log_service.get_security_logs(db_path=cams_db)["items"][0]
        assert item["severity"] == "Warning"

    def test_system_event_captures_host_context(self, cams_db):
        log_service.log_system_event("Startup", "CAMS started", source="gateway",
                                     db_path=cams_db)
        item = log_service.get_system_logs(db_path=cams_db)["items"][0]
        assert item["machine_name"]
        assert item["process_id"]
        assert item["is_resolved"] is False

    @pytest.mark.parametrize("duration, level, slow", [
        (50, "Fast", False),
        (500, "Normal", False),
        (1500, "Slow", True),
        (5000, "Critical", True),
    ])
    def test_performance_levels(self, cams_db, duration, level, slow):
        log_service.log_performance("GET /x", duration, slow_threshold_ms=1000,
                                    db_path=cams_db)
        item = log_service.get_performance_logs(db_path=cams_db)["items"][0]
        assert item["performance_level"] == level
        assert item["is_slow_query"] is slow

    def test_write_failures_do_not_raise(self, cams_db):
        with patch("cams.services.log_service.get_cams_connection",
                   side_effect=sqlite3.OperationalError("disk I/O error")):
            assert log_service.log_security_event("Login", db_path=cams_db) is None


class TestQueries:

    def test_filters_and_paging(self, cams_db):
        for i in range(3):
            log_service.log_audit("u1", "Create", "Application", entity_id=f"a{i}",
                                  db_path=cams_db)
        log_service.log_audit("u2", "Delete", "Role", db_path=cams_db)

        page = log_service.get_audit_logs(page=1, page_size=2, user_id="u1", db_path=cams_db)
        assert page["total_count"] == 3
        assert len(page["items"]) == 2
        assert page["total_pages"] == 2
        roles = log_service.get_audit_logs(entity_type="Role", db_path=cams_db)
        assert roles["items"][0]["action"] == "Delete"

    def test_date_window(self, cams_db):
        log_service.log_audit("u1", "Create", "Application", db_path=cams_db)
        future = (utcnow() + timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
        assert log_service.get_audit_logs(from_date=future, db_path=cams_db)["total_count"] == 0
        assert log_service.get_audit_logs(to_date=future, db_path=cams_db)["total_count"] == 1

    def test_invalid_date_rejected(self, cams_db):
        with pytest.raises(ValidationError, match="Invalid from date"):
            log_service.get_audit_logs(from_date="yesterday", db_path=cams_db)

    def test_min_duration_filter(self, cams_db):
        for duration in (10, 200, 2000):
            log_service.log_performance("op", duration, db_path=cams_db)
        result = log_service.get_performance_logs(min_duration_ms=200, db_path=cams_db)
        assert sorted(i["duration_ms"] for i in result["items"]) == [200, 2000]

    def test_resolve_system_log(self, cams_db):
        log_id = log_service.log_system_event("Error", "boom", level="Error", db_path=cams_db)
        assert log_service.mark_system_log_resolved(log_id, "admin", "fixed", db_path=cams_db)
        assert not log_service.mark_system_log_resolved(9999, "admin", db_path=cams_db)
        resolved = log_service.get_system_logs(is_resolved=True, db_path=cams_db)
        assert resolved["items"][0]["resolution_notes"] == "fixed"

    def test_failed_login_attempts_grouped_by_ip(self, cams_db):
        for username in ("alice", "bob", "alice"):
            log_service.log_security_event("Login", status="Failure", username=username,
                                           ip_address="10.0.0.5", db_path=cams_db)
        log_service.log_security_event("Login", status="Failure", username="carol",
                                       ip_address="10.0.0.6", db_path=cams_db)
        attempts = log_service.get_failed_login_attempts(threshold=3, db_path=cams_db)
        assert attempts == [{
            "ip_address": "10.0.0.5",
            "attempt_count": 3,
            "last_attempt": attempts[0]["last_attempt"],
            "usernames": ["alice", "bob"],
        }]


class TestMetricsAndRetention:

    def test_empty_metrics(self, cams_db):
        metrics = log_service.get_performance_metrics(db_path=cams_db)
        assert metrics["total_requests"] == 0
        assert metrics["distribution"]["0-100ms"] == 0

    def test_metrics(self, cams_db):
        for duration, status in ((50, 200), (150, 200), (400, 500), (2500, 200)):
            log_service.log_performance("GET /a" if duration < 400 else "GET /b", duration,
                                        status_code=status, slow_threshold_ms=1000,
                                        db_path=cams_db)
        metrics = log_service.get_performance_metrics(db_path=cams_db)
        assert metrics["total_requests"] == 4
        assert metrics["min_response_ms"] == 50
        assert metrics["max_response_ms"] == 2500
        assert metrics["error_requests"] == 1
        assert metrics["error_rate"] == 25.0
        assert metrics["slow_requests"] == 1
        assert metrics["distribution"] == {"0-100ms": 1, "101-300ms": 1, "301-1000ms": 1,
                                           "1001-3000ms": 1, "3000ms+": 0}
        assert metrics["slowest_operations"][0]["operation"] == "GET /b"

    def test_cleanup_respects_per_stream_retention(self, cams_db):
        log_service.log_audit("u1", "Create", "Application", db_path=cams_db)
        log_service.log_performance("op", 10, db_path=cams_db)
        deleted = log_service.cleanup_old_logs(
            retention={"performance": 30}, now=utcnow() + timedelta(days=60),
            db_path=cams_db)
        assert deleted == {"audit": 0, "security": 0, "system": 0, "performance": 1}
        assert log_service.get_audit_logs(db_path=cams_db)["total_count"] == 1
