#!/usr/bin/env python3
"""CAMS -- Persisted Audit / Security / System / Performance Logs.

Writers never raise to the caller: a failed write is reported through the
``cams.logs`` logger and the request carries on.  The one exception is an
audit entry written on a caller-supplied connection, which belongs to the
caller's transaction and fails with it.

Usage:
    from cams.services.log_service import log_audit, get_performance_metrics

    log_audit(user_id, "Create", "Application", entity_id=app_id,
              new_values={"name": "Billing"})
    metrics = get_performance_metrics(from_date="2024-01-01T00:00:00Z")

    # Retention cleanup
    python -m cams.services.log_service --cleanup --json
"""

import argparse
import json
import logging
import os
import socket
import sqlite3
import threading
from datetime import timedelta
from typing import Optional

from cams.config import get_config
from cams.db.cams_db import get_cams_connection, parse_iso, to_iso, utcnow
from cams.errors import ValidationError
from cams.services.paging import normalize_paging, paged_result

logger = logging.getLogger("cams.logs")

LOG_TABLES = {
    "audit": "audit_logs",
    "security": "security_logs",
    "system": "system_logs",
    "performance": "performance_logs",
}

_JSON_COLUMNS = ("old_values", "new_values", "metadata")

DISTRIBUTION_BUCKETS = [
    ("0-100ms", 0, 100),
    ("101-300ms", 101, 300),
    ("301-1000ms", 301, 1000),
    ("1001-3000ms", 1001, 3000),
    ("3000ms+", 3001, None),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _json(value):
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _decode(row: dict) -> dict:
    for col in _JSON_COLUMNS:
        raw = row.get(col)
        if isinstance(raw, str) and raw[:1] in ("{", "["):
            try:
                row[col] = json.loads(raw)
            except ValueError:
                pass  # stored as free text
    for col in ("is_resolved", "is_slow_query"):
        if col in row:
            row[col] = bool(row[col])
    return row


def _ts_param(value, label):
    try:
        return to_iso(parse_iso(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}: {value}")


def _write(table: str, values: dict, conn=None, db_path=None) -> Optional[int]:
    values = {k: v for k, v in values.items() if v is not None}
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"

    if conn is not None:
        return conn.execute(sql, tuple(values.values())).lastrowid

    try:
        own = get_cams_connection(db_path)
        try:
            cursor = own.execute(sql, tuple(values.values()))
            own.commit()
            return cursor.lastrowid
        finally:
            own.close()
    except sqlite3.Error as exc:
        logger.warning("Failed to write %s entry: %s", table, exc)
        return None


def performance_level(duration_ms: int) -> str:
    if duration_ms < 100:
        return "Fast"
    if duration_ms < 1000:
        return "Normal"
    if duration_ms < 3000:
        return "Slow"
    return "Critical"


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------
def log_audit(user_id, action, entity_type, entity_id=None, entity_name=None,
              old_values=None, new_values=None, description=None,
              ip_address=None, user_agent=None, severity="Information",
              conn=None, db_path=None):
    """Append an audit entry (immutable once written)."""
    return _write("audit_logs", {
        "user_id": user_id,
        "action": (action or "")[:50],
        "entity_type": entity_type,
        "entity_id": entity_id,
        "entity_name": entity_name,
        "old_values": _json(old_values),
        "new_values": _json(new_values),
        "description": description,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "severity": severity,
        "timestamp": to_iso(utcnow()),
    }, conn=conn, db_path=db_path)


def log_security_event(event_type, status="Success", user_id=None, username=None,
                       description=None, ip_address=None, user_agent=None,
                       session_id=None, resource=None, metadata=None,
                       severity=None, failure_reason=None, db_path=None):
    """Record an authentication/authorization event."""
    if severity is None:
        severity = "Warning" if status == "Failure" else "Information"
    return _write("security_logs", {
        "user_id": user_id,
        "username": username,
        "event_type": event_type,
        "status": status,
        "description": description,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "session_id": session_id,
        "resource": resource,
        "metadata": _json(metadata),
        "severity": severity,
        "failure_reason": failure_reason,
        "timestamp": to_iso(utcnow()),
    }, db_path=db_path)


def log_system_event(event_type, message, level="Information", source=None,
                     details=None, stack_trace=None, correlation_id=None,
                     user_id=None, ip_address=None, request_path=None,
                     http_method=None, status_code=None, duration_ms=None,
                     metadata=None, db_path=None):
    """Record an application/system event with host and process context."""
    return _write("system_logs", {
        "event_type": event_type,
        "level": level,
        "source": source,
        "message": message,
        "details": details,
        "stack_trace": stack_trace,
        "correlation_id": correlation_id,
        "user_id": user_id,
        "ip_address": ip_address,
        "request_path": request_path,
        "http_method": http_method,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "machine_name": socket.gethostname(),
        "process_id": os.getpid(),
        "thread_id": threading.get_ident(),
        "metadata": _json(metadata),
        "timestamp": to_iso(utcnow()),
    }, db_path=db_path)


def log_performance(operation, duration_ms, controller=None, action=None,
                    request_path=None, http_method=None, user_id=None,
                    status_code=None, ip_address=None, user_agent=None,
                    correlation_id=None, metadata=None, slow_threshold_ms=None,
                    db_path=None):
    """Record a timed operation; flags it slow past the configured threshold."""
    if slow_threshold_ms is None:
        slow_threshold_ms = get_config()["logging"]["slow_request_ms"]
    duration_ms = int(duration_ms)
    return _write("performance_logs", {
        "operation": operation,
        "controller": controller,
        "action": action,
        "request_path": request_path,
        "http_method": http_method,
        "user_id": user_id,
        "duration_ms": duration_ms,
        "status_code": status_code,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "correlation_id": correlation_id,
        "performance_level": performance_level(duration_ms),
        "is_slow_query": 1 if duration_ms >= slow_threshold_ms else 0,
        "metadata": _json(metadata),
        "timestamp": to_iso(utcnow()),
    }, db_path=db_path)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _query(table, page, page_size, from_date, to_date, equals,
           extra_where=None, extra_params=None, db_path=None):
    page, page_size = normalize_paging(page, page_size)
    where, params = [], []
    if from_date:
        where.append("timestamp >= ?")
        params.append(_ts_param(from_date, "from date"))
    if to_date:
        where.append("timestamp <= ?")
        params.append(_ts_param(to_date, "to date"))
    for column, value in equals.items():
        if value is not None and value != "":
            where.append(f"{column} = ?")
            params.append(value)
    if extra_where:
        where.append(extra_where)
        params.extend(extra_params or [])
    clause = (" WHERE " + " AND ".join(where)) if where else ""

    conn = get_cams_connection(db_path)
    try:
        total = conn.execute(
            f"SELECT COUNT(*) FROM {table}{clause}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM {table}{clause} ORDER BY timestamp DESC, id DESC "
            "LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size],
        ).fetchall()
    finally:
        conn.close()
    return paged_result([_decode(dict(r)) for r in rows], total, page, page_size)


def get_audit_logs(page=1, page_size=20, from_date=None, to_date=None,
                   user_id=None, action=None, entity_type=None, entity_id=None,
                   severity=None, db_path=None):
    return _query("audit_logs", page, page_size, from_date, to_date, {
        "user_id": user_id, "action": action, "entity_type": entity_type,
        "entity_id": entity_id, "severity": severity,
    }, db_path=db_path)


def get_security_logs(page=1, page_size=20, from_date=None, to_date=None,
                      user_id=None, event_type=None, status=None, severity=None,
                      db_path=None):
    return _query("security_logs", page, page_size, from_date, to_date, {
        "user_id": user_id, "event_type": event_type, "status": status,
        "severity": severity,
    }, db_path=db_path)


def get_system_logs(page=1, page_size=20, from_date=None, to_date=None,
                    level=None, event_type=None, source=None, is_resolved=None,
                    db_path=None):
    resolved = None if is_resolved is None else (1 if is_resolved else 0)
    return _query("system_logs", page, page_size, from_date, to_date, {
        "level": level, "event_type": event_type, "source": source,
        "is_resolved": resolved,
    }, db_path=db_path)


def get_performance_logs(page=1, page_size=20, from_date=None, to_date=None,
                         operation=None, user_id=None, min_duration_ms=None,
                         is_slow_query=None, db_path=None):
    slow = None if is_slow_query is None else (1 if is_slow_query else 0)
    extra, extra_params = None, None
    if min_duration_ms is not None:
        extra, extra_params = "duration_ms >= ?", [int(min_duration_ms)]
    return _query("performance_logs", page, page_size, from_date, to_date, {
        "operation": operation, "user_id": user_id, "is_slow_query": slow,
    }, extra_where=extra, extra_params=extra_params, db_path=db_path)


def get_failed_login_attempts(since=None, threshold=None, db_path=None):
    """IP addresses with at least ``threshold`` failed logins since ``since``."""
    if threshold is None:
        threshold = get_config()["logging"]["failed_login_threshold"]
    since_ts = _ts_param(since, "since") if since else to_iso(utcnow() - timedelta(hours=24))
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            """SELECT ip_address, COUNT(*) AS attempt_count,
                      MAX(timestamp) AS last_attempt,
                      GROUP_CONCAT(DISTINCT username) AS usernames
               FROM security_logs
               WHERE event_type = 'Login' AND status = 'Failure'
                 AND timestamp >= ?
               GROUP BY ip_address
               HAVING COUNT(*) >= ?
               ORDER BY attempt_count DESC""",
            (since_ts, threshold),
        ).fetchall()
    finally:
        conn.close()
    return [
        {
            "ip_address": r["ip_address"],
            "attempt_count": r["attempt_count"],
            "last_attempt": r["last_attempt"],
            "usernames": sorted(filter(None, (r["usernames"] or "").split(","))),
        }
        for r in rows
    ]


def mark_system_log_resolved(log_id, resolved_by, notes=None, db_path=None) -> bool:
    conn = get_cams_connection(db_path)
    try:
        cursor = conn.execute(
            """UPDATE system_logs
               SET is_resolved = 1, resolved_at = ?, resolved_by = ?,
                   resolution_notes = ?
               WHERE id = ?""",
            (to_iso(utcnow()), resolved_by, notes, log_id),
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Performance metrics
# ---------------------------------------------------------------------------
def _empty_metrics(from_ts, to_ts):
    return {
        "from_date": from_ts, "to_date": to_ts,
        "total_requests": 0, "average_response_ms": 0, "median_response_ms": 0,
        "p95_response_ms": 0, "p99_response_ms": 0,
        "min_response_ms": 0, "max_response_ms": 0,
        "slow_requests": 0, "error_requests": 0, "error_rate": 0.0,
        "requests_per_minute": 0,
        "distribution": {label: 0 for label, _, _ in DISTRIBUTION_BUCKETS},
        "slowest_operations": [],
    }


def get_performance_metrics(from_date=None, to_date=None, db_path=None):
    """Aggregate response-time statistics over a window (default: last 24h)."""
    to_ts = _ts_param(to_date, "to date") if to_date else to_iso(utcnow())
    from_ts = (_ts_param(from_date, "from date") if from_date
               else to_iso(parse_iso(to_ts) - timedelta(hours=24)))

    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            """SELECT operation, duration_ms, status_code, is_slow_query, timestamp
               FROM performance_logs
               WHERE timestamp >= ? AND timestamp <= ?""",
            (from_ts, to_ts),
        ).fetchall()
    finally:
        conn.close()

    n = len(rows)
    if n == 0:
        return _empty_metrics(from_ts, to_ts)

    durations = sorted(r["duration_ms"] for r in rows)
    errors = sum(1 for r in rows if (r["status_code"] or 0) >= 400)
    slow = sum(1 for r in rows if r["is_slow_query"])

    stamps = sorted(parse_iso(r["timestamp"]) for r in rows)
    span_minutes = (stamps[-1] - stamps[0]).total_seconds() / 60
    per_minute = round(n / span_minutes, 2) if span_minutes > 0 else n

    distribution = {}
    for label, low, high in DISTRIBUTION_BUCKETS:
        distribution[label] = sum(
            1 for d in durations if d >= low and (high is None or d <= high))

    by_operation = {}
    for r in rows:
        by_operation.setdefault(r["operation"], []).append(r["duration_ms"])
    slowest = sorted(
        (
            {
                "operation": op,
                "request_count": len(values),
                "average_response_ms": round(sum(values) / len(values), 2),
                "max_response_ms": max(values),
            }
            for op, values in by_operation.items()
        ),
        key=lambda item: item["average_response_ms"],
        reverse=True,
    )[:10]

    return {
        "from_date": from_ts, "to_date": to_ts,
        "total_requests": n,
        "average_response_ms": round(sum(durations) / n, 2),
        "median_response_ms": durations[n // 2],
        "p95_response_ms": durations[min(int(n * 0.95), n - 1)],
        "p99_response_ms": durations[min(int(n * 0.99), n - 1)],
        "min_response_ms": durations[0],
        "max_response_ms": durations[-1],
        "slow_requests": slow,
        "error_requests": errors,
        "error_rate": round(errors / n * 100, 2),
        "requests_per_minute": per_minute,
        "distribution": distribution,
        "slowest_operations": slowest,
    }


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------
def cleanup_old_logs(retention=None, now=None, db_path=None):
    """Delete log rows older than each stream's retention (days).

    Returns:
        dict mapping stream name (audit/security/system/performance) to the
        number of deleted rows.
    """
    days = dict(get_config()["logging"]["retention_days"])
    days.update(retention or {})
    now = now or utcnow()

    deleted = {}
    conn = get_cams_connection(db_path)
    try:
        for stream, table in LOG_TABLES.items():
            cutoff = to_iso(now - timedelta(days=int(days[stream])))
            cursor = conn.execute(f"DELETE FROM {table} WHERE timestamp < ?", (cutoff,))
            deleted[stream] = cursor.rowcount
        conn.commit()
    finally:
        conn.close()

    logger.info("Log retention cleanup removed %s", deleted)
    return deleted


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="CAMS log maintenance")
    parser.add_argument("--cleanup", action="store_true",
                        help="Delete log rows past their retention period")
    parser.add_argument("--metrics", action="store_true",
                        help="Print performance metrics for the last 24 hours")
    parser.add_argument("--db-path", help="Override DB path")
    parser.add_argument("--json", action="store_true", help="JSON output")
    args = parser.parse_args()

    if args.cleanup:
        result = cleanup_old_logs(db_path=args.db_path)
        if args.json:
            print(json.dumps(result, indent=2))
        else:
            for stream, count in result.items():
                print(f"  {stream:12s} {count} rows deleted")
    elif args.metrics:
        print(json.dumps(get_performance_metrics(db_path=args.db_path), indent=2))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
