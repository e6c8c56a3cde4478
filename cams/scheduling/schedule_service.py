#!/usr/bin/env python3
"""CAMS -- Connection Test Schedules.

One schedule per application.  A schedule holds a five-field cron
expression; when it comes due the scheduler daemon (or a "run now" request)
tests every active connection of the application and records the outcome.

Usage:
    from cams.scheduling import schedule_service

    schedule_service.upsert_schedule(user_id, app_id, "*/15 * * * *", True)
    schedule_service.validate_cron_expression("0 2 * * *")
"""

import logging
import time
from typing import List, Optional

from cams import constants as C
from cams.config import get_config
from cams.connections import connection_service
from cams.db.cams_db import get_cams_connection, new_id, to_iso, utcnow, utcnow_iso
from cams.errors import UnauthorizedError, ValidationError
from cams.log_helper import sanitize_for_log
from cams.models import RunStatus
from cams.scheduling.cron import describe_cron, next_run_time, parse_cron
from cams.services.log_service import log_audit

logger = logging.getLogger("cams.scheduling")

_SELECT = """SELECT s.*, a.name AS application_name, a.user_id AS owner_id
FROM connection_test_schedules s JOIN applications a ON a.id = s.application_id"""


def _schedule_dict(row) -> dict:
    item = {k: row[k] for k in row.keys() if k != "owner_id"}
    item["is_enabled"] = bool(item["is_enabled"])
    return item


def _get_row(conn, schedule_id, user_id):
    return conn.execute(
        _SELECT + " WHERE s.id = ? AND a.user_id = ?", (schedule_id, user_id)
    ).fetchone()


def _parse_or_raise(expression):
    try:
        return parse_cron(expression)
    except ValueError as exc:
        raise ValidationError(f"Invalid cron expression: {exc}", service="schedules")


# ---------------------------------------------------------------------------
# Cron helpers
# ---------------------------------------------------------------------------
def calculate_next_run_time(expression, now=None) -> Optional[str]:
    """Next run as an ISO timestamp, or None when the expression is invalid."""
    try:
        return to_iso(next_run_time(expression, now or utcnow()))
    except ValueError as exc:
        logger.warning("Cannot compute next run for '%s': %s",
                       sanitize_for_log(expression), exc)
        return None


def validate_cron_expression(expression) -> dict:
    try:
        schedule = parse_cron(expression)
        upcoming = schedule.next_occurrence(utcnow())
    except ValueError as exc:
        return {
            "is_valid": False,
            "description": None,
            "next_run_time": None,
            "error_message": str(exc),
        }
    return {
        "is_valid": True,
        "description": describe_cron(schedule.expression),
        "next_run_time": to_iso(upcoming),
        "error_message": None,
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def get_user_schedules(user_id, db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            _SELECT + " WHERE a.user_id = ? ORDER BY a.name", (user_id,)).fetchall()
    finally:
        conn.close()
    return [_schedule_dict(r) for r in rows]


def get_schedule(schedule_id, user_id, db_path=None) -> Optional[dict]:
    conn = get_cams_connection(db_path)
    try:
        row = _get_row(conn, schedule_id, user_id)
    finally:
        conn.close()
    return _schedule_dict(row) if row else None


def get_schedule_by_application(application_id, user_id, db_path=None) -> Optional[dict]:
    conn = get_cams_connection(db_path)
    try:
        row = conn.execute(
            _SELECT + " WHERE s.application_id = ? AND a.user_id = ?",
            (application_id, user_id),
        ).fetchone()
    finally:
        conn.close()
    return _schedule_dict(row) if row else None


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def upsert_schedule(user_id, application_id, cron_expression, is_enabled=True,
                    db_path=None) -> dict:
    """Create the application's schedule, or update the existing one."""
    conn = get_cams_connection(db_path)
    try:
        app = conn.execute(
            "SELECT id, name FROM applications WHERE id = ? AND user_id = ?",
            (application_id, user_id),
        ).fetchone()
        if not app:
            raise UnauthorizedError(C.APPLICATION_ACCESS_DENIED, service="schedules")
        cron = _parse_or_raise(cron_expression)
        upcoming = calculate_next_run_time(cron.expression)
        now = utcnow_iso()

        existing = conn.execute(
            "SELECT * FROM connection_test_schedules WHERE application_id = ?",
            (application_id,),
        ).fetchone()
        if existing:
            schedule_id = existing["id"]
            conn.execute(
                """UPDATE connection_test_schedules
                   SET cron_expression = ?, is_enabled = ?, next_run_time = ?,
                       updated_at = ?
                   WHERE id = ?""",
                (cron.expression, 1 if is_enabled else 0, upcoming, now, schedule_id),
            )
            log_audit(user_id, "Update", "ConnectionTestSchedule", entity_id=schedule_id,
                      entity_name=app["name"],
                      old_values={"cron_expression": existing["cron_expression"],
                                  "is_enabled": bool(existing["is_enabled"])},
                      new_values={"cron_expression": cron.expression,
                                  "is_enabled": bool(is_enabled)}, conn=conn)
        else:
            schedule_id = new_id()
            conn.execute(
                """INSERT INTO connection_test_schedules
                       (id, application_id, cron_expression, is_enabled, next_run_time,
                        created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (schedule_id, application_id, cron.expression, 1 if is_enabled else 0,
                 upcoming, now, now),
            )
            log_audit(user_id, "Create", "ConnectionTestSchedule", entity_id=schedule_id,
                      entity_name=app["name"],
                      new_values={"cron_expression": cron.expression,
                                  "is_enabled": bool(is_enabled)}, conn=conn)
        conn.commit()
        return _schedule_dict(_get_row(conn, schedule_id, user_id))
    finally:
        conn.close()


def update_schedule(schedule_id, user_id, cron_expression, is_enabled=True,
                    db_path=None) -> Optional[dict]:
    conn = get_cams_connection(db_path)
    try:
        row = _get_row(conn, schedule_id, user_id)
        if not row:
            return None
        cron = _parse_or_raise(cron_expression)
        conn.execute(
            """UPDATE connection_test_schedules
               SET cron_expression = ?, is_enabled = ?, next_run_time = ?, updated_at = ?
               WHERE id = ?""",
            (cron.expression, 1 if is_enabled else 0,
             calculate_next_run_time(cron.expression), utcnow_iso(), schedule_id),
        )
        log_audit(user_id, "Update", "ConnectionTestSchedule", entity_id=schedule_id,
                  entity_name=row["application_name"],
                  old_values={"cron_expression": row["cron_expression"],
                              "is_enabled": bool(row["is_enabled"])},
                  new_values={"cron_expression": cron.expression,
                              "is_enabled": bool(is_enabled)}, conn=conn)
        conn.commit()
        return _schedule_dict(_get_row(conn, schedule_id, user_id))
    finally:
        conn.close()


def toggle_schedule(schedule_id, is_enabled, user_id, db_path=None) -> Optional[dict]:
    conn = get_cams_connection(db_path)
    try:
        row = _get_row(conn, schedule_id, user_id)
        if not row:
            return None
        conn.execute(
            "UPDATE connection_test_schedules SET is_enabled = ?, updated_at = ? WHERE id = ?",
            (1 if is_enabled else 0, utcnow_iso(), schedule_id),
        )
        log_audit(user_id, "Toggle", "ConnectionTestSchedule", entity_id=schedule_id,
                  entity_name=row["application_name"],
                  new_values={"is_enabled": bool(is_enabled)}, conn=conn)
        conn.commit()
        return _schedule_dict(_get_row(conn, schedule_id, user_id))
    finally:
        conn.close()


def delete_schedule(schedule_id, user_id, db_path=None) -> bool:
    conn = get_cams_connection(db_path)
    try:
        row = _get_row(conn, schedule_id, user_id)
        if not row:
            return False
        conn.execute("DELETE FROM connection_test_schedules WHERE id = ?", (schedule_id,))
        log_audit(user_id, "Delete", "ConnectionTestSchedule", entity_id=schedule_id,
                  entity_name=row["application_name"], conn=conn)
        conn.commit()
        return True
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
def update_schedule_run_status(schedule_id, status, message, duration_ms=None,
                               db_path=None) -> None:
    """Record a run outcome and advance ``next_run_time``."""
    conn = get_cams_connection(db_path)
    try:
        row = conn.execute(
            "SELECT cron_expression FROM connection_test_schedules WHERE id = ?",
            (schedule_id,),
        ).fetchone()
        if not row:
            logger.warning("Run status for unknown schedule %s dropped", schedule_id)
            return
        now = utcnow_iso()
        conn.execute(
            """UPDATE connection_test_schedules
               SET last_run_time = ?, last_run_status = ?, last_run_message = ?,
                   last_run_duration_ms = ?, next_run_time = ?, updated_at = ?
               WHERE id = ?""",
            (now, str(status), (message or "")[:C.RUN_MESSAGE_MAX], duration_ms,
             calculate_next_run_time(row["cron_expression"]), now, schedule_id),
        )
        conn.commit()
    finally:
        conn.close()


def execute_schedule(schedule, timeout=None, db_path=None) -> dict:
    """Test every active connection of the schedule's application.

    ``schedule`` is a schedule dict or row (needs ``id`` and
    ``application_id``).  The run status is written whatever happens.
    """
    if timeout is None:
        timeout = get_config()["scheduler"]["test_timeout_seconds"]
    start = time.monotonic()
    total = successful = failed = 0
    try:
        conn = get_cams_connection(db_path)
        try:
            connection_ids = connection_service.active_connection_ids(
                conn, schedule["application_id"])
        finally:
            conn.close()

        total = len(connection_ids)
        if not connection_ids:
            status, message = RunStatus.SKIPPED, C.NO_ACTIVE_CONNECTIONS
        else:
            for connection_id in connection_ids:
                try:
                    result = connection_service.run_stored_test(
                        connection_id, timeout=timeout, db_path=db_path)
                except Exception as exc:
                    logger.error("Scheduled test of connection %s failed: %s",
                                 connection_id, exc)
                    failed += 1
                    continue
                if result.is_successful:
                    successful += 1
                else:
                    failed += 1
            if failed == 0:
                status = RunStatus.SUCCESS
            elif successful == 0:
                status = RunStatus.FAILED
            else:
                status = RunStatus.PARTIAL
            message = f"Tested {total} connections: {successful} successful, {failed} failed"
    except Exception as exc:
        logger.error("Schedule %s execution error: %s", schedule["id"], exc)
        status, message = RunStatus.ERROR, f"Test execution failed: {exc}"

    duration_ms = int((time.monotonic() - start) * 1000)
    update_schedule_run_status(schedule["id"], status.value, message, duration_ms,
                               db_path=db_path)
    logger.info("Schedule %s: %s (%s)", schedule["id"], status.value, message)
    return {
        "schedule_id": schedule["id"],
        "status": status.value,
        "message": message,
        "duration_ms": duration_ms,
        "total": total,
        "successful": successful,
        "failed": failed,
    }


def run_now(schedule_id, user_id, db_path=None) -> Optional[dict]:
    """Execute an owned schedule immediately; None when it does not exist."""
    schedule = get_schedule(schedule_id, user_id, db_path=db_path)
    if schedule is None:
        return None
    return execute_schedule(schedule, db_path=db_path)


def get_due_schedules(now=None, db_path=None) -> List[dict]:
    now_iso = to_iso(now or utcnow())
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            _SELECT + """ WHERE s.is_enabled = 1 AND s.next_run_time IS NOT NULL
                          AND s.next_run_time <= ?
                          ORDER BY s.next_run_time""",
            (now_iso,),
        ).fetchall()
    finally:
        conn.close()
    return [_schedule_dict(r) for r in rows]


def list_all_schedules(db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(_SELECT + " ORDER BY a.name").fetchall()
    finally:
        conn.close()
    return [_schedule_dict(r) for r in rows]
