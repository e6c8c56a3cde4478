#!/usr/bin/env python3
"""CAMS -- Database Connection Management.

Connections belong to an application and are owned by a user.  Passwords,
connection strings, API keys and GitHub tokens are Fernet-encrypted at rest
and never returned by the API: responses only carry ``has_*`` flags.

Every query is owner-scoped; a connection that exists but belongs to another
user is indistinguishable from one that does not exist.
"""

import logging
from datetime import timedelta
from typing import List

from cams import constants as C
from cams.connections.connection_string import (
    build_connection_string,
    validate_connection_string,
)
from cams.connections.secrets import decrypt_secret, encrypt_secret
from cams.connections.tester import DEFAULT_TIMEOUT, ConnectionTestResult, run_connection_test
from cams.db.cams_db import get_cams_connection, new_id, to_iso, utcnow, utcnow_iso
from cams.errors import NotFoundError, UnauthorizedError, ValidationError
from cams.models import (
    DATABASE_TYPE_INFO,
    ConnectionDetails,
    ConnectionStatus,
    ConnectionTestRequest,
    DatabaseType,
    database_type_catalogue,
)
from cams.services.log_service import log_audit
from cams.validators import validate_connection

logger = logging.getLogger("cams.connections")

_SECRET_FIELDS = {
    "password": "password_enc",
    "connection_string": "connection_string_enc",
    "api_key": "api_key_enc",
    "github_token": "github_token_enc",
}


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------
def connection_to_dict(row) -> dict:
    """Public representation of a connection row (no secrets)."""
    db_type = DatabaseType(row["type"])
    item = {
        "id": row["id"],
        "user_id": row["user_id"],
        "application_id": row["application_id"],
        "name": row["name"],
        "description": row["description"],
        "type": int(db_type),
        "type_name": DATABASE_TYPE_INFO[db_type][0],
        "server": row["server"],
        "port": row["port"],
        "database": row["database_name"],
        "username": row["username"],
        "api_base_url": row["api_base_url"],
        "additional_settings": row["additional_settings"],
        "is_active": bool(row["is_active"]),
        "github_organization": row["github_organization"],
        "github_repository": row["github_repository"],
        "status": row["status"],
        "last_test_result": row["last_test_result"],
        "last_test_duration_ms": row["last_test_duration_ms"],
        "last_tested_at": row["last_tested_at"],
        "last_accessed_at": row["last_accessed_at"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "has_password": bool(row["password_enc"]),
        "has_connection_string": bool(row["connection_string_enc"]),
        "has_api_key": bool(row["api_key_enc"]),
        "has_github_token": bool(row["github_token_enc"]),
    }
    if "application_name" in row.keys():
        item["application_name"] = row["application_name"]
    return item


def details_from_row(row) -> ConnectionDetails:
    """Rebuild plaintext ConnectionDetails from a stored row."""
    return ConnectionDetails(
        application_id=row["application_id"],
        name=row["name"],
        description=row["description"],
        type=row["type"],
        server=row["server"],
        port=row["port"],
        database=row["database_name"],
        username=row["username"],
        password=decrypt_secret(row["password_enc"]),
        connection_string=decrypt_secret(row["connection_string_enc"]),
        api_base_url=row["api_base_url"],
        api_key=decrypt_secret(row["api_key_enc"]),
        additional_settings=row["additional_settings"],
        is_active=bool(row["is_active"]),
        github_token=decrypt_secret(row["github_token_enc"]),
        github_organization=row["github_organization"],
        github_repository=row["github_repository"],
    )


def _fetch(conn, connection_id, user_id, message=C.CONNECTION_NOT_FOUND):
    row = conn.execute(
        """SELECT c.*, a.name AS application_name
           FROM database_connections c JOIN applications a ON a.id = c.application_id
           WHERE c.id = ? AND c.user_id = ?""",
        (connection_id, user_id),
    ).fetchone()
    if not row:
        raise NotFoundError(message, service="connections")
    return row


def _require_owned_application(conn, application_id, user_id):
    row = conn.execute(
        "SELECT id, name FROM applications WHERE id = ? AND user_id = ?",
        (application_id, user_id),
    ).fetchone()
    if not row:
        raise UnauthorizedError(C.APPLICATION_ACCESS_DENIED, service="connections")
    return row


def _check(details: ConnectionDetails, is_create: bool) -> None:
    errors = validate_connection(details, is_create=is_create)
    if errors:
        raise ValidationError(errors=errors, service="connections")


def _audit_values(details: ConnectionDetails) -> dict:
    return {
        "name": details.name,
        "type": DATABASE_TYPE_INFO[details.type][0],
        "server": details.server,
        "database": details.database,
        "is_active": details.is_active,
    }


# ---------------------------------------------------------------------------
# Transaction-level primitives (shared with the application service)
# ---------------------------------------------------------------------------
def insert_connection(conn, user_id, application_id, details: ConnectionDetails) -> str:
    """Validate and insert a connection inside the caller's transaction."""
    _check(details, is_create=True)
    _require_owned_application(conn, application_id, user_id)
    connection_id = new_id()
    now = utcnow_iso()
    conn.execute(
        """INSERT INTO database_connections
               (id, user_id, application_id, name, description, type, server, port,
                database_name, username, password_enc, connection_string_enc,
                api_base_url, api_key_enc, additional_settings, is_active,
                github_token_enc, github_organization, github_repository,
                status, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (connection_id, user_id, application_id, details.name.strip(), details.description,
         int(details.type), details.server, details.port, details.database,
         details.username, encrypt_secret(details.password),
         encrypt_secret(details.connection_string), details.api_base_url,
         encrypt_secret(details.api_key), details.additional_settings,
         1 if details.is_active else 0, encrypt_secret(details.github_token),
         details.github_organization, details.github_repository,
         ConnectionStatus.UNTESTED.value, now, now),
    )
    log_audit(user_id, "Create", "DatabaseConnection", entity_id=connection_id,
              entity_name=details.name.strip(), new_values=_audit_values(details),
              conn=conn)
    return connection_id


def update_connection_in_tx(conn, connection_id, user_id, details: ConnectionDetails) -> None:
    """Apply ``details`` to a stored connection.

    Secret fields left empty keep their stored value.
    """
    row = _fetch(conn, connection_id, user_id)
    _check(details, is_create=False)
    if details.application_id and details.application_id != row["application_id"]:
        _require_owned_application(conn, details.application_id, user_id)
    application_id = details.application_id or row["application_id"]

    secrets = {}
    for field, column in _SECRET_FIELDS.items():
        value = getattr(details, field)
        secrets[column] = encrypt_secret(value) if value else row[column]

    conn.execute(
        """UPDATE database_connections
           SET application_id = ?, name = ?, description = ?, type = ?, server = ?,
               port = ?, database_name = ?, username = ?, password_enc = ?,
               connection_string_enc = ?, api_base_url = ?, api_key_enc = ?,
               additional_settings = ?, is_active = ?, github_token_enc = ?,
               github_organization = ?, github_repository = ?, updated_at = ?
           WHERE id = ? AND user_id = ?""",
        (application_id, details.name.strip(), details.description, int(details.type),
         details.server, details.port, details.database, details.username,
         secrets["password_enc"], secrets["connection_string_enc"], details.api_base_url,
         secrets["api_key_enc"], details.additional_settings,
         1 if details.is_active else 0, secrets["github_token_enc"],
         details.github_organization, details.github_repository, utcnow_iso(),
         connection_id, user_id),
    )
    log_audit(user_id, "Update", "DatabaseConnection", entity_id=connection_id,
              entity_name=details.name.strip(),
              old_values={"name": row["name"], "server": row["server"],
                          "database": row["database_name"],
                          "is_active": bool(row["is_active"])},
              new_values=_audit_values(details), conn=conn)


def record_test_result(conn, connection_id, result: ConnectionTestResult) -> None:
    status = ConnectionStatus.CONNECTED if result.is_successful else ConnectionStatus.FAILED
    conn.execute(
        """UPDATE database_connections
           SET status = ?, last_tested_at = ?, last_test_result = ?,
               last_test_duration_ms = ?
           WHERE id = ?""",
        (status.value, result.tested_at or utcnow_iso(), result.message[:1000],
         result.response_time_ms, connection_id),
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def get_connections(user_id, application_id=None, db_path=None) -> List[dict]:
    sql = """SELECT c.*, a.name AS application_name
             FROM database_connections c JOIN applications a ON a.id = c.application_id
             WHERE c.user_id = ?"""
    params = [user_id]
    if application_id:
        sql += " AND c.application_id = ?"
        params.append(application_id)
    sql += " ORDER BY c.created_at, c.name"

    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [connection_to_dict(r) for r in rows]


def get_connection(connection_id, user_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        return connection_to_dict(_fetch(conn, connection_id, user_id))
    finally:
        conn.close()


def create_connection(user_id, details: ConnectionDetails, db_path=None) -> dict:
    if not details.application_id:
        raise ValidationError("Application is required", service="connections")
    conn = get_cams_connection(db_path)
    try:
        connection_id = insert_connection(conn, user_id, details.application_id, details)
        conn.commit()
        logger.info("Created %s connection %s", details.type.name, connection_id)
        return connection_to_dict(_fetch(conn, connection_id, user_id))
    finally:
        conn.close()


def update_connection(connection_id, user_id, details: ConnectionDetails, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        update_connection_in_tx(conn, connection_id, user_id, details)
        conn.commit()
        return connection_to_dict(_fetch(conn, connection_id, user_id))
    finally:
        conn.close()


def delete_connection(connection_id, user_id, db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, connection_id, user_id)
        conn.execute("DELETE FROM database_connections WHERE id = ? AND user_id = ?",
                     (connection_id, user_id))
        log_audit(user_id, "Delete", "DatabaseConnection", entity_id=connection_id,
                  entity_name=row["name"], severity="Warning", conn=conn)
        conn.commit()
    finally:
        conn.close()


def toggle_connection(connection_id, user_id, is_active, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, connection_id, user_id)
        conn.execute(
            "UPDATE database_connections SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, utcnow_iso(), connection_id),
        )
        log_audit(user_id, "Toggle", "DatabaseConnection", entity_id=connection_id,
                  entity_name=row["name"], old_values={"is_active": bool(row["is_active"])},
                  new_values={"is_active": bool(is_active)}, conn=conn)
        conn.commit()
        return connection_to_dict(_fetch(conn, connection_id, user_id))
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Testing
# ---------------------------------------------------------------------------
def run_stored_test(connection_id, user_id=None, timeout=DEFAULT_TIMEOUT,
                    db_path=None) -> ConnectionTestResult:
    """Test a stored connection and persist the outcome.

    ``user_id`` None skips the ownership check (scheduler use).
    """
    conn = get_cams_connection(db_path)
    try:
        if user_id is None:
            row = conn.execute("SELECT * FROM database_connections WHERE id = ?",
                               (connection_id,)).fetchone()
            if not row:
                raise NotFoundError(C.CONNECTION_NOT_FOUND, service="connections")
        else:
            row = _fetch(conn, connection_id, user_id)
        details = details_from_row(row)
    finally:
        conn.close()

    result = run_connection_test(details, timeout=timeout)

    conn = get_cams_connection(db_path)
    try:
        record_test_result(conn, connection_id, result)
        conn.commit()
    finally:
        conn.close()
    return result


def test_connection(user_id, request: ConnectionTestRequest, timeout=DEFAULT_TIMEOUT,
                    db_path=None) -> dict:
    """Test a stored connection, inline details, or both.

    With both, the inline details are first applied to the stored connection.
    Unexpected failures never leak internals: they produce a generic result.
    """
    if not request.connection_id and request.connection_details is None:
        raise ValidationError("Either connection_id or connection_details is required",
                              service="connections")
    try:
        if request.connection_id:
            if request.connection_details is not None:
                update_connection(request.connection_id, user_id,
                                  request.connection_details, db_path=db_path)
            result = run_stored_test(request.connection_id, user_id,
                                     timeout=timeout, db_path=db_path)
        else:
            _check(request.connection_details, is_create=True)
            result = run_connection_test(request.connection_details, timeout=timeout)
    except (NotFoundError, ValidationError, UnauthorizedError):
        raise
    except Exception as exc:
        logger.error("Unexpected error testing connection: %s", exc)
        return ConnectionTestResult(
            is_successful=False,
            message=C.CONNECTION_TEST_FAILED,
            tested_at=to_iso(utcnow()),
            error_details=C.CONNECTION_TEST_UNEXPECTED,
        ).to_dict()
    return result.to_dict()


# ---------------------------------------------------------------------------
# Types and connection strings
# ---------------------------------------------------------------------------
def get_types() -> List[dict]:
    return database_type_catalogue()


def build_string(details: ConnectionDetails) -> dict:
    return {"connection_string": build_connection_string(details)}


def validate_string(db_type, connection_string) -> dict:
    if not connection_string:
        raise ValidationError("Connection string is required", service="connections")
    return validate_connection_string(DatabaseType(db_type), connection_string)


# ---------------------------------------------------------------------------
# Summary and health
# ---------------------------------------------------------------------------
def _summary(row) -> dict:
    db_type = DatabaseType(row["type"])
    return {
        "id": row["id"],
        "name": row["name"],
        "type": int(db_type),
        "type_name": DATABASE_TYPE_INFO[db_type][0],
        "is_active": bool(row["is_active"]),
        "status": row["status"],
        "last_tested_at": row["last_tested_at"],
        "application_id": row["application_id"],
        "application_name": row["application_name"],
    }


def get_connection_summary(connection_id, user_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        return _summary(_fetch(conn, connection_id, user_id))
    finally:
        conn.close()


def get_connections_summary(user_id, db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            """SELECT c.*, a.name AS application_name
               FROM database_connections c JOIN applications a ON a.id = c.application_id
               WHERE c.user_id = ? ORDER BY a.name, c.name""",
            (user_id,),
        ).fetchall()
    finally:
        conn.close()
    return [_summary(r) for r in rows]


def get_connection_health(connection_id, user_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, connection_id, user_id)
    finally:
        conn.close()
    healthy = row["status"] == ConnectionStatus.CONNECTED.value
    return {
        "connection_id": row["id"],
        "connection_name": row["name"],
        "is_healthy": healthy,
        "status": row["status"],
        "last_checked": row["last_tested_at"],
        "response_time_ms": row["last_test_duration_ms"],
        "error_message": None if healthy else (row["last_test_result"] or "Connection has not been tested"),
    }


def refresh_connection_health(connection_id, user_id, db_path=None) -> dict:
    run_stored_test(connection_id, user_id, db_path=db_path)
    return get_connection_health(connection_id, user_id, db_path=db_path)


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------
def _bulk(connection_ids, op, fn) -> dict:
    successful, failed = [], []
    for connection_id in connection_ids:
        try:
            fn(connection_id)
            successful.append(connection_id)
        except NotFoundError:
            failed.append({"id": connection_id, "error": C.CONNECTION_ACCESS_DENIED})
    return {
        "successful": successful,
        "failed": failed,
        "message": f"Bulk {op} completed: {len(successful)} successful, {len(failed)} failed",
    }


def bulk_toggle(user_id, connection_ids, is_active, db_path=None) -> dict:
    return _bulk(connection_ids, "toggle",
                 lambda cid: toggle_connection(cid, user_id, is_active, db_path=db_path))


def bulk_delete(user_id, connection_ids, db_path=None) -> dict:
    return _bulk(connection_ids, "delete",
                 lambda cid: delete_connection(cid, user_id, db_path=db_path))


# ---------------------------------------------------------------------------
# Access tracking
# ---------------------------------------------------------------------------
def record_access(connection_id, user_id, ip_address=None, user_agent=None,
                  db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, connection_id, user_id)
        now = utcnow_iso()
        conn.execute("UPDATE database_connections SET last_accessed_at = ? WHERE id = ?",
                     (now, connection_id))
        log_audit(user_id, "Access", "DatabaseConnection", entity_id=connection_id,
                  entity_name=row["name"], ip_address=ip_address, user_agent=user_agent,
                  conn=conn)
        conn.commit()
    finally:
        conn.close()


def get_usage_stats(connection_id, user_id, now=None, db_path=None) -> dict:
    now = now or utcnow()
    windows = {"daily": 1, "weekly": 7, "monthly": 30}
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, connection_id, user_id)
        frequency = {}
        for label, days in windows.items():
            frequency[label] = conn.execute(
                """SELECT COUNT(*) FROM audit_logs
                   WHERE entity_type = 'DatabaseConnection' AND entity_id = ?
                     AND action = 'Access' AND timestamp >= ?""",
                (connection_id, to_iso(now - timedelta(days=days))),
            ).fetchone()[0]
    finally:
        conn.close()
    return {
        "connection_id": row["id"],
        "application_id": row["application_id"],
        "is_active": bool(row["is_active"]),
        "last_used": row["last_accessed_at"],
        "usage_frequency": frequency,
    }


def active_connection_ids(conn, application_id) -> List[str]:
    rows = conn.execute(
        """SELECT id FROM database_connections
           WHERE application_id = ? AND is_active = 1 ORDER BY created_at""",
        (application_id,),
    ).fetchall()
    return [r["id"] for r in rows]

