#!/usr/bin/env python3
"""CAMS -- Application Management.

Applications group the database connections a user manages.  Names are
unique per owner.  Deleting an application cascades to its connections and
its test schedule.
"""

import logging
from typing import List

from cams import constants as C
from cams.connections import connection_service
from cams.connections.tester import DEFAULT_TIMEOUT
from cams.db.cams_db import get_cams_connection, new_id, utcnow_iso
from cams.errors import ConflictError, NotFoundError, ValidationError
from cams.models import ApplicationRequest, ApplicationWithConnectionRequest, ConnectionDetails
from cams.services.log_service import log_audit
from cams.services.paging import normalize_paging, paged_result
from cams.validators import validate_application

logger = logging.getLogger("cams.applications")

SORT_COLUMNS = {
    "name": "a.name COLLATE NOCASE",
    "created_at": "a.created_at",
    "updated_at": "a.updated_at",
    "last_accessed_at": "a.last_accessed_at",
    "environment": "a.environment",
}

_COUNTS_SQL = """SELECT a.*,
       (SELECT COUNT(*) FROM database_connections c
        WHERE c.application_id = a.id) AS connection_count,
       (SELECT COUNT(*) FROM database_connections c
        WHERE c.application_id = a.id AND c.is_active = 1) AS active_connection_count
FROM applications a"""


def _app_dict(row) -> dict:
    app = dict(row)
    app["is_active"] = bool(app["is_active"])
    return app


def _fetch(conn, application_id, user_id):
    row = conn.execute(
        _COUNTS_SQL + " WHERE a.id = ? AND a.user_id = ?", (application_id, user_id)
    ).fetchone()
    if not row:
        raise NotFoundError(C.APPLICATION_NOT_FOUND, service="applications")
    return row


def _check(request: ApplicationRequest) -> None:
    errors = validate_application(request.name, request.description, request.version,
                                  request.environment, request.tags)
    if errors:
        raise ValidationError(errors=errors, service="applications")


def _name_taken(conn, user_id, name, exclude_id=None) -> bool:
    row = conn.execute(
        """SELECT id FROM applications
           WHERE user_id = ? AND name = ? COLLATE NOCASE AND id != ?""",
        (user_id, name.strip(), exclude_id or ""),
    ).fetchone()
    return row is not None


def _values(request: ApplicationRequest) -> dict:
    return {
        "name": request.name.strip(),
        "description": request.description,
        "version": request.version,
        "environment": request.environment,
        "tags": request.tags,
        "is_active": request.is_active,
    }


# ============================================================================
# Transaction-level primitives
# ============================================================================

def insert_application(conn, user_id, request: ApplicationRequest, actor_id=None) -> str:
    _check(request)
    if _name_taken(conn, user_id, request.name):
        raise ConflictError(C.APPLICATION_NAME_TAKEN, service="applications")
    application_id = new_id()
    now = utcnow_iso()
    conn.execute(
        """INSERT INTO applications (id, user_id, name, description, version, environment,
                                     tags, is_active, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (application_id, user_id, request.name.strip(), request.description,
         request.version, request.environment, request.tags,
         1 if request.is_active else 0, now, now),
    )
    log_audit(actor_id or user_id, "Create", "Application", entity_id=application_id,
              entity_name=request.name.strip(), new_values=_values(request), conn=conn)
    return application_id


def update_application_in_tx(conn, application_id, user_id, request: ApplicationRequest,
                             actor_id=None) -> None:
    row = _fetch(conn, application_id, user_id)
    _check(request)
    if _name_taken(conn, user_id, request.name, exclude_id=application_id):
        raise ConflictError(C.APPLICATION_NAME_TAKEN, service="applications")
    conn.execute(
        """UPDATE applications
           SET name = ?, description = ?, version = ?, environment = ?, tags = ?,
               is_active = ?, updated_at = ?
           WHERE id = ? AND user_id = ?""",
        (request.name.strip(), request.description, request.version, request.environment,
         request.tags, 1 if request.is_active else 0, utcnow_iso(),
         application_id, user_id),
    )
    log_audit(actor_id or user_id, "Update", "Application", entity_id=application_id,
              entity_name=request.name.strip(),
              old_values={k: row[k] for k in ("name", "description", "version",
                                               "environment", "tags")},
              new_values=_values(request), conn=conn)


def find_by_name(conn, user_id, name):
    return conn.execute(
        "SELECT * FROM applications WHERE user_id = ? AND name = ? COLLATE NOCASE",
        (user_id, name.strip()),
    ).fetchone()


# ============================================================================
# Queries
# ============================================================================

def list_applications(user_id, page=1, page_size=20, search=None, is_active=None,
                      sort_by="name", sort_desc=False, db_path=None) -> dict:
    page, page_size = normalize_paging(page, page_size)
    where, params = ["a.user_id = ?"], [user_id]
    if search:
        where.append("(a.name LIKE ? OR a.description LIKE ? OR a.tags LIKE ?"
                     " OR a.environment LIKE ?)")
        params += [f"%{search}%"] * 4
    if is_active is not None:
        where.append("a.is_active = ?")
        params.append(1 if is_active else 0)
    clause = " WHERE " + " AND ".join(where)
    order = SORT_COLUMNS.get(sort_by or "name", SORT_COLUMNS["name"])
    direction = "DESC" if sort_desc else "ASC"

    conn = get_cams_connection(db_path)
    try:
        total = conn.execute(
            f"SELECT COUNT(*) FROM applications a{clause}", params).fetchone()[0]
        rows = conn.execute(
            f"{_COUNTS_SQL}{clause} ORDER BY {order} {direction} LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size],
        ).fetchall()
    finally:
        conn.close()
    return paged_result([_app_dict(r) for r in rows], total, page, page_size)


def get_application(application_id, user_id, db_path=None) -> dict:
    """Application with its connections."""
    conn = get_cams_connection(db_path)
    try:
        app = _app_dict(_fetch(conn, application_id, user_id))
    finally:
        conn.close()
    app["connections"] = connection_service.get_connections(
        user_id, application_id=application_id, db_path=db_path)
    return app


def get_application_connections(application_id, user_id, db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        _fetch(conn, application_id, user_id)
    finally:
        conn.close()
    return connection_service.get_connections(
        user_id, application_id=application_id, db_path=db_path)


def get_with_primary_connection(application_id, user_id, db_path=None) -> dict:
    """Application plus its primary connection.

    The primary connection is the oldest active one, falling back to the
    oldest connection of any state.
    """
    conn = get_cams_connection(db_path)
    try:
        app = _app_dict(_fetch(conn, application_id, user_id))
        row = conn.execute(
            """SELECT c.*, a.name AS application_name
               FROM database_connections c JOIN applications a ON a.id = c.application_id
               WHERE c.application_id = ?
               ORDER BY c.is_active DESC, c.created_at ASC
               LIMIT 1""",
            (application_id,),
        ).fetchone()
    finally:
        conn.close()
    return {
        "application": app,
        "connection": connection_service.connection_to_dict(row) if row else None,
    }


# ============================================================================
# Mutations
# ============================================================================

def create_application(user_id, request: ApplicationRequest, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        application_id = insert_application(conn, user_id, request)
        conn.commit()
        logger.info("Created application %s for user %s", application_id, user_id)
        return _app_dict(_fetch(conn, application_id, user_id))
    finally:
        conn.close()


def update_application(application_id, user_id, request: ApplicationRequest,
                       db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        update_application_in_tx(conn, application_id, user_id, request)
        conn.commit()
        return _app_dict(_fetch(conn, application_id, user_id))
    finally:
        conn.close()


def delete_application(application_id, user_id, db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, application_id, user_id)
        conn.execute("DELETE FROM applications WHERE id = ? AND user_id = ?",
                     (application_id, user_id))
        log_audit(user_id, "Delete", "Application", entity_id=application_id,
                  entity_name=row["name"],
                  description=f"Deleted with {row['connection_count']} connection(s)",
                  severity="Warning", conn=conn)
        conn.commit()
    finally:
        conn.close()


def toggle_application(application_id, user_id, is_active, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, application_id, user_id)
        conn.execute(
            "UPDATE applications SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, utcnow_iso(), application_id),
        )
        log_audit(user_id, "Toggle", "Application", entity_id=application_id,
                  entity_name=row["name"], old_values={"is_active": bool(row["is_active"])},
                  new_values={"is_active": bool(is_active)}, conn=conn)
        conn.commit()
        return _app_dict(_fetch(conn, application_id, user_id))
    finally:
        conn.close()


def record_access(application_id, user_id, db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch(conn, application_id, user_id)
        conn.execute("UPDATE applications SET last_accessed_at = ? WHERE id = ?",
                     (utcnow_iso(), application_id))
        log_audit(user_id, "Access", "Application", entity_id=application_id,
                  entity_name=row["name"], conn=conn)
        conn.commit()
    finally:
        conn.close()


def create_with_connection(user_id, request: ApplicationWithConnectionRequest,
                           timeout=DEFAULT_TIMEOUT, db_path=None) -> dict:
    """Create an application and its first connection atomically.

    If anything fails before commit neither row is stored.  The optional
    connection test runs after commit and its outcome is returned alongside.
    """
    conn = get_cams_connection(db_path)
    try:
        application_id = insert_application(conn, user_id, request.application)
        connection_id = connection_service.insert_connection(
            conn, user_id, application_id, request.connection)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    logger.info("Created application %s with connection %s", application_id, connection_id)

    test_result = None
    if request.test_connection_after_creation:
        test_result = connection_service.run_stored_test(
            connection_id, user_id, timeout=timeout, db_path=db_path).to_dict()

    return {
        "application": get_application(application_id, user_id, db_path=db_path),
        "connection": connection_service.get_connection(connection_id, user_id,
                                                        db_path=db_path),
        "connection_test_result": test_result,
    }


def update_with_connection(application_id, user_id, request: ApplicationRequest,
                           connection: ConnectionDetails, connection_id=None,
                           db_path=None) -> dict:
    """Update the application and create or update one of its connections."""
    conn = get_cams_connection(db_path)
    try:
        update_application_in_tx(conn, application_id, user_id, request)
        connection.application_id = application_id
        if connection_id:
            connection_service.update_connection_in_tx(conn, connection_id, user_id,
                                                       connection)
        else:
            connection_id = connection_service.insert_connection(
                conn, user_id, application_id, connection)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return {
        "application": get_application(application_id, user_id, db_path=db_path),
        "connection": connection_service.get_connection(connection_id, user_id,
                                                        db_path=db_path),
    }
