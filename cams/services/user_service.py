#!/usr/bin/env python3
"""CAMS -- Users, profiles and account self-service.

Passwords are stored as werkzeug salted hashes; plaintext never reaches the
database or the logs.
"""

import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from cams import constants as C
from cams.db.cams_db import get_cams_connection, new_id, utcnow_iso
from cams.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from cams.log_helper import sanitize_for_log
from cams.services import role_service
from cams.services.log_service import log_audit, log_security_event
from cams.services.paging import normalize_paging, paged_result
from cams.validators import validate_email, validate_password, validate_user

logger = logging.getLogger("cams.users")

_PUBLIC_COLUMNS = (
    "id, username, email, first_name, last_name, phone_number, is_active, "
    "last_login_at, created_at, updated_at"
)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    if not password_hash or password is None:
        return False
    return check_password_hash(password_hash, password)


def _user_dict(row, roles=None) -> dict:
    user = {k: row[k] for k in row.keys() if k not in ("password_hash", "refresh_token",
                                                       "refresh_token_expiry_time")}
    user["is_active"] = bool(user.get("is_active"))
    if roles is not None:
        user["roles"] = roles
    return user


def _fetch_user(conn, user_id):
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if not row:
        raise NotFoundError(C.USER_NOT_FOUND, service="users")
    return row


def _taken(conn, column, value, exclude_id=None) -> bool:
    row = conn.execute(
        f"SELECT id FROM users WHERE {column} = ? COLLATE NOCASE AND id != ?",
        (value.strip(), exclude_id or ""),
    ).fetchone()
    return row is not None


def get_user_by_username(username, db_path=None):
    """Raw user row (including the password hash) or None."""
    conn = get_cams_connection(db_path)
    try:
        return conn.execute(
            "SELECT * FROM users WHERE username = ? COLLATE NOCASE", (username,)
        ).fetchone()
    finally:
        conn.close()


# ============================================================================
# Creation
# ============================================================================

def insert_user(conn, username, email, password, first_name=None, last_name=None,
                phone_number=None, is_active=True, roles=None, actor_id=None) -> str:
    """Insert a user and its role assignments inside the caller's transaction.

    Unknown role names are ignored; the default role is used when no known
    role remains.  Returns the new user id.
    """
    if _taken(conn, "username", username):
        raise ConflictError(C.USERNAME_TAKEN, service="users")
    if _taken(conn, "email", email):
        raise ConflictError(C.EMAIL_TAKEN, service="users")

    user_id = new_id()
    now = utcnow_iso()
    conn.execute(
        """INSERT INTO users (id, username, password_hash, email, first_name, last_name,
                              phone_number, is_active, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (user_id, username.strip(), hash_password(password), email.strip(),
         first_name, last_name, phone_number, 1 if is_active else 0, now, now),
    )
    role_ids, unknown = role_service.resolve_role_ids(conn, roles)
    if unknown:
        logger.warning("Ignoring unknown roles for %s: %s", sanitize_for_log(username),
                       sanitize_for_log(", ".join(unknown)))
    if not role_ids:
        role_ids, _ = role_service.resolve_role_ids(conn, [C.DEFAULT_ROLE])
    for role_id in role_ids:
        role_service.assign_role_in_tx(conn, user_id, role_id, actor_id)

    log_audit(actor_id or user_id, "Create", "User", entity_id=user_id,
              entity_name=username.strip(),
              new_values={"username": username.strip(), "email": email.strip(),
                          "roles": roles or [C.DEFAULT_ROLE]},
              conn=conn)
    return user_id


def create_user(username, email, password, first_name=None, last_name=None,
                phone_number=None, roles=None, is_active=True, actor_id=None,
                db_path=None) -> dict:
    """Create a user with the given roles (administrative create)."""
    errors = validate_user(username, email, password)
    if errors:
        raise ValidationError(errors=errors, service="users")

    conn = get_cams_connection(db_path)
    try:
        user_id = insert_user(conn, username, email, password, first_name, last_name,
                              phone_number, is_active, roles, actor_id)
        conn.commit()
        logger.info("Created user %s", sanitize_for_log(username))
        return _user_dict(_fetch_user(conn, user_id),
                          role_service.get_user_role_names(user_id, conn=conn))
    finally:
        conn.close()


# ============================================================================
# Management
# ============================================================================

def list_users(page=1, page_size=20, search=None, db_path=None) -> dict:
    page, page_size = normalize_paging(page, page_size)
    where, params = "", []
    if search:
        where = (" WHERE username LIKE ? OR email LIKE ? OR first_name LIKE ?"
                 " OR last_name LIKE ?")
        params = [f"%{search}%"] * 4

    conn = get_cams_connection(db_path)
    try:
        total = conn.execute(f"SELECT COUNT(*) FROM users{where}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT {_PUBLIC_COLUMNS} FROM users{where} ORDER BY username LIMIT ? OFFSET ?",
            params + [page_size, (page - 1) * page_size],
        ).fetchall()
        items = [_user_dict(r, role_service.get_user_role_names(r["id"], conn=conn))
                 for r in rows]
    finally:
        conn.close()
    return paged_result(items, total, page, page_size)


def get_user(user_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
        return _user_dict(row, role_service.get_user_role_names(user_id, conn=conn))
    finally:
        conn.close()


def is_username_available(username, exclude_user_id=None, db_path=None) -> bool:
    if not username or not username.strip():
        return False
    conn = get_cams_connection(db_path)
    try:
        return not _taken(conn, "username", username, exclude_user_id)
    finally:
        conn.close()


def is_email_available(email, exclude_user_id=None, db_path=None) -> bool:
    if not email or not email.strip():
        return False
    conn = get_cams_connection(db_path)
    try:
        return not _taken(conn, "email", email, exclude_user_id)
    finally:
        conn.close()


# ============================================================================
# Profile
# ============================================================================

def get_profile(user_id, db_path=None) -> dict:
    return get_user(user_id, db_path=db_path)


def update_profile(user_id, first_name=None, last_name=None, phone_number=None,
                   db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
        conn.execute(
            """UPDATE users SET first_name = ?, last_name = ?, phone_number = ?,
                                updated_at = ?
               WHERE id = ?""",
            (first_name, last_name, phone_number, utcnow_iso(), user_id),
        )
        log_audit(user_id, "Update", "User", entity_id=user_id,
                  entity_name=row["username"],
                  old_values={"first_name": row["first_name"],
                              "last_name": row["last_name"],
                              "phone_number": row["phone_number"]},
                  new_values={"first_name": first_name, "last_name": last_name,
                              "phone_number": phone_number},
                  conn=conn)
        conn.commit()
        return _user_dict(_fetch_user(conn, user_id),
                          role_service.get_user_role_names(user_id, conn=conn))
    finally:
        conn.close()


def get_profile_summary(user_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
        counts = conn.execute(
            """SELECT
                 (SELECT COUNT(*) FROM applications WHERE user_id = :u) AS application_count,
                 (SELECT COUNT(*) FROM database_connections WHERE user_id = :u)
                     AS connection_count,
                 (SELECT COUNT(*) FROM database_connections
                  WHERE user_id = :u AND is_active = 1) AS active_connection_count,
                 (SELECT COUNT(*) FROM connection_test_schedules s
                  JOIN applications a ON a.id = s.application_id
                  WHERE a.user_id = :u) AS schedule_count""",
            {"u": user_id},
        ).fetchone()
        return {
            "id": row["id"],
            "username": row["username"],
            "email": row["email"],
            "first_name": row["first_name"],
            "last_name": row["last_name"],
            "last_login_at": row["last_login_at"],
            "created_at": row["created_at"],
            "roles": role_service.get_user_role_names(user_id, conn=conn),
            "application_count": counts["application_count"],
            "connection_count": counts["connection_count"],
            "active_connection_count": counts["active_connection_count"],
            "schedule_count": counts["schedule_count"],
        }
    finally:
        conn.close()


# ============================================================================
# Account
# ============================================================================

def validate_current_password(user_id, password, db_path=None) -> bool:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
    finally:
        conn.close()
    return verify_password(row["password_hash"], password)


def change_password(user_id, current_password, new_password, confirm_password,
                    ip_address=None, db_path=None) -> None:
    errors = validate_password(new_password)
    if errors:
        raise ValidationError(errors=errors, service="users")
    if new_password != confirm_password:
        raise ValidationError(C.PASSWORD_MISMATCH, service="users")

    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
        if not verify_password(row["password_hash"], current_password):
            raise UnauthorizedError(C.CURRENT_PASSWORD_INCORRECT, service="users")
        if verify_password(row["password_hash"], new_password):
            raise ValidationError("New password must be different from the current password",
                                  service="users")
        conn.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (hash_password(new_password), utcnow_iso(), user_id),
        )
        log_audit(user_id, "ChangePassword", "User", entity_id=user_id,
                  entity_name=row["username"], ip_address=ip_address, conn=conn)
        conn.commit()
    finally:
        conn.close()
    log_security_event("PasswordChange", user_id=user_id, username=row["username"],
                       ip_address=ip_address, db_path=db_path)


def change_email(user_id, new_email, current_password, ip_address=None,
                 db_path=None) -> dict:
    errors = validate_email(new_email)
    if errors:
        raise ValidationError(errors=errors, service="users")

    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
        if not verify_password(row["password_hash"], current_password):
            raise UnauthorizedError(C.CURRENT_PASSWORD_INCORRECT, service="users")
        if _taken(conn, "email", new_email, exclude_id=user_id):
            raise ConflictError(C.EMAIL_TAKEN, service="users")
        conn.execute(
            "UPDATE users SET email = ?, updated_at = ? WHERE id = ?",
            (new_email.strip(), utcnow_iso(), user_id),
        )
        log_audit(user_id, "ChangeEmail", "User", entity_id=user_id,
                  entity_name=row["username"], old_values={"email": row["email"]},
                  new_values={"email": new_email.strip()}, ip_address=ip_address,
                  conn=conn)
        conn.commit()
        return _user_dict(_fetch_user(conn, user_id),
                          role_service.get_user_role_names(user_id, conn=conn))
    finally:
        conn.close()


def deactivate_account(user_id, password, ip_address=None, db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        row = _fetch_user(conn, user_id)
        if not verify_password(row["password_hash"], password):
            raise UnauthorizedError(C.CURRENT_PASSWORD_INCORRECT, service="users")
        conn.execute(
            """UPDATE users SET is_active = 0, refresh_token = NULL,
                                refresh_token_expiry_time = NULL, updated_at = ?
               WHERE id = ?""",
            (utcnow_iso(), user_id),
        )
        log_audit(user_id, "Deactivate", "User", entity_id=user_id,
                  entity_name=row["username"], ip_address=ip_address,
                  severity="Warning", conn=conn)
        conn.commit()
    finally:
        conn.close()
    logger.info("Deactivated account %s", sanitize_for_log(row["username"]))


def set_refresh_token(conn, user_id, token: Optional[str], expiry: Optional[str]) -> None:
    conn.execute(
        "UPDATE users SET refresh_token = ?, refresh_token_expiry_time = ? WHERE id = ?",
        (token, expiry, user_id),
    )
