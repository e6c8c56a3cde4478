#!/usr/bin/env python3
"""CAMS -- Role Management.

Roles are named permission groups assigned to users through ``user_roles``.
The three system roles (PlatformAdmin, Admin, User) are seeded at startup
and can be neither deleted nor renamed.  Role assignments are soft: removing
a role marks the assignment inactive, re-assigning re-activates it.
"""

import logging
from typing import List, Optional

from cams import constants as C
from cams.db.cams_db import get_cams_connection, new_id, utcnow_iso
from cams.errors import ConflictError, NotFoundError, ValidationError
from cams.services.log_service import log_audit
from cams.services.paging import normalize_paging, paged_result
from cams.validators import validate_role

logger = logging.getLogger("cams.roles")


def _role_dict(row) -> dict:
    role = dict(row)
    role["is_active"] = bool(role["is_active"])
    role["is_system"] = bool(role["is_system"])
    return role


def _fetch_role(conn, role_id):
    row = conn.execute("SELECT * FROM roles WHERE id = ?", (role_id,)).fetchone()
    if not row:
        raise NotFoundError(C.ROLE_NOT_FOUND, service="roles")
    return row


def _name_taken(conn, name, exclude_id=None) -> bool:
    row = conn.execute(
        "SELECT id FROM roles WHERE name = ? COLLATE NOCASE AND id != ?",
        (name.strip(), exclude_id or ""),
    ).fetchone()
    return row is not None


# ============================================================================
# Queries
# ============================================================================

def list_roles(page=1, page_size=20, search=None, include_inactive=False, db_path=None):
    """Paginated role list with active-assignment counts."""
    page, page_size = normalize_paging(page, page_size)
    where, params = [], []
    if not include_inactive:
        where.append("r.is_active = 1")
    if search:
        where.append("(r.name LIKE ? OR r.description LIKE ?)")
        params += [f"%{search}%", f"%{search}%"]
    clause = (" WHERE " + " AND ".join(where)) if where else ""

    conn = get_cams_connection(db_path)
    try:
        total = conn.execute(
            f"SELECT COUNT(*) FROM roles r{clause}", params).fetchone()[0]
        rows = conn.execute(
            f"""SELECT r.*,
                       (SELECT COUNT(*) FROM user_roles ur
                        WHERE ur.role_id = r.id AND ur.is_active = 1) AS user_count
                FROM roles r{clause}
                ORDER BY r.is_system DESC, r.name
                LIMIT ? OFFSET ?""",
            params + [page_size, (page - 1) * page_size],
        ).fetchall()
    finally:
        conn.close()
    return paged_result([_role_dict(r) for r in rows], total, page, page_size)


def get_all_roles(db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM roles WHERE is_active = 1 ORDER BY name").fetchall()
    finally:
        conn.close()
    return [_role_dict(r) for r in rows]


def get_role(role_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        return _role_dict(_fetch_role(conn, role_id))
    finally:
        conn.close()


def get_role_by_name(name, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM roles WHERE name = ? COLLATE NOCASE", (name,)).fetchone()
    finally:
        conn.close()
    if not row:
        raise NotFoundError(C.ROLE_NOT_FOUND, service="roles")
    return _role_dict(row)


def get_system_roles(db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM roles WHERE is_system = 1 ORDER BY name").fetchall()
    finally:
        conn.close()
    return [_role_dict(r) for r in rows]


def is_role_name_available(name, exclude_id=None, db_path=None) -> bool:
    if not name or not name.strip():
        return False
    conn = get_cams_connection(db_path)
    try:
        return not _name_taken(conn, name, exclude_id)
    finally:
        conn.close()


def get_user_roles(user_id, conn=None, db_path=None) -> List[dict]:
    """Active roles held by a user through active assignments."""
    own = conn is None
    conn = conn or get_cams_connection(db_path)
    try:
        rows = conn.execute(
            """SELECT r.*, ur.assigned_at, ur.assigned_by
               FROM user_roles ur JOIN roles r ON r.id = ur.role_id
               WHERE ur.user_id = ? AND ur.is_active = 1 AND r.is_active = 1
               ORDER BY r.name""",
            (user_id,),
        ).fetchall()
    finally:
        if own:
            conn.close()
    return [_role_dict(r) for r in rows]


def get_user_role_names(user_id, conn=None, db_path=None) -> List[str]:
    return [r["name"] for r in get_user_roles(user_id, conn=conn, db_path=db_path)]


def user_has_role(user_id, role_name, db_path=None) -> bool:
    wanted = role_name.lower()
    return any(n.lower() == wanted for n in get_user_role_names(user_id, db_path=db_path))


def get_users_in_role(role_id, db_path=None) -> List[dict]:
    conn = get_cams_connection(db_path)
    try:
        _fetch_role(conn, role_id)
        rows = conn.execute(
            """SELECT u.id, u.username, u.email, u.first_name, u.last_name,
                      u.is_active, ur.assigned_at, ur.assigned_by
               FROM user_roles ur JOIN users u ON u.id = ur.user_id
               WHERE ur.role_id = ? AND ur.is_active = 1
               ORDER BY u.username""",
            (role_id,),
        ).fetchall()
    finally:
        conn.close()
    users = []
    for r in rows:
        item = dict(r)
        item["is_active"] = bool(item["is_active"])
        users.append(item)
    return users


def get_role_stats(role_id, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        role = _fetch_role(conn, role_id)
        row = conn.execute(
            """SELECT COUNT(*) AS user_count,
                      SUM(CASE WHEN u.is_active = 1 THEN 1 ELSE 0 END) AS active_user_count,
                      MAX(ur.assigned_at) AS last_assigned_at
               FROM user_roles ur JOIN users u ON u.id = ur.user_id
               WHERE ur.role_id = ? AND ur.is_active = 1""",
            (role_id,),
        ).fetchone()
    finally:
        conn.close()
    return {
        "role_id": role["id"],
        "role_name": role["name"],
        "user_count": row["user_count"] or 0,
        "active_user_count": row["active_user_count"] or 0,
        "created_at": role["created_at"],
        "last_assigned_at": row["last_assigned_at"],
    }


def get_role_hierarchy(db_path=None) -> List[dict]:
    """System roles by privilege (highest first), then custom roles by name."""
    roles = list_roles(page=1, page_size=100, include_inactive=True, db_path=db_path)["items"]
    rank = {name: i for i, name in enumerate(C.ROLE_HIERARCHY)}
    ordered = sorted(
        roles,
        key=lambda r: (rank.get(r["name"], len(rank)), r["name"].lower()),
    )
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "description": r["description"],
            "level": i + 1,
            "is_system": r["is_system"],
            "is_active": r["is_active"],
            "user_count": r["user_count"],
        }
        for i, r in enumerate(ordered)
    ]


# ============================================================================
# Mutations
# ============================================================================

def create_role(name, description=None, is_active=True, actor_id=None,
                is_system=False, db_path=None) -> dict:
    errors = validate_role(name, description)
    if errors:
        raise ValidationError(errors=errors, service="roles")
    name = name.strip()

    conn = get_cams_connection(db_path)
    try:
        if _name_taken(conn, name):
            raise ConflictError(C.ROLE_NAME_TAKEN, service="roles")
        role_id = new_id()
        now = utcnow_iso()
        conn.execute(
            """INSERT INTO roles (id, name, description, is_active, is_system,
                                  created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (role_id, name, description, 1 if is_active else 0,
             1 if is_system else 0, now, now),
        )
        log_audit(actor_id, "Create", "Role", entity_id=role_id, entity_name=name,
                  new_values={"name": name, "description": description,
                              "is_active": is_active}, conn=conn)
        conn.commit()
        return _role_dict(_fetch_role(conn, role_id))
    finally:
        conn.close()


def update_role(role_id, name, description=None, is_active=True, actor_id=None,
                db_path=None) -> dict:
    errors = validate_role(name, description)
    if errors:
        raise ValidationError(errors=errors, service="roles")
    name = name.strip()

    conn = get_cams_connection(db_path)
    try:
        role = _fetch_role(conn, role_id)
        if role["is_system"] and name.lower() != role["name"].lower():
            raise ValidationError("System roles cannot be renamed", service="roles")
        if role["is_system"] and not is_active:
            raise ValidationError("System roles cannot be deactivated", service="roles")
        if _name_taken(conn, name, exclude_id=role_id):
            raise ConflictError(C.ROLE_NAME_TAKEN, service="roles")
        conn.execute(
            """UPDATE roles SET name = ?, description = ?, is_active = ?,
                                updated_at = ?
               WHERE id = ?""",
            (name, description, 1 if is_active else 0, utcnow_iso(), role_id),
        )
        log_audit(actor_id, "Update", "Role", entity_id=role_id, entity_name=name,
                  old_values={"name": role["name"], "description": role["description"],
                              "is_active": bool(role["is_active"])},
                  new_values={"name": name, "description": description,
                              "is_active": is_active}, conn=conn)
        conn.commit()
        return _role_dict(_fetch_role(conn, role_id))
    finally:
        conn.close()


def toggle_role_status(role_id, is_active, actor_id=None, db_path=None) -> dict:
    conn = get_cams_connection(db_path)
    try:
        role = _fetch_role(conn, role_id)
        if role["is_system"] and not is_active:
            raise ValidationError("System roles cannot be deactivated", service="roles")
        conn.execute(
            "UPDATE roles SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, utcnow_iso(), role_id),
        )
        log_audit(actor_id, "Toggle", "Role", entity_id=role_id,
                  entity_name=role["name"], new_values={"is_active": is_active},
                  conn=conn)
        conn.commit()
        return _role_dict(_fetch_role(conn, role_id))
    finally:
        conn.close()


def delete_role(role_id, actor_id=None, db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        role = _fetch_role(conn, role_id)
        if role["is_system"]:
            raise ValidationError("System roles cannot be deleted", service="roles")
        in_use = conn.execute(
            "SELECT COUNT(*) FROM user_roles WHERE role_id = ? AND is_active = 1",
            (role_id,),
        ).fetchone()[0]
        if in_use:
            raise ValidationError(
                f"Role is assigned to {in_use} user(s) and cannot be deleted",
                service="roles")
        conn.execute("DELETE FROM roles WHERE id = ?", (role_id,))
        log_audit(actor_id, "Delete", "Role", entity_id=role_id,
                  entity_name=role["name"], severity="Warning", conn=conn)
        conn.commit()
    finally:
        conn.close()


def bulk_delete_roles(role_ids, actor_id=None, db_path=None) -> dict:
    successful, failed = [], []
    for role_id in role_ids or []:
        try:
            delete_role(role_id, actor_id=actor_id, db_path=db_path)
            successful.append(role_id)
        except (NotFoundError, ValidationError) as exc:
            failed.append({"id": role_id, "error": exc.message})
    return {
        "successful": successful,
        "failed": failed,
        "message": f"Bulk delete completed: {len(successful)} successful, {len(failed)} failed",
    }


# ============================================================================
# Assignments
# ============================================================================

def assign_role_in_tx(conn, user_id, role_id, assigned_by=None) -> bool:
    """Assign (or re-activate) a role inside the caller's transaction.

    Returns True when the assignment changed.
    """
    existing = conn.execute(
        "SELECT id, is_active FROM user_roles WHERE user_id = ? AND role_id = ?",
        (user_id, role_id),
    ).fetchone()
    now = utcnow_iso()
    if existing:
        if existing["is_active"]:
            return False
        conn.execute(
            """UPDATE user_roles SET is_active = 1, assigned_at = ?, assigned_by = ?
               WHERE id = ?""",
            (now, assigned_by, existing["id"]),
        )
        return True
    conn.execute(
        """INSERT INTO user_roles (id, user_id, role_id, assigned_at, assigned_by, is_active)
           VALUES (?, ?, ?, ?, ?, 1)""",
        (new_id(), user_id, role_id, now, assigned_by),
    )
    return True


def _require_user(conn, user_id):
    row = conn.execute("SELECT id, username FROM users WHERE id = ?", (user_id,)).fetchone()
    if not row:
        raise NotFoundError(C.USER_NOT_FOUND, service="roles")
    return row


def assign_role(user_id, role_id, assigned_by=None, db_path=None) -> bool:
    conn = get_cams_connection(db_path)
    try:
        user = _require_user(conn, user_id)
        role = _fetch_role(conn, role_id)
        if not role["is_active"]:
            raise ValidationError("Cannot assign an inactive role", service="roles")
        changed = assign_role_in_tx(conn, user_id, role_id, assigned_by)
        if changed:
            log_audit(assigned_by, "AssignRole", "User", entity_id=user_id,
                      entity_name=user["username"],
                      new_values={"role": role["name"]}, conn=conn)
        conn.commit()
        return changed
    finally:
        conn.close()


def remove_role(user_id, role_id, removed_by=None, db_path=None) -> bool:
    conn = get_cams_connection(db_path)
    try:
        user = _require_user(conn, user_id)
        role = _fetch_role(conn, role_id)
        cursor = conn.execute(
            """UPDATE user_roles SET is_active = 0
               WHERE user_id = ? AND role_id = ? AND is_active = 1""",
            (user_id, role_id),
        )
        changed = cursor.rowcount > 0
        if changed:
            log_audit(removed_by, "RemoveRole", "User", entity_id=user_id,
                      entity_name=user["username"],
                      old_values={"role": role["name"]}, conn=conn)
        conn.commit()
        return changed
    finally:
        conn.close()


def _bulk(role_id, user_ids, fn, actor_id, op, db_path):
    successful, failed = [], []
    get_role(role_id, db_path=db_path)
    for user_id in user_ids or []:
        try:
            fn(user_id, role_id, actor_id, db_path=db_path)
            successful.append(user_id)
        except (NotFoundError, ValidationError) as exc:
            failed.append({"id": user_id, "error": exc.message})
    return {
        "successful": successful,
        "failed": failed,
        "message": f"Bulk {op} completed: {len(successful)} successful, {len(failed)} failed",
    }


def assign_users_to_role(role_id, user_ids, actor_id=None, db_path=None) -> dict:
    return _bulk(role_id, user_ids, assign_role, actor_id, "assign", db_path)


def remove_users_from_role(role_id, user_ids, actor_id=None, db_path=None) -> dict:
    return _bulk(role_id, user_ids, remove_role, actor_id, "remove", db_path)


def ensure_system_roles(db_path=None) -> List[str]:
    """Create any missing system role; returns the names created."""
    created = []
    conn = get_cams_connection(db_path)
    try:
        now = utcnow_iso()
        for name, description in C.SYSTEM_ROLES.items():
            row = conn.execute(
                "SELECT id FROM roles WHERE name = ? COLLATE NOCASE", (name,)).fetchone()
            if row:
                continue
            conn.execute(
                """INSERT INTO roles (id, name, description, is_active, is_system,
                                      created_at, updated_at)
                   VALUES (?, ?, ?, 1, 1, ?, ?)""",
                (new_id(), name, description, now, now),
            )
            created.append(name)
        conn.commit()
    finally:
        conn.close()
    if created:
        logger.info("Seeded system roles: %s", ", ".join(created))
    return created


def resolve_role_ids(conn, names: Optional[List[str]]):
    """Map role names to ids; returns (ids, unknown_names)."""
    ids, unknown = [], []
    for name in names or []:
        row = conn.execute(
            "SELECT id FROM roles WHERE name = ? COLLATE NOCASE AND is_active = 1",
            (name.strip(),),
        ).fetchone()
        if row:
            ids.append(row["id"])
        else:
            unknown.append(name)
    return ids, unknown
