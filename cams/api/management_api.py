#!/usr/bin/env python3
"""CAMS -- User & Role Management API Blueprint.

Endpoint groups:
    /management/users   - User administration (PlatformAdmin, Admin;
                          creating users requires PlatformAdmin)
    /management/roles   - Role administration and assignment (PlatformAdmin)
"""

import logging

from flask import Blueprint, g, jsonify, request

from cams import constants as C
from cams.api.common import (
    _body,
    _bool_arg,
    _cams_error,
    _db_path,
    _error,
    _internal_error,
    _paging_args,
    _require_role,
)
from cams.errors import CamsError
from cams.services import role_service, user_service
from cams.validators import is_valid_email, validate_username

logger = logging.getLogger("cams.api.management")

management_bp = Blueprint("management", __name__, url_prefix="/management")

USER_ADMINS = (C.ROLE_PLATFORM_ADMIN, C.ROLE_ADMIN)


# ============================================================================
# USERS
# ============================================================================

@management_bp.route("/users", methods=["GET"])
def list_users():
    """GET /management/users -- Paginated user list with search."""
    role_err = _require_role(*USER_ADMINS)
    if role_err:
        return role_err
    try:
        page, page_size = _paging_args()
        return jsonify(user_service.list_users(page, page_size, request.args.get("search"),
                                               db_path=_db_path()))
    except Exception as exc:
        return _internal_error("list_users", exc)


@management_bp.route("/users/<user_id>", methods=["GET"])
def get_user(user_id):
    role_err = _require_role(*USER_ADMINS)
    if role_err:
        return role_err
    try:
        return jsonify(user_service.get_user(user_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("get_user", exc)


@management_bp.route("/users", methods=["POST"])
def create_user():
    """POST /management/users -- Create a user with roles."""
    role_err = _require_role(C.ROLE_PLATFORM_ADMIN)
    if role_err:
        return role_err
    data = _body()
    if not data:
        return _error("Request body is required", code="VALIDATION_ERROR")
    try:
        user = user_service.create_user(
            data.get("username"),
            data.get("email"),
            data.get("password"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            phone_number=data.get("phone_number"),
            roles=data.get("roles") or [],
            is_active=data.get("is_active", True),
            actor_id=g.user_id,
            db_path=_db_path(),
        )
        return jsonify(user), 201
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("create_user", exc)


@management_bp.route("/users/roles", methods=["GET"])
def list_assignable_roles():
    role_err = _require_role(*USER_ADMINS)
    if role_err:
        return role_err
    try:
        roles = role_service.get_all_roles(db_path=_db_path())
        return jsonify({"items": roles, "total": len(roles)})
    except Exception as exc:
        return _internal_error("list_assignable_roles", exc)


@management_bp.route("/users/validate-username", methods=["POST"])
def validate_username_availability():
    role_err = _require_role(*USER_ADMINS)
    if role_err:
        return role_err
    data = _body() or {}
    username = (data.get("username") or "").strip()
    try:
        errors = validate_username(username)
        available = not errors and user_service.is_username_available(
            username, exclude_user_id=data.get("exclude_user_id"), db_path=_db_path())
        return jsonify({"username": username, "is_available": bool(available),
                        "errors": errors})
    except Exception as exc:
        return _internal_error("validate_username", exc)


@management_bp.route("/users/validate-email", methods=["POST"])
def validate_email_availability():
    role_err = _require_role(*USER_ADMINS)
    if role_err:
        return role_err
    data = _body() or {}
    email = (data.get("email") or "").strip()
    try:
        available = is_valid_email(email) and user_service.is_email_available(
            email, exclude_user_id=data.get("exclude_user_id"), db_path=_db_path())
        return jsonify({"email": email, "is_available": bool(available)})
    except Exception as exc:
        return _internal_error("validate_email", exc)


# ============================================================================
# ROLES
# ============================================================================

def _role_admin():
    return _require_role(C.ROLE_PLATFORM_ADMIN)


@management_bp.route("/roles", methods=["GET"])
def list_roles():
    """GET /management/roles -- Paginated roles with user counts."""
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        page, page_size = _paging_args()
        return jsonify(role_service.list_roles(
            page, page_size, search=request.args.get("search"),
            include_inactive=_bool_arg("include_inactive", False), db_path=_db_path()))
    except Exception as exc:
        return _internal_error("list_roles", exc)


@management_bp.route("/roles/all", methods=["GET"])
def all_roles():
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        roles = role_service.get_all_roles(db_path=_db_path())
        return jsonify({"items": roles, "total": len(roles)})
    except Exception as exc:
        return _internal_error("all_roles", exc)


@management_bp.route("/roles/system", methods=["GET"])
def system_roles():
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        roles = role_service.get_system_roles(db_path=_db_path())
        return jsonify({"items": roles, "total": len(roles)})
    except Exception as exc:
        return _internal_error("system_roles", exc)


@management_bp.route("/roles/hierarchy", methods=["GET"])
def role_hierarchy():
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        hierarchy = role_service.get_role_hierarchy(db_path=_db_path())
        return jsonify({"items": hierarchy, "total": len(hierarchy)})
    except Exception as exc:
        return _internal_error("role_hierarchy", exc)


@management_bp.route("/roles/check-name", methods=["GET"])
def check_role_name():
    role_err = _role_admin()
    if role_err:
        return role_err
    name = request.args.get("name", "")
    try:
        available = role_service.is_role_name_available(
            name, exclude_id=request.args.get("exclude_id"), db_path=_db_path())
        return jsonify({"name": name, "is_available": available})
    except Exception as exc:
        return _internal_error("check_role_name", exc)


@management_bp.route("/roles/<role_id>", methods=["GET"])
def get_role(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        return jsonify(role_service.get_role(role_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("get_role", exc)


@management_bp.route("/roles", methods=["POST"])
def create_role():
    role_err = _role_admin()
    if role_err:
        return role_err
    data = _body()
    if not data:
        return _error("Request body is required", code="VALIDATION_ERROR")
    try:
        role = role_service.create_role(data.get("name"), data.get("description"),
                                        is_active=data.get("is_active", True),
                                        actor_id=g.user_id, db_path=_db_path())
        return jsonify(role), 201
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("create_role", exc)


@management_bp.route("/roles/<role_id>", methods=["PUT"])
def update_role(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    data = _body()
    if not data:
        return _error("Request body is required", code="VALIDATION_ERROR")
    try:
        role = role_service.update_role(role_id, data.get("name"), data.get("description"),
                                        is_active=data.get("is_active", True),
                                        actor_id=g.user_id, db_path=_db_path())
        return jsonify(role)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("update_role", exc)


@management_bp.route("/roles/<role_id>/toggle-status", methods=["PATCH"])
def toggle_role(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    data = _body() or {}
    if "is_active" not in data:
        return _error("is_active is required", code="VALIDATION_ERROR")
    try:
        role = role_service.toggle_role_status(role_id, bool(data["is_active"]),
                                               actor_id=g.user_id, db_path=_db_path())
        return jsonify(role)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("toggle_role", exc)


@management_bp.route("/roles/<role_id>", methods=["DELETE"])
def delete_role(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        role_service.delete_role(role_id, actor_id=g.user_id, db_path=_db_path())
        return jsonify({"message": C.ROLE_DELETED})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("delete_role", exc)


@management_bp.route("/roles/<role_id>/assign/<user_id>", methods=["POST"])
def assign_role(role_id, user_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        changed = role_service.assign_role(user_id, role_id, assigned_by=g.user_id,
                                           db_path=_db_path())
        message = "Role assigned successfully" if changed else "User already has this role"
        return jsonify({"message": message, "changed": changed})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("assign_role", exc)


@management_bp.route("/roles/<role_id>/remove/<user_id>", methods=["DELETE"])
def remove_role(role_id, user_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        changed = role_service.remove_role(user_id, role_id, removed_by=g.user_id,
                                           db_path=_db_path())
        message = "Role removed successfully" if changed else "User does not have this role"
        return jsonify({"message": message, "changed": changed})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("remove_role", exc)


@management_bp.route("/roles/user/<user_id>", methods=["GET"])
def user_roles(user_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        user_service.get_user(user_id, db_path=_db_path())
        roles = role_service.get_user_roles(user_id, db_path=_db_path())
        return jsonify({"items": roles, "total": len(roles)})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("user_roles", exc)


@management_bp.route("/roles/bulk/delete", methods=["POST"])
def bulk_delete_roles():
    role_err = _role_admin()
    if role_err:
        return role_err
    data = _body() or {}
    role_ids = data.get("role_ids") or []
    if not role_ids:
        return _error("role_ids is required", code="VALIDATION_ERROR")
    try:
        return jsonify(role_service.bulk_delete_roles(role_ids, actor_id=g.user_id,
                                                      db_path=_db_path()))
    except Exception as exc:
        return _internal_error("bulk_delete_roles", exc)


@management_bp.route("/roles/<role_id>/stats", methods=["GET"])
def role_stats(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        return jsonify(role_service.get_role_stats(role_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("role_stats", exc)


@management_bp.route("/roles/<role_id>/assign-users", methods=["POST"])
def assign_users(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    data = _body() or {}
    user_ids = data.get("user_ids") or []
    if not user_ids:
        return _error("user_ids is required", code="VALIDATION_ERROR")
    try:
        return jsonify(role_service.assign_users_to_role(role_id, user_ids,
                                                         actor_id=g.user_id,
                                                         db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("assign_users", exc)


@management_bp.route("/roles/<role_id>/remove-users", methods=["POST"])
def remove_users(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    data = _body() or {}
    user_ids = data.get("user_ids") or []
    if not user_ids:
        return _error("user_ids is required", code="VALIDATION_ERROR")
    try:
        return jsonify(role_service.remove_users_from_role(role_id, user_ids,
                                                           actor_id=g.user_id,
                                                           db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("remove_users", exc)


@management_bp.route("/roles/<role_id>/users", methods=["GET"])
def users_in_role(role_id):
    role_err = _role_admin()
    if role_err:
        return role_err
    try:
        users = role_service.get_users_in_role(role_id, db_path=_db_path())
        return jsonify({"items": users, "total": len(users)})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("users_in_role", exc)
