#!/usr/bin/env python3
"""CAMS -- Bulk Migration API Blueprint.

Imports users, roles and applications from JSON.  Progress for long
imports is pushed to the SocketIO room ``migration_<progress_id>``.

Endpoints (PlatformAdmin or Admin):
    POST /migration/validate           - Dry-run validation
    POST /migration/import             - Import by ``migration_type``
    POST /migration/users
    POST /migration/roles
    POST /migration/applications
    GET  /migration/template/<type>    - Example payload and field notes
"""

import logging

from flask import Blueprint, g, jsonify

from cams import constants as C
from cams.api.common import _body, _cams_error, _db_path, _internal_error, _require_role
from cams.errors import CamsError
from cams.migration import migration_service
from cams.models import MigrationRequest, parse_model

logger = logging.getLogger("cams.api.migration")

migration_bp = Blueprint("migration", __name__, url_prefix="/migration")

MIGRATION_ROLES = (C.ROLE_PLATFORM_ADMIN, C.ROLE_ADMIN)


@migration_bp.before_request
def _check_role():
    return _require_role(*MIGRATION_ROLES)


@migration_bp.route("/validate", methods=["POST"])
def validate():
    try:
        payload = parse_model(MigrationRequest, _body())
        return jsonify(migration_service.validate_migration_data(payload,
                                                                 db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("validate_migration", exc)


def _import(operation, fn):
    try:
        payload = parse_model(MigrationRequest, _body())
        result = fn(payload, actor_id=g.user_id, db_path=_db_path())
        logger.info("%s by %s: %s/%s records imported", operation, g.username,
                    result.get("successful_records"), result.get("total_records"))
        return jsonify(result)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error(operation, exc)


@migration_bp.route("/import", methods=["POST"])
def import_data():
    return _import("import_data", migration_service.import_data)


@migration_bp.route("/users", methods=["POST"])
def import_users():
    return _import("import_users", migration_service.import_users)


@migration_bp.route("/roles", methods=["POST"])
def import_roles():
    return _import("import_roles", migration_service.import_roles)


@migration_bp.route("/applications", methods=["POST"])
def import_applications():
    return _import("import_applications", migration_service.import_applications)


@migration_bp.route("/template/<migration_type>", methods=["GET"])
def template(migration_type):
    try:
        return jsonify(migration_service.get_migration_template(migration_type))
    except CamsError as exc:
        return _cams_error(exc)
