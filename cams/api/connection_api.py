#!/usr/bin/env python3
"""CAMS -- Database Connections API Blueprint.

Every endpoint is scoped to connections owned by the caller.  Secrets are
accepted on create/update/test but never returned.

Endpoint groups:
    /database-connections                         - CRUD and toggle
    /database-connections/test, /<id>/test        - Live connection tests
    /database-connections/types                   - Supported connection types
    /database-connections/connection-string/build - Build a connection string
    /database-connections/validate-connection-string
    /database-connections/summary, /<id>/summary
    /database-connections/<id>/health[/refresh]
    /database-connections/bulk/{toggle,delete}
    /database-connections/<id>/usage-stats, /<id>/access
"""

import logging

from flask import Blueprint, g, jsonify, request

from cams import constants as C
from cams.api.common import (
    _body,
    _cams_error,
    _client_ip,
    _db_path,
    _error,
    _internal_error,
    _user_agent,
)
from cams.connections import connection_service
from cams.errors import CamsError
from cams.models import (
    BulkConnectionRequest,
    ConnectionDetails,
    ConnectionTestRequest,
    coerce_database_type,
    parse_model,
)

logger = logging.getLogger("cams.api.connections")

connections_bp = Blueprint("connections", __name__, url_prefix="/database-connections")


# ============================================================================
# CRUD
# ============================================================================

@connections_bp.route("", methods=["GET"])
def list_connections():
    try:
        items = connection_service.get_connections(
            g.user_id, application_id=request.args.get("application_id"),
            db_path=_db_path())
        return jsonify({"items": items, "total": len(items)})
    except Exception as exc:
        return _internal_error("list_connections", exc)


@connections_bp.route("/<connection_id>", methods=["GET"])
def get_connection(connection_id):
    try:
        return jsonify(connection_service.get_connection(connection_id, g.user_id,
                                                         db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("get_connection", exc)


@connections_bp.route("", methods=["POST"])
def create_connection():
    try:
        details = parse_model(ConnectionDetails, _body())
        return jsonify(connection_service.create_connection(g.user_id, details,
                                                            db_path=_db_path())), 201
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("create_connection", exc)


@connections_bp.route("/<connection_id>", methods=["PUT"])
def update_connection(connection_id):
    try:
        details = parse_model(ConnectionDetails, _body())
        return jsonify(connection_service.update_connection(connection_id, g.user_id,
                                                            details, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("update_connection", exc)


@connections_bp.route("/<connection_id>", methods=["DELETE"])
def delete_connection(connection_id):
    try:
        connection_service.delete_connection(connection_id, g.user_id, db_path=_db_path())
        return jsonify({"message": C.CONNECTION_DELETED})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("delete_connection", exc)


@connections_bp.route("/<connection_id>/toggle", methods=["PATCH"])
def toggle_connection(connection_id):
    data = _body() or {}
    if "is_active" not in data:
        return _error("is_active is required", code="VALIDATION_ERROR")
    try:
        return jsonify(connection_service.toggle_connection(
            connection_id, g.user_id, bool(data["is_active"]), db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("toggle_connection", exc)


# ============================================================================
# Testing
# ============================================================================

@connections_bp.route("/test", methods=["POST"])
def test_connection():
    """POST /database-connections/test -- Test stored and/or inline details."""
    try:
        payload = parse_model(ConnectionTestRequest, _body())
        return jsonify(connection_service.test_connection(g.user_id, payload,
                                                          db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("test_connection", exc)


@connections_bp.route("/<connection_id>/test", methods=["POST"])
def test_existing_connection(connection_id):
    try:
        payload = ConnectionTestRequest(connection_id=connection_id)
        return jsonify(connection_service.test_connection(g.user_id, payload,
                                                          db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("test_existing_connection", exc)


# ============================================================================
# Types and connection strings
# ============================================================================

@connections_bp.route("/types", methods=["GET"])
def connection_types():
    types = connection_service.get_types()
    return jsonify({"items": types, "total": len(types)})


@connections_bp.route("/connection-string/build", methods=["POST"])
def build_connection_string():
    try:
        details = parse_model(ConnectionDetails, _body())
        return jsonify(connection_service.build_string(details))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("build_connection_string", exc)


@connections_bp.route("/validate-connection-string", methods=["POST"])
def validate_connection_string():
    data = _body() or {}
    try:
        db_type = coerce_database_type(data.get("type"))
        return jsonify(connection_service.validate_string(
            db_type, data.get("connection_string")))
    except CamsError as exc:
        return _cams_error(exc)
    except ValueError as exc:
        return _error(str(exc), code="VALIDATION_ERROR")
    except Exception as exc:
        return _internal_error("validate_connection_string", exc)


# ============================================================================
# Summary and health
# ============================================================================

@connections_bp.route("/summary", methods=["GET"])
def connections_summary():
    try:
        items = connection_service.get_connections_summary(g.user_id, db_path=_db_path())
        return jsonify({"items": items, "total": len(items)})
    except Exception as exc:
        return _internal_error("connections_summary", exc)


@connections_bp.route("/<connection_id>/summary", methods=["GET"])
def connection_summary(connection_id):
    try:
        return jsonify(connection_service.get_connection_summary(connection_id, g.user_id,
                                                                 db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("connection_summary", exc)


@connections_bp.route("/<connection_id>/health", methods=["GET"])
def connection_health(connection_id):
    try:
        return jsonify(connection_service.get_connection_health(connection_id, g.user_id,
                                                                db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("connection_health", exc)


@connections_bp.route("/<connection_id>/health/refresh", methods=["POST"])
def refresh_health(connection_id):
    try:
        return jsonify(connection_service.refresh_connection_health(
            connection_id, g.user_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("refresh_health", exc)


# ============================================================================
# Bulk operations
# ============================================================================

@connections_bp.route("/bulk/toggle", methods=["POST"])
def bulk_toggle():
    try:
        payload = parse_model(BulkConnectionRequest, _body())
        if payload.is_active is None:
            return _error("is_active is required", code="VALIDATION_ERROR")
        return jsonify(connection_service.bulk_toggle(
            g.user_id, payload.connection_ids, payload.is_active, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("bulk_toggle", exc)


@connections_bp.route("/bulk/delete", methods=["POST"])
def bulk_delete():
    try:
        payload = parse_model(BulkConnectionRequest, _body())
        return jsonify(connection_service.bulk_delete(
            g.user_id, payload.connection_ids, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("bulk_delete", exc)


# ============================================================================
# Access tracking
# ============================================================================

@connections_bp.route("/<connection_id>/usage-stats", methods=["GET"])
def usage_stats(connection_id):
    try:
        return jsonify(connection_service.get_usage_stats(connection_id, g.user_id,
                                                          db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("usage_stats", exc)


@connections_bp.route("/<connection_id>/access", methods=["POST"])
def record_access(connection_id):
    try:
        connection_service.record_access(connection_id, g.user_id, ip_address=_client_ip(),
                                         user_agent=_user_agent(), db_path=_db_path())
        return jsonify({"message": "Access recorded"})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("record_connection_access", exc)
