#!/usr/bin/env python3
"""CAMS -- Applications API Blueprint.

Every endpoint is scoped to applications owned by the caller.

Endpoints:
    GET    /applications                              - Paginated list
    GET    /applications/<id>                         - Application + connections
    POST   /applications
    PUT    /applications/<id>
    DELETE /applications/<id>                         - Cascades to connections
    PATCH  /applications/<id>/toggle
    GET    /applications/<id>/connections
    POST   /applications/<id>/access                  - Record access
    POST   /applications/with-connection              - Atomic app + first connection
    PUT    /applications/<id>/with-connection
    GET    /applications/<id>/with-primary-connection
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
)
from cams.errors import CamsError
from cams.models import (
    ApplicationRequest,
    ApplicationWithConnectionRequest,
    ConnectionDetails,
    parse_model,
)
from cams.services import application_service

logger = logging.getLogger("cams.api.applications")

applications_bp = Blueprint("applications", __name__, url_prefix="/applications")


@applications_bp.route("", methods=["GET"])
def list_applications():
    try:
        page, page_size = _paging_args()
        result = application_service.list_applications(
            g.user_id, page, page_size,
            search=request.args.get("search"),
            is_active=_bool_arg("is_active"),
            sort_by=request.args.get("sort_by", "name"),
            sort_desc=_bool_arg("sort_desc", False),
            db_path=_db_path(),
        )
        return jsonify(result)
    except Exception as exc:
        return _internal_error("list_applications", exc)


@applications_bp.route("/<application_id>", methods=["GET"])
def get_application(application_id):
    try:
        return jsonify(application_service.get_application(application_id, g.user_id,
                                                           db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("get_application", exc)


@applications_bp.route("", methods=["POST"])
def create_application():
    try:
        payload = parse_model(ApplicationRequest, _body())
        app = application_service.create_application(g.user_id, payload,
                                                     db_path=_db_path())
        return jsonify(app), 201
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("create_application", exc)


@applications_bp.route("/<application_id>", methods=["PUT"])
def update_application(application_id):
    try:
        payload = parse_model(ApplicationRequest, _body())
        app = application_service.update_application(application_id, g.user_id, payload,
                                                     db_path=_db_path())
        return jsonify(app)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("update_application", exc)


@applications_bp.route("/<application_id>", methods=["DELETE"])
def delete_application(application_id):
    try:
        application_service.delete_application(application_id, g.user_id,
                                               db_path=_db_path())
        return jsonify({"message": C.APPLICATION_DELETED})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("delete_application", exc)


@applications_bp.route("/<application_id>/toggle", methods=["PATCH"])
def toggle_application(application_id):
    data = _body() or {}
    if "is_active" not in data:
        return _error("is_active is required", code="VALIDATION_ERROR")
    try:
        app = application_service.toggle_application(application_id, g.user_id,
                                                     bool(data["is_active"]),
                                                     db_path=_db_path())
        return jsonify(app)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("toggle_application", exc)


@applications_bp.route("/<application_id>/connections", methods=["GET"])
def application_connections(application_id):
    try:
        items = application_service.get_application_connections(
            application_id, g.user_id, db_path=_db_path())
        return jsonify({"items": items, "total": len(items)})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("application_connections", exc)


@applications_bp.route("/<application_id>/access", methods=["POST"])
def record_access(application_id):
    try:
        application_service.record_access(application_id, g.user_id, db_path=_db_path())
        return jsonify({"message": "Access recorded"})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("record_application_access", exc)


@applications_bp.route("/with-connection", methods=["POST"])
def create_with_connection():
    """POST /applications/with-connection -- App and first connection in one step."""
    try:
        payload = parse_model(ApplicationWithConnectionRequest, _body())
        result = application_service.create_with_connection(g.user_id, payload,
                                                            db_path=_db_path())
        return jsonify(result), 201
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("create_with_connection", exc)


@applications_bp.route("/<application_id>/with-connection", methods=["PUT"])
def update_with_connection(application_id):
    data = _body()
    if not data:
        return _error("Request body is required", code="VALIDATION_ERROR")
    try:
        app_payload = parse_model(ApplicationRequest, data.get("application"))
        connection_payload = parse_model(ConnectionDetails, data.get("connection"))
        result = application_service.update_with_connection(
            application_id, g.user_id, app_payload, connection_payload,
            connection_id=data.get("connection_id"), db_path=_db_path())
        return jsonify(result)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("update_with_connection", exc)


@applications_bp.route("/<application_id>/with-primary-connection", methods=["GET"])
def with_primary_connection(application_id):
    try:
        return jsonify(application_service.get_with_primary_connection(
            application_id, g.user_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("with_primary_connection", exc)
