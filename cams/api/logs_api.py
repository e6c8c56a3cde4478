#!/usr/bin/env python3
"""CAMS -- Logs API Blueprint.

Read access to the four log streams plus resolution and retention
cleanup.  PlatformAdmin only.

Endpoints:
    GET  /logs/audit
    GET  /logs/system
    GET  /logs/security
    GET  /logs/performance
    PUT  /logs/system/<id>/resolve
    GET  /logs/performance/metrics
    POST /logs/cleanup
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
from cams.services import log_service

logger = logging.getLogger("cams.api.logs")

logs_bp = Blueprint("logs", __name__, url_prefix="/logs")


@logs_bp.before_request
def _check_role():
    return _require_role(C.ROLE_PLATFORM_ADMIN)


def _range_args():
    return request.args.get("from_date"), request.args.get("to_date")


def _query(operation, fn, /, **filters):
    try:
        page, page_size = _paging_args()
        from_date, to_date = _range_args()
        return jsonify(fn(page, page_size, from_date, to_date, db_path=_db_path(),
                          **filters))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error(operation, exc)


@logs_bp.route("/audit", methods=["GET"])
def audit_logs():
    args = request.args
    return _query("audit_logs", log_service.get_audit_logs,
                  user_id=args.get("user_id"), action=args.get("action"),
                  entity_type=args.get("entity_type"), entity_id=args.get("entity_id"),
                  severity=args.get("severity"))


@logs_bp.route("/system", methods=["GET"])
def system_logs():
    args = request.args
    return _query("system_logs", log_service.get_system_logs,
                  level=args.get("level"), event_type=args.get("event_type"),
                  source=args.get("source"), is_resolved=_bool_arg("is_resolved"))


@logs_bp.route("/security", methods=["GET"])
def security_logs():
    args = request.args
    return _query("security_logs", log_service.get_security_logs,
                  user_id=args.get("user_id"), event_type=args.get("event_type"),
                  status=args.get("status"), severity=args.get("severity"))


@logs_bp.route("/performance", methods=["GET"])
def performance_logs():
    args = request.args
    min_duration = args.get("min_duration_ms")
    if min_duration is not None and not min_duration.isdigit():
        return _error("min_duration_ms must be a non-negative integer",
                      code="VALIDATION_ERROR")
    return _query("performance_logs", log_service.get_performance_logs,
                  operation=args.get("operation"), user_id=args.get("user_id"),
                  min_duration_ms=min_duration, is_slow_query=_bool_arg("is_slow_query"))


@logs_bp.route("/system/<int:log_id>/resolve", methods=["PUT"])
def resolve_system_log(log_id):
    data = _body() or {}
    try:
        if not log_service.mark_system_log_resolved(log_id, g.username,
                                                    notes=data.get("resolution_notes"),
                                                    db_path=_db_path()):
            return _error(C.LOG_NOT_FOUND, code="NOT_FOUND", status=404)
        return jsonify({"message": "Log entry marked as resolved"})
    except Exception as exc:
        return _internal_error("resolve_system_log", exc)


@logs_bp.route("/performance/metrics", methods=["GET"])
def performance_metrics():
    from_date, to_date = _range_args()
    try:
        return jsonify(log_service.get_performance_metrics(from_date, to_date,
                                                           db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("performance_metrics", exc)


@logs_bp.route("/cleanup", methods=["POST"])
def cleanup():
    """POST /logs/cleanup -- Apply retention; body may override days per stream."""
    data = _body() or {}
    retention = data.get("retention_days") or {}
    if not isinstance(retention, dict) or any(
            stream not in log_service.LOG_TABLES or not isinstance(days, int) or days < 0
            for stream, days in retention.items()):
        return _error("retention_days must map log streams to non-negative integers",
                      code="VALIDATION_ERROR")
    try:
        deleted = log_service.cleanup_old_logs(retention, db_path=_db_path())
        logger.info("Log cleanup by %s: %s", g.username, deleted)
        return jsonify({"message": "Log cleanup completed", "deleted": deleted})
    except Exception as exc:
        return _internal_error("cleanup_logs", exc)
