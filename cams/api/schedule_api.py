#!/usr/bin/env python3
"""CAMS -- Connection Test Schedules API Blueprint.

One schedule per application.  The scheduler daemon runs due schedules;
``run-now`` executes one immediately in the request thread.

Endpoints:
    GET    /connection-test-schedules
    GET    /connection-test-schedules/application/<application_id>
    GET    /connection-test-schedules/<id>
    POST   /connection-test-schedules              - Create or update (upsert)
    PUT    /connection-test-schedules/<id>
    DELETE /connection-test-schedules/<id>
    PATCH  /connection-test-schedules/<id>/toggle
    POST   /connection-test-schedules/validate-cron
    POST   /connection-test-schedules/<id>/run-now
"""

import logging

from flask import Blueprint, g, jsonify

from cams import constants as C
from cams.api.common import _body, _cams_error, _db_path, _error, _internal_error
from cams.errors import CamsError
from cams.models import ScheduleRequest, ScheduleUpdateRequest, parse_model
from cams.scheduling import schedule_service

logger = logging.getLogger("cams.api.schedules")

schedules_bp = Blueprint("schedules", __name__, url_prefix="/connection-test-schedules")


def _not_found():
    return _error(C.SCHEDULE_NOT_FOUND, code="SCHEDULE_NOT_FOUND", status=404)


@schedules_bp.route("", methods=["GET"])
def list_schedules():
    try:
        items = schedule_service.get_user_schedules(g.user_id, db_path=_db_path())
        return jsonify({"items": items, "total": len(items)})
    except Exception as exc:
        return _internal_error("list_schedules", exc)


@schedules_bp.route("/application/<application_id>", methods=["GET"])
def schedule_for_application(application_id):
    try:
        schedule = schedule_service.get_schedule_by_application(application_id, g.user_id,
                                                                db_path=_db_path())
        if schedule is None:
            return _not_found()
        return jsonify(schedule)
    except Exception as exc:
        return _internal_error("schedule_for_application", exc)


@schedules_bp.route("/<schedule_id>", methods=["GET"])
def get_schedule(schedule_id):
    try:
        schedule = schedule_service.get_schedule(schedule_id, g.user_id, db_path=_db_path())
        if schedule is None:
            return _not_found()
        return jsonify(schedule)
    except Exception as exc:
        return _internal_error("get_schedule", exc)


@schedules_bp.route("", methods=["POST"])
def upsert_schedule():
    """POST /connection-test-schedules -- Create or replace an application's schedule."""
    try:
        payload = parse_model(ScheduleRequest, _body())
        schedule = schedule_service.upsert_schedule(
            g.user_id, payload.application_id, payload.cron_expression,
            is_enabled=payload.is_enabled, db_path=_db_path())
        return jsonify(schedule)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("upsert_schedule", exc)


@schedules_bp.route("/<schedule_id>", methods=["PUT"])
def update_schedule(schedule_id):
    try:
        payload = parse_model(ScheduleUpdateRequest, _body())
        schedule = schedule_service.update_schedule(
            schedule_id, g.user_id, payload.cron_expression,
            is_enabled=payload.is_enabled, db_path=_db_path())
        if schedule is None:
            return _not_found()
        return jsonify(schedule)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("update_schedule", exc)


@schedules_bp.route("/<schedule_id>", methods=["DELETE"])
def delete_schedule(schedule_id):
    try:
        if not schedule_service.delete_schedule(schedule_id, g.user_id, db_path=_db_path()):
            return _not_found()
        return jsonify({"message": C.SCHEDULE_DELETED})
    except Exception as exc:
        return _internal_error("delete_schedule", exc)


@schedules_bp.route("/<schedule_id>/toggle", methods=["PATCH"])
def toggle_schedule(schedule_id):
    data = _body() or {}
    if "is_enabled" not in data:
        return _error("is_enabled is required", code="VALIDATION_ERROR")
    try:
        schedule = schedule_service.toggle_schedule(schedule_id, bool(data["is_enabled"]),
                                                    g.user_id, db_path=_db_path())
        if schedule is None:
            return _not_found()
        return jsonify(schedule)
    except Exception as exc:
        return _internal_error("toggle_schedule", exc)


@schedules_bp.route("/validate-cron", methods=["POST"])
def validate_cron():
    data = _body() or {}
    return jsonify(schedule_service.validate_cron_expression(data.get("expression")))


@schedules_bp.route("/<schedule_id>/run-now", methods=["POST"])
def run_now(schedule_id):
    """POST /connection-test-schedules/<id>/run-now -- Test all connections now."""
    try:
        result = schedule_service.run_now(schedule_id, g.user_id, db_path=_db_path())
        if result is None:
            return _not_found()
        return jsonify(result)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("run_now", exc)
