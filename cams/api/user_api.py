#!/usr/bin/env python3
"""CAMS -- User Self-Service API Blueprint.

Endpoints (all scoped to the authenticated caller):
    GET  /user/profile                 - Profile
    PUT  /user/profile                 - Update names and phone number
    GET  /user/profile/summary         - Profile with resource counts
    POST /user/change-password
    POST /user/change-email
    POST /user/validate-password
    POST /user/deactivate
    GET  /user/check-email/<email>     - Email availability
"""

import logging

from flask import Blueprint, g, jsonify

from cams import constants as C
from cams.api.common import _body, _cams_error, _client_ip, _db_path, _error, _internal_error
from cams.errors import CamsError
from cams.services import user_service

logger = logging.getLogger("cams.api.user")

user_bp = Blueprint("user", __name__, url_prefix="/user")


@user_bp.route("/profile", methods=["GET"])
def get_profile():
    try:
        return jsonify(user_service.get_profile(g.user_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("get_profile", exc)


@user_bp.route("/profile", methods=["PUT"])
def update_profile():
    data = _body() or {}
    try:
        profile = user_service.update_profile(
            g.user_id,
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            phone_number=data.get("phone_number"),
            db_path=_db_path(),
        )
        return jsonify(profile)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("update_profile", exc)


@user_bp.route("/profile/summary", methods=["GET"])
def profile_summary():
    try:
        return jsonify(user_service.get_profile_summary(g.user_id, db_path=_db_path()))
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("profile_summary", exc)


@user_bp.route("/change-password", methods=["POST"])
def change_password():
    data = _body() or {}
    try:
        user_service.change_password(
            g.user_id,
            data.get("current_password"),
            data.get("new_password"),
            data.get("confirm_password"),
            ip_address=_client_ip(),
            db_path=_db_path(),
        )
        return jsonify({"message": C.PASSWORD_CHANGED})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("change_password", exc)


@user_bp.route("/change-email", methods=["POST"])
def change_email():
    data = _body() or {}
    try:
        profile = user_service.change_email(
            g.user_id, data.get("new_email"), data.get("current_password"),
            ip_address=_client_ip(), db_path=_db_path())
        return jsonify({"message": C.EMAIL_CHANGED, "profile": profile})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("change_email", exc)


@user_bp.route("/validate-password", methods=["POST"])
def validate_password():
    data = _body() or {}
    if not data.get("password"):
        return _error("Password is required", code="VALIDATION_ERROR")
    try:
        valid = user_service.validate_current_password(g.user_id, data["password"],
                                                       db_path=_db_path())
        return jsonify({"is_valid": valid})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("validate_password", exc)


@user_bp.route("/deactivate", methods=["POST"])
def deactivate():
    data = _body() or {}
    try:
        user_service.deactivate_account(g.user_id, data.get("password"),
                                        ip_address=_client_ip(), db_path=_db_path())
        return jsonify({"message": C.ACCOUNT_DEACTIVATED})
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("deactivate", exc)


@user_bp.route("/check-email/<path:email>", methods=["GET"])
def check_email(email):
    try:
        available = user_service.is_email_available(email, exclude_user_id=g.user_id,
                                                    db_path=_db_path())
        return jsonify({"email": email, "is_available": available})
    except Exception as exc:
        return _internal_error("check_email", exc)
