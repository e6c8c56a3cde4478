#!/usr/bin/env python3
"""CAMS -- Authentication API Blueprint.

Endpoints:
    POST /auth/authenticate     - Username/password login (public)
    POST /auth/refresh-token    - Rotate access + refresh tokens (public)
    POST /auth/register         - Self-registration (public)
    POST /auth/logout           - Revoke the caller's refresh token
    GET  /auth/validate         - Describe the caller's token
"""

import logging

from flask import Blueprint, g, jsonify

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
from cams.errors import CamsError
from cams.services import auth_service

logger = logging.getLogger("cams.api.auth")

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/authenticate", methods=["POST"])
def authenticate():
    """POST /auth/authenticate -- Exchange credentials for tokens."""
    data = _body() or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return _error("Username and password are required", code="VALIDATION_ERROR")
    try:
        result = auth_service.authenticate(username, password, ip_address=_client_ip(),
                                           user_agent=_user_agent(), db_path=_db_path())
        return jsonify(result)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("authenticate", exc)


@auth_bp.route("/refresh-token", methods=["POST"])
def refresh_token():
    """POST /auth/refresh-token -- Rotate an expired access token."""
    data = _body() or {}
    try:
        result = auth_service.refresh_token(data.get("token"), data.get("refresh_token"),
                                            ip_address=_client_ip(), db_path=_db_path())
        return jsonify(result)
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("refresh_token", exc)


@auth_bp.route("/logout", methods=["POST"])
def logout():
    try:
        auth_service.logout(g.user_id, ip_address=_client_ip(), db_path=_db_path())
        return jsonify({"message": C.LOGGED_OUT})
    except Exception as exc:
        return _internal_error("logout", exc)


@auth_bp.route("/validate", methods=["GET"])
def validate():
    """GET /auth/validate -- The middleware already verified the token."""
    return jsonify({
        "is_valid": True,
        "user_id": g.user_id,
        "username": g.username,
        "email": g.user_email,
        "roles": g.user_roles,
    })


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register -- Create an account with the default role."""
    data = _body()
    if not data:
        return _error("Request body is required", code="VALIDATION_ERROR")
    try:
        user = auth_service.register_user(
            data.get("username"),
            data.get("email"),
            data.get("password"),
            data.get("confirm_password"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            phone_number=data.get("phone_number"),
            ip_address=_client_ip(),
            db_path=_db_path(),
        )
        return jsonify(user), 201
    except CamsError as exc:
        return _cams_error(exc)
    except Exception as exc:
        return _internal_error("register", exc)
