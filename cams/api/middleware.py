#!/usr/bin/env python3
"""CAMS -- Authentication Middleware.

Flask before_request hook that:
1. Lets public endpoints through
2. Extracts the ``Authorization: Bearer <jwt>`` token
3. Validates it (signature, expiry, issuer, audience)
4. Sets the caller context on ``g``
5. Returns 401 for missing or invalid tokens

Route-level role checks live in ``cams.api.common._require_role``.

Usage:
    from cams.api.middleware import register_auth_middleware
    register_auth_middleware(app)
"""

import logging

from flask import g, jsonify, request

from cams import constants as C
from cams.errors import UnauthorizedError
from cams.log_helper import sanitize_for_log
from cams.services import auth_service

logger = logging.getLogger("cams.api.middleware")

# (method, path) pairs; method None matches any method
PUBLIC_ENDPOINTS = {
    (None, "/health"),
    ("POST", "/auth/authenticate"),
    ("POST", "/auth/refresh-token"),
    ("POST", "/auth/register"),
}


def _is_public_endpoint(method: str, path: str) -> bool:
    if method == "OPTIONS":
        return True
    path = path.rstrip("/") or "/"
    return (None, path) in PUBLIC_ENDPOINTS or (method, path) in PUBLIC_ENDPOINTS


def _extract_token(req):
    header = req.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return None


def _primary_role(roles) -> str:
    """Highest-privilege role the caller holds."""
    for role in C.ROLE_HIERARCHY:
        if role in roles:
            return role
    return roles[0] if roles else None


def _clear_context():
    g.user_id = None
    g.username = None
    g.user_email = None
    g.user_roles = []
    g.user_role = None
    g.token = None


def register_auth_middleware(app):
    """Register authentication middleware on a Flask app."""

    @app.before_request
    def authenticate_request():
        _clear_context()
        if _is_public_endpoint(request.method, request.path):
            return None

        token = _extract_token(request)
        if not token:
            return jsonify({"error": "Authentication required", "code": "AUTH_REQUIRED"}), 401

        try:
            claims = auth_service.validate_token(token)
        except UnauthorizedError:
            logger.info("Rejected token for %s %s from %s", request.method,
                        sanitize_for_log(request.path),
                        request.remote_addr or "unknown")
            return jsonify({"error": C.INVALID_TOKEN, "code": "AUTH_INVALID"}), 401

        roles = claims.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        g.user_id = claims.get("sub")
        g.username = claims.get("name")
        g.user_email = claims.get("email")
        g.user_roles = roles
        g.user_role = _primary_role(roles)
        g.token = token

        logger.debug("Auth OK: user=%s roles=%s method=%s path=%s",
                     g.username, roles, request.method, sanitize_for_log(request.path))
        return None
