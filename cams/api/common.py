"""Helpers shared by the CAMS API blueprints."""

import logging

from flask import current_app, g, jsonify, request

from cams.errors import CamsError, ValidationError

logger = logging.getLogger("cams.api")


def _error(message, code="ERROR", status=400, errors=None):
    """Return a standard JSON error response."""
    body = {"error": message, "code": code}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def _cams_error(exc: CamsError):
    """Translate a service exception into its JSON error response."""
    errors = exc.errors if isinstance(exc, ValidationError) else None
    if exc.status_code >= 500:
        logger.error("%s service error: %s", exc.service or "cams", exc.message)
    return _error(exc.message, code=exc.code, status=exc.status_code, errors=errors)


def _internal_error(operation, exc):
    logger.error("%s error: %s", operation, exc)
    return _error("An internal error occurred", code="INTERNAL_ERROR", status=500)


def _require_role(*allowed_roles):
    """Check that the caller holds at least one of ``allowed_roles``."""
    held = set(getattr(g, "user_roles", None) or [])
    if not held.intersection(allowed_roles):
        return _error(
            "Insufficient permissions. Required role: {}".format(
                " or ".join(allowed_roles)),
            code="FORBIDDEN", status=403,
        )
    return None


def _db_path():
    return current_app.config.get("CAMS_DB_PATH")


def _body():
    """JSON request body, or None when absent or malformed."""
    return request.get_json(force=True, silent=True)


def _paging_args():
    return request.args.get("page", 1), request.args.get("page_size", 20)


def _bool_arg(name, default=None):
    value = request.args.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _client_ip():
    return request.remote_addr


def _user_agent():
    return request.headers.get("User-Agent")
