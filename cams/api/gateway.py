#!/usr/bin/env python3
"""CAMS -- API Gateway.

Main Flask application.  Registers the correlation-ID, authentication and
request-logging middleware, CORS, security headers, JSON error handlers,
the health check, every CAMS blueprint and Flask-SocketIO for migration
progress.

Usage:
    # Development
    python -m cams.api.gateway --port 5000 --debug

    # Production (gunicorn + eventlet/gevent worker for SocketIO)
    gunicorn "cams.api.gateway:create_app()" --bind 0.0.0.0:5000

    # Show help
    python -m cams.api.gateway --help
"""

import argparse
import logging
import os
import time
from datetime import datetime, timezone

from flask import Flask, jsonify, make_response, request

from cams import __version__
from cams.config import get_config, get_db_path, load_dotenv_file
from cams.db.cams_db import init_cams_db, verify_cams_db
from cams.db.seeder import seed_defaults
from cams.migration.progress import init_socketio

logger = logging.getLogger("cams.gateway")

SERVICE_NAME = "cams-api"
DEFAULT_PORT = 5000

# Track server start time for uptime reporting
_start_time = time.time()


# ---------------------------------------------------------------------------
# Database health
# ---------------------------------------------------------------------------
def _check_database_health(db_path):
    result = verify_cams_db(db_path=db_path)
    if result["status"] == "ok":
        return {"status": "ok", "tables": len(result["tables"])}
    return {"status": result["status"], "message": result["message"]}


# ---------------------------------------------------------------------------
# CORS configuration
# ---------------------------------------------------------------------------
def _get_allowed_origins():
    return list(get_config()["cors"].get("allowed_origins") or [])


def _register_cors(app):
    """Register CORS headers on all responses."""
    allowed_origins = _get_allowed_origins()

    @app.after_request
    def _add_cors_headers(response):
        request_origin = request.headers.get("Origin", "")
        if request_origin and (request_origin in allowed_origins or "*" in allowed_origins):
            response.headers["Access-Control-Allow-Origin"] = request_origin
            response.headers["Access-Control-Allow-Methods"] = (
                "GET, POST, PATCH, PUT, DELETE, OPTIONS"
            )
            response.headers["Access-Control-Allow-Headers"] = (
                "Authorization, Content-Type, X-Correlation-ID"
            )
            response.headers["Access-Control-Expose-Headers"] = "X-Correlation-ID"
            response.headers["Access-Control-Max-Age"] = "3600"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers.add("Vary", "Origin")
        return response

    @app.before_request
    def _handle_preflight():
        if request.method == "OPTIONS":
            return make_response("", 204)
        return None


# ---------------------------------------------------------------------------
# Security headers
# ---------------------------------------------------------------------------
def _register_security_headers(app):
    @app.after_request
    def _add_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["Pragma"] = "no-cache"
        return response


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
def _register_error_handlers(app):
    """Register global JSON error handlers."""

    @app.errorhandler(400)
    def bad_request(exc):
        return jsonify({
            "error": "Bad request",
            "code": "BAD_REQUEST",
            "details": str(exc),
        }), 400

    @app.errorhandler(404)
    def not_found(exc):
        return jsonify({
            "error": "Not found",
            "code": "NOT_FOUND",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(exc):
        return jsonify({
            "error": "Method not allowed",
            "code": "METHOD_NOT_ALLOWED",
        }), 405

    @app.errorhandler(413)
    def too_large(exc):
        return jsonify({
            "error": "Request body too large",
            "code": "PAYLOAD_TOO_LARGE",
        }), 413

    @app.errorhandler(500)
    def internal_error(exc):
        logger.error("Internal server error: %s", exc)
        return jsonify({
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
        }), 500


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
def _register_health_check(app):
    @app.route("/health", methods=["GET"])
    def health_check():
        """GET /health -- Uptime and database status."""
        uptime_seconds = int(time.time() - _start_time)
        db_health = _check_database_health(app.config["CAMS_DB_PATH"])
        overall_status = "ok" if db_health["status"] == "ok" else "degraded"

        return jsonify({
            "status": overall_status,
            "service": SERVICE_NAME,
            "version": __version__,
            "uptime_seconds": uptime_seconds,
            "uptime_human": _format_uptime(uptime_seconds),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "database": db_health,
            },
        })


def _format_uptime(seconds):
    """Format seconds into a human-readable uptime string."""
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    parts = []
    if days > 0:
        parts.append("{}d".format(days))
    if hours > 0:
        parts.append("{}h".format(hours))
    if minutes > 0:
        parts.append("{}m".format(minutes))
    parts.append("{}s".format(secs))
    return " ".join(parts)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------
def create_app(config=None):
    """Flask application factory for the CAMS API.

    Args:
        config: Optional dict of Flask configuration overrides.  Set
            ``CAMS_DB_PATH`` to point the app at a specific database and
            ``CAMS_SEED`` to False to skip default-role seeding.

    Returns:
        Configured Flask app instance.
    """
    load_dotenv_file()

    app = Flask(__name__)
    app.json.sort_keys = False
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024  # 16 MB max request
    app.config["CAMS_SEED"] = True
    if config:
        app.config.update(config)
    app.config["CAMS_DB_PATH"] = str(app.config.get("CAMS_DB_PATH") or get_db_path())

    # ---- Database ----
    init_cams_db(db_path=app.config["CAMS_DB_PATH"])
    if app.config["CAMS_SEED"]:
        seeded = seed_defaults(db_path=app.config["CAMS_DB_PATH"])
        if seeded["roles_created"] or seeded["admin_created"]:
            logger.info("Seeded defaults: %s", seeded)

    # ---- Register middleware (order matters) ----
    from cams.api.correlation import register_correlation_middleware
    from cams.api.middleware import register_auth_middleware
    from cams.api.request_logger import register_request_logger

    # 1. Correlation ID (read by the loggers below)
    register_correlation_middleware(app)
    # 2. Auth middleware (sets g.user_id, g.user_roles)
    register_auth_middleware(app)
    # 3. Request logger (performance + 5xx system logs)
    register_request_logger(app)

    # ---- CORS ----
    _register_cors(app)
    logger.info("CORS configured: origins=%s", _get_allowed_origins())

    # ---- Security headers ----
    _register_security_headers(app)

    # ---- Error handlers ----
    _register_error_handlers(app)

    # ---- Health check ----
    _register_health_check(app)

    # ---- Register blueprints ----
    from cams.api.application_api import applications_bp
    from cams.api.auth_api import auth_bp
    from cams.api.connection_api import connections_bp
    from cams.api.logs_api import logs_bp
    from cams.api.management_api import management_bp
    from cams.api.migration_api import migration_bp
    from cams.api.schedule_api import schedules_bp
    from cams.api.user_api import user_bp

    for blueprint in (auth_bp, user_bp, management_bp, applications_bp, connections_bp,
                      schedules_bp, migration_bp, logs_bp):
        app.register_blueprint(blueprint)
        logger.debug("Blueprint registered at %s", blueprint.url_prefix)

    # ---- SocketIO (migration progress) ----
    init_socketio(app)

    logger.info("CAMS API v%s initialized (db=%s)", __version__, app.config["CAMS_DB_PATH"])
    return app


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------
def main():
    """CLI entry point for running the CAMS API."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    parser = argparse.ArgumentParser(
        description="CAMS -- Connection/Application Management System API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Production deployment:\n"
            "  gunicorn 'cams.api.gateway:create_app()' --bind 0.0.0.0:5000\n"
        ),
    )
    parser.add_argument(
        "--port", type=int,
        default=int(os.environ.get("CAMS_PORT", str(DEFAULT_PORT))),
        help="Port to listen on (default: {}, env: CAMS_PORT)".format(DEFAULT_PORT),
    )
    parser.add_argument(
        "--host", type=str,
        default=os.environ.get("CAMS_HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0, env: CAMS_HOST)",
    )
    parser.add_argument(
        "--debug", action="store_true",
        default=os.environ.get("FLASK_DEBUG", "").lower() in ("1", "true"),
        help="Enable Flask debug mode (env: FLASK_DEBUG)",
    )
    args = parser.parse_args()

    from cams.migration.progress import get_socketio

    app = create_app()
    logger.info("Starting CAMS API on %s:%d (debug=%s)", args.host, args.port, args.debug)
    get_socketio().run(app, host=args.host, port=args.port, debug=args.debug,
                       allow_unsafe_werkzeug=True)


if __name__ == "__main__":
    main()
