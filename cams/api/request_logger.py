#!/usr/bin/env python3
"""CAMS -- Request Logger.

Times every request.  Authenticated requests produce a performance log row
(flagged slow past ``logging.slow_request_ms``); any 5xx response produces
a system log row.

Usage:
    from cams.api.request_logger import register_request_logger
    register_request_logger(app)
"""

import logging
import time

from flask import current_app, g, request

from cams.api.correlation import get_correlation_id
from cams.config import get_config
from cams.services.log_service import log_performance, log_system_event

logger = logging.getLogger("cams.api.request_logger")


def register_request_logger(app):
    """Register before_request / after_request hooks on a Flask app.

    Sets g._request_start on entry and writes the log rows on exit.
    """

    @app.before_request
    def _start_timer():
        g._request_start = time.time()

    @app.after_request
    def _log_request(response):
        start = getattr(g, "_request_start", None)
        duration_ms = int((time.time() - start) * 1000) if start else 0
        user_id = getattr(g, "user_id", None)
        db_path = current_app.config.get("CAMS_DB_PATH")
        endpoint = request.endpoint or ""
        controller, _, action = endpoint.partition(".")

        if user_id:
            log_performance(
                operation=f"{request.method} {request.path}",
                duration_ms=duration_ms,
                controller=controller or None,
                action=action or None,
                request_path=request.path,
                http_method=request.method,
                user_id=user_id,
                status_code=response.status_code,
                ip_address=request.remote_addr,
                user_agent=request.headers.get("User-Agent"),
                correlation_id=get_correlation_id(),
                slow_threshold_ms=get_config()["logging"]["slow_request_ms"],
                db_path=db_path,
            )

        if response.status_code >= 500:
            log_system_event(
                "HttpError",
                f"{request.method} {request.path} returned {response.status_code}",
                level="Error",
                source="api",
                correlation_id=get_correlation_id(),
                user_id=user_id,
                ip_address=request.remote_addr,
                request_path=request.path,
                http_method=request.method,
                status_code=response.status_code,
                duration_ms=duration_ms,
                db_path=db_path,
            )
        return response
