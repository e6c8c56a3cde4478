#!/usr/bin/env python3
"""CAMS -- Correlation ID Middleware.

Every request gets a correlation ID, taken from the incoming
``X-Correlation-ID`` header or freshly generated.  It is echoed on the
response and stored with performance and system log rows.

Usage:
    from cams.api.correlation import register_correlation_middleware
    register_correlation_middleware(app)

    # Anywhere in request context (or a thread that called set_correlation_id):
    from cams.api.correlation import get_correlation_id
    cid = get_correlation_id()
"""

import threading
import uuid
from typing import Optional

from flask import g, has_request_context, request

CORRELATION_HEADER = "X-Correlation-ID"

# Thread-local storage for non-request contexts (scheduler, CLI tools)
_thread_local = threading.local()


def generate_correlation_id() -> str:
    """Generate a 12-character correlation ID (UUID prefix)."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> Optional[str]:
    if has_request_context():
        cid = getattr(g, "correlation_id", None)
        if cid:
            return cid
    return getattr(_thread_local, "correlation_id", None)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    _thread_local.correlation_id = correlation_id


def register_correlation_middleware(app):
    """Register correlation ID hooks.  Must run before the auth middleware."""

    @app.before_request
    def _inject_correlation_id():
        cid = (request.headers.get(CORRELATION_HEADER) or "").strip()[:64]
        if not cid:
            cid = generate_correlation_id()
        g.correlation_id = cid
        _thread_local.correlation_id = cid

    @app.after_request
    def _add_correlation_header(response):
        cid = getattr(g, "correlation_id", None)
        if cid:
            response.headers[CORRELATION_HEADER] = cid
        return response

    @app.teardown_request
    def _clear_correlation(exc=None):
        _thread_local.correlation_id = None
