"""
Migration progress over Flask-SocketIO.

Clients join the room ``migration_<progress_id>`` and receive
``ProgressUpdate`` events while an import runs.

Usage:
    from cams.migration.progress import init_socketio, emit_progress

    # In create_app():
    socketio = init_socketio(app)

    # During an import:
    emit_progress(progress_id, {...})
"""

import logging

from flask_socketio import SocketIO, join_room, leave_room

from cams.config import get_config

logger = logging.getLogger("cams.migration.progress")

PROGRESS_EVENT = "ProgressUpdate"

_socketio = None


def room_for(progress_id: str) -> str:
    return f"migration_{progress_id}"


def init_socketio(app):
    """Initialize Flask-SocketIO on the app and return the instance."""
    global _socketio

    origins = get_config()["cors"].get("allowed_origins") or "*"
    _socketio = SocketIO(
        app,
        cors_allowed_origins=origins,
        async_mode="threading",
        logger=False,
        engineio_logger=False,
    )

    @_socketio.on("join")
    def handle_join(data):
        progress_id = (data or {}).get("progress_id")
        if progress_id:
            join_room(room_for(progress_id))

    @_socketio.on("leave")
    def handle_leave(data):
        progress_id = (data or {}).get("progress_id")
        if progress_id:
            leave_room(room_for(progress_id))

    app.logger.info("Flask-SocketIO initialized (migration progress enabled)")
    return _socketio


def emit_progress(progress_id: str, payload: dict) -> None:
    """Send a progress update to the migration's room.

    No-op before ``init_socketio``; emit failures never interrupt an import.
    """
    if _socketio is None:
        return
    try:
        _socketio.emit(PROGRESS_EVENT, payload, to=room_for(progress_id))
    except Exception as exc:
        logger.debug("Progress emit for %s failed: %s", progress_id, exc)


def get_socketio():
    """Return the SocketIO instance (or None if not initialized)."""
    return _socketio
