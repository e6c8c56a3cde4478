#!/usr/bin/env python3
"""CAMS -- Database Schema & Connection.

SQLite database holding users, roles, applications, database connections,
connection-test schedules and the four persisted log streams (audit,
security, system, performance).

The path comes from ``CAMS_DB_PATH`` / ``args/cams_config.yaml``; every
function also accepts an explicit ``db_path`` so the scheduler daemon and
the tests can point at another file.

Usage:
    python -m cams.db.cams_db --init
    python -m cams.db.cams_db --init --force
    python -m cams.db.cams_db --verify --json
"""

import argparse
import json
import logging
import sqlite3
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cams.config import get_db_path

logger = logging.getLogger("cams.db")

TS_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
SCHEMA_SQL = """
-- CAMS -- SQLite Schema

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
    first_name TEXT, last_name TEXT, phone_number TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    refresh_token TEXT, refresh_token_expiry_time TEXT,
    last_login_at TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_users_refresh ON users(refresh_token);

CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    description TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_system INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE TABLE IF NOT EXISTS user_roles (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    role_id TEXT NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
    assigned_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    assigned_by TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    UNIQUE (user_id, role_id)
);
CREATE INDEX IF NOT EXISTS idx_user_roles_user ON user_roles(user_id);
CREATE INDEX IF NOT EXISTS idx_user_roles_role ON user_roles(role_id);

CREATE TABLE IF NOT EXISTS applications (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT, version TEXT, environment TEXT, tags TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    last_accessed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_applications_user ON applications(user_id);

CREATE TABLE IF NOT EXISTS database_connections (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    application_id TEXT NOT NULL REFERENCES applications(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    description TEXT,
    type INTEGER NOT NULL,
    server TEXT, port INTEGER, database_name TEXT, username TEXT,
    password_enc TEXT, connection_string_enc TEXT,
    api_base_url TEXT, api_key_enc TEXT,
    additional_settings TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    github_token_enc TEXT, github_organization TEXT, github_repository TEXT,
    status TEXT NOT NULL DEFAULT 'Untested' CHECK (status IN ('Untested','Connected','Failed')),
    last_test_result TEXT, last_test_duration_ms INTEGER,
    last_tested_at TEXT, last_accessed_at TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_connections_user ON database_connections(user_id);
CREATE INDEX IF NOT EXISTS idx_connections_app ON database_connections(application_id);

CREATE TABLE IF NOT EXISTS connection_test_schedules (
    id TEXT PRIMARY KEY,
    application_id TEXT NOT NULL UNIQUE REFERENCES applications(id) ON DELETE CASCADE,
    cron_expression TEXT NOT NULL,
    is_enabled INTEGER NOT NULL DEFAULT 1,
    last_run_time TEXT, next_run_time TEXT,
    last_run_status TEXT, last_run_message TEXT, last_run_duration_ms INTEGER,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_schedules_due ON connection_test_schedules(is_enabled, next_run_time);

CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT, entity_name TEXT,
    old_values TEXT, new_values TEXT,
    description TEXT, ip_address TEXT, user_agent TEXT,
    severity TEXT NOT NULL DEFAULT 'Information',
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_logs(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_logs(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_time ON audit_logs(timestamp);

CREATE TRIGGER IF NOT EXISTS trg_audit_no_update
    BEFORE UPDATE ON audit_logs
BEGIN
    SELECT RAISE(ABORT, 'audit_logs is append-only: UPDATE is prohibited');
END;

CREATE TABLE IF NOT EXISTS security_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT, username TEXT,
    event_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'Success',
    description TEXT, ip_address TEXT, user_agent TEXT,
    session_id TEXT, resource TEXT, metadata TEXT,
    severity TEXT NOT NULL DEFAULT 'Information',
    failure_reason TEXT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_security_event ON security_logs(event_type, status);
CREATE INDEX IF NOT EXISTS idx_security_time ON security_logs(timestamp);

CREATE TABLE IF NOT EXISTS system_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    level TEXT NOT NULL DEFAULT 'Information',
    source TEXT, message TEXT NOT NULL,
    details TEXT, stack_trace TEXT, correlation_id TEXT,
    user_id TEXT, ip_address TEXT, request_path TEXT, http_method TEXT,
    status_code INTEGER, duration_ms INTEGER,
    machine_name TEXT, process_id INTEGER, thread_id INTEGER,
    metadata TEXT,
    is_resolved INTEGER NOT NULL DEFAULT 0,
    resolved_at TEXT, resolved_by TEXT, resolution_notes TEXT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_system_level ON system_logs(level);
CREATE INDEX IF NOT EXISTS idx_system_time ON system_logs(timestamp);

CREATE TABLE IF NOT EXISTS performance_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    operation TEXT NOT NULL,
    controller TEXT, action TEXT,
    request_path TEXT, http_method TEXT,
    user_id TEXT,
    duration_ms INTEGER NOT NULL,
    status_code INTEGER,
    ip_address TEXT, user_agent TEXT, correlation_id TEXT,
    performance_level TEXT,
    is_slow_query INTEGER NOT NULL DEFAULT 0,
    metadata TEXT,
    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_perf_time ON performance_logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_perf_operation ON performance_logs(operation);
"""

# ---------------------------------------------------------------------------
# Expected tables for verification
# ---------------------------------------------------------------------------
EXPECTED_TABLES = [
    "users", "roles", "user_roles", "applications", "database_connections",
    "connection_test_schedules", "audit_logs", "security_logs",
    "system_logs", "performance_logs",
]


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as the stored timestamp string (naive == UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TS_FORMAT)


def utcnow_iso() -> str:
    return to_iso(utcnow())


def parse_iso(value) -> Optional[datetime]:
    """Parse a stored or client-supplied ISO-8601 timestamp into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Connection Management
# ---------------------------------------------------------------------------
def _resolve_path(db_path=None) -> Path:
    return Path(db_path) if db_path else get_db_path()


def get_cams_connection(db_path=None) -> sqlite3.Connection:
    """Open a connection with Row factory, WAL journaling and FK enforcement."""
    path = _resolve_path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


# ---------------------------------------------------------------------------
# Schema Initialization
# ---------------------------------------------------------------------------
def init_cams_db(force=False, db_path=None):
    """Initialize the CAMS database schema.

    Args:
        force: If True, drop existing tables before creating (DESTRUCTIVE).
        db_path: Optional override of the configured database path.

    Returns:
        dict with status, tables_created, missing_tables and message.
    """
    path = _resolve_path(db_path)
    logger.info("Initializing CAMS database at %s (force=%s)", path, force)

    conn = get_cams_connection(path)
    cursor = conn.cursor()
    try:
        if force:
            _drop_all_tables(cursor)
            conn.commit()
            logger.info("Dropped existing tables (force=True)")

        for stmt in _split_sql_statements(SCHEMA_SQL):
            cursor.execute(stmt)
        conn.commit()

        tables = _list_tables(cursor)
        missing = [t for t in EXPECTED_TABLES if t not in tables]
        if missing:
            result = {
                "status": "error", "db_path": str(path),
                "tables_created": tables, "missing_tables": missing,
                "message": f"Schema incomplete -- missing tables: {missing}",
            }
            logger.error(result["message"])
        else:
            result = {
                "status": "ok", "db_path": str(path),
                "tables_created": tables, "missing_tables": [],
                "message": f"CAMS DB initialized: {len(tables)} tables",
            }
            logger.info(result["message"])
        return result
    except Exception as exc:
        conn.rollback()
        logger.error("Schema initialization failed: %s", exc)
        raise
    finally:
        cursor.close()
        conn.close()


def _split_sql_statements(sql):
    """Split SQL text into individual statements, keeping trigger bodies whole."""
    statements = []
    current = []
    in_trigger = False

    for line in sql.splitlines():
        stripped = line.strip()
        if not current and (not stripped or stripped.startswith("--")):
            continue
        if "CREATE TRIGGER" in stripped.upper():
            in_trigger = True
        current.append(line)
        if in_trigger and stripped.upper() == "END;":
            statements.append("\n".join(current))
            current = []
            in_trigger = False
        elif not in_trigger and stripped.endswith(";"):
            statements.append("\n".join(current))
            current = []

    remaining = "\n".join(current).strip()
    if remaining:
        statements.append(remaining)
    return statements


def _drop_all_tables(cursor):
    cursor.execute("DROP TRIGGER IF EXISTS trg_audit_no_update")
    for table in reversed(EXPECTED_TABLES):
        cursor.execute(f"DROP TABLE IF EXISTS {table}")


def _list_tables(cursor):
    cursor.execute(
        "SELECT name FROM sqlite_master WHERE type='table' "
        "AND name NOT LIKE 'sqlite_%' ORDER BY name"
    )
    return [row["name"] for row in cursor.fetchall()]


# ---------------------------------------------------------------------------
# Schema Verification
# ---------------------------------------------------------------------------
def verify_cams_db(db_path=None):
    """Verify that the CAMS schema is present and report row counts."""
    path = _resolve_path(db_path)
    if not path.exists():
        return {
            "status": "error", "db_path": str(path),
            "tables": [], "missing": list(EXPECTED_TABLES), "row_counts": {},
            "message": f"Database not found: {path}",
        }
    conn = get_cams_connection(path)
    try:
        cursor = conn.cursor()
        tables = _list_tables(cursor)
        missing = [t for t in EXPECTED_TABLES if t not in tables]
        counts = {}
        for table in tables:
            if table in EXPECTED_TABLES:
                counts[table] = cursor.execute(
                    f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()["cnt"]
    except sqlite3.Error as exc:
        return {
            "status": "error", "db_path": str(path),
            "tables": [], "missing": list(EXPECTED_TABLES), "row_counts": {},
            "message": f"Verification failed: {exc}",
        }
    finally:
        conn.close()

    if missing:
        return {
            "status": "incomplete", "db_path": str(path),
            "tables": tables, "missing": missing, "row_counts": counts,
            "message": f"Missing tables: {missing}",
        }
    return {
        "status": "ok", "db_path": str(path),
        "tables": tables, "missing": [], "row_counts": counts,
        "message": f"Schema verified: {len(tables)} tables",
    }


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def main():
    """CLI entry point for CAMS database management."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    parser = argparse.ArgumentParser(description="CAMS Database Manager")
    parser.add_argument("--init", action="store_true",
                        help="Initialize the database schema")
    parser.add_argument("--force", action="store_true",
                        help="Drop existing tables before creating (DESTRUCTIVE)")
    parser.add_argument("--verify", action="store_true",
                        help="Verify schema integrity")
    parser.add_argument("--seed", action="store_true",
                        help="Seed system roles (and admin user if CAMS_ADMIN_PASSWORD is set)")
    parser.add_argument("--db-path", type=Path, help="Override DB path")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    args = parser.parse_args()

    if not any([args.init, args.verify, args.seed]):
        parser.print_help()
        sys.exit(1)

    if args.init:
        result = init_cams_db(force=args.force, db_path=args.db_path)
        if args.json:
            print(json.dumps(result, indent=2))
        else:
            print(f"[{result['status'].upper()}] {result['message']}")
            for t in sorted(result.get("tables_created", [])):
                print(f"  - {t}")
        if result["status"] == "error":
            sys.exit(1)

    if args.seed:
        from cams.db.seeder import seed_defaults
        result = seed_defaults(db_path=args.db_path)
        if args.json:
            print(json.dumps(result, indent=2))
        else:
            print(f"[SEED] roles created: {result['roles_created']}, "
                  f"admin created: {result['admin_created']}")

    if args.verify:
        result = verify_cams_db(db_path=args.db_path)
        if args.json:
            print(json.dumps(result, indent=2))
        else:
            print(f"[{result['status'].upper()}] {result['message']}")
            for t, c in sorted(result.get("row_counts", {}).items()):
                print(f"  - {t}: {c} rows")
            for t in result.get("missing", []):
                print(f"  ! {t}")
        if result["status"] != "ok":
            sys.exit(1)


if __name__ == "__main__":
    main()
