"""Live connection testing for every supported connection type.

Strategy per type:
    SQLite                      open read-only, ``SELECT sqlite_version()``
    PostgreSQL (+ PG-port RDS / Cloud SQL)
                                psycopg2 connect, ``SELECT version()``
    REST / GraphQL / Salesforce / ServiceNow
                                HTTP request with requests
    GitHub API                  GET https://api.github.com/user with the token
    other server-based types    TCP reachability check on server:port

Error details never contain passwords or API keys.

Usage:
    from cams.connections.tester import run_connection_test
    result = run_connection_test(details, timeout=10)
"""

import logging
import socket
import sqlite3
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import psycopg2
import requests

from cams.connections.connection_string import mask_connection_string
from cams.db.cams_db import to_iso, utcnow
from cams.models import DATABASE_TYPE_INFO, ConnectionDetails, DatabaseType

logger = logging.getLogger("cams.connections.tester")

DEFAULT_TIMEOUT = 10
GITHUB_API_URL = "https://api.github.com/user"
USER_AGENT = "CAMS-Application"

_POSTGRES_TYPES = {DatabaseType.POSTGRESQL}
_PG_COMPATIBLE_CLOUD = {DatabaseType.AWS_RDS, DatabaseType.GOOGLE_CLOUDSQL}
_HTTP_TYPES = {
    DatabaseType.REST_API, DatabaseType.GRAPHQL,
    DatabaseType.SALESFORCE_API, DatabaseType.SERVICENOW_API,
}


@dataclass
class ConnectionTestResult:
    is_successful: bool
    message: str
    response_time_ms: int = 0
    tested_at: str = ""
    error_code: Optional[str] = None
    error_details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def _failure(code: str, message: str, details: Optional[str] = None) -> ConnectionTestResult:
    return ConnectionTestResult(
        is_successful=False,
        message=message,
        error_code=code,
        error_details=mask_connection_string(details) if details else None,
    )


def _type_code(db_type: DatabaseType) -> str:
    return db_type.name


def _port_for(details: ConnectionDetails) -> Optional[int]:
    return details.port or DATABASE_TYPE_INFO[details.type][2]


# ---------------------------------------------------------------------------
# Per-type testers
# ---------------------------------------------------------------------------
def _test_sqlite(details: ConnectionDetails, timeout: int) -> ConnectionTestResult:
    if not details.database:
        return _failure("INVALID_CONFIG", "SQLite database path is required")
    path = Path(details.database)
    if not path.exists():
        return _failure("INVALID_CONFIG", f"SQLite database file not found: {path.name}")
    uri = f"file:{path.resolve().as_posix()}?mode=ro"
    try:
        conn = sqlite3.connect(uri, uri=True, timeout=timeout)
        try:
            version = conn.execute("SELECT sqlite_version()").fetchone()[0]
        finally:
            conn.close()
    except sqlite3.Error as exc:
        return _failure("SQLITE_ERROR", "SQLite connection failed", str(exc))
    return ConnectionTestResult(True, "SQLite database opened successfully",
                                metadata={"server_version": version})


def _test_postgres(details: ConnectionDetails, timeout: int) -> ConnectionTestResult:
    try:
        conn = psycopg2.connect(
            host=details.server,
            port=_port_for(details) or 5432,
            dbname=details.database,
            user=details.username,
            password=details.password,
            connect_timeout=timeout,
        )
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT version()")
                version = cur.fetchone()[0]
        finally:
            conn.close()
    except psycopg2.Error as exc:
        pgcode = getattr(exc, "pgcode", None)
        text = str(exc).strip()
        if "timeout" in text.lower():
            return _failure("TIMEOUT", "Connection timed out", text)
        code = f"PG_{pgcode}" if pgcode else "POSTGRESQL_ERROR"
        return _failure(code, "PostgreSQL connection failed", text)
    return ConnectionTestResult(True, "PostgreSQL connection successful",
                                metadata={"server_version": version})


def _auth_headers(details: ConnectionDetails) -> dict:
    headers = {"User-Agent": USER_AGENT}
    if details.api_key:
        headers["Authorization"] = f"Bearer {details.api_key}"
    return headers


def _test_http(details: ConnectionDetails, timeout: int) -> ConnectionTestResult:
    url = details.api_base_url or details.connection_string
    if not url:
        return _failure("INVALID_CONFIG", "API base URL is required")
    try:
        if details.type == DatabaseType.GRAPHQL:
            resp = requests.post(url, json={"query": "{ __typename }"},
                                 headers=_auth_headers(details), timeout=timeout)
        else:
            resp = requests.get(url, headers=_auth_headers(details), timeout=timeout)
    except requests.Timeout:
        return _failure("TIMEOUT", "Connection timed out")
    except requests.RequestException as exc:
        return _failure(f"{_type_code(details.type)}_ERROR", "API request failed", str(exc))

    if resp.status_code in (401, 403):
        return _failure("UNAUTHORIZED", "API rejected the supplied credentials",
                        f"HTTP {resp.status_code}")
    if resp.status_code >= 400:
        return _failure(f"HTTP_{resp.status_code}",
                        f"API responded with HTTP {resp.status_code}")
    return ConnectionTestResult(True, f"API responded with HTTP {resp.status_code}",
                                metadata={"status_code": resp.status_code})


def _test_github(details: ConnectionDetails, timeout: int) -> ConnectionTestResult:
    token = details.github_token or details.api_key
    if not token:
        return _failure("GITHUB_NO_TOKEN", "GitHub token is required")
    headers = {
        "Authorization": f"token {token}",
        "User-Agent": USER_AGENT,
        "Accept": "application/vnd.github+json",
    }
    try:
        resp = requests.get(GITHUB_API_URL, headers=headers, timeout=timeout)
    except requests.Timeout:
        return _failure("TIMEOUT", "Connection timed out")
    except requests.RequestException as exc:
        return _failure("GITHUB_API_ERROR", "GitHub request failed", str(exc))

    if resp.status_code == 200:
        login = None
        try:
            login = resp.json().get("login")
        except ValueError:
            pass  # body is not JSON; login stays unknown
        return ConnectionTestResult(True, "GitHub authentication successful",
                                    metadata={"login": login})
    codes = {401: "GITHUB_UNAUTHORIZED", 403: "GITHUB_FORBIDDEN", 404: "GITHUB_NOT_FOUND"}
    code = codes.get(resp.status_code, f"GITHUB_HTTP_{resp.status_code}")
    return _failure(code, f"GitHub responded with HTTP {resp.status_code}")


def _test_tcp(details: ConnectionDetails, timeout: int) -> ConnectionTestResult:
    port = _port_for(details)
    if not details.server or not port:
        return _failure("INVALID_CONFIG", "Server and port are required")
    try:
        sock = socket.create_connection((details.server, port), timeout=timeout)
        sock.close()
    except socket.timeout:
        return _failure("TIMEOUT", "Connection timed out")
    except OSError as exc:
        return _failure(f"{_type_code(details.type)}_ERROR",
                        f"Unable to reach {details.server}:{port}", str(exc))
    return ConnectionTestResult(True, f"Server {details.server}:{port} is reachable",
                                metadata={"check": "tcp"})


def _select_tester(details: ConnectionDetails):
    db_type = details.type
    if db_type == DatabaseType.SQLITE:
        return _test_sqlite
    if db_type in _POSTGRES_TYPES:
        return _test_postgres
    if db_type in _PG_COMPATIBLE_CLOUD and _port_for(details) == 5432:
        return _test_postgres
    if db_type == DatabaseType.GITHUB_API:
        return _test_github
    if db_type in _HTTP_TYPES:
        return _test_http
    if details.server:
        return _test_tcp
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def run_connection_test(details: ConnectionDetails, timeout: int = DEFAULT_TIMEOUT) -> ConnectionTestResult:
    """Test ``details`` (plaintext secrets) and time the attempt."""
    tester = _select_tester(details)
    start = time.monotonic()
    if tester is None:
        result = _failure(
            "INVALID_CONFIG",
            "Testing is not supported for {} without a server".format(
                DATABASE_TYPE_INFO[details.type][0]))
    else:
        try:
            result = tester(details, timeout)
        except Exception as exc:
            logger.error("Unexpected error testing %s connection: %s",
                         details.type.name, mask_connection_string(str(exc)))
            result = _failure(f"{_type_code(details.type)}_ERROR",
                              "Connection test failed", str(exc))
    result.response_time_ms = int((time.monotonic() - start) * 1000)
    result.tested_at = to_iso(utcnow())
    return result


