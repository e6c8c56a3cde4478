"""Connection string building, validation and masking."""

import re
from typing import Dict, List

from cams.errors import ValidationError
from cams.models import API_TYPES, ConnectionDetails, DatabaseType, DATABASE_TYPE_INFO

_SECRET_PATTERNS = [
    (re.compile(r"(password|pwd|pass)=[^;]+", re.IGNORECASE), "password=***"),
    (re.compile(r"(apikey|api_key|key)=[^;]+", re.IGNORECASE), "apikey=***"),
]

# Keys (lower-case) of which at least one must be present, per type
_REQUIRED_KEYS = {
    DatabaseType.SQL_SERVER: ("server", "data source"),
    DatabaseType.MYSQL: ("server", "host"),
    DatabaseType.POSTGRESQL: ("host", "server"),
    DatabaseType.ORACLE: ("data source",),
    DatabaseType.SQLITE: ("data source",),
}

_URL_RE = re.compile(r"^(https?|wss?)://\S+$", re.IGNORECASE)


def _with_extra(base: str, extra) -> str:
    extra = (extra or "").strip().strip(";")
    return f"{base};{extra}" if extra else base


def build_connection_string(details: ConnectionDetails) -> str:
    """Build a provider connection string from discrete fields.

    Raises:
        ValidationError: the type has no connection string format.
    """
    db_type = details.type
    server = details.server or ""
    database = details.database or ""
    user = details.username or ""
    password = details.password or ""

    if db_type == DatabaseType.SQL_SERVER:
        host = server
        if details.port and details.port != 1433:
            host = f"{server},{details.port}"
        base = f"Server={host};Database={database};"
        if user:
            base += f"User Id={user};Password={password}"
        else:
            base += "Integrated Security=true"
        return _with_extra(base, details.additional_settings)

    if db_type == DatabaseType.MYSQL:
        return _with_extra(
            f"Server={server};Port={details.port or 3306};Database={database};"
            f"User={user};Password={password}",
            details.additional_settings)

    if db_type == DatabaseType.POSTGRESQL:
        return _with_extra(
            f"Host={server};Port={details.port or 5432};Database={database};"
            f"Username={user};Password={password}",
            details.additional_settings)

    if db_type == DatabaseType.ORACLE:
        source = f"{server}:{details.port or 1521}"
        if database:
            source += f"/{database}"
        return _with_extra(
            f"Data Source={source};User Id={user};Password={password}",
            details.additional_settings)

    if db_type == DatabaseType.SQLITE:
        return f"Data Source={database}"

    if db_type == DatabaseType.REST_API:
        return details.api_base_url or ""

    raise ValidationError(
        "Connection string building not supported for type {}".format(
            DATABASE_TYPE_INFO[db_type][0]))


def parse_connection_string(text: str) -> Dict[str, str]:
    """Parse ``key=value;`` pairs; keys are lower-cased and stripped."""
    parsed = {}
    for part in (text or "").split(";"):
        if "=" not in part:
            continue
        key, _, value = part.partition("=")
        key = key.strip().lower()
        if key:
            parsed[key] = value.strip()
    return parsed


def validate_connection_string(db_type: DatabaseType, text: str) -> dict:
    """Check that a connection string is usable for ``db_type``.

    Returns:
        dict with is_valid, errors and parsed (secrets masked).
    """
    errors: List[str] = []
    text = (text or "").strip()
    if not text:
        return {"is_valid": False, "errors": ["Connection string is required"], "parsed": {}}

    if db_type in API_TYPES:
        if not _URL_RE.match(text):
            errors.append("API connection string must be an http(s) or ws(s) URL")
        return {"is_valid": not errors, "errors": errors, "parsed": {"url": text}}

    parsed = parse_connection_string(text)
    if not parsed:
        errors.append("Connection string must contain key=value pairs separated by ';'")
    required = _REQUIRED_KEYS.get(db_type)
    if parsed and required and not any(parsed.get(k) for k in required):
        errors.append("Connection string is missing '{}'".format(
            "' or '".join(k.title() for k in required)))
    if "port" in parsed:
        port = parsed["port"]
        if not port.isdigit() or not 1 <= int(port) <= 65535:
            errors.append("Port must be between 1 and 65535")

    masked = {
        k: ("***" if k in ("password", "pwd", "pass", "apikey", "api_key", "key") else v)
        for k, v in parsed.items()
    }
    return {"is_valid": not errors, "errors": errors, "parsed": masked}


def mask_connection_string(text) -> str:
    """Replace password and API key values with ``***``."""
    if not text:
        return ""
    masked = str(text)
    for pattern, replacement in _SECRET_PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked
