"""Field validation for users, roles, applications and connections.

Each ``validate_*`` function returns a list of human-readable error
strings; an empty list means the input is valid.  Services raise
``cams.errors.ValidationError`` when the list is non-empty.
"""

import re
from typing import List, Optional

from cams import constants as C
from cams.models import (
    API_TYPES,
    CREDENTIAL_TYPES,
    RELATIONAL_TYPES,
    ConnectionDetails,
    DatabaseType,
)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
URL_RE = re.compile(r"^(https?|wss?)://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def _max_len(errors: List[str], value, limit: int, label: str) -> None:
    if value is not None and len(str(value)) > limit:
        errors.append(f"{label} cannot exceed {limit} characters")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email.strip()))


def validate_username(username: Optional[str]) -> List[str]:
    if _blank(username):
        return ["Username is required"]
    username = username.strip()
    errors = []
    if not C.USERNAME_MIN <= len(username) <= C.USERNAME_MAX:
        errors.append(
            f"Username must be between {C.USERNAME_MIN} and {C.USERNAME_MAX} characters")
    if not USERNAME_RE.match(username):
        errors.append(
            "Username can only contain letters, numbers, dots, underscores and hyphens")
    return errors


def validate_email(email: Optional[str]) -> List[str]:
    if _blank(email):
        return ["Email is required"]
    if not is_valid_email(email):
        return ["Invalid email format"]
    return []


def validate_password(password: Optional[str]) -> List[str]:
    if not password:
        return ["Password is required"]
    if not C.PASSWORD_MIN <= len(password) <= C.PASSWORD_MAX:
        return [f"Password must be between {C.PASSWORD_MIN} and {C.PASSWORD_MAX} characters"]
    return []


def validate_user(username, email, password=None, require_password=True) -> List[str]:
    errors = validate_username(username) + validate_email(email)
    if require_password or password:
        errors += validate_password(password)
    return errors


def validate_role(name, description=None) -> List[str]:
    errors = []
    if _blank(name):
        errors.append("Role name is required")
    _max_len(errors, name, C.ROLE_NAME_MAX, "Role name")
    _max_len(errors, description, C.ROLE_DESCRIPTION_MAX, "Role description")
    return errors


def validate_application(name, description=None, version=None,
                         environment=None, tags=None) -> List[str]:
    errors = []
    if _blank(name):
        errors.append("Application name is required")
    _max_len(errors, name, C.APP_NAME_MAX, "Application name")
    _max_len(errors, description, C.APP_DESCRIPTION_MAX, "Description")
    _max_len(errors, version, C.APP_VERSION_MAX, "Version")
    _max_len(errors, environment, C.APP_ENVIRONMENT_MAX, "Environment")
    _max_len(errors, tags, C.APP_TAGS_MAX, "Tags")
    return errors


def validate_connection(details: ConnectionDetails, is_create: bool = True) -> List[str]:
    """Validate a connection request for its type.

    On update (``is_create=False``) secrets may be omitted because the stored
    values are kept.
    """
    errors = []
    db_type = details.type

    if _blank(details.name):
        errors.append("Connection name is required")
    _max_len(errors, details.name, C.CONNECTION_NAME_MAX, "Connection name")
    _max_len(errors, details.server, C.SERVER_MAX, "Server")

    if details.port is not None and not 1 <= details.port <= 65535:
        errors.append("Port must be between 1 and 65535")

    if db_type == DatabaseType.SQLITE:
        if _blank(details.database):
            errors.append("Database file path is required for SQLite")
        return errors

    if db_type == DatabaseType.CUSTOM:
        if _blank(details.connection_string) and is_create:
            errors.append("Connection string is required for custom connections")
        return errors

    if db_type == DatabaseType.GITHUB_API:
        if _blank(details.github_token) and is_create:
            errors.append("GitHub token is required for GitHub API connections")
        return errors

    if db_type in API_TYPES:
        if _blank(details.api_base_url) and _blank(details.connection_string):
            errors.append("API base URL or connection string is required for API connections")
        elif not _blank(details.api_base_url) and not URL_RE.match(details.api_base_url.strip()):
            errors.append("API base URL must be a valid http(s) or ws(s) URL")
        return errors

    # Server-based databases and cloud services
    if _blank(details.server) and _blank(details.connection_string):
        errors.append("Server is required")
    if (db_type in RELATIONAL_TYPES or db_type == DatabaseType.MONGODB) \
            and _blank(details.database) and _blank(details.connection_string):
        errors.append("Database name is required")
    if db_type in CREDENTIAL_TYPES and is_create and _blank(details.connection_string):
        if _blank(details.username):
            errors.append("Username is required")
        if _blank(details.password):
            errors.append("Password is required")
    return errors
