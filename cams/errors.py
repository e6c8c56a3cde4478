#!/usr/bin/env python3
"""CAMS -- Structured Exception Hierarchy.

Services raise these exceptions; the API blueprints translate them into
JSON error bodies with the matching HTTP status.

Usage:
    from cams.errors import NotFoundError, ValidationError

    raise NotFoundError("Application not found", service="applications")
"""

from typing import List, Optional


class CamsError(Exception):
    """Base exception for all CAMS errors.

    Attributes:
        service: Name of the service that raised the error (e.g. "schedules").
        retryable: Whether the caller should retry the operation.
    """

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, service: str = "", retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.service = service
        self.retryable = retryable


class CamsPermanentError(CamsError):
    """Permanent error -- retrying will not help.

    Examples: corrupted ciphertext, unsupported connection type.
    """

    def __init__(self, message: str, service: str = "", retryable: bool = False):
        super().__init__(message, service=service, retryable=retryable)


class ValidationError(CamsPermanentError):
    """Request data failed validation.

    Attributes:
        errors: Individual validation messages (the first one is the message
            when no explicit message is given).
    """

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "", errors: Optional[List[str]] = None,
                 service: str = ""):
        errors = list(errors or [])
        super().__init__(message or (errors[0] if errors else "Validation failed"),
                         service=service)
        self.errors = errors or [self.message]


class NotFoundError(CamsPermanentError):
    """Requested entity does not exist (or is not visible to the caller)."""

    status_code = 404
    code = "NOT_FOUND"


class UnauthorizedError(CamsPermanentError):
    """Credentials are invalid or the caller does not own the resource."""

    status_code = 401
    code = "UNAUTHORIZED"


class ConflictError(CamsPermanentError):
    """Entity already exists (duplicate name, username, email...)."""

    status_code = 409
    code = "CONFLICT"


class ConfigurationError(CamsPermanentError):
    """Configuration error -- missing or invalid configuration."""

    def __init__(self, message: str, config_key: str = ""):
        super().__init__(message, service="config", retryable=False)
        self.config_key = config_key
