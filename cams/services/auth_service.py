#!/usr/bin/env python3
"""CAMS -- Authentication: JWT access tokens and rotating refresh tokens.

Access tokens are HS256 JWTs signed with the configured secret and carry
the user's id (``sub``), username (``name``), email, roles, a unique
``jti`` plus issuer/audience claims.  Refresh tokens are opaque random
strings stored on the user row with an expiry; every refresh rotates both.

Usage:
    from cams.services import auth_service

    tokens = auth_service.authenticate("alice", "secret", ip_address="10.0.0.1")
    claims = auth_service.validate_token(tokens["token"])
"""

import base64
import logging
import secrets
import uuid
from datetime import timedelta

import jwt

from cams import constants as C
from cams.config import get_config, get_jwt_secret
from cams.db.cams_db import get_cams_connection, parse_iso, to_iso, utcnow
from cams.errors import ConflictError, UnauthorizedError, ValidationError
from cams.log_helper import sanitize_for_log
from cams.services import role_service, user_service
from cams.services.log_service import log_security_event
from cams.validators import validate_user

logger = logging.getLogger("cams.auth")

ALGORITHM = "HS256"


def _jwt_settings() -> dict:
    return get_config()["jwt"]


def generate_refresh_token() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii")


def generate_access_token(user, roles) -> dict:
    """Sign a JWT for ``user`` (a row or dict with id/username/email)."""
    settings = _jwt_settings()
    now = utcnow()
    expires = now + timedelta(minutes=int(settings["expiry_minutes"]))
    claims = {
        "sub": user["id"],
        "name": user["username"],
        "email": user["email"],
        "jti": str(uuid.uuid4()),
        "roles": list(roles),
        "iat": int(now.timestamp()),
        "exp": int(expires.timestamp()),
        "iss": settings["issuer"],
        "aud": settings["audience"],
    }
    token = jwt.encode(claims, get_jwt_secret(), algorithm=ALGORITHM)
    return {"token": token, "expires_at": to_iso(expires)}


def _decode(token: str, verify_exp: bool = True) -> dict:
    settings = _jwt_settings()
    return jwt.decode(
        token,
        get_jwt_secret(),
        algorithms=[ALGORITHM],
        audience=settings["audience"],
        issuer=settings["issuer"],
        options={"verify_exp": verify_exp},
    )


def _issue_tokens(conn, user) -> dict:
    roles = role_service.get_user_role_names(user["id"], conn=conn)
    access = generate_access_token(user, roles)
    refresh = generate_refresh_token()
    refresh_expiry = utcnow() + timedelta(days=int(_jwt_settings()["refresh_token_days"]))
    user_service.set_refresh_token(conn, user["id"], refresh, to_iso(refresh_expiry))
    return {
        "token": access["token"],
        "refresh_token": refresh,
        "expires_at": access["expires_at"],
        "user_id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "roles": roles,
    }


# ============================================================================
# Operations
# ============================================================================

def authenticate(username, password, ip_address=None, user_agent=None, db_path=None) -> dict:
    """Verify credentials and issue an access/refresh token pair.

    Raises:
        UnauthorizedError: unknown user, inactive user or wrong password.
            The message never says which.
    """
    user = user_service.get_user_by_username(username or "", db_path=db_path)
    if (user is None or not user["is_active"]
            or not user_service.verify_password(user["password_hash"], password)):
        reason = "Unknown user" if user is None else (
            "Inactive account" if not user["is_active"] else "Invalid password")
        log_security_event("Login", status="Failure",
                           user_id=user["id"] if user else None, username=username,
                           description="Failed login attempt", ip_address=ip_address,
                           user_agent=user_agent, failure_reason=reason, db_path=db_path)
        logger.warning("Failed login for %s from %s", sanitize_for_log(username),
                       sanitize_for_log(ip_address))
        raise UnauthorizedError(C.INVALID_CREDENTIALS, service="auth")

    conn = get_cams_connection(db_path)
    try:
        conn.execute("UPDATE users SET last_login_at = ? WHERE id = ?",
                     (to_iso(utcnow()), user["id"]))
        result = _issue_tokens(conn, user)
        conn.commit()
    finally:
        conn.close()

    log_security_event("Login", user_id=user["id"], username=user["username"],
                       description="User logged in", ip_address=ip_address,
                       user_agent=user_agent, db_path=db_path)
    return result


def refresh_token(token, refresh_token_value, ip_address=None, db_path=None) -> dict:
    """Exchange an (expired) access token plus refresh token for a new pair."""
    if not token or not refresh_token_value:
        raise UnauthorizedError(C.INVALID_REFRESH_TOKEN, service="auth")
    try:
        claims = _decode(token, verify_exp=False)
    except jwt.InvalidTokenError:
        raise UnauthorizedError(C.INVALID_REFRESH_TOKEN, service="auth")

    conn = get_cams_connection(db_path)
    try:
        user = conn.execute(
            "SELECT * FROM users WHERE id = ? AND is_active = 1", (claims.get("sub"),)
        ).fetchone()
        expiry = parse_iso(user["refresh_token_expiry_time"]) if user else None
        if (user is None or not user["refresh_token"]
                or not secrets.compare_digest(user["refresh_token"], refresh_token_value)
                or expiry is None or expiry <= utcnow()):
            raise UnauthorizedError(C.INVALID_REFRESH_TOKEN, service="auth")
        result = _issue_tokens(conn, user)
        conn.commit()
    finally:
        conn.close()

    log_security_event("TokenRefresh", user_id=user["id"], username=user["username"],
                       ip_address=ip_address, db_path=db_path)
    return result


def logout(user_id, ip_address=None, db_path=None) -> None:
    conn = get_cams_connection(db_path)
    try:
        user_service.set_refresh_token(conn, user_id, None, None)
        conn.commit()
    finally:
        conn.close()
    log_security_event("Logout", user_id=user_id, ip_address=ip_address, db_path=db_path)


def validate_token(token) -> dict:
    """Return the verified claims of ``token``.

    Raises:
        UnauthorizedError: bad signature, wrong issuer/audience or expired.
    """
    if not token:
        raise UnauthorizedError(C.INVALID_TOKEN, service="auth")
    try:
        return _decode(token)
    except jwt.InvalidTokenError as exc:
        logger.debug("Token rejected: %s", exc)
        raise UnauthorizedError(C.INVALID_TOKEN, service="auth")


def register_user(username, email, password, confirm_password, first_name=None,
                  last_name=None, phone_number=None, ip_address=None, db_path=None) -> dict:
    """Self-registration; the new account gets the default role."""
    errors = validate_user(username, email, password)
    if errors:
        raise ValidationError(errors=errors, service="auth")
    if password != confirm_password:
        raise ValidationError(C.PASSWORD_MISMATCH, service="auth")

    try:
        user = user_service.create_user(
            username, email, password, first_name=first_name, last_name=last_name,
            phone_number=phone_number, roles=[C.DEFAULT_ROLE], db_path=db_path)
    except ConflictError:
        log_security_event("Registration", status="Failure", username=username,
                           ip_address=ip_address, failure_reason="Duplicate account",
                           db_path=db_path)
        raise
    log_security_event("Registration", user_id=user["id"], username=user["username"],
                       ip_address=ip_address, db_path=db_path)
    return user
