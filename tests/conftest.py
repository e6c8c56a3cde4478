#!/usr/bin/env python3
"""Shared pytest fixtures for the CAMS test suite.

Centralizes temporary database setup, user creation, JWT auth headers and
the Flask test client so individual test modules stay small.
"""

import sqlite3

import pytest

from cams import constants as C
from cams.config import reset_config
from cams.connections import connection_service
from cams.db.cams_db import init_cams_db
from cams.models import ApplicationRequest, ConnectionDetails, DatabaseType
from cams.services import application_service, auth_service, role_service, user_service

TEST_JWT_SECRET = "cams-test-jwt-secret-0123456789abcdef0123456789abcdef"
TEST_ENCRYPTION_KEY = "cams-test-encryption-passphrase"
TEST_PASSWORD = "Passw0rd!"


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def cams_env(monkeypatch, tmp_path):
    """Isolate every test: fixed secrets, a temp DB path, fresh config."""
    monkeypatch.setenv("CAMS_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("CAMS_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setenv("CAMS_DB_PATH", str(tmp_path / "cams.db"))
    monkeypatch.delenv("CAMS_ADMIN_PASSWORD", raising=False)
    monkeypatch.delenv("CAMS_ENV", raising=False)
    monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)
    monkeypatch.setenv("CAMS_ENV_FILE", str(tmp_path / "no.env"))
    reset_config()
    yield
    reset_config()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def cams_db(tmp_path):
    """Temporary CAMS database with the schema and system roles."""
    db_path = tmp_path / "cams.db"
    init_cams_db(db_path=db_path)
    role_service.ensure_system_roles(db_path=db_path)
    return db_path


@pytest.fixture
def make_user(cams_db):
    """Factory: create a user with the given roles and return its dict."""
    counter = {"n": 0}

    def _make(username=None, roles=None, password=TEST_PASSWORD, **kwargs):
        counter["n"] += 1
        username = username or "user{}".format(counter["n"])
        return user_service.create_user(
            username, "{}@example.com".format(username), password,
            roles=roles or [C.ROLE_USER], db_path=cams_db, **kwargs)

    return _make


@pytest.fixture
def regular_user(make_user):
    return make_user("alice")


@pytest.fixture
def other_user(make_user):
    return make_user("bob")


@pytest.fixture
def platform_admin(make_user):
    return make_user("root", roles=[C.ROLE_PLATFORM_ADMIN])


@pytest.fixture
def admin_user(make_user):
    return make_user("manager", roles=[C.ROLE_ADMIN])


def bearer(user):
    """Authorization header carrying a freshly signed token for ``user``."""
    token = auth_service.generate_access_token(user, user["roles"])["token"]
    return {"Authorization": "Bearer {}".format(token)}


@pytest.fixture
def user_headers(regular_user):
    return bearer(regular_user)


@pytest.fixture
def other_headers(other_user):
    return bearer(other_user)


@pytest.fixture
def platform_admin_headers(platform_admin):
    return bearer(platform_admin)


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user)


# ---------------------------------------------------------------------------
# Applications and connections
# ---------------------------------------------------------------------------
@pytest.fixture
def sqlite_target(tmp_path):
    """An existing SQLite file that live connection tests can open."""
    path = tmp_path / "target.db"
    sqlite3.connect(str(path)).close()
    return str(path)


@pytest.fixture
def make_app(cams_db):
    """Factory: create an application owned by ``user``."""
    def _make(user, name="Billing", **kwargs):
        return application_service.create_application(
            user["id"], ApplicationRequest(name=name, **kwargs), db_path=cams_db)

    return _make


@pytest.fixture
def make_connection(cams_db, sqlite_target):
    """Factory: create a connection (SQLite by default) under ``application``."""
    def _make(user, application, name="primary", **kwargs):
        kwargs.setdefault("type", DatabaseType.SQLITE)
        kwargs.setdefault("database", sqlite_target)
        details = ConnectionDetails(application_id=application["id"], name=name, **kwargs)
        return connection_service.create_connection(user["id"], details, db_path=cams_db)

    return _make


# ---------------------------------------------------------------------------
# Flask
# ---------------------------------------------------------------------------
@pytest.fixture
def app(cams_db):
    """CAMS Flask app bound to the temporary database."""
    from cams.api.gateway import create_app
    return create_app(config={"TESTING": True, "CAMS_DB_PATH": str(cams_db)})


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()
