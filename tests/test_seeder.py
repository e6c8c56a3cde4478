#!/usr/bin/env python3
"""Tests for cams.db -- schema initialization and default seeding."""

from cams import constants as C
from cams.db.cams_db import EXPECTED_TABLES, init_cams_db, verify_cams_db
from cams.db.seeder import seed_defaults
from cams.services import role_service, user_service


class TestInitDb:

    def test_creates_every_table(self, tmp_path):
        db_path = tmp_path / "fresh.db"
        result = init_cams_db(db_path=db_path)
        assert result["missing_tables"] == []
        verified = verify_cams_db(db_path=db_path)
        assert verified["status"] == "ok"
        assert set(EXPECTED_TABLES) <= set(verified["tables"])

    def test_is_idempotent(self, cams_db):
        assert init_cams_db(db_path=cams_db)["missing_tables"] == []

    def test_missing_database_reported(self, tmp_path):
        result = verify_cams_db(db_path=tmp_path / "absent.db")
        assert result["status"] == "error"


class TestSeedDefaults:

    def test_roles_only_without_admin_password(self, tmp_path):
        db_path = tmp_path / "seed.db"
        init_cams_db(db_path=db_path)
        result = seed_defaults(db_path=db_path)
        assert sorted(result["roles_created"]) == sorted(C.SYSTEM_ROLES)
        assert result["admin_created"] is False
        assert user_service.get_user_by_username("admin", db_path=db_path) is None

    def test_admin_created_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CAMS_ADMIN_PASSWORD", "Adm1nPass!")
        monkeypatch.setenv("CAMS_ADMIN_USERNAME", "ops")
        db_path = tmp_path / "seed.db"
        init_cams_db(db_path=db_path)

        assert seed_defaults(db_path=db_path)["admin_created"] is True
        admin = user_service.get_user_by_username("ops", db_path=db_path)
        assert user_service.verify_password(admin["password_hash"], "Adm1nPass!")
        assert role_service.user_has_role(admin["id"], C.ROLE_PLATFORM_ADMIN, db_path=db_path)

        again = seed_defaults(db_path=db_path)
        assert again == {"roles_created": [], "admin_created": False}
