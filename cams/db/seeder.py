"""Seed the system roles and, optionally, a platform administrator.

The administrator is created only when ``CAMS_ADMIN_PASSWORD`` is set, so no
default credentials ever ship with the database.
"""

import logging
import os

from cams import constants as C
from cams.services import role_service, user_service

logger = logging.getLogger("cams.db.seeder")

ADMIN_USERNAME = "admin"
ADMIN_EMAIL_DEFAULT = "admin@cams.local"


def seed_defaults(db_path=None) -> dict:
    roles_created = role_service.ensure_system_roles(db_path=db_path)

    admin_created = False
    password = os.environ.get("CAMS_ADMIN_PASSWORD")
    if password:
        username = os.environ.get("CAMS_ADMIN_USERNAME", ADMIN_USERNAME)
        if user_service.get_user_by_username(username, db_path=db_path) is None:
            user_service.create_user(
                username,
                os.environ.get("CAMS_ADMIN_EMAIL", ADMIN_EMAIL_DEFAULT),
                password,
                first_name="Platform",
                last_name="Administrator",
                roles=[C.ROLE_PLATFORM_ADMIN],
                db_path=db_path,
            )
            admin_created = True
            logger.info("Created platform administrator '%s'", username)
    else:
        logger.info("CAMS_ADMIN_PASSWORD not set; no administrator seeded")

    return {"roles_created": roles_created, "admin_created": admin_created}
