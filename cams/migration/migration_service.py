#!/usr/bin/env python3
"""CAMS -- Bulk migration of users, roles and applications.

An import always validates first; ``validate_only`` stops there.  Each record
is then handled in its own transaction so one bad record never rolls back
the rest.  Progress is pushed to the ``migration_<progress_id>`` SocketIO
room roughly every tenth of the way and once at completion.

Payloads are JSON text or an already-parsed list.  A mapping shaped like the
download template (``{"users": [...]}``) is accepted too.
"""

import json
import logging
import uuid

from pydantic import ValidationError as PydanticValidationError

from cams import constants as C
from cams.db.cams_db import get_cams_connection, utcnow_iso
from cams.errors import CamsError, ValidationError
from cams.log_helper import sanitize_for_log
from cams.migration.progress import emit_progress
from cams.models import (
    ApplicationImportRecord,
    ApplicationRequest,
    MigrationRequest,
    MigrationType,
    RoleImportRecord,
    UserImportRecord,
    format_pydantic_errors,
)
from cams.services import application_service, role_service, user_service
from cams.services.log_service import log_audit
from cams.validators import validate_application, validate_role, validate_user

logger = logging.getLogger("cams.migration")

# migration type -> (plural noun, record model)
KINDS = {
    MigrationType.USERS: ("users", UserImportRecord),
    MigrationType.ROLES: ("roles", RoleImportRecord),
    MigrationType.APPLICATIONS: ("applications", ApplicationImportRecord),
}


def _migration_type(value):
    try:
        return MigrationType((value or "").strip().upper())
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------
def _load_records(request: MigrationRequest, kind: str):
    """Return (raw record list, errors)."""
    data = request.data
    if data is None or (isinstance(data, str) and not data.strip()):
        return [], ["Migration data is required"]
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError:
            return [], [C.INVALID_MIGRATION_JSON]
    if isinstance(data, dict):
        data = data.get(kind)
    if not isinstance(data, list):
        return [], [f"Migration data must be a list of {kind}"]
    return data, []


def _parse_records(raw, model):
    """Validate raw dicts into models; returns [(index, record | None, errors)]."""
    parsed = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            parsed.append((index, None, [f"Record {index}: must be an object"]))
            continue
        try:
            parsed.append((index, model.model_validate(item), []))
        except PydanticValidationError as exc:
            parsed.append((index, None,
                           [f"Record {index}: {m}" for m in format_pydantic_errors(exc)]))
    return parsed


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _validate_users(parsed, overwrite, conn, warnings, summary):
    seen_usernames, seen_emails = set(), set()
    action = "will be updated" if overwrite else "will be skipped"
    for index, record, record_errors in parsed:
        if record is None:
            continue
        record_errors += [f"Record {index}: {e}" for e in validate_user(
            record.username, record.email, record.password, require_password=False)]

        username = record.username.strip().lower()
        email = record.email.strip().lower()
        if username and username in seen_usernames:
            record_errors.append(f"Record {index}: duplicate username '{record.username}'")
        if email and email in seen_emails:
            record_errors.append(f"Record {index}: duplicate email '{record.email}'")
        seen_usernames.add(username)
        seen_emails.add(email)

        existing = conn.execute(
            """SELECT username FROM users WHERE is_active = 1
               AND (username = ? COLLATE NOCASE OR email = ? COLLATE NOCASE)""",
            (record.username.strip(), record.email.strip()),
        ).fetchone()
        if existing:
            summary["existing_records"] += 1
            warnings.append(f"Record {index}: user '{existing['username']}' already exists "
                            f"and {action}")

        for role in record.roles:
            found = conn.execute(
                "SELECT id FROM roles WHERE name = ? COLLATE NOCASE AND is_active = 1",
                (role.strip(),),
            ).fetchone()
            if not found:
                warnings.append(f"Record {index}: role '{role}' does not exist, "
                                f"default role will be used")


def _validate_roles(parsed, overwrite, conn, warnings, summary):
    seen = set()
    action = "will be updated" if overwrite else "will be skipped"
    for index, record, record_errors in parsed:
        if record is None:
            continue
        record_errors += [f"Record {index}: {e}"
                          for e in validate_role(record.name, record.description)]
        name = record.name.strip().lower()
        if name and name in seen:
            record_errors.append(f"Record {index}: duplicate role name '{record.name}'")
        seen.add(name)
        existing = conn.execute(
            "SELECT name FROM roles WHERE name = ? COLLATE NOCASE", (record.name.strip(),)
        ).fetchone()
        if existing:
            summary["existing_records"] += 1
            warnings.append(f"Record {index}: role '{existing['name']}' already exists "
                            f"and {action}")


def _validate_applications(parsed, overwrite, conn, warnings, summary):
    seen = set()
    for index, record, record_errors in parsed:
        if record is None:
            continue
        record_errors += [f"Record {index}: {e}" for e in validate_application(
            record.name, record.description, record.version, record.environment,
            record.tags)]
        name = record.name.strip().lower()
        if name and name in seen:
            record_errors.append(f"Record {index}: duplicate application name '{record.name}'")
        seen.add(name)
        if record.owner_username:
            owner = conn.execute(
                "SELECT id FROM users WHERE username = ? COLLATE NOCASE",
                (record.owner_username.strip(),),
            ).fetchone()
            if not owner:
                record_errors.append(
                    f"Record {index}: owner '{record.owner_username}' does not exist")


_VALIDATORS = {
    MigrationType.USERS: _validate_users,
    MigrationType.ROLES: _validate_roles,
    MigrationType.APPLICATIONS: _validate_applications,
}


def _validate(request: MigrationRequest, db_path=None):
    """Run validation; returns (result dict, parsed records)."""
    result = {
        "is_valid": False,
        "errors": [],
        "warnings": [],
        "total_records": 0,
        "valid_records": 0,
        "invalid_records": 0,
        "validation_summary": {},
    }
    migration_type = _migration_type(request.migration_type)
    if migration_type is None:
        result["errors"].append(f"Unsupported migration type: {request.migration_type}")
        return result, []

    kind, model = KINDS[migration_type]
    raw, load_errors = _load_records(request, kind)
    if load_errors:
        result["errors"] += load_errors
        return result, []

    parsed = _parse_records(raw, model)
    summary = {"migration_type": migration_type.value, "existing_records": 0,
               "overwrite_existing": request.overwrite_existing}
    conn = get_cams_connection(db_path)
    try:
        _VALIDATORS[migration_type](parsed, request.overwrite_existing, conn,
                                    result["warnings"], summary)
    finally:
        conn.close()

    for _, _, record_errors in parsed:
        result["errors"] += record_errors
    invalid = sum(1 for _, _, record_errors in parsed if record_errors)
    result.update({
        "total_records": len(parsed),
        "valid_records": len(parsed) - invalid,
        "invalid_records": invalid,
        "is_valid": not result["errors"],
    })
    summary["new_records"] = len(parsed) - invalid - summary["existing_records"]
    result["validation_summary"] = summary
    return result, parsed


def validate_migration_data(request: MigrationRequest, db_path=None) -> dict:
    result, _ = _validate(request, db_path=db_path)
    return result


# ---------------------------------------------------------------------------
# Progress tracking
# ---------------------------------------------------------------------------
class _Progress:
    def __init__(self, progress_id, total):
        self.progress_id = progress_id
        self.total = total
        self.processed = 0
        self.step = max(1, total // 10)

    def _emit(self, operation, errors, warnings, completed=False, successful=False):
        percentage = 100 if completed or not self.total else int(
            self.processed * 100 / self.total)
        emit_progress(self.progress_id, {
            "progress_id": self.progress_id,
            "percentage": percentage,
            "processed_records": self.processed,
            "total_records": self.total,
            "current_operation": operation,
            "is_completed": completed,
            "is_successful": successful,
            "recent_errors": errors[-3:],
            "recent_warnings": warnings[-3:],
        })

    def advance(self, operation, errors, warnings):
        self.processed += 1
        if self.processed % self.step == 0:
            self._emit(operation, errors, warnings)

    def complete(self, errors, warnings, successful):
        self._emit("Completed", errors, warnings, completed=True, successful=successful)


# ---------------------------------------------------------------------------
# Importers (one record each; raise on failure)
# ---------------------------------------------------------------------------
def _import_user(record: UserImportRecord, request, actor_id, db_path, warnings):
    conn = get_cams_connection(db_path)
    try:
        existing = conn.execute(
            """SELECT * FROM users WHERE is_active = 1
               AND (username = ? COLLATE NOCASE OR email = ? COLLATE NOCASE)""",
            (record.username.strip(), record.email.strip()),
        ).fetchone()
        if existing and not request.overwrite_existing:
            warnings.append(f"User '{record.username}' already exists, skipping")
            return False

        if existing:
            user_id = existing["id"]
            conn.execute(
                """UPDATE users SET first_name = ?, last_name = ?, phone_number = ?,
                                    is_active = ?, updated_at = ?
                   WHERE id = ?""",
                (record.first_name, record.last_name, record.phone_number,
                 1 if record.is_active else 0, utcnow_iso(), user_id),
            )
            if record.password:
                conn.execute("UPDATE users SET password_hash = ? WHERE id = ?",
                             (user_service.hash_password(record.password), user_id))
            if record.roles:
                role_ids, _ = role_service.resolve_role_ids(conn, record.roles)
                if role_ids:
                    conn.execute(
                        "UPDATE user_roles SET is_active = 0 WHERE user_id = ?", (user_id,))
                    for role_id in role_ids:
                        role_service.assign_role_in_tx(conn, user_id, role_id, actor_id)
            log_audit(actor_id, "Update", "User", entity_id=user_id,
                      entity_name=existing["username"], description="Updated by migration",
                      new_values={"first_name": record.first_name,
                                  "last_name": record.last_name,
                                  "is_active": record.is_active,
                                  "roles": record.roles}, conn=conn)
        else:
            user_service.insert_user(
                conn, record.username, record.email,
                record.password or C.DEFAULT_IMPORT_PASSWORD,
                first_name=record.first_name, last_name=record.last_name,
                phone_number=record.phone_number, is_active=record.is_active,
                roles=record.roles, actor_id=actor_id)
        conn.commit()
        return True
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _import_role(record: RoleImportRecord, request, actor_id, db_path, warnings):
    conn = get_cams_connection(db_path)
    try:
        existing = conn.execute(
            "SELECT * FROM roles WHERE name = ? COLLATE NOCASE", (record.name.strip(),)
        ).fetchone()
    finally:
        conn.close()

    if existing is None:
        role_service.create_role(record.name, record.description, record.is_active,
                                 actor_id=actor_id, db_path=db_path)
        return True
    if not request.overwrite_existing:
        warnings.append(f"Role '{record.name}' already exists, skipping")
        return False
    if existing["is_system"]:
        warnings.append(f"System role '{existing['name']}' cannot be modified, skipping")
        return False
    role_service.update_role(existing["id"], existing["name"], record.description,
                             record.is_active, actor_id=actor_id, db_path=db_path)
    return True


def _import_application(record: ApplicationImportRecord, request, actor_id, db_path,
                        warnings):
    conn = get_cams_connection(db_path)
    try:
        owner_id = actor_id
        if record.owner_username:
            owner = conn.execute(
                "SELECT id FROM users WHERE username = ? COLLATE NOCASE",
                (record.owner_username.strip(),),
            ).fetchone()
            if not owner:
                raise ValidationError(f"Owner '{record.owner_username}' does not exist")
            owner_id = owner["id"]

        app_request = ApplicationRequest(
            name=record.name, description=record.description, version=record.version,
            environment=record.environment, tags=record.tags, is_active=record.is_active)
        existing = application_service.find_by_name(conn, owner_id, record.name)
        if existing and not request.overwrite_existing:
            warnings.append(f"Application '{record.name}' already exists, skipping")
            return False
        if existing:
            application_service.update_application_in_tx(
                conn, existing["id"], owner_id, app_request, actor_id=actor_id)
        else:
            application_service.insert_application(conn, owner_id, app_request,
                                                   actor_id=actor_id)
        conn.commit()
        return True
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


_IMPORTERS = {
    MigrationType.USERS: ("user", lambda r: r.username, _import_user),
    MigrationType.ROLES: ("role", lambda r: r.name, _import_role),
    MigrationType.APPLICATIONS: ("application", lambda r: r.name, _import_application),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def _run_import(request: MigrationRequest, expected_type=None, actor_id=None,
                db_path=None) -> dict:
    start_time = utcnow_iso()
    progress_id = request.progress_id or str(uuid.uuid4())
    if expected_type is not None:
        request = request.model_copy(update={"migration_type": expected_type.value})

    validation, parsed = _validate(request, db_path=db_path)
    result = {
        "success": False,
        "message": "",
        "total_records": validation["total_records"],
        "successful_records": 0,
        "failed_records": 0,
        "skipped_records": 0,
        "errors": list(validation["errors"]),
        "warnings": list(validation["warnings"]),
        "start_time": start_time,
        "end_time": None,
        "validation_summary": validation,
        "progress_id": progress_id,
    }

    if not validation["is_valid"]:
        result["message"] = "Validation failed"
        result["failed_records"] = validation["invalid_records"]
        result["end_time"] = utcnow_iso()
        return result
    if request.validate_only:
        result["success"] = True
        result["message"] = "Validation completed successfully"
        result["end_time"] = utcnow_iso()
        return result

    migration_type = _migration_type(request.migration_type)
    kind = KINDS[migration_type][0]
    label, name_of, importer = _IMPORTERS[migration_type]
    errors, warnings = result["errors"], result["warnings"]
    progress = _Progress(progress_id, len(parsed))

    for _, record, _ in parsed:
        try:
            if importer(record, request, actor_id, db_path, warnings):
                result["successful_records"] += 1
            else:
                result["skipped_records"] += 1
        except Exception as exc:
            message = exc.message if isinstance(exc, CamsError) else str(exc)
            errors.append(f"Failed to import {label} '{name_of(record)}': {message}")
            result["failed_records"] += 1
            logger.warning("Migration record failed: %s", sanitize_for_log(errors[-1]))
        progress.advance(f"Importing {label} '{name_of(record)}'", errors, warnings)

    result["success"] = result["failed_records"] == 0
    if not errors:
        result["message"] = f"Successfully imported {result['successful_records']} {kind}"
    else:
        result["message"] = (f"Completed with {len(errors)} errors. "
                             f"{result['successful_records']} {kind} imported successfully")
    result["end_time"] = utcnow_iso()
    progress.complete(errors, warnings, result["success"])

    if request.send_welcome_emails and migration_type == MigrationType.USERS:
        logger.info("Welcome emails requested for migration %s (not sent)",
                    sanitize_for_log(progress_id))
    log_audit(actor_id, "Import", "Migration", entity_id=progress_id, entity_name=kind,
              description=result["message"],
              new_values={"total_records": result["total_records"],
                          "successful_records": result["successful_records"],
                          "failed_records": result["failed_records"],
                          "skipped_records": result["skipped_records"],
                          "overwrite_existing": request.overwrite_existing,
                          "send_welcome_emails": request.send_welcome_emails},
              db_path=db_path)
    return result


def import_data(request: MigrationRequest, actor_id=None, db_path=None) -> dict:
    """Import whatever ``request.migration_type`` names."""
    return _run_import(request, actor_id=actor_id, db_path=db_path)


def import_users(request: MigrationRequest, actor_id=None, db_path=None) -> dict:
    return _run_import(request, MigrationType.USERS, actor_id, db_path)


def import_roles(request: MigrationRequest, actor_id=None, db_path=None) -> dict:
    return _run_import(request, MigrationType.ROLES, actor_id, db_path)


def import_applications(request: MigrationRequest, actor_id=None, db_path=None) -> dict:
    return _run_import(request, MigrationType.APPLICATIONS, actor_id, db_path)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------
_TEMPLATES = {
    MigrationType.USERS: {
        "example": [{
            "username": "example_user",
            "email": "user@example.com",
            "password": C.DEFAULT_IMPORT_PASSWORD,
            "first_name": "John",
            "last_name": "Doe",
            "phone_number": "123-456-7890",
            "is_active": True,
            "roles": [C.ROLE_USER],
        }],
        "fields": {
            "username": "Required. 3-50 characters: letters, numbers, . _ -",
            "email": "Required. Unique email address",
            "password": f"Optional. Defaults to {C.DEFAULT_IMPORT_PASSWORD}",
            "first_name": "Optional",
            "last_name": "Optional",
            "phone_number": "Optional",
            "is_active": "Optional. Defaults to true",
            "roles": f"Optional. Role names; defaults to {C.DEFAULT_ROLE}",
        },
    },
    MigrationType.ROLES: {
        "example": [{
            "name": "ExampleRole",
            "description": "This is an example role",
            "is_active": True,
        }],
        "fields": {
            "name": f"Required. Unique, at most {C.ROLE_NAME_MAX} characters",
            "description": f"Optional. At most {C.ROLE_DESCRIPTION_MAX} characters",
            "is_active": "Optional. Defaults to true",
        },
    },
    MigrationType.APPLICATIONS: {
        "example": [{
            "name": "Example Application",
            "description": "This is an example application",
            "version": "1.0.0",
            "environment": "Development",
            "tags": "api, web, backend",
            "is_active": True,
            "owner_username": None,
        }],
        "fields": {
            "name": f"Required. Unique per owner, at most {C.APP_NAME_MAX} characters",
            "description": f"Optional. At most {C.APP_DESCRIPTION_MAX} characters",
            "version": f"Optional. At most {C.APP_VERSION_MAX} characters",
            "environment": f"Optional. At most {C.APP_ENVIRONMENT_MAX} characters",
            "tags": f"Optional. At most {C.APP_TAGS_MAX} characters",
            "is_active": "Optional. Defaults to true",
            "owner_username": "Optional. Defaults to the importing user",
        },
    },
}


def get_migration_template(migration_type) -> dict:
    resolved = _migration_type(migration_type)
    if resolved is None:
        raise ValidationError(f"Unknown template type: {migration_type}", service="migration")
    template = _TEMPLATES[resolved]
    return {
        "migration_type": resolved.value,
        "example": template["example"],
        "fields": template["fields"],
    }
