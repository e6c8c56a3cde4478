"""CAMS shared constants: role names, defaults and client-facing messages."""

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------
ROLE_PLATFORM_ADMIN = "PlatformAdmin"
ROLE_ADMIN = "Admin"
ROLE_USER = "User"

SYSTEM_ROLES = {
    ROLE_PLATFORM_ADMIN: "Platform administrator with full system access",
    ROLE_ADMIN: "Administrator with user and application management access",
    ROLE_USER: "Standard user with access to own applications and connections",
}

# Highest privilege first
ROLE_HIERARCHY = [ROLE_PLATFORM_ADMIN, ROLE_ADMIN, ROLE_USER]

DEFAULT_ROLE = ROLE_USER
DEFAULT_IMPORT_PASSWORD = "TempPassword123!"

# ---------------------------------------------------------------------------
# Field limits
# ---------------------------------------------------------------------------
USERNAME_MIN, USERNAME_MAX = 3, 50
PASSWORD_MIN, PASSWORD_MAX = 6, 100
APP_NAME_MAX = 100
APP_DESCRIPTION_MAX = 1000
APP_VERSION_MAX = 50
APP_ENVIRONMENT_MAX = 200
APP_TAGS_MAX = 500
CONNECTION_NAME_MAX = 100
SERVER_MAX = 255
ROLE_NAME_MAX = 50
ROLE_DESCRIPTION_MAX = 255
CRON_EXPRESSION_MAX = 100
RUN_MESSAGE_MAX = 1000
AUDIT_ACTION_MAX = 50

# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
INVALID_CREDENTIALS = "Invalid username or password"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"
INVALID_TOKEN = "Invalid or expired token"
ACCESS_DENIED = "Access denied"
APPLICATION_NOT_FOUND = "Application not found"
APPLICATION_ACCESS_DENIED = "Application not found or access denied"
CONNECTION_NOT_FOUND = "Connection not found"
CONNECTION_ACCESS_DENIED = "Connection not found or access denied"
SCHEDULE_NOT_FOUND = "Schedule not found"
USER_NOT_FOUND = "User not found"
ROLE_NOT_FOUND = "Role not found"
LOG_NOT_FOUND = "Log entry not found"
USERNAME_TAKEN = "Username already exists"
EMAIL_TAKEN = "Email already exists"
ROLE_NAME_TAKEN = "Role name already exists"
APPLICATION_NAME_TAKEN = "An application with this name already exists"
PASSWORD_MISMATCH = "Passwords do not match"
CURRENT_PASSWORD_INCORRECT = "Current password is incorrect"
NO_ACTIVE_CONNECTIONS = "No active database connections found"
CONNECTION_TEST_FAILED = "Connection test failed"
CONNECTION_TEST_UNEXPECTED = "An unexpected error occurred while testing the connection"
INVALID_MIGRATION_JSON = "Invalid JSON format in migration data"

APPLICATION_DELETED = "Application deleted successfully"
CONNECTION_DELETED = "Connection deleted successfully"
SCHEDULE_DELETED = "Schedule deleted successfully"
ROLE_DELETED = "Role deleted successfully"
PASSWORD_CHANGED = "Password changed successfully"
EMAIL_CHANGED = "Email changed successfully"
ACCOUNT_DEACTIVATED = "Account deactivated successfully"
LOGGED_OUT = "Logged out successfully"
