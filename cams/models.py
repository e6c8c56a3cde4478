#!/usr/bin/env python3
"""CAMS -- Enums & Pydantic Request Models."""

from enum import Enum, IntEnum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from cams.errors import ValidationError


class DatabaseType(IntEnum):
    SQL_SERVER = 1
    MYSQL = 2
    POSTGRESQL = 3
    ORACLE = 4
    SQLITE = 5
    MONGODB = 11
    REDIS = 12
    REST_API = 21
    GRAPHQL = 22
    WEBSOCKET = 23
    AWS_RDS = 31
    AWS_DYNAMODB = 32
    AWS_S3 = 33
    AZURE_SQL = 41
    AZURE_COSMOSDB = 42
    AZURE_STORAGE = 43
    GOOGLE_CLOUDSQL = 51
    GOOGLE_FIRESTORE = 52
    GOOGLE_BIGQUERY = 53
    SNOWFLAKE = 61
    DATABRICKS = 62
    SALESFORCE_API = 71
    SERVICENOW_API = 72
    GITHUB_API = 73
    CUSTOM = 99


class ConnectionStatus(str, Enum):
    UNTESTED = "Untested"
    CONNECTED = "Connected"
    FAILED = "Failed"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class MigrationType(str, Enum):
    USERS = "USERS"
    ROLES = "ROLES"
    APPLICATIONS = "APPLICATIONS"


# ---- Connection type catalogue ----
# type -> (display name, category, default port)

DATABASE_TYPE_INFO = {
    DatabaseType.SQL_SERVER: ("SQL Server", "Relational", 1433),
    DatabaseType.MYSQL: ("MySQL", "Relational", 3306),
    DatabaseType.POSTGRESQL: ("PostgreSQL", "Relational", 5432),
    DatabaseType.ORACLE: ("Oracle", "Relational", 1521),
    DatabaseType.SQLITE: ("SQLite", "Relational", None),
    DatabaseType.MONGODB: ("MongoDB", "NoSQL", 27017),
    DatabaseType.REDIS: ("Redis", "NoSQL", 6379),
    DatabaseType.REST_API: ("REST API", "API", 443),
    DatabaseType.GRAPHQL: ("GraphQL", "API", 443),
    DatabaseType.WEBSOCKET: ("WebSocket", "API", 443),
    DatabaseType.AWS_RDS: ("AWS RDS", "Cloud", 5432),
    DatabaseType.AWS_DYNAMODB: ("AWS DynamoDB", "Cloud", 443),
    DatabaseType.AWS_S3: ("AWS S3", "Cloud", 443),
    DatabaseType.AZURE_SQL: ("Azure SQL", "Cloud", 1433),
    DatabaseType.AZURE_COSMOSDB: ("Azure Cosmos DB", "Cloud", 443),
    DatabaseType.AZURE_STORAGE: ("Azure Storage", "Cloud", 443),
    DatabaseType.GOOGLE_CLOUDSQL: ("Google Cloud SQL", "Cloud", 5432),
    DatabaseType.GOOGLE_FIRESTORE: ("Google Firestore", "Cloud", 443),
    DatabaseType.GOOGLE_BIGQUERY: ("Google BigQuery", "Cloud", 443),
    DatabaseType.SNOWFLAKE: ("Snowflake", "Data Warehouse", 443),
    DatabaseType.DATABRICKS: ("Databricks", "Data Warehouse", 443),
    DatabaseType.SALESFORCE_API: ("Salesforce API", "Integration", 443),
    DatabaseType.SERVICENOW_API: ("ServiceNow API", "Integration", 443),
    DatabaseType.GITHUB_API: ("GitHub API", "Integration", 443),
    DatabaseType.CUSTOM: ("Custom", "Custom", None),
}

RELATIONAL_TYPES = frozenset({
    DatabaseType.SQL_SERVER, DatabaseType.MYSQL, DatabaseType.POSTGRESQL,
    DatabaseType.ORACLE, DatabaseType.SQLITE, DatabaseType.AWS_RDS,
    DatabaseType.AZURE_SQL, DatabaseType.GOOGLE_CLOUDSQL,
})

# Types that authenticate with username/password against a server
CREDENTIAL_TYPES = frozenset({
    DatabaseType.SQL_SERVER, DatabaseType.MYSQL, DatabaseType.POSTGRESQL,
    DatabaseType.ORACLE,
})

API_TYPES = frozenset({
    DatabaseType.REST_API, DatabaseType.GRAPHQL, DatabaseType.WEBSOCKET,
    DatabaseType.SALESFORCE_API, DatabaseType.SERVICENOW_API,
    DatabaseType.GITHUB_API,
})


def database_type_catalogue() -> List[dict]:
    """Return the connection type list served by GET /database-connections/types."""
    return [
        {
            "value": int(db_type),
            "key": db_type.name,
            "name": name,
            "category": category,
            "default_port": port,
        }
        for db_type, (name, category, port) in DATABASE_TYPE_INFO.items()
    ]


def coerce_database_type(value: Any) -> DatabaseType:
    """Accept an int, a numeric string or an enum name (any case)."""
    if isinstance(value, DatabaseType):
        return value
    if value is None or isinstance(value, bool):
        raise ValueError("Database type is required")
    if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
        key = value.strip().upper().replace(" ", "_")
        for db_type in DatabaseType:
            if db_type.name.replace("_", "") == key.replace("_", ""):
                return db_type
        raise ValueError("Unknown database type: {}".format(value))
    try:
        return DatabaseType(int(value))
    except (TypeError, ValueError):
        raise ValueError("Unknown database type: {}".format(value))


# ---- Request Models ----

class ConnectionDetails(BaseModel):
    application_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    type: DatabaseType
    server: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    connection_string: Optional[str] = None
    api_base_url: Optional[str] = None
    api_key: Optional[str] = None
    additional_settings: Optional[str] = None
    is_active: bool = True
    github_token: Optional[str] = None
    github_organization: Optional[str] = None
    github_repository: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value):
        return coerce_database_type(value)


class ConnectionTestRequest(BaseModel):
    connection_id: Optional[str] = None
    connection_details: Optional[ConnectionDetails] = None


class ApplicationRequest(BaseModel):
    name: str = ""
    description: Optional[str] = None
    version: Optional[str] = None
    environment: Optional[str] = None
    tags: Optional[str] = None
    is_active: bool = True


class ApplicationWithConnectionRequest(BaseModel):
    application: ApplicationRequest
    connection: ConnectionDetails
    test_connection_after_creation: bool = False


class ScheduleRequest(BaseModel):
    application_id: str
    cron_expression: str = Field(..., max_length=100)
    is_enabled: bool = True


class ScheduleUpdateRequest(BaseModel):
    cron_expression: str = Field(..., max_length=100)
    is_enabled: bool = True


class MigrationRequest(BaseModel):
    migration_type: str = ""
    data: Any = None
    validate_only: bool = False
    overwrite_existing: bool = False
    send_welcome_emails: bool = False
    progress_id: Optional[str] = None


class UserImportRecord(BaseModel):
    username: str = ""
    email: str = ""
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    roles: List[str] = []
    is_active: bool = True


class RoleImportRecord(BaseModel):
    name: str = ""
    description: Optional[str] = None
    is_active: bool = True


class ApplicationImportRecord(BaseModel):
    name: str = ""
    description: Optional[str] = None
    version: Optional[str] = None
    environment: Optional[str] = None
    tags: Optional[str] = None
    is_active: bool = True
    owner_username: Optional[str] = None


class BulkConnectionRequest(BaseModel):
    connection_ids: List[str] = Field(..., min_length=1)
    is_active: Optional[bool] = None


def format_pydantic_errors(exc: PydanticValidationError) -> List[str]:
    """Flatten pydantic errors into "field: message" strings."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append("{}: {}".format(loc, err.get("msg")) if loc else err.get("msg"))
    return messages


def parse_model(model_cls, data):
    """Validate ``data`` into ``model_cls`` or raise a CAMS ValidationError."""
    if data is None:
        raise ValidationError("Request body is required")
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        errors = format_pydantic_errors(exc)
        raise ValidationError(errors[0], errors=errors)
