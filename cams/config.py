"""
CAMS configuration.
Loads settings from args/cams_config.yaml with environment variable overrides.
"""

import copy
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from cams.errors import ConfigurationError

logger = logging.getLogger("cams.config")

# Base directory: project root (one level up from this package)
BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_PATH = BASE_DIR / "args" / "cams_config.yaml"
ENV_FILE = BASE_DIR / ".env"

DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {
        "path": "data/cams.db",
    },
    "jwt": {
        "secret": "",
        "issuer": "cams",
        "audience": "cams-clients",
        "expiry_minutes": 60,
        "refresh_token_days": 7,
    },
    "encryption": {
        "key": "",
    },
    "scheduler": {
        "interval_seconds": 60,
        "test_timeout_seconds": 10,
    },
    "logging": {
        "slow_request_ms": 1000,
        "failed_login_threshold": 5,
        "retention_days": {
            "audit": 365,
            "security": 180,
            "system": 90,
            "performance": 30,
        },
    },
    "cors": {
        "allowed_origins": ["http://localhost:3000", "http://localhost:5173"],
    },
}

# (env var, config path, caster)
_ENV_OVERRIDES = [
    ("CAMS_DB_PATH", ("database", "path"), str),
    ("CAMS_JWT_SECRET", ("jwt", "secret"), str),
    ("CAMS_JWT_ISSUER", ("jwt", "issuer"), str),
    ("CAMS_JWT_AUDIENCE", ("jwt", "audience"), str),
    ("CAMS_JWT_EXPIRY_MINUTES", ("jwt", "expiry_minutes"), int),
    ("CAMS_REFRESH_TOKEN_DAYS", ("jwt", "refresh_token_days"), int),
    ("CAMS_ENCRYPTION_KEY", ("encryption", "key"), str),
    ("CAMS_SCHEDULER_INTERVAL", ("scheduler", "interval_seconds"), int),
]

_config: Optional[Dict[str, Any]] = None
_ephemeral: Dict[str, str] = {}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, val in (override or {}).items():
        if isinstance(val, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


def _load_yaml(filepath: Path) -> dict:
    """Load a YAML mapping; a missing file is an empty mapping."""
    if not filepath.exists():
        return {}
    with open(filepath, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Config file {} must contain a mapping".format(filepath))
    return data


def load_dotenv_file() -> Optional[Path]:
    """Load ``.env`` (or ``CAMS_ENV_FILE``) into the process environment.

    Variables already set in the environment win over the file.
    """
    env_file = Path(os.environ.get("CAMS_ENV_FILE") or ENV_FILE)
    if not env_file.is_file():
        return None
    load_dotenv(str(env_file))
    logger.info("Loaded environment from %s", env_file)
    return env_file


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Build the effective config: defaults <- YAML file <- environment (.env included)."""
    load_dotenv_file()
    if path is None:
        env_path = os.environ.get("CAMS_CONFIG_PATH", "")
        path = Path(env_path) if env_path else CONFIG_PATH
    cfg = _deep_merge(DEFAULT_CONFIG, _load_yaml(Path(path)))

    for env_name, (section, key), caster in _ENV_OVERRIDES:
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            cfg[section][key] = caster(raw)
        except ValueError:
            raise ConfigurationError(
                "Invalid value for {}: {!r}".format(env_name, raw),
                config_key=env_name,
            )

    origins_env = os.environ.get("CORS_ALLOWED_ORIGINS", "")
    if origins_env:
        cfg["cors"]["allowed_origins"] = [
            o.strip() for o in origins_env.split(",") if o.strip()
        ]
    return cfg


def get_config() -> Dict[str, Any]:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config (tests and CLI overrides)."""
    global _config
    _config = None
    _ephemeral.clear()


def get_db_path() -> Path:
    """Resolve the CAMS database path (relative paths resolve from BASE_DIR)."""
    db_path = Path(get_config()["database"]["path"])
    if not db_path.is_absolute():
        db_path = BASE_DIR / db_path
    return db_path


def _require_secret(section: str, key: str, env_name: str) -> str:
    value = get_config()[section].get(key) or ""
    if value:
        return value
    if os.environ.get("CAMS_ENV", "").lower() == "production":
        raise ConfigurationError(
            "{} must be set in production".format(env_name), config_key=env_name)
    if env_name not in _ephemeral:
        logger.warning(
            "%s not configured -- using an ephemeral value for this process",
            env_name)
        _ephemeral[env_name] = secrets.token_urlsafe(48)
    return _ephemeral[env_name]


def get_jwt_secret() -> str:
    return _require_secret("jwt", "secret", "CAMS_JWT_SECRET")


def get_encryption_key() -> str:
    return _require_secret("encryption", "key", "CAMS_ENCRYPTION_KEY")
