"""Taskline application configuration.

Loads settings from two YAML files:
  * taskline.settings.yaml: non-secret configuration
  * taskline.secrets.yaml: secrets (never committed)

Either location can be overridden with the TASKLINE_SETTINGS and
TASKLINE_SECRETS environment variables. TASKLINE_JWT_SECRET wins over the
secret stored in the secrets file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("taskline.settings.yaml")
SECRETS_FILE  = Path("taskline.secrets.yaml")

IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(value: str, base_dir: Path) -> str:
    """Resolve a storage path relative to the settings file directory."""
    if value == IN_MEMORY_DB:
        return value
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AuthSettings(BaseModel):
    token_expire_minutes: int  = Field(default=7 * 24 * 60, gt=0)
    token_query_param:    str  = "token"
    token_cookie:         str  = "token"
    cookie_secure:        bool = False
    # Argon2id cost parameters (memory in KiB)
    argon2_time_cost:     int  = Field(default=3, ge=1, le=10)
    argon2_memory_cost:   int  = Field(default=65536, ge=1024, le=1048576)


class RealtimeSettings(BaseModel):
    """Limits applied by the WebSocket layer (0 = unlimited)."""
    max_connections_per_identity: int = Field(default=0, ge=0)
    max_topics_per_connection:    int = Field(default=0, ge=0)
    max_entity_id_length:         int = Field(default=64, gt=0)


class StorageSettings(BaseModel):
    tasks_path:         str = "tasks.duckdb"
    notifications_path: str = "notifications.duckdb"
    audit_path:         str = "audit_logs.duckdb"
    users_path:         str = "users.duckdb"


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    storage:  StorageSettings  = Field(default_factory=StorageSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(settings_path or os.environ.get("TASKLINE_SETTINGS") or SETTINGS_FILE)
    secrets_path  = Path(secrets_path or os.environ.get("TASKLINE_SECRETS") or SECRETS_FILE)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)

    env_secret = os.environ.get("TASKLINE_JWT_SECRET")
    if env_secret:
        app_settings.secrets.jwt.secret_key = env_secret

    base_dir = settings_path.resolve().parent
    storage = app_settings.storage
    storage.tasks_path         = _resolve_path(storage.tasks_path, base_dir)
    storage.notifications_path = _resolve_path(storage.notifications_path, base_dir)
    storage.audit_path         = _resolve_path(storage.audit_path, base_dir)
    storage.users_path         = _resolve_path(storage.users_path, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, log_level=%s, max_connections_per_identity=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.logging.level,
        app_settings.realtime.max_connections_per_identity,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppSettings) -> None:
    """Install an explicit settings object (tests, embedding)."""
    global _config
    _config = config


def reset_config() -> None:
    global _config
    _config = None
