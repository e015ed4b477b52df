"""Engine configuration read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def get_env_str(name: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """Get an environment variable as a string."""
    value = os.getenv(name)
    if value is None:
        if required:
            raise KeyError(f"Environment variable '{name}' is required but not set.")
        return default
    return value


def get_env_int(name: str, default: Optional[int] = None, required: bool = False) -> Optional[int]:
    """Get an environment variable as an integer."""
    value = get_env_str(name, required=required)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be an integer, got '{value}'.")


def get_env_float(
    name: str, default: Optional[float] = None, required: bool = False
) -> Optional[float]:
    """Get an environment variable as a float."""
    value = get_env_str(name, required=required)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable '{name}' must be a float, got '{value}'.")


def get_env_bool(
    name: str, default: Optional[bool] = None, required: bool = False
) -> Optional[bool]:
    """Get an environment variable as a boolean.

    Truthy: true, 1, yes, on
    Falsey: false, 0, no, off, (empty string)
    """
    value = get_env_str(name, required=required)
    if value is None:
        return default

    val_lower = value.lower()
    if val_lower in ("true", "1", "yes", "on"):
        return True
    if val_lower in ("false", "0", "no", "off", ""):
        return False

    raise ValueError(f"Environment variable '{name}' must be a boolean, got '{value}'.")


def _dsn_from_parts() -> Optional[str]:
    db_host = get_env_str("DB_HOST")
    if not db_host:
        return None
    db_port = get_env_int("DB_PORT", 5432)
    db_name = get_env_str("DB_NAME", "postgres")
    db_user = get_env_str("DB_USER", "postgres")
    db_pass = get_env_str("DB_PASS", "")
    return f"postgresql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}"


@dataclass(frozen=True)
class EngineSettings:
    """Connection, cache and execution settings for an engine."""

    dsn: Optional[str] = None
    schema_path: Optional[str] = None
    pool_min_size: int = 2
    pool_max_size: int = 10
    command_timeout: Optional[float] = 30.0
    statement_timeout_seconds: Optional[float] = None
    cache_ttl_seconds: int = 600
    cache_max_entries: int = 1000
    cache_invalidate_on_write: bool = True
    auto_create_tables: bool = False
    application_name: str = "relmap"

    @property
    def cache_enabled(self) -> bool:
        """Return True when point-lookup caching is active."""
        return self.cache_ttl_seconds > 0

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "EngineSettings":
        """Build settings from RELMAP_* variables, loading a .env file first."""
        if load_env_file:
            load_dotenv()

        return cls(
            dsn=get_env_str("RELMAP_DATABASE_URL") or _dsn_from_parts(),
            schema_path=get_env_str("RELMAP_SCHEMA_PATH"),
            pool_min_size=get_env_int("RELMAP_POOL_MIN_SIZE", 2),
            pool_max_size=get_env_int("RELMAP_POOL_MAX_SIZE", 10),
            command_timeout=get_env_float("RELMAP_COMMAND_TIMEOUT", 30.0),
            statement_timeout_seconds=get_env_float("RELMAP_STATEMENT_TIMEOUT_SECONDS"),
            cache_ttl_seconds=get_env_int("RELMAP_CACHE_TTL_SECONDS", 600),
            cache_max_entries=get_env_int("RELMAP_CACHE_MAX_ENTRIES", 1000),
            cache_invalidate_on_write=get_env_bool("RELMAP_CACHE_INVALIDATE_ON_WRITE", True),
            auto_create_tables=get_env_bool("RELMAP_AUTO_CREATE_TABLES", False),
            application_name=get_env_str("RELMAP_APPLICATION_NAME", "relmap"),
        )
