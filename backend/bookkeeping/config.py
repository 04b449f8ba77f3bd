"""
Centralized configuration management for the bookkeeping server

This module is the single source of truth for server settings. Values are
loaded from environment variables (and a .env file when present) with sensible
defaults for everything except the handful of keys the server cannot start
without.

Required keys:
- SERVER_HOST / SERVER_PORT: where the HTTP server listens
- CRON_BACKUP_DAILY: cron expression for the database backup job

Example:
    ```python
    from bookkeeping.config import Config

    config = Config.from_env()
    print(config.address)

    for warning in config.validate():
        print(warning)
    ```
"""
import os
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from bookkeeping.exceptions import ConfigurationError

REQUIRED_KEYS = ("SERVER_HOST", "SERVER_PORT", "CRON_BACKUP_DAILY")

OVERLAP_POLICIES = ("allow", "skip", "wait")

_TRUE_VALUES = ("true", "1", "yes")


def _get_int(env: Mapping[str, str], key: str, default: str) -> int:
    raw = env.get(key, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", key=key)


def _get_float(env: Mapping[str, str], key: str, default: str) -> float:
    raw = env.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be a number, got {raw!r}", key=key)
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative, got {raw!r}", key=key)
    return value


class Config:
    """
    Server configuration resolved from environment variables

    Instances are built once during startup by the lifecycle and treated as
    read-only afterwards. Missing or malformed required keys raise
    ConfigurationError, which the lifecycle treats as fatal.
    """

    def __init__(self, env: Mapping[str, str]):
        missing = [key for key in REQUIRED_KEYS if not env.get(key, "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                key=missing[0],
            )

        # Server Configuration
        self.SERVER_HOST: str = env["SERVER_HOST"].strip()
        self.SERVER_PORT: int = _get_int(env, "SERVER_PORT", "")
        if not 0 <= self.SERVER_PORT <= 65535:
            raise ConfigurationError(
                f"SERVER_PORT out of range: {self.SERVER_PORT}", key="SERVER_PORT"
            )
        self.SERVER_CONTEXT_TIMEOUT: float = _get_float(env, "SERVER_CONTEXT_TIMEOUT", "10")
        self.SHUTDOWN_GRACE_SECONDS: float = _get_float(env, "SHUTDOWN_GRACE_SECONDS", "15")

        # Application Configuration
        self.APP_ENV: str = env.get("APP_ENV", "development")
        self.APP_VERSION: str = env.get("APP_VERSION", "0.0.0")
        self.LOG_LEVEL: str = env.get("LOG_LEVEL", "INFO").upper()
        self.LOG_JSON: bool = env.get("LOG_JSON", "false").lower() in _TRUE_VALUES
        self.LOG_DIR: str = env.get("LOG_DIR", "./logs")
        self.LOG_TO_FILE: bool = env.get("LOG_TO_FILE", "false").lower() in _TRUE_VALUES
        self.LOG_FILE_MAX_BYTES: int = _get_int(env, "LOG_FILE_MAX_BYTES", "10485760")
        self.LOG_FILE_BACKUP_COUNT: int = _get_int(env, "LOG_FILE_BACKUP_COUNT", "5")

        # Database Configuration
        self.DATABASE_URL: str = env.get("DATABASE_URL", "sqlite+aiosqlite:///./bookkeeping.db")

        # Backup Configuration
        self.CRON_BACKUP_DAILY: str = env["CRON_BACKUP_DAILY"].strip()
        self.BACKUP_DIR: str = env.get("BACKUP_DIR", "./backups")
        self.BACKUP_FILE_PREFIX: str = env.get("BACKUP_FILE_PREFIX", "bookkeeping")
        self.BACKUP_UPLOAD_URL: str = env.get("BACKUP_UPLOAD_URL", "")
        self.BACKUP_UPLOAD_TOKEN: str = env.get("BACKUP_UPLOAD_TOKEN", "")
        self.BACKUP_TIMEOUT_SECONDS: float = _get_float(env, "BACKUP_TIMEOUT_SECONDS", "0")
        self.BACKUP_DRAIN_TIMEOUT_SECONDS: float = _get_float(env, "BACKUP_DRAIN_TIMEOUT_SECONDS", "30")
        self.BACKUP_OVERLAP_POLICY: str = env.get("BACKUP_OVERLAP_POLICY", "allow").lower()
        if self.BACKUP_OVERLAP_POLICY not in OVERLAP_POLICIES:
            raise ConfigurationError(
                f"BACKUP_OVERLAP_POLICY must be one of {', '.join(OVERLAP_POLICIES)}, "
                f"got {self.BACKUP_OVERLAP_POLICY!r}",
                key="BACKUP_OVERLAP_POLICY",
            )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Build configuration from the process environment

        Args:
            env: Optional mapping used instead of os.environ (tests)

        Returns:
            Resolved Config

        Raises:
            ConfigurationError: when a required key is missing or malformed
        """
        if env is None:
            load_dotenv()
            env = os.environ
        return cls(env)

    @property
    def address(self) -> str:
        """host:port the HTTP server binds to"""
        return f"{self.SERVER_HOST}:{self.SERVER_PORT}"

    @property
    def backup_timeout(self) -> Optional[float]:
        """Per-cycle deadline in seconds, None when unbounded"""
        return self.BACKUP_TIMEOUT_SECONDS or None

    def is_production(self) -> bool:
        """Check if running in the production environment"""
        return self.APP_ENV == "production"

    def is_sqlite(self) -> bool:
        """Check if using SQLite database"""
        return self.DATABASE_URL.startswith("sqlite")

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of warnings

        Returns:
            List of validation messages (empty if all valid)
        """
        warnings = []

        if not self.BACKUP_UPLOAD_URL:
            warnings.append("BACKUP_UPLOAD_URL is not set - scheduled backups will fail to upload")

        if self.SHUTDOWN_GRACE_SECONDS == 0:
            warnings.append("SHUTDOWN_GRACE_SECONDS is 0 - in-flight requests are dropped on shutdown")

        if self.BACKUP_TIMEOUT_SECONDS == 0:
            warnings.append(
                "BACKUP_TIMEOUT_SECONDS is 0 - a stuck upload can block a backup cycle indefinitely"
            )

        if not self.is_sqlite():
            warnings.append(
                f"Database dumps are only supported for SQLite; backups of {self.DATABASE_URL.split(':')[0]} will fail"
            )

        return warnings
