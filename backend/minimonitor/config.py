from functools import lru_cache
import logging
import os
import sys
from pydantic_settings import BaseSettings, SettingsConfigDict

from minimonitor.utils.path_utils import resolve_local_path


logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
    pass


class Settings(BaseSettings):
    """Application configuration pulled from environment variables or .env file."""

    # Docker runtime
    docker_host: str = "unix:///var/run/docker.sock"
    docker_timeout: int = 10

    # Collection cadence
    poll_interval_ms: int = 2000

    # History buffer
    history_retention_seconds: int = 8 * 60 * 60
    history_capacity: int | None = None
    history_file: str = "data/history.json"
    history_flush_interval_seconds: float = 60.0

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3000
    static_dir: str = "static"

    # CORS settings
    # Comma-separated list of allowed origins, or "*" for all (not recommended)
    cors_allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Environment (development, staging, production)
    environment: str = "development"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def resolved_history_capacity(self) -> int:
        """Number of records that cover the retention window at the current cadence.

        Recomputed from the poll interval, so changing the cadence keeps the
        same time window. An explicit ``history_capacity`` wins.
        """
        if self.history_capacity is not None:
            return self.history_capacity
        if self.poll_interval_ms <= 0:
            return 0
        return max(1, (self.history_retention_seconds * 1000) // self.poll_interval_ms)

    @property
    def history_path(self) -> str:
        return resolve_local_path(self.history_file)

    def validate_required(self) -> list[str]:
        """Validate configuration settings.

        Returns a list of error messages for invalid settings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if self.poll_interval_ms <= 0:
            errors.append("POLL_INTERVAL_MS must be greater than zero")

        if self.history_flush_interval_seconds * 1000 <= self.poll_interval_ms:
            errors.append(
                "HISTORY_FLUSH_INTERVAL_SECONDS must be longer than POLL_INTERVAL_MS"
            )

        if self.history_capacity is not None and self.history_capacity <= 0:
            errors.append("HISTORY_CAPACITY must be greater than zero when set")

        if self.history_retention_seconds <= 0:
            errors.append("HISTORY_RETENTION_SECONDS must be greater than zero")

        if not self.history_file:
            errors.append("HISTORY_FILE is required but not set")
        else:
            history_dir = os.path.dirname(self.history_path) or "."
            if os.path.exists(history_dir) and not os.access(history_dir, os.W_OK):
                warnings.append(
                    f"History directory not writable: {history_dir}, history will not persist"
                )

        if not self.docker_host:
            errors.append("DOCKER_HOST is required but not set")

        # Check CORS settings in production
        if self.environment.lower() == "production" and self.cors_allowed_origins == "*":
            errors.append(
                "CORS_ALLOWED_ORIGINS is set to '*' (allow all) in production. "
                "Set specific allowed origins."
            )

        # Log warnings
        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        return errors


def validate_config_on_startup(settings: Settings) -> None:
    """Validate configuration and exit if critical settings are missing."""
    errors = settings.validate_required()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        print("\nConfiguration Error:", file=sys.stderr)
        print("The following settings are missing or invalid:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        print("\nPlease check your .env file or environment variables.", file=sys.stderr)
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

    logger.info("Configuration validated successfully")


@lru_cache
def get_settings() -> Settings:
    return Settings()
