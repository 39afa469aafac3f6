"""Application configuration for modqueue.

Reads runtime settings from environment variables with sensible defaults.
All configuration is centralised here; no other module reads os.environ directly.
"""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Application-wide configuration loaded from environment variables.

    Attributes:
        storage_dir: Root directory of the local artifact store.
        public_base_url: URL prefix under which stored artifacts are served.
        moderator_key: Shared moderator credential. Empty disables the check.
        ping_interval_seconds: Seconds the server waits for each keepalive ping.
        max_missed_pings: Consecutive silent intervals before a socket is closed.
        promote_attempts: Existence-poll attempts after copying an approved item.
        promote_interval_seconds: Fixed wait between existence-poll attempts.
        max_caption_length: Maximum caption length accepted at intake.
        max_upload_bytes: Maximum image size accepted at intake.
        host: Interface the bundled server binds to.
        port: Port the bundled server listens on.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    storage_dir: Path = Path("data")
    public_base_url: str = "/media"
    moderator_key: str = ""
    ping_interval_seconds: float = 10.0
    max_missed_pings: int = 3
    promote_attempts: int = 30
    promote_interval_seconds: float = 1.0
    max_caption_length: int = 1000
    max_upload_bytes: int = 5 * 1024 * 1024
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"

    model_config = {"env_prefix": "MODQUEUE_", "case_sensitive": False}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is one of the accepted Python logging levels.

        Args:
            v: The raw log level string from the environment.

        Returns:
            The uppercased log level string if valid.

        Raises:
            ValueError: If the value is not a recognised logging level.
        """
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}; got {v!r}")
        return upper

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the locator prefix so joins never produce ``//``."""
        return v.rstrip("/") or "/"

    @field_validator("max_missed_pings", "promote_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative retry and keepalive budgets."""
        if v < 1:
            raise ValueError(f"value must be >= 1; got {v}")
        return v

    @field_validator("ping_interval_seconds", "promote_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        """Reject zero or negative waits."""
        if v <= 0:
            raise ValueError(f"interval must be > 0; got {v}")
        return v


def get_config() -> AppConfig:
    """Return the application configuration, resolved from environment variables.

    Environment variables read (case-insensitive):
        MODQUEUE_STORAGE_DIR: Artifact store root (default: ``data/``).
        MODQUEUE_PUBLIC_BASE_URL: Locator prefix (default: ``/media``).
        MODQUEUE_MODERATOR_KEY: Shared moderator credential (default: unset).
        MODQUEUE_PING_INTERVAL_SECONDS / MODQUEUE_MAX_MISSED_PINGS: keepalive.
        MODQUEUE_PROMOTE_ATTEMPTS / MODQUEUE_PROMOTE_INTERVAL_SECONDS: poll.
        MODQUEUE_LOG_LEVEL: Logging verbosity level (default: ``INFO``).

    Returns:
        An :class:`AppConfig` instance populated from the environment.
    """
    return AppConfig(
        _env_file=".env",
        _env_file_encoding="utf-8",
    )
