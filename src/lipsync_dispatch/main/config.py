import logging
import os
import sys
from importlib import resources
from typing import Optional

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SWEEP_MODES = ("locked", "unguarded")


def _default_workflow_template_path() -> str:
    return str(resources.files("lipsync_dispatch") / "lipsync" / "templates" / "lipsync.json")


def parse_machine_list(raw: str | None) -> list[str]:
    """Split a comma separated MACHINE_LIST into clean worker base URLs.

    Order is preserved, blanks are dropped and trailing slashes are removed so
    that paths like ``/queue`` can be appended directly.

    Examples:
        >>> parse_machine_list(" http://a:8188/ , ,http://b:8188")
        ['http://a:8188', 'http://b:8188']
    """
    if not raw:
        return []
    return [m.strip().rstrip("/") for m in raw.split(",") if m.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    app_version: str = "0.1.0"

    # Coordination store
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: Optional[int] = None
    redis_conn_timeout: int = 10
    redis_retry_on_timeout: bool = True
    redis_socket_keepalive: bool = True
    redis_health_check_interval: int = 30
    redis_max_connections: Optional[int] = None

    # Persisted layout
    task_collection_key: str = "queue"
    waiting_collection_key: str = "waiting_queue"
    lock_prefix: str = "lock:"

    # Workers (comma separated, order is the "first free" priority)
    machine_list: str = ""
    worker_probe_timeout_seconds: float = 5.0

    # Sweep loop
    sweep_enabled: bool = True
    sweep_mode: str = "locked"
    sweep_interval_seconds: float = 5.0
    sweep_lock_key: str = "waiting_queue:sweep"
    sweep_lock_ttl_ms: int = 60_000  # must outlive one full hand-off

    # Advisory lock retry
    lock_retry_delay_ms: int = 100
    lock_max_attempts: int = 20

    # Dispatch
    webhook_url: str = "http://localhost:3000/webhook"
    workflow_template_path: str = _default_workflow_template_path()
    dispatch_queue_max_size: int = 100

    # Blob storage for deferred inputs
    blob_storage_dir: str = "./blobs"
    blob_public_base_url: str = "http://localhost:3000/blobs"

    # Server
    port: int = 3000

    # Dev
    testing: bool = False
    dev: bool = False

    @model_validator(mode="after")
    def validate_sweep_settings(self):
        """Ensure sweep and lock configuration values are sane."""
        if self.sweep_mode not in SWEEP_MODES:
            logging.error(
                "SWEEP_MODE must be one of %s. Current value: %s",
                ", ".join(SWEEP_MODES),
                self.sweep_mode,
            )
            sys.exit(1)

        if self.sweep_interval_seconds <= 0:
            logging.error(
                "SWEEP_INTERVAL_SECONDS must be greater than zero. Current value: %s",
                self.sweep_interval_seconds,
            )
            sys.exit(1)

        if self.sweep_lock_ttl_ms <= 0:
            logging.error(
                "SWEEP_LOCK_TTL_MS must be greater than zero. Current value: %s",
                self.sweep_lock_ttl_ms,
            )
            sys.exit(1)

        if self.lock_max_attempts <= 0:
            logging.error(
                "LOCK_MAX_ATTEMPTS must be greater than zero. Current value: %s",
                self.lock_max_attempts,
            )
            sys.exit(1)

        if self.dispatch_queue_max_size <= 0:
            logging.error(
                "DISPATCH_QUEUE_MAX_SIZE must be greater than zero. Current value: %s",
                self.dispatch_queue_max_size,
            )
            sys.exit(1)

        if self.sweep_lock_ttl_ms < self.sweep_interval_seconds * 1000:
            logging.warning(
                "SWEEP_LOCK_TTL_MS (%s) is shorter than SWEEP_INTERVAL_SECONDS (%s)."
                " A slow hand-off may outlive the lock and overlap with another instance.",
                self.sweep_lock_ttl_ms,
                self.sweep_interval_seconds,
            )

        return self

    @computed_field
    @property
    def machines(self) -> list[str]:
        return parse_machine_list(self.machine_list)

    @computed_field
    @property
    def coordination_store_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
