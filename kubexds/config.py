"""
Configuration management for the kubexds data stack provisioner.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BACKEND = "dockerstack"


def _default_config_root() -> Path:
    return Path.home() / ".kubexds"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Bootstrap
    kubexds_backends: str = Field(
        default=DEFAULT_BACKEND,
        description="Comma-separated ordered list of provider names.",
    )
    kubexds_strict: bool = Field(
        default=False,
        description="Abort on the first provider failure instead of falling through.",
    )

    # Secrets
    app_master_key: Optional[str] = Field(
        default=None, description="Base64-encoded 32-byte AES key."
    )
    app_secrets_dir: Optional[Path] = None

    # Filesystem layout
    kubexds_config_root: Path = Field(default_factory=_default_config_root)

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # Containers
    container_prefix: str = "kubexds"
    port_probe_window: int = Field(default=10, ge=1)
    container_stop_timeout_seconds: int = 10

    # Timeouts
    statement_timeout_seconds: float = 30.0
    ping_timeout_seconds: float = 3.0
    readiness_max_wait_seconds: float = 30.0
    readiness_attempt_timeout_seconds: float = 5.0

    def backend_list(self) -> List[str]:
        """Return the provider preference list, whitespace and empties removed."""
        backends = [b.strip() for b in self.kubexds_backends.split(",")]
        return [b for b in backends if b] or [DEFAULT_BACKEND]

    @property
    def config_root(self) -> Path:
        return self.kubexds_config_root.expanduser()

    @property
    def config_file(self) -> Path:
        return self.config_root / "config.json"

    @property
    def secrets_dir(self) -> Path:
        if self.app_secrets_dir is not None:
            return self.app_secrets_dir.expanduser()
        return self.config_root / "secrets"

    @property
    def volumes_dir(self) -> Path:
        return self.config_root / "volumes"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
