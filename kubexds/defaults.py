"""
Default stack configuration and first-run bootstrap of the config file.
"""

from pathlib import Path
from typing import Optional

import structlog

from .config import get_settings
from .schemas.stack_v1 import DBConfig, MigrationInfo, RootConfig, load_root_config, save_root_config
from .secret_store import DEFAULT_PASSWORD_LENGTH, PASSWORD_SECRET, SecretStore

logger = structlog.get_logger()

DEFAULT_SERVICE = "postgres"


def generate_default_root_config(secret_store: Optional[SecretStore] = None) -> RootConfig:
    """Single-postgres stack with migrations enabled.

    The password is generated into the secret store and left out of the
    config itself, so the saved file carries no credential.
    """
    if secret_store is not None:
        secret_store.get_or_create(DEFAULT_SERVICE, PASSWORD_SECRET, DEFAULT_PASSWORD_LENGTH)

    db = DBConfig(
        id=DEFAULT_SERVICE,
        name=DEFAULT_SERVICE,
        is_default=True,
        enabled=True,
        type="postgres",
        host="127.0.0.1",
        port="5432",
        user="kubex_adm",
        db_name="kubex_db",
        db_schema="public",
        options={
            "sslmode": "disable",
            "connect_timeout": 10,
            "application_name": "kubexds",
        },
        migration=MigrationInfo(enabled=True, auto=True),
    )
    return RootConfig(name="kubexds", enabled=True, databases={DEFAULT_SERVICE: db})


def load_or_bootstrap(
    path: Optional[Path] = None, secret_store: Optional[SecretStore] = None
) -> RootConfig:
    """Load the config at ``path``, writing the default one first if it is missing."""
    path = Path(path).expanduser() if path else get_settings().config_file
    if path.exists():
        return load_root_config(path)

    config = generate_default_root_config(secret_store)
    save_root_config(config, path)
    logger.info("config_bootstrapped", path=str(path))
    return config
