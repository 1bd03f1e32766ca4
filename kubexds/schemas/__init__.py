"""Configuration schemas."""

from .stack_v1 import (
    KNOWN_DB_TYPES,
    DBConfig,
    Engine,
    MigrationInfo,
    RootConfig,
    load_root_config,
    save_root_config,
)

__all__ = [
    "KNOWN_DB_TYPES",
    "DBConfig",
    "Engine",
    "MigrationInfo",
    "RootConfig",
    "load_root_config",
    "save_root_config",
]
