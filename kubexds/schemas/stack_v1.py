"""
Stack configuration schema (v1).

A ``RootConfig`` lists the data backends a developer wants on the local host.
It is loaded once per invocation and only mutated to fill a computed DSN or an
allocated host port.
"""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..errors import ConfigInvalid


class Engine(str, Enum):
    """Closed set of engines the provisioner can realize."""

    POSTGRES = "postgres"
    MONGODB = "mongodb"
    REDIS = "redis"
    RABBITMQ = "rabbitmq"

    @property
    def kind(self) -> str:
        """Abstract backend kind: relational, document, cache or broker."""
        return _ENGINE_KINDS[self]

    @property
    def owns_schema(self) -> bool:
        return self is Engine.POSTGRES

    @classmethod
    def parse(cls, value: Any) -> Optional["Engine"]:
        """Map an engine string, synonyms included, to a member or ``None``."""
        if isinstance(value, Engine):
            return value
        if not isinstance(value, str):
            return None
        return _ENGINE_SYNONYMS.get(value.strip().lower())


_ENGINE_KINDS = {
    Engine.POSTGRES: "relational",
    Engine.MONGODB: "document",
    Engine.REDIS: "cache",
    Engine.RABBITMQ: "broker",
}

_ENGINE_SYNONYMS = {
    "postgres": Engine.POSTGRES,
    "postgresql": Engine.POSTGRES,
    "pg": Engine.POSTGRES,
    "relational": Engine.POSTGRES,
    "mongo": Engine.MONGODB,
    "mongodb": Engine.MONGODB,
    "document": Engine.MONGODB,
    "redis": Engine.REDIS,
    "cache": Engine.REDIS,
    "rabbitmq": Engine.RABBITMQ,
    "rabbit": Engine.RABBITMQ,
    "amqp": Engine.RABBITMQ,
    "broker": Engine.RABBITMQ,
}

# Types accepted by the parser. Anything outside this set is rejected; types
# inside it without an Engine member are parsed but never provisioned.
KNOWN_DB_TYPES = frozenset(_ENGINE_SYNONYMS) | {"mysql", "mssql", "sqlite", "oracle"}

# Fields each engine needs when no DSN is given.
_REQUIRED_FIELDS = {
    Engine.POSTGRES: ("host", "port", "user", "db_name"),
    Engine.MONGODB: ("host", "port", "user"),
    Engine.REDIS: ("host", "port"),
    Engine.RABBITMQ: ("host", "port", "user"),
}


class MigrationInfo(BaseModel):
    """Migration block for a schema-owning database."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = False
    auto: bool = True
    scripts: List[str] = Field(
        default_factory=list,
        description="Ordered script names relative to migration_path",
    )
    version: str = ""
    migration_path: str = "embedded"
    dry_run: bool = False
    force: bool = Field(
        default=False, description="Run even when the schema already exists"
    )
    options: Dict[str, Any] = Field(default_factory=dict)


class DBConfig(BaseModel):
    """Serializable configuration for a single backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    name: str = ""
    is_default: bool = False
    enabled: bool = True
    type: str
    host: str = "127.0.0.1"
    port: str = ""
    user: str = ""
    password: str = Field(default="", alias="pass")
    db_name: str = ""
    db_schema: str = Field(default="public", alias="schema")
    dsn: str = ""
    options: Dict[str, Any] = Field(default_factory=dict)
    volume: str = ""
    migration: Optional[MigrationInfo] = None

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in KNOWN_DB_TYPES:
            raise ValueError(f"unknown database type: {value!r}")
        return normalized

    @field_validator("port", mode="before")
    @classmethod
    def _port_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def engine(self) -> Optional[Engine]:
        return Engine.parse(self.type)

    def port_number(self) -> Optional[int]:
        """Return the port as a positive integer, or ``None`` if unparseable."""
        try:
            port = int(self.port)
        except (TypeError, ValueError):
            return None
        return port if port > 0 else None

    def validate_required(self) -> None:
        """Raise ``ConfigInvalid`` when fields needed to reach the engine are missing."""
        engine = self.engine
        if engine is None:
            raise ConfigInvalid(f"unsupported engine type {self.type!r}", self.name)
        if self.dsn:
            return
        missing = [f for f in _REQUIRED_FIELDS[engine] if not getattr(self, f)]
        if missing:
            raise ConfigInvalid(
                f"missing required field(s): {', '.join(missing)}", self.name
            )
        if self.port_number() is None:
            raise ConfigInvalid(
                f"port must be a positive integer, got {self.port!r}", self.name
            )


class RootConfig(BaseModel):
    """Top-level configuration: service name to backend, plus a migration block."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = "kubexds"
    enabled: bool = True
    databases: Dict[str, DBConfig] = Field(default_factory=dict)
    migration: Optional[MigrationInfo] = None
    file_path: Optional[Path] = Field(default=None, exclude=True)

    @field_validator("databases", mode="before")
    @classmethod
    def _list_to_mapping(cls, value: Any) -> Any:
        """Accept the list form used by older config files."""
        if not isinstance(value, list):
            return value
        mapping: Dict[str, Any] = {}
        for item in value:
            name = item.name if isinstance(item, DBConfig) else item.get("name")
            if not name:
                raise ValueError("databases given as a list must carry a name")
            if name in mapping:
                raise ValueError(f"duplicate database name: {name!r}")
            mapping[name] = item
        return mapping

    @model_validator(mode="after")
    def _sync_names(self) -> "RootConfig":
        for key, db in self.databases.items():
            db.name = key
        return self

    def enabled_databases(self) -> List[DBConfig]:
        """Enabled databases, in configuration order."""
        if not self.enabled:
            return []
        return [db for db in self.databases.values() if db.enabled]

    def migration_for(self, db: DBConfig) -> Optional[MigrationInfo]:
        """The database's own migration block, falling back to the top-level one."""
        return db.migration or self.migration


def load_root_config(path: Path) -> RootConfig:
    """Read a JSON ``RootConfig`` from ``path``."""
    path = Path(os.path.expandvars(str(path))).expanduser()
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigInvalid(f"cannot read config file {path}: {e}") from e

    try:
        config = RootConfig.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigInvalid(f"invalid config file {path}: {e}") from e

    config.file_path = path
    return config


def save_root_config(config: RootConfig, path: Optional[Path] = None) -> Path:
    """Write ``config`` as JSON, creating parent directories."""
    target = path or config.file_path
    if target is None:
        raise ConfigInvalid("root config has no file path")
    target = Path(target).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True, mode=0o750)
    data = config.model_dump(by_alias=True, exclude_none=True, mode="json")
    target.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    target.chmod(0o640)
    config.file_path = target
    return target
