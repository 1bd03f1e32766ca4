"""
Per-engine container profiles: image, ports, credentials wiring and defaults.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..errors import ConfigInvalid
from ..schemas.stack_v1 import DBConfig, Engine

INITDB_PATH = "/docker-entrypoint-initdb.d"


@dataclass(frozen=True)
class EngineProfile:
    """How one engine is realized as a container."""

    engine: Engine
    image: str
    container_port: int
    data_path: str
    default_user: str = ""
    default_db: str = ""
    needs_password: bool = True
    env: Callable[[DBConfig], Dict[str, str]] = field(default=lambda db: {})
    command: Callable[[DBConfig], Optional[List[str]]] = field(default=lambda db: None)

    @property
    def default_port(self) -> int:
        return self.container_port

    @property
    def port_key(self) -> str:
        """Key in the runtime's port map, e.g. ``5432/tcp``."""
        return f"{self.container_port}/tcp"

    def apply_defaults(self, db: DBConfig) -> DBConfig:
        """Fill user, database and port where the config leaves them empty."""
        if not db.user and self.default_user:
            db.user = self.default_user
        if not db.db_name and self.default_db:
            db.db_name = self.default_db
        if not db.port:
            db.port = str(self.default_port)
        return db

    def environment(self, db: DBConfig) -> Dict[str, str]:
        if self.needs_password and not db.password:
            raise ConfigInvalid("password is required to create the container", db.name)
        return self.env(db)


def _postgres_env(db: DBConfig) -> Dict[str, str]:
    return {
        "POSTGRES_USER": db.user,
        "POSTGRES_PASSWORD": db.password,
        "POSTGRES_DB": db.db_name,
    }


def _mongo_env(db: DBConfig) -> Dict[str, str]:
    return {
        "MONGO_INITDB_ROOT_USERNAME": db.user,
        "MONGO_INITDB_ROOT_PASSWORD": db.password,
    }


def _rabbit_env(db: DBConfig) -> Dict[str, str]:
    return {
        "RABBITMQ_DEFAULT_USER": db.user,
        "RABBITMQ_DEFAULT_PASS": db.password,
    }


def _redis_command(db: DBConfig) -> List[str]:
    return ["redis-server", "--appendonly", "yes", "--requirepass", db.password]


PROFILES: Dict[Engine, EngineProfile] = {
    Engine.POSTGRES: EngineProfile(
        engine=Engine.POSTGRES,
        image="postgres:16-alpine",
        container_port=5432,
        data_path="/var/lib/postgresql/data",
        default_user="kubex_adm",
        default_db="kubex_db",
        env=_postgres_env,
    ),
    Engine.MONGODB: EngineProfile(
        engine=Engine.MONGODB,
        image="mongo:7",
        container_port=27017,
        data_path="/data/db",
        default_user="root",
        env=_mongo_env,
    ),
    Engine.REDIS: EngineProfile(
        engine=Engine.REDIS,
        image="redis:7-alpine",
        container_port=6379,
        data_path="/data",
        command=_redis_command,
    ),
    Engine.RABBITMQ: EngineProfile(
        engine=Engine.RABBITMQ,
        image="rabbitmq:3-management-alpine",
        container_port=5672,
        data_path="/var/lib/rabbitmq",
        default_user="admin",
        env=_rabbit_env,
    ),
}


def profile_for(engine: Engine) -> EngineProfile:
    try:
        return PROFILES[engine]
    except KeyError:
        raise ConfigInvalid(f"no container profile for engine {engine!r}") from None
