"""
DSN construction, redaction and config-to-spec derivation.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

from .data.models import Endpoint, ServiceRef, StartSpec
from .schemas import DBConfig, Engine, RootConfig

# scheme://user:password@  (user may be empty, as in redis://:pass@host).
# Userinfo never holds a raw "/", "?", "#" or "@", so none may appear in the match.
_CREDENTIALS_RE = re.compile(r"://([^:/?#@\s]*):([^/?#@\s]+)@")

REDACTED = "***"

_SCHEME_ENGINES = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "mongodb": "mongodb",
    "redis": "redis",
    "rediss": "redis",
    "amqp": "rabbitmq",
    "amqps": "rabbitmq",
}


def redact_dsn(dsn: str) -> str:
    """Mask the password segment between ``://user:`` and ``@``.

    Example:
        postgres://u:secret@h:5432/db -> postgres://u:***@h:5432/db
    """
    return _CREDENTIALS_RE.sub(rf"://\1:{REDACTED}@", dsn)


def engine_for_dsn(dsn: str) -> Optional[Engine]:
    """Infer the engine from a DSN scheme."""
    scheme, sep, _ = dsn.partition("://")
    if not sep:
        return None
    return Engine.parse(_SCHEME_ENGINES.get(scheme.lower(), ""))


def build_dsn(db: DBConfig) -> str:
    """Build a connection string for ``db``; empty for unsupported engines."""
    engine = db.engine
    user = quote(db.user, safe="")
    password = quote(db.password, safe="")
    address = f"{db.host}:{db.port}"

    if engine is Engine.POSTGRES:
        sslmode = db.options.get("sslmode") or "disable"
        return f"postgres://{user}:{password}@{address}/{db.db_name}?sslmode={sslmode}"
    if engine is Engine.MONGODB:
        return f"mongodb://{user}:{password}@{address}"
    if engine is Engine.REDIS:
        return f"redis://:{password}@{address}"
    if engine is Engine.RABBITMQ:
        return f"amqp://{user}:{password}@{address}/"
    return ""


def materialize_dsn(db: DBConfig) -> str:
    """Fill ``db.dsn`` when it is empty and return it."""
    if not db.dsn:
        db.validate_required()
        db.dsn = build_dsn(db)
    return db.dsn


def build_endpoint(db: DBConfig) -> Endpoint:
    """Endpoint for ``db``, using its DSN if set, otherwise a generated one."""
    dsn = db.dsn or build_dsn(db)
    return Endpoint(
        dsn=dsn,
        redacted=redact_dsn(dsn),
        host=db.host,
        port=db.port_number() or 0,
    )


def secret_key(service: str) -> str:
    """Key under which a service's password travels in ``StartSpec.secrets``."""
    return f"{service}_pass"


def root_config_to_start_spec(root: Optional[RootConfig]) -> StartSpec:
    """Derive a ``StartSpec`` from a ``RootConfig``.

    Disabled entries are skipped. Types without an engine are dropped rather
    than rejected, so a profile may add support for them later.
    """
    spec = StartSpec()
    if root is None:
        return spec

    for name, db in root.databases.items():
        if not db.enabled:
            continue
        engine = db.engine
        if engine is None:
            continue

        spec.services.append(ServiceRef(name=name, engine=engine))
        port = db.port_number()
        if port is not None:
            spec.preferred_port[name] = port
        if db.password:
            spec.secrets[secret_key(name)] = db.password
        spec.labels["db_" + name] = db.type

    return spec
