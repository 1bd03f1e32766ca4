"""
PostgreSQL driver on SQLAlchemy with psycopg.

Every statement runs on its own pooled connection in AUTOCOMMIT mode, so a
failing statement never poisons the ones after it.
"""

import asyncio
from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine as SAEngine
from sqlalchemy.exc import ArgumentError, DBAPIError

from ..errors import ConfigInvalid
from ..schemas.stack_v1 import Engine
from .base import DEFAULT_PING_TIMEOUT, SQLDriver

DEFAULT_CONNECT_TIMEOUT = 5


def to_sqlalchemy_url(dsn: str) -> str:
    """Rewrite a ``postgres://`` DSN to the psycopg dialect URL."""
    scheme, sep, rest = dsn.partition("://")
    if not sep:
        return dsn
    if scheme in ("postgres", "postgresql"):
        return f"postgresql+psycopg://{rest}"
    return dsn


class PostgresDriver(SQLDriver):
    """Relational engine driver."""

    engine = Engine.POSTGRES
    connect_errors = (DBAPIError, OSError)

    def __init__(
        self,
        ping_timeout: float = DEFAULT_PING_TIMEOUT,
        statement_timeout: Optional[float] = None,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
    ):
        super().__init__(ping_timeout=ping_timeout)
        self.statement_timeout = statement_timeout
        self.connect_timeout = connect_timeout
        self._engine: Optional[SAEngine] = None

    def _connect_args(self) -> dict:
        args: dict = {"connect_timeout": self.connect_timeout}
        if self.statement_timeout:
            args["options"] = f"-c statement_timeout={int(self.statement_timeout * 1000)}"
        return args

    async def _open(self, dsn: str) -> None:
        try:
            self._engine = create_engine(
                to_sqlalchemy_url(dsn),
                pool_pre_ping=True,
                pool_size=2,
                max_overflow=2,
                connect_args=self._connect_args(),
            )
        except ArgumentError as e:
            raise ConfigInvalid(f"malformed DSN: {e}", self.service) from e
        await asyncio.to_thread(self._check_connection)

    def _check_connection(self) -> None:
        with self._engine.connect():
            pass

    async def _probe(self) -> None:
        await asyncio.to_thread(self._scalar_sync, "SELECT 1")

    async def _release(self) -> None:
        if self._engine is not None:
            engine, self._engine = self._engine, None
            await asyncio.to_thread(engine.dispose)

    def _autocommit(self):
        if self._engine is None:
            raise RuntimeError("driver is not connected")
        # no_parameters keeps psycopg from reading '%' in the SQL as placeholders
        return self._engine.connect().execution_options(
            isolation_level="AUTOCOMMIT", no_parameters=True
        )

    def _execute_sync(self, sql: str) -> None:
        with self._autocommit() as conn:
            conn.exec_driver_sql(sql)

    def _scalar_sync(self, sql: str) -> Any:
        with self._autocommit() as conn:
            return conn.exec_driver_sql(sql).scalar()

    async def execute(self, sql: str) -> None:
        await asyncio.to_thread(self._execute_sync, sql)

    async def scalar(self, sql: str) -> Any:
        return await asyncio.to_thread(self._scalar_sync, sql)
