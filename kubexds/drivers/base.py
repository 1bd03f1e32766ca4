"""
Base driver class for every backend engine.

A driver owns one live connection (or pool) to one backend. ``connect`` maps
failures onto the provisioner error kinds, ``ping`` never raises, and
``close`` may be called any number of times.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple, Type

import structlog

from ..dsn import build_dsn, redact_dsn
from ..errors import ConfigInvalid, ConnectFailed, PingFailed
from ..schemas.stack_v1 import DBConfig, Engine

logger = structlog.get_logger()

DEFAULT_PING_TIMEOUT = 3.0


class Driver(ABC):
    """
    Abstract connection primitive.

    Subclasses implement ``_open``, ``_probe`` and ``_release`` and list the
    library exceptions that mean "could not reach or authenticate" in
    ``connect_errors``.
    """

    engine: Engine
    connect_errors: Tuple[Type[BaseException], ...] = (OSError,)

    def __init__(self, ping_timeout: float = DEFAULT_PING_TIMEOUT):
        self.ping_timeout = ping_timeout
        self.dsn: Optional[str] = None
        self.service: Optional[str] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self, config: DBConfig) -> None:
        """Open a connection for ``config`` and verify it with one ping.

        Raises:
            ConfigInvalid: no DSN and required fields are missing.
            ConnectFailed: network or authentication failure.
            PingFailed: connected but the immediate probe failed.
        """
        self.service = config.name or None
        dsn = config.dsn
        if not dsn:
            config.validate_required()
            dsn = build_dsn(config)
        if not dsn:
            raise ConfigInvalid("no DSN for engine", self.service)
        await self.connect_dsn(dsn)

    async def connect_dsn(self, dsn: str) -> None:
        """Same as ``connect`` for callers that only hold a DSN."""
        if self._connected:
            await self.close()
        self.dsn = dsn
        log = logger.bind(engine=self.engine.value, service=self.service)

        try:
            await self._open(dsn)
        except self.connect_errors as e:
            await self._release_quietly()
            log.warning("driver_connect_failed", dsn=redact_dsn(dsn), error=str(e))
            raise ConnectFailed(f"cannot connect to {redact_dsn(dsn)}: {e}", self.service) from e
        self._connected = True

        if not await self.ping():
            await self.close()
            raise PingFailed(f"ping failed for {redact_dsn(dsn)}", self.service)

        log.debug("driver_connected", dsn=redact_dsn(dsn))

    async def ping(self) -> bool:
        """Liveness probe bounded by ``ping_timeout``; never raises for backend errors."""
        if not self._connected:
            return False
        try:
            await asyncio.wait_for(self._probe(), timeout=self.ping_timeout)
        except asyncio.TimeoutError:
            return False
        except Exception as e:
            logger.debug("driver_ping_failed", engine=self.engine.value, error=str(e))
            return False
        return True

    async def close(self) -> None:
        """Release pool resources. A second call is a no-op."""
        if not self._connected:
            return
        self._connected = False
        await self._release_quietly()

    async def _release_quietly(self) -> None:
        try:
            await self._release()
        except self.connect_errors as e:
            logger.debug("driver_release_failed", engine=self.engine.value, error=str(e))

    @abstractmethod
    async def _open(self, dsn: str) -> None:
        """Establish the connection. Raise one of ``connect_errors`` on failure."""

    @abstractmethod
    async def _probe(self) -> None:
        """Round-trip to the backend; raise on failure."""

    @abstractmethod
    async def _release(self) -> None:
        """Drop any connection state. Must tolerate partially opened state."""

    async def __aenter__(self) -> "Driver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        dsn = redact_dsn(self.dsn) if self.dsn else None
        return f"{type(self).__name__}(dsn={dsn!r}, connected={self._connected})"


class SQLDriver(Driver):
    """A driver that can run SQL, used by the migration runner."""

    # Seconds; enforced by the server where the driver supports it.
    statement_timeout: Optional[float] = None

    @abstractmethod
    async def execute(self, sql: str) -> None:
        """Run one statement in its own autocommit context."""

    @abstractmethod
    async def scalar(self, sql: str) -> Any:
        """Run a query and return the first column of the first row."""
