"""MongoDB driver on pymongo."""

import asyncio
from typing import Optional

from pymongo import MongoClient
from pymongo.errors import ConfigurationError, InvalidURI, PyMongoError

from ..errors import ConfigInvalid
from ..schemas.stack_v1 import Engine
from .base import DEFAULT_PING_TIMEOUT, Driver


class MongoDriver(Driver):
    """Document engine driver."""

    engine = Engine.MONGODB
    connect_errors = (PyMongoError, OSError)

    def __init__(self, ping_timeout: float = DEFAULT_PING_TIMEOUT, connect_timeout_ms: int = 5000):
        super().__init__(ping_timeout=ping_timeout)
        self.connect_timeout_ms = connect_timeout_ms
        self._client: Optional[MongoClient] = None

    async def _open(self, dsn: str) -> None:
        try:
            self._client = MongoClient(
                dsn,
                serverSelectionTimeoutMS=self.connect_timeout_ms,
                connectTimeoutMS=self.connect_timeout_ms,
            )
        except (InvalidURI, ConfigurationError) as e:
            raise ConfigInvalid(f"malformed DSN: {e}", self.service) from e
        # MongoClient connects lazily; the handshake surfaces auth errors here.
        await asyncio.to_thread(self._client.admin.command, "hello")

    async def _probe(self) -> None:
        await asyncio.to_thread(self._client.admin.command, "ping")

    async def _release(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await asyncio.to_thread(client.close)

    @property
    def client(self) -> MongoClient:
        if self._client is None:
            raise RuntimeError("driver is not connected")
        return self._client
