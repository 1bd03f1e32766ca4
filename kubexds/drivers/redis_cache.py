"""Redis driver on redis.asyncio."""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..errors import ConfigInvalid
from ..schemas.stack_v1 import Engine
from .base import DEFAULT_PING_TIMEOUT, Driver


class RedisDriver(Driver):
    """Cache engine driver."""

    engine = Engine.REDIS
    connect_errors = (RedisError, OSError)

    def __init__(self, ping_timeout: float = DEFAULT_PING_TIMEOUT, connect_timeout: float = 5.0):
        super().__init__(ping_timeout=ping_timeout)
        self.connect_timeout = connect_timeout
        self._client: Optional[aioredis.Redis] = None

    async def _open(self, dsn: str) -> None:
        try:
            self._client = aioredis.from_url(
                dsn,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.connect_timeout,
            )
        except ValueError as e:
            raise ConfigInvalid(f"malformed DSN: {e}", self.service) from e
        # The pool is lazy; the first command performs AUTH.
        await self._client.info("server")

    async def _probe(self) -> None:
        await self._client.ping()

    async def _release(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise RuntimeError("driver is not connected")
        return self._client
