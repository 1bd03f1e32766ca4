"""RabbitMQ driver on pika's blocking connection."""

import asyncio
from typing import Optional

import pika
from pika.exceptions import AMQPError

from ..schemas.stack_v1 import Engine
from .base import DEFAULT_PING_TIMEOUT, Driver


class RabbitMQDriver(Driver):
    """Broker engine driver.

    pika's ``BlockingConnection`` is not thread-safe, so every call into it
    is serialized through ``_io_lock`` before being pushed to a worker thread.
    """

    engine = Engine.RABBITMQ
    connect_errors = (AMQPError, OSError)

    def __init__(self, ping_timeout: float = DEFAULT_PING_TIMEOUT, connect_timeout: float = 5.0):
        super().__init__(ping_timeout=ping_timeout)
        self.connect_timeout = connect_timeout
        self._connection: Optional[pika.BlockingConnection] = None
        self._io_lock = asyncio.Lock()

    def _parameters(self, dsn: str) -> pika.URLParameters:
        params = pika.URLParameters(dsn)
        params.socket_timeout = self.connect_timeout
        params.blocked_connection_timeout = self.connect_timeout
        params.connection_attempts = 1
        return params

    async def _open(self, dsn: str) -> None:
        params = self._parameters(dsn)
        async with self._io_lock:
            self._connection = await asyncio.to_thread(pika.BlockingConnection, params)

    async def _probe(self) -> None:
        async with self._io_lock:
            connection = self._connection
            if connection is None or not connection.is_open:
                raise AMQPError("connection is closed")
            await asyncio.to_thread(connection.process_data_events, 0)

    async def _release(self) -> None:
        async with self._io_lock:
            connection, self._connection = self._connection, None
            if connection is not None and connection.is_open:
                await asyncio.to_thread(connection.close)

    @property
    def connection(self) -> pika.BlockingConnection:
        if self._connection is None:
            raise RuntimeError("driver is not connected")
        return self._connection
