"""
Backend drivers. Importing this package registers the built-in engines.
"""

from ..schemas.stack_v1 import Engine
from .base import Driver, SQLDriver
from .mongodb import MongoDriver
from .postgres import PostgresDriver
from .rabbitmq import RabbitMQDriver
from .redis_cache import RedisDriver
from .registry import get_driver, new_driver, register_driver, registered_engines

register_driver(Engine.POSTGRES, PostgresDriver)
register_driver(Engine.MONGODB, MongoDriver)
register_driver(Engine.REDIS, RedisDriver)
register_driver(Engine.RABBITMQ, RabbitMQDriver)

__all__ = [
    "Driver",
    "MongoDriver",
    "PostgresDriver",
    "RabbitMQDriver",
    "RedisDriver",
    "SQLDriver",
    "get_driver",
    "new_driver",
    "register_driver",
    "registered_engines",
]
