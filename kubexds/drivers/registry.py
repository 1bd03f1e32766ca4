"""
Process-wide driver registry.

Maps an engine tag to a driver constructor. Built-in drivers register when
``kubexds.drivers`` is imported; extensions may register further tags.
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple, Union

import structlog

from ..schemas.stack_v1 import Engine
from .base import Driver

logger = structlog.get_logger()

DriverFactory = Callable[[], Driver]

_registry: Dict[str, DriverFactory] = {}
_lock = threading.Lock()


def _tag(engine: Union[Engine, str]) -> str:
    if isinstance(engine, Engine):
        return engine.value
    parsed = Engine.parse(engine)
    return parsed.value if parsed else engine.strip().lower()


def register_driver(engine: Union[Engine, str], factory: DriverFactory) -> bool:
    """Register ``factory`` for ``engine``.

    The first registration for a tag wins; later ones are ignored.

    Returns:
        True if the factory was stored.
    """
    tag = _tag(engine)
    with _lock:
        if tag in _registry:
            logger.debug("driver_already_registered", engine=tag)
            return False
        _registry[tag] = factory
    return True


def get_driver(engine: Union[Engine, str]) -> Tuple[Optional[DriverFactory], bool]:
    """Look up the constructor for ``engine``; the flag says whether it exists."""
    factory = _registry.get(_tag(engine))
    return factory, factory is not None


def registered_engines() -> List[str]:
    return sorted(_registry)


def new_driver(engine: Union[Engine, str]) -> Driver:
    """Construct a driver for ``engine`` or raise ``KeyError``."""
    factory, found = get_driver(engine)
    if not found:
        raise KeyError(f"no driver registered for engine {_tag(engine)!r}")
    return factory()
