"""
Process-wide provider registry: provider name to factory.
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..config import DEFAULT_BACKEND
from .base import Provider

logger = structlog.get_logger()

ProviderFactory = Callable[[], Provider]

_providers: Dict[str, ProviderFactory] = {}
_lock = threading.Lock()


def register_provider(name: str, factory: ProviderFactory) -> bool:
    """Register ``factory`` under ``name``; the first registration wins."""
    key = name.strip().lower()
    with _lock:
        if key in _providers:
            logger.debug("provider_already_registered", provider=key)
            return False
        _providers[key] = factory
    return True


def get_provider(name: str) -> Tuple[Optional[ProviderFactory], bool]:
    factory = _providers.get(name.strip().lower())
    return factory, factory is not None


def list_providers() -> List[str]:
    return sorted(_providers)


def default_provider_name() -> str:
    return DEFAULT_BACKEND
