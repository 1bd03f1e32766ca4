"""Container orchestration on the local Docker engine."""

from .ports import find_free_port, is_port_free
from .profiles import PROFILES, EngineProfile, profile_for
from .service import ContainerOrchestrator, published_port
from .volumes import ensure_volume, seed_init_dir

__all__ = [
    "ContainerOrchestrator",
    "EngineProfile",
    "PROFILES",
    "ensure_volume",
    "find_free_port",
    "is_port_free",
    "profile_for",
    "published_port",
    "seed_init_dir",
]
