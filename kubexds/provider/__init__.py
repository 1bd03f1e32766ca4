"""Stack providers. Importing this package registers the built-in ones."""

from .base import InvalidTransition, MigratableProvider, Provider, RootConfigProvider
from .dockerstack import DockerStackProvider
from .registry import (
    default_provider_name,
    get_provider,
    list_providers,
    register_provider,
)

register_provider(DockerStackProvider.name, DockerStackProvider.from_settings)

__all__ = [
    "DockerStackProvider",
    "InvalidTransition",
    "MigratableProvider",
    "Provider",
    "RootConfigProvider",
    "default_provider_name",
    "get_provider",
    "list_providers",
    "register_provider",
]
