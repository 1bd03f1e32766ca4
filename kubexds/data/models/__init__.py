"""Runtime data models."""

from .migrations import MigrationResult, SQLStatement, StatementError, summarize
from .provisioning import (
    PROVIDER_TRANSITIONS,
    Capabilities,
    Endpoint,
    ProviderState,
    ServiceRef,
    StartSpec,
)

__all__ = [
    "Capabilities",
    "Endpoint",
    "MigrationResult",
    "PROVIDER_TRANSITIONS",
    "ProviderState",
    "SQLStatement",
    "ServiceRef",
    "StartSpec",
    "StatementError",
    "summarize",
]
