"""
kubexds

Local data stack provisioner: brings relational, document, cache and broker
backends up as containers, waits for them to accept connections and applies
the embedded schema migrations.
"""

import importlib.metadata

__version__ = importlib.metadata.version("kubexds")

from .bootstrap import BootstrapConfig, BootstrapResult
from .data.models import (
    Capabilities,
    Endpoint,
    MigrationResult,
    ServiceRef,
    SQLStatement,
    StartSpec,
    StatementError,
)
from .errors import (
    CompositeError,
    ConfigInvalid,
    ConnectFailed,
    ContainerOpFailed,
    NotInitialized,
    NotReady,
    PingFailed,
    PortExhausted,
    ProvisionerError,
    ScriptReadFailed,
    StatementFailed,
)
from .migrations import MigrationRunner, split_statements
from .provider import DockerStackProvider
from .schemas import DBConfig, Engine, MigrationInfo, RootConfig

__all__ = [
    "BootstrapConfig",
    "BootstrapResult",
    "Capabilities",
    "CompositeError",
    "ConfigInvalid",
    "ConnectFailed",
    "ContainerOpFailed",
    "DBConfig",
    "DockerStackProvider",
    "Endpoint",
    "Engine",
    "MigrationInfo",
    "MigrationResult",
    "MigrationRunner",
    "NotInitialized",
    "NotReady",
    "PingFailed",
    "PortExhausted",
    "ProvisionerError",
    "RootConfig",
    "SQLStatement",
    "ScriptReadFailed",
    "ServiceRef",
    "StartSpec",
    "StatementError",
    "StatementFailed",
    "split_statements",
]
