"""
Provisioning value types exchanged between the provider, the orchestrator
and callers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from ...schemas.stack_v1 import Engine


@dataclass(frozen=True)
class ServiceRef:
    """A named backend inside a start request."""

    name: str
    engine: Engine


@dataclass(frozen=True)
class Endpoint:
    """What a caller needs to reach a started backend.

    ``redacted`` is the only form of the DSN that may be logged or printed.
    """

    dsn: str
    redacted: str
    host: str
    port: int

    def to_dict(self) -> Dict[str, object]:
        return {"dsn": self.redacted, "host": self.host, "port": self.port}


@dataclass(frozen=True)
class Capabilities:
    """What a provider can do. Feature keys are stable per provider."""

    managed: bool
    features: Dict[str, bool] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)


@dataclass
class StartSpec:
    """Single-shot request passed to ``Provider.start``."""

    services: List[ServiceRef] = field(default_factory=list)
    preferred_port: Dict[str, int] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    def service_names(self) -> List[str]:
        return [ref.name for ref in self.services]


class ProviderState(Enum):
    """Provider lifecycle."""

    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


# Allowed lifecycle moves. STARTING may fall straight to STOPPED on a hard
# failure; RUNNING re-enters STARTING on reconnect.
PROVIDER_TRANSITIONS = {
    ProviderState.UNINITIALIZED: {ProviderState.STARTING},
    ProviderState.STARTING: {ProviderState.RUNNING, ProviderState.STOPPED},
    ProviderState.RUNNING: {ProviderState.STARTING, ProviderState.STOPPING},
    ProviderState.STOPPING: {ProviderState.STOPPED},
    ProviderState.STOPPED: {ProviderState.STARTING},
}
