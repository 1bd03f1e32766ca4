"""
Provider interfaces.

A provider lifts heterogeneous backends into one Start/Health/Stop contract.
Schema migrations are a separate capability layered on top, implemented only
by providers that own a relational schema.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import structlog

from ..data.models.migrations import MigrationResult
from ..data.models.provisioning import (
    PROVIDER_TRANSITIONS,
    Capabilities,
    Endpoint,
    ProviderState,
    ServiceRef,
    StartSpec,
)
from ..schemas.stack_v1 import DBConfig, MigrationInfo, RootConfig

logger = structlog.get_logger()


class InvalidTransition(RuntimeError):
    """A lifecycle move not allowed from the current state."""


class Provider(ABC):
    """
    Abstract base class for stack providers.

    Subclasses implement the four core operations; the lifecycle bookkeeping
    lives here.
    """

    name: str = ""

    def __init__(self) -> None:
        self._state = ProviderState.UNINITIALIZED
        self.logger = logger.bind(provider=self.name)

    @property
    def state(self) -> ProviderState:
        return self._state

    def _transition(self, target: ProviderState) -> None:
        if target is self._state:
            return
        if target not in PROVIDER_TRANSITIONS[self._state]:
            raise InvalidTransition(
                f"{self.name}: cannot move from {self._state.value} to {target.value}"
            )
        self.logger.debug("provider_state", previous=self._state.value, state=target.value)
        self._state = target

    @abstractmethod
    async def capabilities(self) -> Capabilities:
        """Describe what this provider can do."""

    @abstractmethod
    async def start(self, spec: StartSpec) -> Dict[str, Endpoint]:
        """Provision or attach the services in ``spec`` and return their endpoints."""

    @abstractmethod
    async def health(self, endpoints: Dict[str, Endpoint]) -> None:
        """Return when every endpoint answers its liveness probe; raise otherwise."""

    @abstractmethod
    async def stop(self, refs: List[ServiceRef]) -> None:
        """Stop the referenced services, continuing past individual failures."""


class MigratableProvider(Provider):
    """Provider that can apply schema migrations to relational services."""

    @abstractmethod
    async def prepare_migrations(self, db: DBConfig, max_wait: Optional[float] = None) -> None:
        """Make sure ``db`` is reachable and ready to receive migrations."""

    @abstractmethod
    async def run_migrations(
        self,
        db: DBConfig,
        info: MigrationInfo,
        dry_run: Optional[bool] = None,
        force: Optional[bool] = None,
    ) -> List[MigrationResult]:
        """Run the migration scripts described by ``info`` against ``db``."""


class RootConfigProvider(Provider):
    """Provider that can bring a whole ``RootConfig`` up in one call."""

    @abstractmethod
    async def start_services(self, root: RootConfig) -> Dict[str, Endpoint]:
        """Start containers, wait for readiness and migrate where configured."""
