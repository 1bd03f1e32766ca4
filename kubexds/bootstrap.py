"""
Bootstrap: pick a provider from the configured preference list and start it.

Providers are tried in the order given by ``KUBEXDS_BACKENDS``. Each one is
started and then polled with ``health`` until it answers or the health budget
runs out. In strict mode the first failure is final; otherwise the next
provider is tried.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from .config import Settings
from .data.models.provisioning import Endpoint, ServiceRef, StartSpec
from .dsn import engine_for_dsn, root_config_to_start_spec
from .errors import NotInitialized, ProvisionerError
from .provider import Provider, get_provider
from .schemas.stack_v1 import RootConfig

logger = structlog.get_logger()

HEALTH_TIMEOUT_SECONDS = 15.0
HEALTH_INTERVAL_SECONDS = 0.5
OWNER_LABEL = "owner"
OWNER = "kubexds"


@dataclass
class BootstrapConfig:
    """Provider preference and the services to bring up."""

    backends: List[str]
    strict: bool = False
    services: List[ServiceRef] = field(default_factory=list)
    preferred_port: Dict[str, int] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    health_timeout: float = HEALTH_TIMEOUT_SECONDS
    health_interval: float = HEALTH_INTERVAL_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> "BootstrapConfig":
        return cls(backends=settings.backend_list(), strict=settings.kubexds_strict)

    @classmethod
    def from_env(cls) -> "BootstrapConfig":
        """Read ``KUBEXDS_BACKENDS`` and ``KUBEXDS_STRICT`` from the environment now."""
        return cls.from_settings(Settings())

    def with_root_config(self, root: RootConfig) -> "BootstrapConfig":
        """Copy of this config whose services come from ``root``."""
        spec = root_config_to_start_spec(root)
        return BootstrapConfig(
            backends=list(self.backends),
            strict=self.strict,
            services=spec.services,
            preferred_port=spec.preferred_port,
            secrets=spec.secrets,
            labels={**spec.labels, **self.labels},
            health_timeout=self.health_timeout,
            health_interval=self.health_interval,
        )

    def start_spec(self) -> StartSpec:
        labels = {OWNER_LABEL: OWNER}
        labels.update(self.labels)
        return StartSpec(
            services=list(self.services),
            preferred_port=dict(self.preferred_port),
            secrets=dict(self.secrets),
            labels=labels,
        )


@dataclass
class BootstrapResult:
    """The provider that won and what it started."""

    backend: str
    provider: Provider
    endpoints: Dict[str, Endpoint] = field(default_factory=dict)


def _candidates(backends: List[str]) -> List[str]:
    seen = set()
    names = []
    for name in backends:
        key = name.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        if get_provider(key)[1]:
            names.append(key)
        else:
            logger.warning("bootstrap_unknown_provider", provider=key)
    return names


async def start(
    cfg: BootstrapConfig,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> BootstrapResult:
    """Start the first provider, in preference order, that comes up healthy.

    Raises:
        NotInitialized: none of the configured providers is registered.
        ProvisionerError: the last provider failure (or the first in strict mode).
    """
    candidates = _candidates(cfg.backends)
    if not candidates:
        raise NotInitialized(f"no providers registered for {cfg.backends!r}")

    last_error: Optional[ProvisionerError] = None
    for name in candidates:
        log = logger.bind(provider=name)
        factory, _ = get_provider(name)
        try:
            provider = factory()
            endpoints = await provider.start(cfg.start_spec())
            await _wait_healthy(provider, endpoints, cfg, sleep, clock)
        except ProvisionerError as e:
            log.warning("bootstrap_provider_failed", error=str(e))
            if cfg.strict:
                raise
            last_error = e
            continue

        log.info("bootstrap_provider_ready", services=sorted(endpoints))
        return BootstrapResult(backend=name, provider=provider, endpoints=endpoints)

    raise last_error


async def _wait_healthy(
    provider: Provider,
    endpoints: Dict[str, Endpoint],
    cfg: BootstrapConfig,
    sleep: Callable[[float], Awaitable[None]],
    clock: Callable[[], float],
) -> None:
    deadline = clock() + cfg.health_timeout
    while True:
        try:
            await provider.health(endpoints)
            return
        except ProvisionerError:
            if clock() >= deadline:
                raise
        await sleep(cfg.health_interval)


async def stop(cfg: BootstrapConfig, result: BootstrapResult) -> None:
    """Stop the services started by ``result``'s provider."""
    refs = list(cfg.services)
    if not refs:
        for name, endpoint in result.endpoints.items():
            engine = engine_for_dsn(endpoint.dsn)
            if engine is not None:
                refs.append(ServiceRef(name=name, engine=engine))
    await result.provider.stop(refs)
