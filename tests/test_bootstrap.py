"""Tests for provider selection at bootstrap."""

from typing import Dict, List

import pytest

from kubexds import bootstrap
from kubexds.bootstrap import BootstrapConfig, BootstrapResult
from kubexds.config import Settings
from kubexds.data.models.provisioning import (
    Capabilities,
    Endpoint,
    ProviderState,
    ServiceRef,
    StartSpec,
)
from kubexds.errors import CompositeError, ConnectFailed, ContainerOpFailed, NotInitialized
from kubexds.provider import Provider, register_provider
from kubexds.schemas.stack_v1 import DBConfig, Engine, RootConfig

from .fakes import FakeClock

ENDPOINT = Endpoint(
    dsn="redis://:pw@127.0.0.1:6379",
    redacted="redis://:***@127.0.0.1:6379",
    host="127.0.0.1",
    port=6379,
)


class ScriptedProvider(Provider):
    """Provider whose start and health outcomes are set by the test."""

    def __init__(self, name: str, start_error=None, unhealthy_checks: int = 0):
        self.name = name
        super().__init__()
        self.start_error = start_error
        self.unhealthy_checks = unhealthy_checks
        self.health_calls = 0
        self.specs: List[StartSpec] = []
        self.stopped: List[ServiceRef] = []

    async def capabilities(self) -> Capabilities:
        return Capabilities(managed=False)

    async def start(self, spec: StartSpec) -> Dict[str, Endpoint]:
        self.specs.append(spec)
        if self.start_error is not None:
            raise self.start_error
        self._transition(ProviderState.STARTING)
        self._transition(ProviderState.RUNNING)
        return {"cache": ENDPOINT}

    async def health(self, endpoints: Dict[str, Endpoint]) -> None:
        self.health_calls += 1
        if self.health_calls <= self.unhealthy_checks:
            raise CompositeError("health", {"cache": ConnectFailed("refused")})

    async def stop(self, refs: List[ServiceRef]) -> None:
        self.stopped.extend(refs)


@pytest.fixture
def providers(request):
    """Register scripted providers under names unique to the test."""
    prefix = request.node.name.replace("[", "-").replace("]", "")
    created = {}

    def make(label: str, **kwargs) -> str:
        name = f"{prefix}-{label}".lower()
        instance = ScriptedProvider(name, **kwargs)
        created[name] = instance
        register_provider(name, lambda: instance)
        return name

    make.created = created
    return make


class TestBootstrapConfig:
    def test_from_settings(self):
        cfg = BootstrapConfig.from_settings(
            Settings(kubexds_backends="b, a,,", kubexds_strict=True)
        )
        assert cfg.backends == ["b", "a"]
        assert cfg.strict is True

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("KUBEXDS_BACKENDS", "x,y")
        monkeypatch.setenv("KUBEXDS_STRICT", "1")
        cfg = BootstrapConfig.from_env()
        assert (cfg.backends, cfg.strict) == (["x", "y"], True)

    def test_from_env_defaults(self):
        cfg = BootstrapConfig.from_env()
        assert (cfg.backends, cfg.strict) == (["dockerstack"], False)

    def test_start_spec_labels(self):
        root = RootConfig(
            databases={"cache": DBConfig(type="redis", port="6380", password="pw")}
        )
        spec = BootstrapConfig(backends=["x"]).with_root_config(root).start_spec()

        assert spec.services == [ServiceRef("cache", Engine.REDIS)]
        assert spec.preferred_port == {"cache": 6380}
        assert spec.secrets == {"cache_pass": "pw"}
        assert spec.labels == {"owner": "kubexds", "db_cache": "redis"}


class TestStart:
    """Providers are tried in preference order."""

    @pytest.mark.asyncio
    async def test_first_healthy_wins(self, providers):
        first = providers("first")
        second = providers("second")
        cfg = BootstrapConfig(backends=[first, second], services=[ServiceRef("cache", Engine.REDIS)])

        result = await bootstrap.start(cfg)

        assert isinstance(result, BootstrapResult)
        assert result.backend == first
        assert result.endpoints == {"cache": ENDPOINT}
        assert providers.created[second].specs == []
        assert providers.created[first].specs[0].labels["owner"] == "kubexds"

    @pytest.mark.asyncio
    async def test_falls_through(self, providers):
        broken = providers("broken", start_error=ContainerOpFailed("engine down"))
        working = providers("working")

        result = await bootstrap.start(BootstrapConfig(backends=[broken, working]))

        assert result.backend == working

    @pytest.mark.asyncio
    async def test_strict_stops_at_first_failure(self, providers):
        broken = providers("broken", start_error=ContainerOpFailed("engine down"))
        working = providers("working")

        with pytest.raises(ContainerOpFailed):
            await bootstrap.start(BootstrapConfig(backends=[broken, working], strict=True))
        assert providers.created[working].specs == []

    @pytest.mark.asyncio
    async def test_last_error_raised(self, providers):
        one = providers("one", start_error=ContainerOpFailed("first"))
        two = providers("two", start_error=ConnectFailed("second"))

        with pytest.raises(ConnectFailed):
            await bootstrap.start(BootstrapConfig(backends=[one, two]))

    @pytest.mark.asyncio
    async def test_unknown_and_duplicate_names(self, providers):
        working = providers("working")

        result = await bootstrap.start(
            BootstrapConfig(backends=["no-such-provider", working, working.upper()])
        )

        assert result.backend == working

    @pytest.mark.asyncio
    async def test_nothing_registered(self):
        with pytest.raises(NotInitialized):
            await bootstrap.start(BootstrapConfig(backends=["no-such-provider", " "]))


class TestHealthPolling:
    """After start, health is polled until it passes or the budget runs out."""

    @pytest.mark.asyncio
    async def test_polls_until_healthy(self, providers):
        name = providers("slow", unhealthy_checks=2)
        clock = FakeClock()

        result = await bootstrap.start(
            BootstrapConfig(backends=[name]), sleep=clock.sleep, clock=clock
        )

        assert result.backend == name
        assert providers.created[name].health_calls == 3
        assert clock.sleeps == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_never_healthy(self, providers):
        name = providers("dead", unhealthy_checks=1000)
        clock = FakeClock()

        with pytest.raises(CompositeError):
            await bootstrap.start(
                BootstrapConfig(backends=[name], health_timeout=2.0),
                sleep=clock.sleep,
                clock=clock,
            )
        assert clock.now == pytest.approx(2.0)


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_configured_services(self, providers):
        name = providers("stoppable")
        refs = [ServiceRef("cache", Engine.REDIS)]
        cfg = BootstrapConfig(backends=[name], services=refs)
        result = await bootstrap.start(cfg)

        await bootstrap.stop(cfg, result)

        assert providers.created[name].stopped == refs

    @pytest.mark.asyncio
    async def test_stop_from_endpoints(self, providers):
        name = providers("stoppable")
        cfg = BootstrapConfig(backends=[name])
        result = await bootstrap.start(cfg)

        await bootstrap.stop(cfg, result)

        assert providers.created[name].stopped == [ServiceRef("cache", Engine.REDIS)]
