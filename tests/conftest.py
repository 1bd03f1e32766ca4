"""Test configuration and fixtures."""

import pytest
import structlog
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from kubexds.config import Settings, reset_settings
from kubexds.migrations.assets import AssetTree
from kubexds.orchestrator.service import ContainerOrchestrator
from kubexds.schemas.stack_v1 import Engine
from kubexds.secret_store import SecretStore

from .fakes import (
    HARDENING_SQL,
    INIT_SQL,
    FakeCacheDriver,
    FakeDatabase,
    FakeDockerClient,
    FakeSQLDriver,
    write_tree,
)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the config root at a temporary directory for every test.

    Logging is reset afterwards because CLI tests bind it to a captured stream.
    """
    monkeypatch.setenv("KUBEXDS_CONFIG_ROOT", str(tmp_path / "kubexds-home"))
    for name in ("KUBEXDS_BACKENDS", "KUBEXDS_STRICT", "APP_MASTER_KEY", "APP_SECRETS_DIR"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
    structlog.reset_defaults()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with short timeouts, rooted in a temporary directory."""
    return Settings(
        kubexds_config_root=tmp_path / "root",
        readiness_max_wait_seconds=0.2,
        readiness_attempt_timeout_seconds=0.5,
        ping_timeout_seconds=0.5,
        statement_timeout_seconds=1.0,
    )


@pytest.fixture
def secret_store(tmp_path) -> SecretStore:
    return SecretStore(tmp_path / "secrets", AESGCM.generate_key(bit_length=256))


@pytest.fixture
def script_tree(tmp_path) -> AssetTree:
    """Script tree with two clean files and an init directory."""
    return write_tree(
        tmp_path / "scripts",
        {
            "001_init.sql": INIT_SQL,
            "002_hardening.sql": HARDENING_SQL,
            "init/00_defaults.sql": "ALTER ROLE CURRENT_USER SET timezone TO 'UTC';\n",
        },
    )


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_drivers(monkeypatch, database):
    """Route the provider's driver lookups to in-memory fakes.

    Returns a dict whose ``reachable`` flag controls the non-SQL engines.
    """
    cache = {"reachable": True}

    def lookup(engine):
        if engine is Engine.POSTGRES:
            return (lambda: FakeSQLDriver(database)), True
        if engine is not None:
            return (lambda: FakeCacheDriver(cache["reachable"])), True
        return None, False

    monkeypatch.setattr("kubexds.provider.dockerstack.get_driver", lookup)
    return cache


@pytest.fixture
def docker_client() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture
def orchestrator(docker_client, script_tree, tmp_path) -> ContainerOrchestrator:
    return ContainerOrchestrator(
        docker_client,
        prefix="test",
        volumes_root=tmp_path / "volumes",
        assets=script_tree,
        port_checker=lambda port, host: True,
    )
