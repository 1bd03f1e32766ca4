"""
Docker-backed provider.

Composes the container orchestrator, the readiness gate and the migration
runner into the Start/Health/Stop contract plus ``start_services``, the single
call that brings a whole configuration up and migrates it.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from ..config import DEFAULT_BACKEND, Settings, get_settings
from ..data.models.migrations import MigrationResult, summarize
from ..data.models.provisioning import (
    Capabilities,
    Endpoint,
    ProviderState,
    ServiceRef,
    StartSpec,
)
from ..drivers import SQLDriver, get_driver
from ..drivers.registry import DriverFactory
from ..dsn import (
    build_endpoint,
    engine_for_dsn,
    materialize_dsn,
    redact_dsn,
    root_config_to_start_spec,
    secret_key,
)
from ..errors import (
    CompositeError,
    ConfigInvalid,
    ConnectFailed,
    NotInitialized,
    PingFailed,
    ProvisionerError,
    ScriptReadFailed,
)
from ..migrations.assets import AssetTree, assets_for, default_assets, resolve_scripts
from ..migrations.runner import MigrationRunner, schema_exists
from ..orchestrator.profiles import profile_for
from ..orchestrator.service import ContainerOrchestrator
from ..readiness import wait_ready
from ..schemas.stack_v1 import DBConfig, MigrationInfo, RootConfig
from ..secret_store import PASSWORD_SECRET, SecretStore
from .base import InvalidTransition, MigratableProvider, RootConfigProvider


class DockerStackProvider(MigratableProvider, RootConfigProvider):
    """Zero-config local stack on the Docker engine."""

    name = DEFAULT_BACKEND

    def __init__(
        self,
        orchestrator: Optional[ContainerOrchestrator] = None,
        secret_store: Optional[SecretStore] = None,
        settings: Optional[Settings] = None,
        assets: Optional[AssetTree] = None,
        strict: Optional[bool] = None,
    ):
        """Initialize the provider.

        Args:
            orchestrator: Container orchestrator. Required by every operation
                that touches containers; ``NotInitialized`` is raised without it.
            secret_store: Source of generated passwords; built from settings
                on first use when omitted.
            settings: Application settings.
            assets: Script tree for migrations.
            strict: Abort on the first service failure. Defaults to
                ``KUBEXDS_STRICT``.
        """
        super().__init__()
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator
        self._secret_store = secret_store
        self.assets = assets or default_assets()
        self.strict = self.settings.kubexds_strict if strict is None else strict
        self.endpoints: Dict[str, Endpoint] = {}
        self._configs: Dict[str, DBConfig] = {}
        self.migration_results: Dict[str, List[MigrationResult]] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "DockerStackProvider":
        settings = settings or get_settings()
        return cls(
            orchestrator=ContainerOrchestrator.from_settings(settings),
            secret_store=SecretStore.from_settings(settings),
            settings=settings,
        )

    @property
    def secret_store(self) -> SecretStore:
        if self._secret_store is None:
            self._secret_store = SecretStore.from_settings(self.settings)
        return self._secret_store

    def _require_orchestrator(self) -> ContainerOrchestrator:
        if self.orchestrator is None:
            raise NotInitialized("container orchestrator was not injected", self.name)
        return self.orchestrator

    def _settle(self) -> None:
        """Leave STARTING: RUNNING if anything is up, STOPPED otherwise."""
        self._transition(ProviderState.RUNNING if self.endpoints else ProviderState.STOPPED)

    async def capabilities(self) -> Capabilities:
        return Capabilities(
            managed=True,
            features={
                "network.internal": True,
                "publish.ports": True,
                "volumes.persist": True,
                "migrations": True,
            },
            notes=[
                "Zero-config local stack using Docker",
                "Supports PostgreSQL, MongoDB, Redis, RabbitMQ",
                "Generates credentials into the encrypted secret store",
            ],
        )

    # Start / Health / Stop

    def spec_to_root_config(self, spec: StartSpec) -> RootConfig:
        """Internal configuration for a ``StartSpec``, engine defaults applied."""
        databases: Dict[str, DBConfig] = {}
        for ref in spec.services:
            db = DBConfig(name=ref.name, type=ref.engine.value)
            preferred = spec.preferred_port.get(ref.name)
            if preferred:
                db.port = str(preferred)
            profile_for(ref.engine).apply_defaults(db)
            db.password = spec.secrets.get(secret_key(ref.name)) or self._password_for(ref.name)
            databases[ref.name] = db
        return RootConfig(name=self.name, databases=databases)

    async def start(self, spec: StartSpec) -> Dict[str, Endpoint]:
        """Start the containers of ``spec`` and return their endpoints.

        Migrations are not run here; see ``start_services``.
        """
        orchestrator = self._require_orchestrator()
        root = self.spec_to_root_config(spec)
        self._transition(ProviderState.STARTING)
        self.logger.info("provider_start", services=spec.service_names())

        try:
            ports = await orchestrator.initialize_with_config(root, labels=spec.labels)
        except CompositeError as e:
            for name in e.completed:
                self._remember(root.databases[name])
            self._settle()
            raise
        except BaseException:
            self._settle()
            raise

        endpoints = {name: self._remember(root.databases[name]) for name in ports}
        self._transition(ProviderState.RUNNING)
        return endpoints

    async def health(self, endpoints: Dict[str, Endpoint]) -> None:
        """Probe every endpoint; raise ``CompositeError`` naming the ones that failed."""
        failures: Dict[str, Exception] = {}
        for name, endpoint in endpoints.items():
            error = await self._probe_endpoint(name, endpoint)
            if error is not None:
                failures[name] = error
        if failures:
            raise CompositeError("health", failures)

    async def _probe_endpoint(self, name: str, endpoint: Endpoint) -> Optional[Exception]:
        engine = engine_for_dsn(endpoint.dsn)
        factory, found = get_driver(engine) if engine else (None, False)
        if not found:
            return ConfigInvalid(f"no driver for {endpoint.redacted}", name)

        driver = factory()
        driver.ping_timeout = self.settings.ping_timeout_seconds
        driver.service = name
        try:
            await driver.connect_dsn(endpoint.dsn)
        except (ConfigInvalid, ConnectFailed, PingFailed) as e:
            self.logger.warning("health_probe_failed", service=name, error=str(e))
            return e
        finally:
            await driver.close()
        return None

    async def stop(self, refs: List[ServiceRef]) -> None:
        """Stop each referenced container; failures are collected, not fatal."""
        orchestrator = self._require_orchestrator()
        if self._state is ProviderState.RUNNING:
            self._transition(ProviderState.STOPPING)

        failures: Dict[str, Exception] = {}
        for ref in refs:
            try:
                await orchestrator.stop_container_by_name(ref.name)
            except ProvisionerError as e:
                self.logger.error("service_stop_failed", service=ref.name, error=str(e))
                failures[ref.name] = e
                continue
            self.endpoints.pop(ref.name, None)
            self._configs.pop(ref.name, None)

        if self._state in (ProviderState.STOPPING, ProviderState.STARTING):
            self._transition(ProviderState.STOPPED)
        if failures:
            raise CompositeError("stop", failures)

    # Migrations

    def _factory(self, db: DBConfig) -> DriverFactory:
        factory, found = get_driver(db.engine) if db.engine else (None, False)
        if not found:
            raise ConfigInvalid(f"no driver registered for type {db.type!r}", db.name)
        return factory

    async def wait_until_ready(self, db: DBConfig, max_wait: Optional[float] = None) -> int:
        """Block on the readiness gate for ``db``; returns the successful attempt."""
        dsn = materialize_dsn(db)
        self.logger.info("readiness_wait", service=db.name, dsn=redact_dsn(dsn))
        return await wait_ready(
            self._factory(db),
            dsn,
            max_wait if max_wait is not None else self.settings.readiness_max_wait_seconds,
            attempt_timeout=self.settings.readiness_attempt_timeout_seconds,
            service=db.name,
        )

    async def prepare_migrations(self, db: DBConfig, max_wait: Optional[float] = None) -> None:
        if db.engine is None or not db.engine.owns_schema:
            raise ConfigInvalid(f"engine {db.type!r} does not own a schema", db.name)
        await self.wait_until_ready(db, max_wait)

    async def run_migrations(
        self,
        db: DBConfig,
        info: MigrationInfo,
        dry_run: Optional[bool] = None,
        force: Optional[bool] = None,
    ) -> List[MigrationResult]:
        """Run the scripts of ``info`` against ``db``.

        Skipped (empty result) when the schema already exists, unless forced.
        A dry run never connects.
        """
        dry_run = info.dry_run if dry_run is None else dry_run
        force = info.force if force is None else force
        tree = assets_for(info, self.assets)
        scripts = resolve_scripts(tree, info)
        log = self.logger.bind(service=db.name)

        if dry_run:
            runner = MigrationRunner(None, tree, service=db.name, dry_run=True)
            return await runner.run(scripts)

        driver = self._factory(db)()
        if not isinstance(driver, SQLDriver):
            raise ConfigInvalid(f"engine {db.type!r} cannot run SQL migrations", db.name)
        driver.ping_timeout = self.settings.ping_timeout_seconds
        driver.statement_timeout = self.settings.statement_timeout_seconds

        await driver.connect(db)
        try:
            if not force and await self._schema_present(driver, db.name):
                log.info("migrations_skipped", reason="schema_exists")
                return []
            runner = MigrationRunner(
                driver,
                tree,
                statement_timeout=self.settings.statement_timeout_seconds,
                service=db.name,
            )
            return await runner.run(scripts)
        finally:
            await driver.close()

    async def _schema_present(self, driver: SQLDriver, service: str) -> bool:
        try:
            return await schema_exists(driver)
        except Exception as e:
            # Treated as absent so migrations still run.
            self.logger.warning("schema_check_failed", service=service, error=str(e))
            return False

    # Whole-config orchestration

    async def start_services(self, root: RootConfig) -> Dict[str, Endpoint]:
        """Start every enabled service, wait for readiness and migrate.

        Statement failures inside migrations only produce a warning. Services
        that cannot start, never become ready or whose scripts cannot be read
        fail the call: immediately in strict mode, otherwise as one
        ``CompositeError`` after every other service was handled.
        """
        self._require_orchestrator()
        if root is None:
            raise ConfigInvalid("no root config given", self.name)

        self._transition(ProviderState.STARTING)
        try:
            endpoints, failures = await self._start_services(root)
        except BaseException:
            self._settle()
            raise
        self._settle()

        if failures:
            raise CompositeError("start_services", failures, completed=endpoints)
        return endpoints

    async def _start_services(
        self, root: RootConfig
    ) -> Tuple[Dict[str, Endpoint], Dict[str, Exception]]:
        self.fill_secrets(root)
        labels = root_config_to_start_spec(root).labels
        failures: Dict[str, Exception] = {}

        try:
            ports = await self.orchestrator.initialize_with_config(root, labels=labels)
        except CompositeError as e:
            if self.strict:
                raise
            failures.update(e.errors)
            ports = e.completed

        endpoints: Dict[str, Endpoint] = {}
        for db in root.enabled_databases():
            if db.name not in ports:
                continue
            try:
                await self._bring_up(root, db)
            except ProvisionerError as e:
                self.logger.error("service_provision_failed", service=db.name, error=str(e))
                if self.strict:
                    raise
                failures[db.name] = e
                continue
            endpoints[db.name] = self._remember(db)

        return endpoints, failures

    async def _bring_up(self, root: RootConfig, db: DBConfig) -> None:
        materialize_dsn(db)
        if not db.engine.owns_schema:
            await self.wait_until_ready(db)
            return

        await self.prepare_migrations(db)
        info = root.migration_for(db)
        if info is None or not (info.enabled and info.auto):
            return
        results = await self.run_migrations(db, info)
        self.migration_results[db.name] = results
        self._check_results(db, results)

    def _check_results(self, db: DBConfig, results: List[MigrationResult]) -> None:
        unreadable = [r for r in results if r.read_failed]
        if unreadable:
            names = ", ".join(r.file_name for r in unreadable)
            raise ScriptReadFailed(
                f"cannot read migration script(s): {names}", unreadable[0].file_name, db.name
            )
        totals = summarize(results)
        if totals["failed"]:
            self.logger.warning("migrations_partial_success", service=db.name, **totals)

    def fill_secrets(self, root: RootConfig) -> None:
        """Give every enabled service without a password one from the secret store."""
        for db in root.enabled_databases():
            if db.engine is not None and not db.password:
                db.password = self._password_for(db.name)

    def _password_for(self, service: str) -> str:
        return self.secret_store.get_or_create(service, PASSWORD_SECRET)

    def _remember(self, db: DBConfig) -> Endpoint:
        materialize_dsn(db)
        endpoint = build_endpoint(db)
        self.endpoints[db.name] = endpoint
        self._configs[db.name] = db
        return endpoint

    async def reconnect(self) -> Dict[str, Endpoint]:
        """Re-run the readiness gate for every known service.

        Only valid while RUNNING. A service that no longer answers moves the
        provider to STOPPED.
        """
        if self._state is not ProviderState.RUNNING:
            raise InvalidTransition(f"{self.name}: reconnect requires a running provider")
        self._transition(ProviderState.STARTING)
        try:
            for db in list(self._configs.values()):
                await self.wait_until_ready(db)
        except BaseException:
            self.endpoints.clear()
            self._configs.clear()
            self._transition(ProviderState.STOPPED)
            raise
        self._transition(ProviderState.RUNNING)
        return dict(self.endpoints)
