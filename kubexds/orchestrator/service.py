"""
Container orchestrator.

Realizes the enabled services of a ``RootConfig`` as containers on the local
Docker engine: pulls images, allocates host ports, binds persistent volumes,
seeds the relational init directory and starts the containers. Services are
handled one after another in configuration order.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional

import docker
import structlog
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from ..config import Settings, get_settings
from ..errors import CompositeError, ConfigInvalid, ContainerOpFailed, NotInitialized
from ..migrations.assets import AssetTree, default_assets
from ..schemas.stack_v1 import DBConfig, Engine, RootConfig
from .ports import DEFAULT_PROBE_WINDOW, find_free_port, is_port_free
from .profiles import INITDB_PATH, EngineProfile, profile_for
from .volumes import ensure_volume, is_host_path, seed_init_dir

logger = structlog.get_logger()

LABEL_OWNER = "io.kubexds.owner"
LABEL_SERVICE = "io.kubexds.service"
LABEL_ENGINE = "io.kubexds.engine"

RUNNING = "running"


class ContainerOrchestrator:
    """Creates, starts and stops the containers backing a stack."""

    def __init__(
        self,
        client,
        prefix: str = "kubexds",
        volumes_root: Optional[Path] = None,
        port_window: int = DEFAULT_PROBE_WINDOW,
        stop_timeout: int = 10,
        strict: bool = False,
        assets: Optional[AssetTree] = None,
        bind_host: str = "127.0.0.1",
        port_checker: Callable[[int, str], bool] = is_port_free,
    ):
        """Initialize the orchestrator.

        Args:
            client: A ``docker.DockerClient``. None leaves the orchestrator
                uninitialized; every operation then raises ``NotInitialized``.
            prefix: Container and volume name prefix.
            volumes_root: Parent of the default host directories for volumes.
            port_window: How many consecutive ports to probe per service.
            stop_timeout: Seconds to wait for a graceful stop before killing.
            strict: Abort on the first failing service.
            assets: Tree holding the relational ``init/`` files.
            bind_host: Host interface the published ports bind to.
            port_checker: Predicate telling whether a host port is free.
        """
        self.client = client
        self.prefix = prefix
        self.volumes_root = volumes_root or get_settings().volumes_dir
        self.port_window = port_window
        self.stop_timeout = stop_timeout
        self.strict = strict
        self.assets = assets or default_assets()
        self.bind_host = bind_host
        self.port_checker = port_checker
        self._running: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, client=None) -> "ContainerOrchestrator":
        """Build an orchestrator talking to the engine described by the environment."""
        settings = settings or get_settings()
        if client is None:
            try:
                client = docker.from_env()
            except DockerException as e:
                raise NotInitialized(f"docker engine unavailable: {e}") from e
        return cls(
            client,
            prefix=settings.container_prefix,
            volumes_root=settings.volumes_dir,
            port_window=settings.port_probe_window,
            stop_timeout=settings.container_stop_timeout_seconds,
            strict=settings.kubexds_strict,
        )

    def container_name(self, service: str) -> str:
        return f"{self.prefix}-{service}"

    def _require_client(self) -> None:
        if self.client is None:
            raise NotInitialized("container runtime client was not injected")

    async def running_ports(self) -> Dict[str, int]:
        """Snapshot of service name to published host port."""
        async with self._lock:
            return dict(self._running)

    async def initialize_with_config(
        self, root: RootConfig, labels: Optional[Dict[str, str]] = None
    ) -> Dict[str, int]:
        """Bring up every enabled service of ``root``.

        Running containers are left alone and their published port is read
        back. Each started ``DBConfig`` gets its host port written into
        ``port``.

        Returns:
            Service name to host port for every service that is up.

        Raises:
            NotInitialized: no runtime client.
            CompositeError: one or more services failed (non-strict mode).
            ContainerOpFailed / ConfigInvalid: first failure in strict mode.
        """
        self._require_client()
        if root is None:
            raise ConfigInvalid("no root config given")

        started: Dict[str, int] = {}
        failures: Dict[str, Exception] = {}

        for db in root.enabled_databases():
            log = logger.bind(service=db.name, engine=db.type)
            if db.engine is None:
                log.warning("service_engine_unsupported")
                continue
            try:
                started[db.name] = await self._ensure_service(db, labels or {})
            except (ContainerOpFailed, ConfigInvalid) as e:
                log.error("service_start_failed", error=str(e))
                if self.strict:
                    raise
                failures[db.name] = e

        if failures:
            raise CompositeError("start", failures, completed=started)
        return started

    async def _ensure_service(self, db: DBConfig, labels: Dict[str, str]) -> int:
        profile = profile_for(db.engine)
        profile.apply_defaults(db)
        name = self.container_name(db.name)
        log = logger.bind(service=db.name, container=name)

        container = await self._get_container(name)
        if container is not None:
            port = await self._resume(container, profile, db)
            log.info("container_reused", port=port)
        else:
            port = await self._create_and_start(db, profile, labels)
            log.info("container_started", port=port, image=profile.image)

        db.port = str(port)
        async with self._lock:
            self._running[db.name] = port
        return port

    async def _get_container(self, name: str):
        try:
            return await asyncio.to_thread(self.client.containers.get, name)
        except NotFound:
            return None
        except DockerException as e:
            raise ContainerOpFailed(f"inspect {name}: {e}") from e

    async def _resume(self, container, profile: EngineProfile, db: DBConfig) -> int:
        """Start an existing container if needed and read back its host port."""
        try:
            if container.status != RUNNING:
                await asyncio.to_thread(container.start)
            await asyncio.to_thread(container.reload)
        except DockerException as e:
            raise ContainerOpFailed(f"start {container.name}: {e}", db.name) from e

        port = published_port(container, profile)
        if port is None:
            raise ContainerOpFailed(
                f"container {container.name} publishes no port for {profile.port_key}",
                db.name,
            )
        return port

    async def _create_and_start(
        self, db: DBConfig, profile: EngineProfile, labels: Dict[str, str]
    ) -> int:
        environment = profile.environment(db)
        command = profile.command(db)
        name = self.container_name(db.name)

        async with self._lock:
            reserved = set(self._running.values())
        port = find_free_port(
            db.port_number() or profile.default_port,
            window=self.port_window,
            host=self.bind_host,
            reserved=reserved,
            is_free=self.port_checker,
            service=db.name,
        )

        container_labels = dict(labels)
        container_labels.update({
            LABEL_OWNER: self.prefix,
            LABEL_SERVICE: db.name,
            LABEL_ENGINE: profile.engine.value,
        })

        try:
            await self._pull_if_missing(profile.image)
            volumes = await self._volume_bindings(db, profile, container_labels)
            container = await asyncio.to_thread(
                self.client.containers.create,
                profile.image,
                name=name,
                command=command,
                environment=environment,
                ports={profile.port_key: (self.bind_host, port)},
                volumes=volumes,
                labels=container_labels,
                restart_policy={"Name": "unless-stopped"},
            )
            await asyncio.to_thread(container.start)
        except DockerException as e:
            raise ContainerOpFailed(f"create {name}: {e}", db.name) from e
        except OSError as e:
            raise ContainerOpFailed(f"prepare volumes for {name}: {e}", db.name) from e
        return port

    async def _pull_if_missing(self, image: str) -> None:
        try:
            await asyncio.to_thread(self.client.images.get, image)
            return
        except ImageNotFound:
            pass
        repository, tag = parse_repository_tag(image)
        logger.info("image_pull", image=image)
        await asyncio.to_thread(self.client.images.pull, repository, tag=tag or "latest")

    async def _volume_bindings(
        self, db: DBConfig, profile: EngineProfile, labels: Dict[str, str]
    ) -> Dict[str, Dict[str, str]]:
        """Runtime volume map for the container: data volume plus init dir."""
        volume_name = f"{self.prefix}-{db.name}-data"
        if db.volume and not is_host_path(db.volume):
            volume_name = db.volume
            host_path = None
        elif db.volume:
            host_path = Path(db.volume).expanduser()
        else:
            host_path = self.volumes_root / profile.engine.value / db.name

        await asyncio.to_thread(ensure_volume, self.client, volume_name, host_path, labels)
        bindings = {volume_name: {"bind": profile.data_path, "mode": "rw"}}

        if profile.engine is Engine.POSTGRES:
            init_dir = self.volumes_root / "init" / db.name
            await asyncio.to_thread(seed_init_dir, self.assets, init_dir)
            bindings[str(init_dir)] = {"bind": INITDB_PATH, "mode": "ro"}
        return bindings

    async def start_container_by_name(self, name: str) -> None:
        """Start the container of service ``name``; already running counts as success."""
        self._require_client()
        container_name = self.container_name(name)
        container = await self._get_container(container_name)
        if container is None:
            raise ContainerOpFailed(f"no container {container_name}", name)
        if container.status == RUNNING:
            return
        try:
            await asyncio.to_thread(container.start)
        except DockerException as e:
            raise ContainerOpFailed(f"start {container_name}: {e}", name) from e
        logger.info("container_started", service=name, container=container_name)

    async def stop_container_by_name(self, name: str, timeout: Optional[int] = None) -> None:
        """Stop the container of service ``name``.

        The runtime sends SIGTERM, waits ``timeout`` seconds, then kills. A
        missing container is already stopped.
        """
        self._require_client()
        container_name = self.container_name(name)
        container = await self._get_container(container_name)
        if container is None:
            logger.info("container_absent", service=name, container=container_name)
        else:
            stop_timeout = self.stop_timeout if timeout is None else timeout
            try:
                await asyncio.to_thread(container.stop, timeout=stop_timeout)
            except DockerException as e:
                raise ContainerOpFailed(f"stop {container_name}: {e}", name) from e
            logger.info("container_stopped", service=name, container=container_name)

        async with self._lock:
            self._running.pop(name, None)

    async def container_status(self, name: str) -> Optional[str]:
        """Runtime status of the service's container, None if it does not exist."""
        self._require_client()
        container = await self._get_container(self.container_name(name))
        return None if container is None else container.status

    async def managed_containers(self) -> List[str]:
        """Names of every container carrying this orchestrator's owner label."""
        self._require_client()
        try:
            containers = await asyncio.to_thread(
                self.client.containers.list,
                all=True,
                filters={"label": f"{LABEL_OWNER}={self.prefix}"},
            )
        except DockerException as e:
            raise ContainerOpFailed(f"list containers: {e}") from e
        return sorted(c.name for c in containers)


def published_port(container, profile: EngineProfile) -> Optional[int]:
    """Host port bound to the profile's container port, read from the runtime."""
    bindings = (container.ports or {}).get(profile.port_key) or []
    for binding in bindings:
        host_port = binding.get("HostPort")
        if host_port:
            return int(host_port)
    return None
