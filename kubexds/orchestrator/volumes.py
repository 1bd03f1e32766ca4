"""
Persistent volumes and the relational init directory.
"""

from pathlib import Path
from typing import Dict, List, Optional

import structlog
from docker.errors import NotFound

from ..migrations.assets import INIT_DIR, AssetTree

logger = structlog.get_logger()


def is_host_path(volume: str) -> bool:
    return Path(volume).expanduser().is_absolute()


def ensure_volume(
    client,
    name: str,
    host_path: Optional[Path] = None,
    labels: Optional[Dict[str, str]] = None,
):
    """Return the named volume, creating it if needed.

    With ``host_path`` the volume is a bind onto that directory, created first;
    otherwise the runtime manages the storage.
    """
    try:
        return client.volumes.get(name)
    except NotFound:
        pass

    if host_path is None:
        logger.info("volume_create", volume=name, managed=True)
        return client.volumes.create(name=name, labels=labels or {})

    host_path.mkdir(parents=True, exist_ok=True, mode=0o750)
    logger.info("volume_create", volume=name, host_path=str(host_path))
    return client.volumes.create(
        name=name,
        driver="local",
        driver_opts={"type": "none", "o": "bind", "device": str(host_path)},
        labels=labels or {},
    )


def seed_init_dir(assets: AssetTree, target: Path) -> List[Path]:
    """Copy every file of the ``init/`` tree into ``target``.

    Files already present in ``target`` are left untouched.

    Returns:
        Paths written by this call.
    """
    target.mkdir(parents=True, exist_ok=True, mode=0o750)
    if not assets.is_dir(INIT_DIR):
        return []

    written = []
    stack = [INIT_DIR]
    while stack:
        current = stack.pop()
        for name in assets.read_dir(current):
            source = f"{current}/{name}"
            relative = Path(source).relative_to(INIT_DIR)
            if assets.is_dir(source):
                stack.append(source)
                continue
            destination = target / relative
            if destination.exists():
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(assets.read_file(source))
            destination.chmod(0o644)
            written.append(destination)

    if written:
        logger.info("init_dir_seeded", path=str(target), files=len(written))
    return written
