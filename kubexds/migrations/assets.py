"""
Read-only script tree.

Migration scripts and the relational init files travel with the package under
``kubexds/embedded``. ``AssetTree`` exposes them through two primitives,
``read_file`` and ``read_dir``, so callers never care whether the tree lives
in a wheel, a source checkout or a temporary directory in tests.
"""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any, List, Optional, Union

import structlog

from ..schemas.stack_v1 import MigrationInfo

logger = structlog.get_logger()

MANIFEST_NAME = "bootstrap.manifest.json"
INIT_DIR = "init"


class AssetTree:
    """Read-only view over a directory of scripts."""

    def __init__(self, root: Union[Path, Any]):
        self.root = root

    def _resolve(self, path: str):
        node = self.root
        for part in Path(path).parts:
            if part in ("", "."):
                continue
            if part == "..":
                raise FileNotFoundError(f"path escapes script tree: {path}")
            node = node / part
        return node

    def read_file(self, path: str) -> bytes:
        node = self._resolve(path)
        if not node.is_file():
            raise FileNotFoundError(f"no such script: {path}")
        return node.read_bytes()

    def read_dir(self, path: str = "") -> List[str]:
        """Names of the entries directly under ``path``, sorted."""
        node = self._resolve(path)
        if not node.is_dir():
            raise FileNotFoundError(f"no such directory: {path}")
        return sorted(child.name for child in node.iterdir())

    def is_file(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def is_dir(self, path: str) -> bool:
        return self._resolve(path).is_dir()

    def subtree(self, path: str) -> "AssetTree":
        return AssetTree(self._resolve(path))

    def __repr__(self) -> str:
        return f"AssetTree({self.root!r})"


def default_assets() -> AssetTree:
    """The script tree shipped inside the package."""
    return AssetTree(resources.files("kubexds").joinpath("embedded"))


def assets_for(info: Optional[MigrationInfo], base: Optional[AssetTree] = None) -> AssetTree:
    """Script tree for a migration block.

    The default ``embedded`` path maps to the packaged tree. Any other path is
    taken as a directory on disk, so a project can ship its own scripts.
    """
    base = base or default_assets()
    if info is None or info.migration_path in ("", "embedded"):
        return base
    path = Path(info.migration_path).expanduser()
    if path.is_absolute() or path.is_dir():
        return AssetTree(path)
    return base.subtree(info.migration_path)


def load_manifest_order(tree: AssetTree) -> List[str]:
    """Script names from ``execution_order[].file`` in the manifest, if present."""
    if not tree.is_file(MANIFEST_NAME):
        return []
    try:
        manifest = json.loads(tree.read_file(MANIFEST_NAME).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("migration_manifest_invalid", error=str(e))
        return []

    order = []
    for entry in manifest.get("execution_order") or []:
        name = entry.get("file") if isinstance(entry, dict) else entry
        if isinstance(name, str) and name:
            order.append(name)
    return order


def resolve_scripts(tree: AssetTree, info: Optional[MigrationInfo] = None) -> List[str]:
    """Ordered script names for a run.

    Explicit ``MigrationInfo.scripts`` win, then the manifest order, then every
    ``*.sql`` file at the tree root sorted by name.
    """
    if info is not None and info.scripts:
        return list(info.scripts)

    ordered = load_manifest_order(tree)
    if ordered:
        return ordered

    return [
        name for name in tree.read_dir() if name.endswith(".sql") and tree.is_file(name)
    ]
