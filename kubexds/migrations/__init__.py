"""SQL script tokenizing and execution."""

from .assets import AssetTree, assets_for, default_assets, load_manifest_order, resolve_scripts
from .runner import MigrationRunner, schema_exists
from .tokenizer import split_statements, strip_meta_commands

__all__ = [
    "AssetTree",
    "MigrationRunner",
    "assets_for",
    "default_assets",
    "load_manifest_order",
    "resolve_scripts",
    "schema_exists",
    "split_statements",
    "strip_meta_commands",
]
