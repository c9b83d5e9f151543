"""svrx plugin package manager — public API surface."""

from svrx.package_manager.manifest import (
    PackageManifest,
    PluginHandle,
    PluginRequest,
    VersionEntry,
    package_name,
)
from svrx.package_manager.plugin import PluginPackageManager, create_package_manager
from svrx.package_manager.registry import NpmRegistryClient, RegistryClient
from svrx.package_manager.semver import Range, SemVer, best_fit, parse_version, satisfies
from svrx.package_manager.store import LocalSnapshot, LocalStore, read_manifest
from svrx.package_manager.validator import PluginValidator

__all__ = [
    "PackageManifest",
    "PluginHandle",
    "PluginRequest",
    "VersionEntry",
    "package_name",
    "PluginPackageManager",
    "create_package_manager",
    "NpmRegistryClient",
    "RegistryClient",
    "Range",
    "SemVer",
    "best_fit",
    "parse_version",
    "satisfies",
    "LocalSnapshot",
    "LocalStore",
    "read_manifest",
    "PluginValidator",
]
