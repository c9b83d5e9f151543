"""svrx plugin package manager.

Usage:
    from svrx import create_package_manager

    pm = create_package_manager("hello", core_version="1.0.0")
    plugin = await pm.load()    # PluginHandle(name, version, path)
"""

from svrx.config import SvrxConfig
from svrx.exceptions import (
    SvrxError, PackageManagerError, ManifestMissing, ManifestInvalid,
    RegistryNotFound, RegistryUnavailable, NoSuchVersion, VersionMismatch,
    NoCompatibleVersion,
)
from svrx.package_manager import (
    PluginHandle, PluginRequest, PluginPackageManager, create_package_manager,
)
from svrx.version import __version__

__all__ = [
    "SvrxConfig",
    "SvrxError", "PackageManagerError", "ManifestMissing", "ManifestInvalid",
    "RegistryNotFound", "RegistryUnavailable", "NoSuchVersion", "VersionMismatch",
    "NoCompatibleVersion",
    "PluginHandle", "PluginRequest", "PluginPackageManager", "create_package_manager",
    "__version__",
]
