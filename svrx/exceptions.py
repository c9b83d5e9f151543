"""Typed exception hierarchy. Every error the package manager can raise."""

from typing import Optional

_PACKAGE_PREFIX = "svrx-plugin-"


class SvrxError(Exception):
    """Base exception for all svrx errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class PackageManagerError(SvrxError):
    """Base class for plugin resolution and installation errors."""
    def __init__(self, message: str, plugin_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.plugin_name = plugin_name


class ManifestMissing(PackageManagerError):
    """No package.json at a resolved plugin path."""
    def __init__(self, plugin_name: str, path, message: Optional[str] = None):
        self.path = path
        super().__init__(
            message or (
                f"no package.json found for plugin '{plugin_name}' at {path}: "
                "no package descriptor found"
            ),
            plugin_name=plugin_name,
            details={"path": str(path)},
        )


class ManifestInvalid(ManifestMissing):
    """package.json exists but cannot be read or decoded."""
    def __init__(self, plugin_name: str, path, reason: str):
        self.reason = reason
        super().__init__(
            plugin_name,
            path,
            message=f"invalid package.json for plugin '{plugin_name}' at {path}: {reason}",
        )


class RegistryNotFound(PackageManagerError):
    """The registry has no published package for this plugin."""
    def __init__(self, plugin_name: str):
        super().__init__(
            f"plugin package '{_PACKAGE_PREFIX}{plugin_name}' is not found in the registry",
            plugin_name=plugin_name,
        )


class RegistryUnavailable(PackageManagerError):
    """Network, HTTP status or decode failure while talking to the registry."""
    def __init__(self, plugin_name: str, reason: str):
        self.reason = reason
        super().__init__(
            f"registry request for '{_PACKAGE_PREFIX}{plugin_name}' failed: {reason}",
            plugin_name=plugin_name,
        )


class NoSuchVersion(PackageManagerError):
    """Explicitly requested version is not published."""
    def __init__(self, plugin_name: str, version: str):
        self.version = version
        super().__init__(
            f"version '{version}' of plugin '{plugin_name}' does not exist",
            plugin_name=plugin_name,
            details={"version": version},
        )


class VersionMismatch(PackageManagerError):
    """Requested version exists but does not support the running svrx."""
    def __init__(self, plugin_name: str, version: str, svrx_range: Optional[str], core_version: str):
        self.version = version
        self.svrx_range = svrx_range
        self.core_version = core_version
        super().__init__(
            f"version of plugin '{plugin_name}' is not matched to current version of svrx "
            f"({plugin_name}@{version} requires svrx '{svrx_range}', current is {core_version})",
            plugin_name=plugin_name,
            details={"version": version, "svrx_range": svrx_range, "core_version": core_version},
        )


class NoCompatibleVersion(PackageManagerError):
    """Neither the local cache nor the registry has a version for this svrx."""
    def __init__(self, plugin_name: str, core_version: str):
        self.core_version = core_version
        super().__init__(
            f"there's no satisfied version of plugin {plugin_name} "
            f"for the svrx currently using ({core_version})",
            plugin_name=plugin_name,
            details={"core_version": core_version},
        )
