"""LocalStore — the on-disk plugin cache under ``<SVRX_DIR>/plugins``.

Layout::

    <SVRX_DIR>/plugins/<plugin>/<version>/package.json

The directory listing is the catalogue. A version counts as installed only
when its directory holds a readable ``package.json``; anything else in the
tree is ignored.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from svrx.exceptions import ManifestInvalid, ManifestMissing
from svrx.package_manager import semver
from svrx.package_manager.manifest import MANIFEST_FILE, PackageManifest, VersionEntry

logger = logging.getLogger(__name__)


def read_manifest(path: Path, plugin: str) -> PackageManifest:
    """Read ``package.json`` from a plugin directory.

    Raises:
        ManifestMissing: No descriptor file at *path*.
        ManifestInvalid: The descriptor exists but is unreadable or not a JSON object.
    """
    manifest_file = Path(path) / MANIFEST_FILE
    if not manifest_file.is_file():
        raise ManifestMissing(plugin, path)
    try:
        data = json.loads(manifest_file.read_text(encoding="utf-8"))
        return PackageManifest.from_package_json(data)
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        raise ManifestInvalid(plugin, path, str(exc)) from exc


class LocalSnapshot(BaseModel):
    """Installed versions of one plugin as seen by a single directory scan.

    Immutable for the duration of a resolution so the resolver never sees the
    cache change under it.
    """

    model_config = {"frozen": True}

    plugin: str
    root: Path
    entries: tuple[VersionEntry, ...] = ()

    def versions(self) -> list[str]:
        """Installed versions, ascending."""
        return [e.version for e in reversed(semver.sort_entries(self.entries))]

    def has(self, version: str) -> bool:
        return any(e.version == version for e in self.entries)

    def best_fit(self, core_version: str) -> Optional[str]:
        return semver.best_fit(self.entries, core_version)


class LocalStore:
    """Filesystem-backed catalogue of installed versions of one plugin.

    Args:
        plugin: Bare plugin name (``'hello'``).
        plugins_dir: ``<SVRX_DIR>/plugins``.
    """

    def __init__(self, plugin: str, plugins_dir: Path) -> None:
        self.plugin = plugin
        self.root = Path(plugins_dir) / plugin

    def path_for(self, version: str) -> Path:
        """Canonical install directory for *version*. Does not touch the disk.

        Raises:
            ValueError: *version* is not a single path segment below the plugin root.
        """
        if not version or version in (".", "..") or "/" in version or "\\" in version:
            raise ValueError(f"Version '{version}' of plugin '{self.plugin}' is not a valid directory name")
        return (self.root / version).absolute()

    def exists(self, version: str) -> bool:
        try:
            read_manifest(self.path_for(version), self.plugin)
        except ManifestMissing:
            return False
        return True

    def list_installed(self) -> list[VersionEntry]:
        """Scan the plugin root. Malformed entries are skipped, never fatal."""
        if not self.root.is_dir():
            return []

        entries: list[VersionEntry] = []
        for child in sorted(self.root.iterdir()):
            if not child.is_dir():
                continue
            if semver.parse_version(child.name) is None:
                logger.debug("Skipping '%s': directory name is not a semver version", child)
                continue
            try:
                manifest = read_manifest(child, self.plugin)
            except ManifestMissing as exc:
                logger.debug("Skipping cached version '%s': %s", child, exc)
                continue
            entries.append(VersionEntry(version=child.name, svrx_range=manifest.svrx_range))
        return entries

    def snapshot(self) -> LocalSnapshot:
        return LocalSnapshot(
            plugin=self.plugin,
            root=self.root.absolute(),
            entries=tuple(self.list_installed()),
        )

    def get_local_bestfit(self, core_version: str) -> Optional[str]:
        return semver.best_fit(self.list_installed(), core_version)
