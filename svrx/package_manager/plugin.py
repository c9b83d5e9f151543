"""PluginPackageManager — resolve, install and load one svrx plugin."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from svrx.config import SvrxConfig
from svrx.exceptions import (
    NoCompatibleVersion,
    NoSuchVersion,
    RegistryNotFound,
    RegistryUnavailable,
    VersionMismatch,
)
from svrx.package_manager import semver
from svrx.package_manager.manifest import PluginHandle, PluginRequest, VersionEntry, package_name
from svrx.package_manager.registry import NpmRegistryClient, RegistryClient
from svrx.package_manager.store import LocalSnapshot, LocalStore, read_manifest
from svrx.package_manager.validator import PluginValidator

logger = logging.getLogger(__name__)


class PluginPackageManager:
    """Finds the version of a plugin that fits the running svrx and returns a handle to it.

    Args:
        request: What to load.
        registry: Any :class:`RegistryClient`. Only touched when the local
                  cache cannot answer on its own.
        store: LocalStore for ``request.plugin``.
    """

    def __init__(
        self,
        request: PluginRequest,
        registry: RegistryClient,
        store: LocalStore,
    ) -> None:
        self.request = request
        self._registry = registry
        self._store = store
        self._validator = PluginValidator()

    @property
    def plugin(self) -> str:
        return self.request.plugin

    @property
    def core_version(self) -> str:
        return self.request.core_version

    # ─── Public API ───────────────────────────────────────────────────────────

    async def load(self, snapshot: Optional[LocalSnapshot] = None) -> PluginHandle:
        """Resolve the request to an installed plugin directory.

        Sequence:
            1. ``path`` given → read its package.json, no version matching
            2. ``version`` given → local cache if present, else registry
               lookup, compatibility check, download
            3. neither → best fit among local and published versions;
               download only when the registry has a strictly newer fit

        Args:
            snapshot: Pre-built view of the local cache. Scanned from disk when omitted.

        Returns:
            :class:`PluginHandle` with an absolute, existing ``path``.

        Raises:
            ManifestMissing: No package.json at the resolved path.
            RegistryNotFound: Nothing local and nothing published.
            NoSuchVersion: Explicit version is not published.
            VersionMismatch: Explicit version does not support ``core_version``.
            NoCompatibleVersion: No local or published version supports ``core_version``.
            RegistryUnavailable: Registry could not be reached and the cache cannot answer.
        """
        if self.request.path is not None:
            return self._materialize(Path(self.request.path), resolved_version=None)
        if self.request.version is not None:
            return await self._load_version(self.request.version, snapshot)
        return await self._load_bestfit(snapshot)

    def exists(self, version: str) -> bool:
        return self._store.exists(version)

    def get_local_bestfit(self) -> Optional[str]:
        return self._store.get_local_bestfit(self.core_version)

    async def get_remote_bestfit(self) -> Optional[str]:
        return semver.best_fit(await self._registry.fetch_versions(self.plugin), self.core_version)

    def get_local_versions(self) -> list[str]:
        return self._store.snapshot().versions()

    async def get_remote_versions(self) -> list[str]:
        entries = semver.sort_entries(await self._registry.fetch_versions(self.plugin))
        return [e.version for e in reversed(entries)]

    async def get_remote_tags(self) -> dict[str, str]:
        return await self._registry.fetch_tags(self.plugin)

    # ─── Resolution branches ──────────────────────────────────────────────────

    async def _load_version(self, requested: str, snapshot: Optional[LocalSnapshot]) -> PluginHandle:
        # Only exact versions name a cache directory
        exact = semver.parse_version(requested) is not None
        if exact and (snapshot.has(requested) if snapshot is not None else self._store.exists(requested)):
            logger.debug("%s@%s found in local cache", package_name(self.plugin), requested)
            return self._materialize(self._store.path_for(requested), resolved_version=requested)

        entries = semver.sort_entries(await self._registry.fetch_versions(self.plugin))
        if not entries:
            raise RegistryNotFound(self.plugin)

        entry = self._select_published(entries, requested)
        if not semver.satisfies(self.core_version, entry.svrx_range):
            raise VersionMismatch(self.plugin, entry.version, entry.svrx_range, self.core_version)

        path = await self._install(entry.version)
        return self._materialize(path, resolved_version=entry.version)

    def _select_published(self, entries: list[VersionEntry], requested: str) -> VersionEntry:
        """Exact version → that release. Range → newest release in range that supports core."""
        exact = semver.parse_version(requested)
        if exact is not None:
            for entry in entries:
                if semver.parse_version(entry.version) == exact:
                    return entry
            raise NoSuchVersion(self.plugin, requested)

        by_version = {e.version: e for e in entries}
        compatible = [e.version for e in entries if semver.satisfies(self.core_version, e.svrx_range)]
        try:
            picked = semver.max_satisfying(compatible, requested)
            if picked is None:
                # Nothing in range fits; report against the newest so the error names a real release
                picked = semver.max_satisfying(by_version, requested)
        except semver.InvalidRange as exc:
            raise NoSuchVersion(self.plugin, requested) from exc
        if picked is None:
            raise NoSuchVersion(self.plugin, requested)
        return by_version[picked]

    async def _load_bestfit(self, snapshot: Optional[LocalSnapshot]) -> PluginHandle:
        if snapshot is None:
            snapshot, (remote, remote_error) = await asyncio.gather(
                asyncio.to_thread(self._store.snapshot),
                self._fetch_remote_candidates(),
            )
        else:
            remote, remote_error = await self._fetch_remote_candidates()

        local_best = snapshot.best_fit(self.core_version)
        if isinstance(remote_error, RegistryUnavailable):
            if local_best is None:
                raise remote_error
            logger.warning(
                "Registry unavailable, falling back to cached %s@%s: %s",
                package_name(self.plugin),
                local_best,
                remote_error,
            )

        remote_best = semver.best_fit(remote, self.core_version)
        logger.debug(
            "Best fit for %s on svrx %s: local=%s remote=%s",
            package_name(self.plugin),
            self.core_version,
            local_best,
            remote_best,
        )

        if remote_best is not None and (
            local_best is None or semver.compare(remote_best, local_best) > 0
        ):
            path = await self._install(remote_best)
            return self._materialize(path, resolved_version=remote_best)

        if local_best is not None:
            return self._materialize(self._store.path_for(local_best), resolved_version=local_best)

        if not snapshot.entries and not remote:
            raise RegistryNotFound(self.plugin)
        raise NoCompatibleVersion(self.plugin, self.core_version)

    async def _fetch_remote_candidates(
        self,
    ) -> tuple[list[VersionEntry], Optional[Union[RegistryNotFound, RegistryUnavailable]]]:
        """Published versions, with registry failures returned instead of raised."""
        try:
            return await self._registry.fetch_versions(self.plugin), None
        except (RegistryNotFound, RegistryUnavailable) as exc:
            return [], exc

    # ─── Install + validate ───────────────────────────────────────────────────

    async def _install(self, version: str) -> Path:
        dest = self._store.path_for(version)
        if self._store.exists(version):
            logger.debug("%s@%s already cached at %s", package_name(self.plugin), version, dest)
            return dest
        logger.info("Installing %s@%s into %s", package_name(self.plugin), version, dest)
        await self._registry.download(self.plugin, version, dest)
        return dest

    def _materialize(self, path: Path, resolved_version: Optional[str]) -> PluginHandle:
        """Read and check package.json at *path*, then build the handle.

        ``resolved_version`` is ``None`` for an explicit local path, in which
        case the handle carries whatever version the manifest declares.
        """
        manifest = read_manifest(path, self.plugin)
        for problem in self._validator.validate(manifest, self.plugin, resolved_version):
            logger.warning("Plugin '%s' at %s: %s", self.plugin, path, problem)

        handle = PluginHandle(
            name=manifest.name or package_name(self.plugin),
            version=resolved_version if resolved_version is not None else manifest.version,
            path=path,
        )
        logger.info("Loaded %s@%s from %s", handle.name, handle.version or "<unversioned>", path)
        return handle


def create_package_manager(
    plugin: str,
    core_version: str,
    version: Optional[str] = None,
    path: Optional[Union[str, Path]] = None,
    *,
    config: Optional[SvrxConfig] = None,
    registry: Optional[RegistryClient] = None,
    store: Optional[LocalStore] = None,
) -> PluginPackageManager:
    """Build a package manager for one plugin request.

    ``config`` is read fresh from the environment when omitted, so ``SVRX_DIR``
    set after import still takes effect.

    Example::

        pm = create_package_manager("hello", core_version="1.0.0")
        handle = await pm.load()
    """
    request = PluginRequest(plugin=plugin, core_version=core_version, version=version, path=path)
    config = config or SvrxConfig()
    return PluginPackageManager(
        request,
        registry=registry if registry is not None else NpmRegistryClient(config),
        store=store if store is not None else LocalStore(plugin, config.plugins_dir),
    )
