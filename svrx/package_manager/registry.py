"""Registry clients — published versions, dist-tags and tarballs of svrx plugins.

The resolver only depends on the :class:`RegistryClient` protocol, so tests
(and alternative registries) can swap in any object with the same three
coroutines.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import io
import logging
import shutil
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from svrx.config import SvrxConfig
from svrx.exceptions import (
    ManifestMissing,
    NoSuchVersion,
    RegistryNotFound,
    RegistryUnavailable,
)
from svrx.package_manager.manifest import VersionEntry, package_name, svrx_range_of
from svrx.package_manager.store import read_manifest

logger = logging.getLogger(__name__)


class RegistryClient(Protocol):
    async def fetch_versions(self, plugin: str) -> list[VersionEntry]:
        """All published versions with their svrx ranges, unordered."""
        ...

    async def fetch_tags(self, plugin: str) -> dict[str, str]:
        """dist-tag → version, e.g. ``{'latest': '1.0.3'}``."""
        ...

    async def download(self, plugin: str, version: str, dest: Path) -> Path:
        """Fetch and unpack *version* into *dest*. Returns *dest*."""
        ...


class NpmRegistryClient:
    """Reads svrx plugins from an npm-compatible registry.

    One packument (``GET <registry>/svrx-plugin-<name>``) answers both
    version listing and tarball lookup; it is fetched once per client and
    plugin.

    Args:
        config: SvrxConfig for the registry URL and request timeout.
    """

    def __init__(self, config: Optional[SvrxConfig] = None) -> None:
        self._config = config or SvrxConfig()
        self._documents: dict[str, dict] = {}

    # ─── Public API ───────────────────────────────────────────────────────────

    async def fetch_versions(self, plugin: str) -> list[VersionEntry]:
        """Raises:
            RegistryNotFound: No package named ``svrx-plugin-<plugin>``.
            RegistryUnavailable: Network, HTTP status or decode failure.
        """
        document = await self._fetch_document(plugin)
        versions = document.get("versions")
        if not versions:
            # Fully unpublished packages keep a stub document without versions
            raise RegistryNotFound(plugin)
        if not isinstance(versions, dict):
            raise RegistryUnavailable(plugin, "'versions' in registry document is not an object")

        entries: list[VersionEntry] = []
        for version, meta in versions.items():
            try:
                entries.append(VersionEntry(
                    version=version,
                    svrx_range=svrx_range_of(meta) if isinstance(meta, dict) else None,
                ))
            except ValidationError:
                logger.debug("Ignoring non-semver release '%s' of %s", version, package_name(plugin))
        return entries

    async def fetch_tags(self, plugin: str) -> dict[str, str]:
        document = await self._fetch_document(plugin)
        tags = document.get("dist-tags") or {}
        if not isinstance(tags, dict):
            return {}
        return {tag: v for tag, v in tags.items() if isinstance(v, str)}

    async def download(self, plugin: str, version: str, dest: Path) -> Path:
        """Download the tarball for *version* and unpack it into *dest*.

        Skips the download when *dest* already holds a readable manifest.

        Raises:
            NoSuchVersion: *version* is not published or has no tarball URL.
            RegistryUnavailable: Download failed, checksum mismatch, or the
                archive cannot be unpacked.
        """
        dest = Path(dest)
        if _has_manifest(dest, plugin):
            logger.info("%s@%s already present at %s, reusing it", package_name(plugin), version, dest)
            return dest

        document = await self._fetch_document(plugin)
        meta = (document.get("versions") or {}).get(version)
        dist = meta.get("dist") if isinstance(meta, dict) else None
        tarball_url = dist.get("tarball") if isinstance(dist, dict) else None
        if not tarball_url:
            raise NoSuchVersion(plugin, version)

        logger.info("Downloading %s@%s from %s", package_name(plugin), version, tarball_url)
        content = await self._get(plugin, tarball_url, expect_json=False)
        _verify_dist_checksum(plugin, version, content, dist)

        try:
            await asyncio.to_thread(_unpack_tarball, content, dest, plugin)
        except (tarfile.TarError, EOFError) as exc:
            raise RegistryUnavailable(
                plugin, f"cannot unpack tarball of version {version}: {exc}"
            ) from exc
        return dest

    # ─── HTTP helpers ─────────────────────────────────────────────────────────

    async def _fetch_document(self, plugin: str) -> dict:
        if plugin in self._documents:
            return self._documents[plugin]

        url = f"{self._config.registry_url.rstrip('/')}/{package_name(plugin)}"
        document = await self._get(plugin, url, expect_json=True)
        if not isinstance(document, dict):
            raise RegistryUnavailable(plugin, "registry document is not a JSON object")
        self._documents[plugin] = document
        return document

    async def _get(self, plugin: str, url: str, expect_json: bool) -> Any:
        timeout = self._config.registry_timeout
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                headers={"User-Agent": _user_agent()},
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                if expect_json and response.status_code == 404:
                    raise RegistryNotFound(plugin)
                response.raise_for_status()
                return response.json() if expect_json else response.content
        except httpx.TimeoutException as exc:
            raise RegistryUnavailable(plugin, f"timed out after {timeout:.1f}s ({url})") from exc
        except httpx.HTTPStatusError as exc:
            raise RegistryUnavailable(
                plugin, f"HTTP {exc.response.status_code} from {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RegistryUnavailable(plugin, f"{exc} ({url})") from exc
        except ValueError as exc:
            raise RegistryUnavailable(plugin, f"invalid JSON from {url}: {exc}") from exc


# ─── Module-level helpers ─────────────────────────────────────────────────────


def _user_agent() -> str:
    from svrx.version import __version__
    return f"svrx/{__version__} package-manager"


def _has_manifest(path: Path, plugin: str) -> bool:
    try:
        read_manifest(path, plugin)
    except ManifestMissing:
        return False
    return True


def _verify_dist_checksum(plugin: str, version: str, content: bytes, dist: dict) -> None:
    """Check ``dist.integrity`` (sha512 SRI) or, failing that, ``dist.shasum`` (sha1 hex)."""
    integrity = dist.get("integrity")
    if isinstance(integrity, str) and integrity.startswith("sha512-"):
        actual = "sha512-" + base64.b64encode(hashlib.sha512(content).digest()).decode()
        expected = integrity.split()[0]
    elif isinstance(dist.get("shasum"), str):
        actual = hashlib.sha1(content).hexdigest()
        expected = dist["shasum"].lower()
    else:
        return

    if actual != expected:
        raise RegistryUnavailable(
            plugin, f"checksum mismatch for version {version}: expected {expected}, got {actual}"
        )


def _member_parts(name: str) -> tuple[str, ...]:
    return tuple(p for p in PurePosixPath(name).parts if p not in ("", "."))


def _unpack_tarball(content: bytes, dest: Path, plugin: str) -> None:
    """Extract a package tarball into *dest*.

    npm tarballs wrap everything in one top-level directory (usually
    ``package/``); it is stripped. Members that would land outside *dest*,
    links and device files are skipped. Extraction happens in a temporary
    sibling directory that is renamed into place.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{dest.name}-", dir=dest.parent))
    try:
        with tarfile.open(fileobj=io.BytesIO(content), mode="r:*") as tar:
            members = [m for m in tar.getmembers() if _member_parts(m.name)]
            tops = {_member_parts(m.name)[0] for m in members}
            strip = 1 if len(tops) == 1 and any(len(_member_parts(m.name)) > 1 for m in members) else 0

            for member in members:
                parts = _member_parts(member.name)[strip:]
                if not parts:
                    continue
                if ".." in parts or PurePosixPath(member.name).is_absolute():
                    logger.warning("Skipping unsafe archive member '%s'", member.name)
                    continue
                target = staging.joinpath(*parts)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    with source, open(target, "wb") as fh:
                        shutil.copyfileobj(source, fh)
                else:
                    logger.debug("Skipping non-regular archive member '%s'", member.name)

        if _has_manifest(dest, plugin):
            # Another process finished first; keep its copy.
            return
        if dest.exists():
            shutil.rmtree(dest)
        staging.rename(dest)
    finally:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)
