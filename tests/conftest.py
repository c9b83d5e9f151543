"""Test fixtures: sandboxed SVRX_DIR, fixture plugins, in-memory registry.

All tests should use these fixtures for consistency.
"""

import io
import json
import shutil
import tarfile
from pathlib import Path
from typing import Optional

import pytest

from svrx.config import SvrxConfig
from svrx.exceptions import NoSuchVersion, RegistryNotFound
from svrx.package_manager.manifest import VersionEntry, package_name
from svrx.package_manager.registry import _has_manifest, _unpack_tarball

FIXTURE_DIR = Path(__file__).parent / "fixture"
TEST_PLUGIN_PATH = FIXTURE_DIR / "plugin" / "svrx-plugin-test"
ERROR_NO_VERSION_PLUGIN_PATH = FIXTURE_DIR / "plugin" / "svrx-plugin-error-no-version"
ERROR_NO_PACKAGE_PLUGIN_PATH = FIXTURE_DIR / "plugin" / "svrx-plugin-no-package"


def make_tarball(files: dict[str, str], top: str = "package") -> bytes:
    """Build an npm-style .tgz with every file under ``<top>/``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{name}" if top else name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def package_files(plugin: str, version: str, svrx_range: Optional[str]) -> dict[str, str]:
    data = {"name": package_name(plugin), "version": version, "main": "index.js"}
    if svrx_range is not None:
        data["engines"] = {"svrx": svrx_range}
    return {
        "package.json": json.dumps(data, indent=2),
        "index.js": f"module.exports = {{ version: '{version}' }};\n",
    }


class FakeRegistry:
    """In-memory RegistryClient.

    ``packages`` maps plugin → list of ``(version, svrx_range)``; a version
    may be given a custom file set through ``files``. Every call is recorded
    in ``calls`` so tests can assert that no network access happened.
    """

    def __init__(
        self,
        packages: dict[str, list[tuple[str, Optional[str]]]],
        tags: Optional[dict[str, dict[str, str]]] = None,
        files: Optional[dict[tuple[str, str], dict[str, str]]] = None,
    ) -> None:
        self.packages = packages
        self.tags = tags or {}
        self.files = files or {}
        self.calls: list[tuple] = []
        self.downloads: list[tuple[str, str]] = []

    async def fetch_versions(self, plugin: str) -> list[VersionEntry]:
        self.calls.append(("fetch_versions", plugin))
        if plugin not in self.packages:
            raise RegistryNotFound(plugin)
        return [VersionEntry(version=v, svrx_range=r) for v, r in self.packages[plugin]]

    async def fetch_tags(self, plugin: str) -> dict[str, str]:
        self.calls.append(("fetch_tags", plugin))
        if plugin not in self.packages:
            raise RegistryNotFound(plugin)
        return dict(self.tags.get(plugin, {}))

    async def download(self, plugin: str, version: str, dest: Path) -> Path:
        self.calls.append(("download", plugin, version))
        if _has_manifest(dest, plugin):
            return dest
        published = dict(self.packages.get(plugin, []))
        if version not in published:
            raise NoSuchVersion(plugin, version)
        files = self.files.get((plugin, version)) or package_files(plugin, version, published[version])
        _unpack_tarball(make_tarball(files), Path(dest), plugin)
        self.downloads.append((plugin, version))
        return dest


def default_packages() -> dict[str, list[tuple[str, Optional[str]]]]:
    return {
        "hello": [
            ("0.0.5", "0.0.1 - 0.9.x"),
            ("1.0.0", ">=1.0.0"),
            ("1.0.1", ">=1.0.0"),
        ],
        "demo": [
            ("1.0.1", "0.0.1"),
            ("1.0.2", "0.0.2"),
            ("1.0.3", ">=0.0.3 <1.0.0"),
        ],
    }


@pytest.fixture
def svrx_dir(tmp_path, monkeypatch):
    """Copy of tests/fixture/.svrx in a tmp dir, exported as SVRX_DIR."""
    target = tmp_path / ".svrx"
    shutil.copytree(FIXTURE_DIR / ".svrx", target)
    monkeypatch.setenv("SVRX_DIR", str(target))
    return target


@pytest.fixture
def config(svrx_dir):
    """Test configuration pointing at the sandboxed cache and an unroutable registry."""
    return SvrxConfig(dir=svrx_dir, registry_url="http://registry.invalid", registry_timeout=1.0)


@pytest.fixture
def registry():
    """Fixture registry publishing ``hello`` and ``demo``."""
    return FakeRegistry(
        default_packages(),
        tags={"hello": {"latest": "1.0.1"}, "demo": {"latest": "1.0.3", "next": "1.0.3"}},
    )
